"""阶段内置动作与命令执行

每个阶段的命令列表由内置动作（下载、解压、同步、打补丁、卸载、清理）
和包描述声明的命令组成。命令可以是 shell 字符串，也可以是接收
StageContext 的可调用对象；任何一条失败都以异常形式中止阶段。
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from pkgstage.core.exceptions import (
    ConfigError,
    ExecutionError,
    FilesystemError,
    RetrievalError,
)
from pkgstage.core.models import (
    Command,
    FetchMode,
    PackageDescriptor,
    StageKind,
)
from pkgstage.utils.shell import CommandExecutor, run_cmd

if TYPE_CHECKING:
    from pkgstage.core.config import Config
    from pkgstage.core.protocols import PatchBackend, SourceFetcher
    from pkgstage.core.stamps import CompletionTracker

logger = logging.getLogger(__name__)

RSYNC_EXCLUDES = (".git", ".svn")


@dataclass
class StageContext:
    """传给命令和钩子的执行上下文"""

    descriptor: PackageDescriptor
    stage: StageKind
    config: Config
    tracker: CompletionTracker
    fetcher: SourceFetcher | None = None
    patcher: PatchBackend | None = None
    executor: CommandExecutor | None = None
    env: dict[str, str] = field(default_factory=dict)

    @property
    def build_dir(self) -> Path:
        return self.descriptor.build_dir

    @property
    def placeholders(self) -> dict[str, str]:
        d = self.descriptor
        cfg = self.config
        return {
            "{name}": d.name,
            "{raw_name}": d.raw_name,
            "{version}": d.version,
            "{build_dir}": str(d.build_dir),
            "{dl_dir}": str(d.dl_dir),
            "{host_dir}": cfg.host_dir,
            "{staging_dir}": cfg.staging_dir,
            "{target_dir}": cfg.target_dir,
            "{images_dir}": cfg.images_dir,
        }


def package_env(descriptor: PackageDescriptor, config: Config) -> dict[str, str]:
    """阶段命令的环境变量"""
    return {
        **os.environ,
        "PKG_NAME": descriptor.name,
        "PKG_VERSION": descriptor.version,
        "PKG_BUILD_DIR": str(descriptor.build_dir.resolve()),
        "DL_DIR": str(descriptor.dl_dir.resolve()),
        "HOST_DIR": str(Path(config.host_dir).resolve()),
        "STAGING_DIR": str(Path(config.staging_dir).resolve()),
        "TARGET_DIR": str(Path(config.target_dir).resolve()),
        "BINARIES_DIR": str(Path(config.images_dir).resolve()),
    }


def expand(cmd: str, ctx: StageContext) -> str:
    """替换命令中的 {name} / {build_dir} 等占位符"""
    for key, value in ctx.placeholders.items():
        cmd = cmd.replace(key, value)
    return cmd


def run_command(cmd: Command, ctx: StageContext, label: str = "") -> None:
    """执行单条命令；可调用对象返回 False 视为失败"""
    label = label or ctx.stage.value
    if callable(cmd):
        if cmd(ctx) is False:
            raise ExecutionError(f"{label}: {getattr(cmd, '__name__', cmd)!r} 返回失败")
        return
    cwd = ctx.build_dir if ctx.build_dir.is_dir() else Path.cwd()
    run_cmd(
        ["sh", "-c", expand(cmd, ctx)],
        cwd=str(cwd), env=ctx.env, label=label,
        timeout=ctx.config.timeout, executor=ctx.executor,
    )


def run_commands(key: str, ctx: StageContext) -> None:
    for cmd in ctx.descriptor.commands_for(key):
        run_command(cmd, ctx, label=key)


# =========================================================================
# 内置动作
# =========================================================================


def fetch_sources(ctx: StageContext) -> None:
    """source: 经由拉取链获取源码归档（及附加补丁）"""
    if ctx.fetcher is None:
        raise ConfigError("未配置源码拉取器")
    ctx.descriptor.dl_dir.mkdir(parents=True, exist_ok=True)
    if not ctx.fetcher.fetch(ctx.descriptor, FetchMode.DOWNLOAD):
        raise RetrievalError(
            f"{ctx.descriptor.name}: 所有站点均拉取失败 ({ctx.descriptor.source})"
        )


def prepare_build_dir(ctx: StageContext) -> None:
    """extract: 自定义解压命令之前先建好构建目录"""
    ctx.build_dir.mkdir(parents=True, exist_ok=True)


def extract_archive(ctx: StageContext) -> None:
    """extract: 解压归档到构建目录，去掉第一层目录"""
    d = ctx.descriptor
    archive = d.dl_dir / d.source
    if not archive.is_file():
        raise FilesystemError("源码归档不存在", str(archive))
    d.build_dir.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive) as tf:
        members = list(_strip_first_component(tf.getmembers()))
        tf.extractall(path=str(d.build_dir), members=members, filter="data")  # noqa: S202
    logger.info("  已解压 %s -> %s", archive.name, d.build_dir)


def _strip_first_component(members: list[tarfile.TarInfo]):
    for m in members:
        name = m.name[2:] if m.name.startswith("./") else m.name
        parts = name.split("/", 1)
        if len(parts) < 2 or not parts[1]:
            continue
        m.name = parts[1]
        if m.islnk():
            link_parts = m.linkname.split("/", 1)
            m.linkname = link_parts[1] if len(link_parts) == 2 else m.linkname
        yield m


def sync_override_srcdir(ctx: StageContext) -> None:
    """rsync: 把本地源码目录同步到构建目录（排除 .git/.svn）"""
    d = ctx.descriptor
    src = Path(d.override_srcdir)
    if not src.is_dir():
        raise FilesystemError(f"{d.name}: 本地源码目录不存在", str(src))
    d.build_dir.mkdir(parents=True, exist_ok=True)
    shutil.copytree(
        src, d.build_dir, dirs_exist_ok=True,
        ignore=shutil.ignore_patterns(*RSYNC_EXCLUDES), symlinks=True,
    )
    logger.info("  已同步 %s -> %s", src, d.build_dir)


def apply_package_patches(ctx: StageContext) -> None:
    """patch: 附加补丁 → 版本专用补丁，或通用补丁 + 版本目录补丁"""
    if ctx.patcher is None:
        raise ConfigError("未配置补丁后端")
    d = ctx.descriptor
    arch = ctx.config.arch

    def patterns(prefix: str) -> list[str]:
        pats = [f"{prefix}*.patch"]
        if arch:
            pats.append(f"{prefix}*.patch.{arch}")
        return pats

    def apply(patch_dir: Path, *pats: str, required: bool = False) -> None:
        if not ctx.patcher.apply_patches(d.build_dir, patch_dir, *pats, required=required):
            raise FilesystemError(f"{d.name}: 补丁应用失败", str(patch_dir))

    if d.patch:
        apply(d.dl_dir, d.patch, required=True)

    pkg_dir = Path(d.dir_prefix) / d.raw_name
    if not pkg_dir.is_dir():
        return
    namever = f"{d.raw_name}-{d.version}"
    if any(pkg_dir.glob(f"{namever}*.patch*")):
        apply(pkg_dir, *patterns(namever))
        return
    apply(pkg_dir, *patterns(d.raw_name))
    version_dir = pkg_dir / namever
    if version_dir.is_dir():
        apply(version_dir, *patterns(""))


def uninstall(ctx: StageContext) -> None:
    """uninstall: 先卸载 staging 再卸载 target，并清除对应安装标记"""
    run_commands("uninstall_staging", ctx)
    ctx.tracker.clear(ctx.descriptor, StageKind.INSTALL_STAGING)
    run_commands("uninstall_target", ctx)
    ctx.tracker.clear(ctx.descriptor, StageKind.INSTALL_TARGET)


def clean(ctx: StageContext) -> None:
    """clean: 执行清理命令，只清除 build 标记（configure 标记保留）"""
    run_commands("clean", ctx)
    ctx.tracker.clear(ctx.descriptor, StageKind.BUILD)


def dirclean(ctx: StageContext) -> None:
    """dirclean: 删除整个包构建目录（含全部标记）"""
    build_dir = ctx.descriptor.build_dir
    if build_dir.exists():
        shutil.rmtree(build_dir)
        logger.info("  已删除 %s", build_dir)
