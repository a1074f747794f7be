"""核心数据模型

包描述（原始 / 解析后）、阶段、枚举类型集中定义，
解析器、阶段图构建器、执行器之间只通过这些记录传递数据。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Union

# =========================================================================
# 枚举
# =========================================================================


class PackageType(str, Enum):
    """包类型：交叉编译到目标板，或编译为构建机工具"""

    TARGET = "target"
    HOST = "host"


class SiteMethod(str, Enum):
    """源码获取方式"""

    WGET = "wget"    # 通用归档下载（http/https/ftp 及未知协议）
    GIT = "git"
    SVN = "svn"
    BZR = "bzr"
    HG = "hg"
    SCP = "scp"
    FILE = "file"    # 本地归档文件拷贝
    LOCAL = "local"  # 本地源码目录同步（替代下载+解压+补丁）

    @property
    def is_vcs(self) -> bool:
        return self in (SiteMethod.GIT, SiteMethod.SVN, SiteMethod.BZR, SiteMethod.HG)


class FetchMode(str, Enum):
    """拉取模式：真正下载 / 仅检查可达 / 仅列出将要下载的文件"""

    DOWNLOAD = "download"
    SOURCE_CHECK = "source-check"
    SHOW_EXTERNAL_DEPS = "external-deps"


class StageKind(str, Enum):
    """流水线阶段，取值即命令行目标后缀（<pkg>-<value>）"""

    SOURCE = "source"
    EXTRACT = "extract"
    RSYNC = "rsync"
    PATCH = "patch"
    DEPENDS = "depends"
    CONFIGURE = "configure"
    BUILD = "build"
    INSTALL = "install"
    INSTALL_HOST = "install-host"
    INSTALL_STAGING = "install-staging"
    INSTALL_TARGET = "install-target"
    INSTALL_IMAGES = "install-images"
    UNINSTALL = "uninstall"
    CLEAN = "clean"
    DIRCLEAN = "dirclean"

    @property
    def marker_name(self) -> str | None:
        """完成标记名（.stamp_<name>），无持久标记的阶段返回 None"""
        return _MARKER_NAMES.get(self)


_MARKER_NAMES: dict[StageKind, str] = {
    StageKind.SOURCE: "downloaded",
    StageKind.EXTRACT: "extracted",
    StageKind.RSYNC: "rsynced",
    StageKind.PATCH: "patched",
    StageKind.CONFIGURE: "configured",
    StageKind.BUILD: "built",
    StageKind.INSTALL_HOST: "host_installed",
    StageKind.INSTALL_STAGING: "staging_installed",
    StageKind.INSTALL_TARGET: "target_installed",
    StageKind.INSTALL_IMAGES: "images_installed",
}

INSTALL_LEAVES = (
    StageKind.INSTALL_STAGING,
    StageKind.INSTALL_TARGET,
    StageKind.INSTALL_IMAGES,
)


class ExtensionPoint(str, Enum):
    """阶段前后的钩子扩展点"""

    POST_DOWNLOAD = "post-download"
    POST_EXTRACT = "post-extract"
    POST_RSYNC = "post-rsync"
    PRE_PATCH = "pre-patch"
    POST_PATCH = "post-patch"
    PRE_CONFIGURE = "pre-configure"
    POST_CONFIGURE = "post-configure"
    POST_BUILD = "post-build"
    POST_INSTALL_HOST = "post-install-host"
    POST_INSTALL_STAGING = "post-install-staging"
    POST_INSTALL_TARGET = "post-install-target"
    POST_INSTALL_IMAGES = "post-install-images"


# 命令：shell 字符串，或接收 StageContext 的可调用对象
Command = Union[str, Callable[..., Any]]

# 描述中可声明的命令组（YAML 字段名为 <key>_cmds）
COMMAND_KEYS = (
    "extract",
    "configure",
    "build",
    "install",
    "install_staging",
    "install_target",
    "install_images",
    "uninstall_staging",
    "uninstall_target",
    "clean",
)


# =========================================================================
# 包描述
# =========================================================================


@dataclass
class RawDescriptor:
    """原始包描述 — 字段为 None 表示未声明，由解析器补全"""

    name: str
    type: PackageType = PackageType.TARGET
    version: str | None = None
    source: str | None = None
    site: str | None = None
    site_method: str | None = None
    patch: str | None = None
    dependencies: list[str] | None = None
    install_staging: bool | None = None
    install_target: bool | None = None
    install_images: bool | None = None
    dir_prefix: str | None = None
    override_srcdir: str | None = None
    declared_in: str = ""  # 声明所在的包目录根
    commands: dict[str, list[Command]] = field(default_factory=dict)
    hooks: dict[str, list[Command]] = field(default_factory=dict)


@dataclass
class Declaration:
    """一次声明：待解析的描述 + 可选的同名目标版描述（供 host 版继承）"""

    raw: RawDescriptor
    counterpart: RawDescriptor | None = None


@dataclass(frozen=True)
class PackageDescriptor:
    """解析完成的包描述，派生后不再修改"""

    name: str
    raw_name: str
    upper: str
    type: PackageType
    version: str          # 路径安全版本（'/' → '_'）
    dl_version: str       # 原始版本，原样交给检出后端
    base_name: str
    source: str
    site: str
    site_method: SiteMethod
    patch: str
    dependencies: tuple[str, ...]
    install_staging: bool
    install_target: bool
    install_images: bool
    dir_prefix: str
    override_srcdir: str
    config_symbol: str
    build_dir: Path
    dl_dir: Path
    commands: dict[str, tuple[Command, ...]] = field(default_factory=dict, compare=False)

    @property
    def is_host(self) -> bool:
        return self.type is PackageType.HOST

    @property
    def has_override(self) -> bool:
        return bool(self.override_srcdir)

    def commands_for(self, key: str) -> tuple[Command, ...]:
        return self.commands.get(key, ())


# =========================================================================
# 阶段
# =========================================================================


@dataclass
class Stage:
    """单个包的单个流水线阶段"""

    package: str
    kind: StageKind
    commands: list[Command] = field(default_factory=list)
    pre_hooks: tuple[ExtensionPoint, ...] = ()
    post_hooks: tuple[ExtensionPoint, ...] = ()
    marker: Path | None = None
    enabled: bool = True
    synthetic: bool = False  # 仅聚合依赖，无命令、无标记

    @property
    def id(self) -> str:
        return stage_id(self.package, self.kind)


def stage_id(package: str, kind: StageKind) -> str:
    """阶段标识即命令行目标名: <pkg>-<stage>"""
    return f"{package}-{kind.value}"
