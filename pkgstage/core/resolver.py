"""包描述解析器

把部分填写的原始描述补全为 PackageDescriptor：
类型 → 版本（含路径安全化）→ 基础名与目录 → 源码文件名 → 站点
→ 获取方式 → 依赖（host 版改写）→ 安装开关 → 目录前缀。

host 版描述未声明的来源字段从同名目标版继承，反向从不继承。
纯函数式处理，不做任何 I/O。
"""

from __future__ import annotations

import logging
from pathlib import Path

from pkgstage.core.config import Config
from pkgstage.core.exceptions import ConfigError, DependencyError
from pkgstage.core.models import (
    Declaration,
    PackageDescriptor,
    PackageType,
    RawDescriptor,
    SiteMethod,
)
from pkgstage.core.naming import (
    find_collisions,
    hostify_dependencies,
    raw_name,
    sanitize_version,
    uppercase,
)
from pkgstage.utils.net import get_uri_scheme, strip_uri_scheme

logger = logging.getLogger(__name__)

# host 版缺省时从目标版继承的字段；阶段命令与安装开关不继承
INHERITED_FIELDS = (
    "version",
    "source",
    "patch",
    "site",
    "site_method",
    "dependencies",
    "dir_prefix",
    "override_srcdir",
)

OVERRIDE_VERSION = "custom"
UNDEFINED_VERSION = "undefined"
BOOT_PREFIX = "boot"

_SCHEME_METHODS = {
    "git": SiteMethod.GIT,
    "svn": SiteMethod.SVN,
    "bzr": SiteMethod.BZR,
    "hg": SiteMethod.HG,
    "scp": SiteMethod.SCP,
    "file": SiteMethod.FILE,
}


class DescriptorResolver:
    """包描述解析器"""

    def __init__(self, config: Config) -> None:
        self.config = config

    def resolve(
        self, raw: RawDescriptor, counterpart: RawDescriptor | None = None,
    ) -> PackageDescriptor:
        """解析单个描述，counterpart 仅对 host 版生效"""
        if not raw.name:
            raise ConfigError("包描述缺少 name")

        pkg_type = PackageType(raw.type)
        base = raw_name(raw.name) if pkg_type is PackageType.HOST else raw.name
        fields = self._merge(raw, counterpart if pkg_type is PackageType.HOST else None)

        override = (
            self.config.override_srcdirs.get(raw.name)
            or self.config.override_srcdirs.get(base)
            or fields["override_srcdir"]
            or ""
        )

        site = fields["site"] or ""
        method_name = fields["site_method"]
        if method_name == SiteMethod.LOCAL.value and not override:
            # local 方式下 site 即本地源码目录
            override = strip_uri_scheme(site)
        if override:
            method_name = SiteMethod.LOCAL.value

        dl_version = fields["version"] or UNDEFINED_VERSION
        if override:
            dl_version = OVERRIDE_VERSION
        version = sanitize_version(dl_version)
        base_name = f"{raw.name}-{version}"

        source = fields["source"] or f"{base}-{version}.tar.gz"

        if not site and not override:
            site = self.config.default_site(base)
            if not site:
                raise ConfigError(
                    f"{raw.name}: 未指定 site，没有本地源码目录，且未配置默认站点模板"
                )

        site_method = self._site_method(raw.name, method_name, site)

        deps = list(fields["dependencies"] or [])
        if pkg_type is PackageType.HOST:
            deps = hostify_dependencies(deps)

        dir_prefix = (
            fields["dir_prefix"]
            or raw.declared_in
            or (self.config.package_dirs[0] if self.config.package_dirs else ".")
        )
        upper = uppercase(raw.name)
        kind = "TARGET" if Path(dir_prefix).name == BOOT_PREFIX else "PACKAGE"

        return PackageDescriptor(
            name=raw.name,
            raw_name=base,
            upper=upper,
            type=pkg_type,
            version=version,
            dl_version=dl_version,
            base_name=base_name,
            source=source,
            site=site,
            site_method=site_method,
            patch=fields["patch"] or "",
            dependencies=tuple(deps),
            install_staging=_flag(raw.install_staging, False),
            install_target=_flag(raw.install_target, True),
            install_images=_flag(raw.install_images, False),
            dir_prefix=dir_prefix,
            override_srcdir=override,
            config_symbol=f"{self.config.config_prefix}{kind}_{upper}",
            build_dir=Path(self.config.build_dir) / base_name,
            dl_dir=Path(self.config.dl_dir),
            commands={k: tuple(v) for k, v in raw.commands.items() if v},
        )

    def resolve_all(self, declarations: list[Declaration]) -> dict[str, PackageDescriptor]:
        """解析全部声明并校验依赖引用，返回 {包标识: 描述}"""
        resolved: dict[str, PackageDescriptor] = {}
        for decl in declarations:
            if decl.raw.name in resolved:
                raise ConfigError(f"包重复声明: {decl.raw.name}")
            resolved[decl.raw.name] = self.resolve(decl.raw, decl.counterpart)

        for desc in resolved.values():
            missing = [d for d in desc.dependencies if d not in resolved]
            if missing:
                raise DependencyError(
                    f"{desc.name} 依赖未声明的包: {', '.join(missing)}"
                )

        for upper, names in find_collisions(list(resolved)).items():
            logger.warning("包名规范化后冲突: %s -> %s", ", ".join(names), upper)

        logger.info("已解析 %d 个包描述", len(resolved))
        return resolved

    @staticmethod
    def _merge(
        raw: RawDescriptor, counterpart: RawDescriptor | None,
    ) -> dict[str, object]:
        """按继承规则合并字段"""
        merged: dict[str, object] = {}
        for name in INHERITED_FIELDS:
            value = getattr(raw, name)
            if value is None and counterpart is not None:
                value = getattr(counterpart, name)
            merged[name] = value
        return merged

    @staticmethod
    def _site_method(package: str, explicit: object, site: str) -> SiteMethod:
        """显式方式优先，否则按 site 的 URI 协议推断，未知协议走通用下载"""
        if explicit:
            try:
                return SiteMethod(str(explicit).lower())
            except ValueError as e:
                raise ConfigError(f"{package}: 无法识别的 site_method: {explicit}") from e
        return _SCHEME_METHODS.get(get_uri_scheme(site), SiteMethod.WGET)


def _flag(value: bool | None, default: bool) -> bool:
    return default if value is None else bool(value)
