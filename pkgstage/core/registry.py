"""包描述注册表

描述来源有两处：
  - 清单文件（packages.yml 的 packages 段），一个文件声明多个包
  - 包目录根下的单包描述文件 <root>/<name>/<name>.yml，
    描述所在的根目录即其默认目录前缀（根目录名为 boot 的包为引导类包）

每个条目描述目标版；variants 选择生成 target / host 哪些变体，
host 段给出 host 版显式声明的字段，其余字段由解析器从目标版继承。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pkgstage.core.exceptions import ConfigError
from pkgstage.core.models import (
    COMMAND_KEYS,
    Declaration,
    PackageType,
    RawDescriptor,
)
from pkgstage.core.naming import HOST_PREFIX
from pkgstage.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

_SCALAR_FIELDS = (
    "version",
    "source",
    "site",
    "site_method",
    "patch",
    "dir_prefix",
    "override_srcdir",
)
_FLAG_FIELDS = ("install_staging", "install_target", "install_images")
_VARIANTS = (PackageType.TARGET.value, PackageType.HOST.value)


class YamlRegistry:
    """YAML 文件注册表基类

    子类用法:
        class MyRegistry(YamlRegistry):
            section_key = "items"
    """

    section_key: str = "entries"

    def __init__(self, registry_file: str) -> None:
        self.registry_file = Path(registry_file)
        self._data: dict[str, Any] = load_yaml(self.registry_file)

    def _section(self) -> dict[str, Any]:
        """获取当前 section 字典（缺失时为空）"""
        section = self._data.get(self.section_key) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"{self.registry_file}: '{self.section_key}' 段必须是映射")
        return section

    def _list_raw(self) -> list[dict[str, Any]]:
        """列出所有条目（带 name 字段）"""
        return [{"name": k, **(v or {})} for k, v in self._section().items()]


class PackageRegistry(YamlRegistry):
    """包描述注册表 — 清单文件 + 包目录扫描"""

    section_key = "packages"

    def __init__(self, manifest: str = "", package_dirs: list[str] | None = None) -> None:
        if not manifest or package_dirs is None:
            from pkgstage.core.config import get_config
            cfg = get_config()
            manifest = manifest or cfg.manifest
            package_dirs = cfg.package_dirs if package_dirs is None else package_dirs
        super().__init__(manifest)
        self.package_dirs = [Path(d) for d in package_dirs]

    def load(self) -> list[Declaration]:
        """加载全部声明（清单在前，目录扫描在后）"""
        default_root = str(self.package_dirs[0]) if self.package_dirs else ""
        declarations: list[Declaration] = []
        for entry in self._list_raw():
            declarations.extend(self.declare(entry.pop("name"), entry, default_root))

        for root in self.package_dirs:
            for path in self._scan(root):
                data = load_yaml(path)
                name = str(data.pop("name", path.stem))
                declarations.extend(self.declare(name, data, str(root)))

        logger.info("已加载 %d 个包声明", len(declarations))
        return declarations

    @staticmethod
    def _scan(root: Path) -> list[Path]:
        if not root.is_dir():
            return []
        found: list[Path] = []
        for pkg_dir in sorted(root.iterdir()):
            if not pkg_dir.is_dir():
                continue
            for suffix in (".yml", ".yaml"):
                candidate = pkg_dir / f"{pkg_dir.name}{suffix}"
                if candidate.is_file():
                    found.append(candidate)
                    break
        return found

    @staticmethod
    def declare(name: str, entry: dict[str, Any], declared_in: str) -> list[Declaration]:
        """把一个条目展开为 target / host 声明"""
        if not name:
            raise ConfigError("包条目缺少名称")
        variants = entry.get("variants") or [PackageType.TARGET.value]
        unknown = [v for v in variants if v not in _VARIANTS]
        if unknown:
            raise ConfigError(f"{name}: 未知的 variants: {unknown}")

        target = _raw_from_entry(name, PackageType.TARGET, entry, declared_in)
        result: list[Declaration] = []
        if PackageType.TARGET.value in variants:
            result.append(Declaration(raw=target))
        if PackageType.HOST.value in variants:
            host_entry = entry.get("host") or {}
            host = _raw_from_entry(
                HOST_PREFIX + name, PackageType.HOST, host_entry, declared_in,
            )
            result.append(Declaration(raw=host, counterpart=target))
        return result


def _raw_from_entry(
    name: str, pkg_type: PackageType, entry: dict[str, Any], declared_in: str,
) -> RawDescriptor:
    """YAML 条目 → RawDescriptor，未出现的字段保持 None"""
    raw = RawDescriptor(name=name, type=pkg_type, declared_in=declared_in)
    for key in _SCALAR_FIELDS:
        if entry.get(key) is not None:
            setattr(raw, key, str(entry[key]))
    for key in _FLAG_FIELDS:
        if entry.get(key) is not None:
            setattr(raw, key, bool(entry[key]))
    if entry.get("dependencies") is not None:
        deps = entry["dependencies"]
        if not isinstance(deps, list):
            raise ConfigError(f"{name}: dependencies 必须是列表")
        raw.dependencies = [str(d) for d in deps]
    for key in COMMAND_KEYS:
        cmds = entry.get(f"{key}_cmds")
        if cmds:
            raw.commands[key] = [cmds] if isinstance(cmds, str) else list(cmds)
    for point, cmds in (entry.get("hooks") or {}).items():
        raw.hooks[str(point)] = [cmds] if isinstance(cmds, str) else list(cmds)
    return raw
