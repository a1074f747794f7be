"""集中配置管理

输出目录、下载目录、镜像站点、本地源码覆盖等全局设置的统一入口。
支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pkgstage.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """构建编排全局配置"""

    # 目录
    build_dir: str = "output/build"
    dl_dir: str = "dl"
    host_dir: str = "output/host"
    staging_dir: str = "output/staging"
    target_dir: str = "output/target"
    images_dir: str = "output/images"

    # 包描述来源
    manifest: str = "packages.yml"
    package_dirs: list[str] = field(default_factory=lambda: ["package", "boot"])

    # 镜像站点：主镜像 → 包自身站点 → 备份镜像
    primary_site: str = ""
    backup_site: str = ""
    sourceforge_mirror: str = "easynews"
    default_site_template: str = "http://{mirror}.dl.sourceforge.net/sourceforge/{name}"

    # 配置符号前缀（如 BR2_PACKAGE_ZLIB）
    config_prefix: str = "BR2_"

    # 架构后缀，用于 *.patch.<arch> 补丁
    arch: str = ""

    # 本地源码覆盖: {包名或原始包名: 源码目录}
    override_srcdirs: dict[str, str] = field(default_factory=dict)

    # 执行
    max_workers: int = 1
    command_timeout: int = 0  # 0 表示不限时

    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = "pkgstage.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg

    def default_site(self, name: str) -> str:
        """按模板生成默认站点，模板为空时返回空串"""
        if not self.default_site_template:
            return ""
        return (
            self.default_site_template
            .replace("{mirror}", self.sourceforge_mirror)
            .replace("{name}", name)
        )

    @property
    def timeout(self) -> int | None:
        return self.command_timeout or None


_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "pkgstage.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current


def set_config(config: Config | None) -> None:
    """直接替换全局配置（None 表示恢复默认）"""
    global _current  # noqa: PLW0603
    _current = config
