"""服务容器 — CLI 通过 get_container() 获取服务，而非直接构造

用法:
    container = ServiceContainer()
    svc = container.packages          # 懒加载

    cfg = Config.from_file("pkgstage.yml")
    container = ServiceContainer(config=cfg)
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pkgstage.core.config import Config
    from pkgstage.services.package_service import PackageService
    from pkgstage.services.retrieval import RetrievalDispatcher

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(self, config: Config | None = None) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from pkgstage.core.config import get_config
            config = get_config()
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    @property
    def fetcher(self) -> RetrievalDispatcher:
        if "fetcher" not in self._instances:
            from pkgstage.services.retrieval import RetrievalDispatcher
            self._instances["fetcher"] = RetrievalDispatcher(self._config)
        return self._instances["fetcher"]  # type: ignore[return-value]

    @property
    def packages(self) -> PackageService:
        if "packages" not in self._instances:
            from pkgstage.services.package_service import PackageService
            self._instances["packages"] = PackageService(
                config=self._config, fetcher=self.fetcher,
            )
        return self._instances["packages"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
