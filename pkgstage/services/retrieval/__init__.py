"""源码拉取 - 策略实现与镜像回退分发"""

from pkgstage.services.retrieval.dispatcher import RetrievalDispatcher, default_strategies
from pkgstage.services.retrieval.strategies import (
    ArchiveFetchStrategy,
    BzrStrategy,
    FetchRequest,
    GitStrategy,
    HgStrategy,
    LocalFileStrategy,
    ScpStrategy,
    SvnStrategy,
)

__all__ = [
    "ArchiveFetchStrategy",
    "BzrStrategy",
    "FetchRequest",
    "GitStrategy",
    "HgStrategy",
    "LocalFileStrategy",
    "RetrievalDispatcher",
    "ScpStrategy",
    "SvnStrategy",
    "default_strategies",
]
