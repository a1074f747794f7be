"""拉取策略分发 - 主镜像 → 包站点 → 备份镜像

按固定顺序尝试，第一个成功即返回:
  1. 配置了 primary_site 时从主镜像下载（scp:// 主镜像用 scp，其余走归档下载）
  2. 按包的 site_method 分发到对应策略
  3. 配置了 backup_site 时从备份镜像走归档下载
同一条拉取链同时服务 download / source-check / external-deps 三种模式。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterator, Protocol

from pkgstage.core.config import Config
from pkgstage.core.models import FetchMode, PackageDescriptor, SiteMethod
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
from pkgstage.utils.net import get_uri_scheme
from pkgstage.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


class FetchStrategy(Protocol):
    """单个拉取策略"""

    def fetch(self, req: FetchRequest) -> bool: ...

    def check(self, req: FetchRequest) -> bool: ...

    def describe(self, req: FetchRequest) -> str: ...


def default_strategies(executor: CommandExecutor | None = None) -> dict[SiteMethod, FetchStrategy]:
    return {
        SiteMethod.WGET: ArchiveFetchStrategy(),
        SiteMethod.GIT: GitStrategy(executor),
        SiteMethod.SVN: SvnStrategy(executor),
        SiteMethod.BZR: BzrStrategy(executor),
        SiteMethod.HG: HgStrategy(executor),
        SiteMethod.SCP: ScpStrategy(executor),
        SiteMethod.FILE: LocalFileStrategy(),
    }


class RetrievalDispatcher:
    """实现 SourceFetcher 协议的拉取分发器"""

    def __init__(
        self,
        config: Config,
        executor: CommandExecutor | None = None,
        strategies: dict[SiteMethod, FetchStrategy] | None = None,
        echo: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config
        self.strategies = strategies if strategies is not None else default_strategies(executor)
        self.echo = echo or (lambda line: logger.info("%s", line))

    def fetch(self, descriptor: PackageDescriptor, mode: FetchMode = FetchMode.DOWNLOAD) -> bool:
        """拉取源码归档及附加补丁；全部成功返回 True"""
        if descriptor.has_override:
            return self._local(descriptor, mode)
        if mode is FetchMode.SHOW_EXTERNAL_DEPS:
            for item in self.enumerate(descriptor):
                self.echo(item)
            return True
        for filename in self._files(descriptor):
            if not self.fetch_file(descriptor, filename, mode):
                return False
        return True

    def fetch_file(
        self, descriptor: PackageDescriptor, filename: str,
        mode: FetchMode = FetchMode.DOWNLOAD,
    ) -> bool:
        """沿拉取链获取单个文件"""
        if mode is FetchMode.DOWNLOAD and (descriptor.dl_dir / filename).is_file():
            logger.debug("%s: %s 已存在，跳过下载", descriptor.name, filename)
            return True
        for label, strategy, req in self._chain(descriptor, filename):
            ok = strategy.check(req) if mode is FetchMode.SOURCE_CHECK else strategy.fetch(req)
            if ok:
                logger.info("%s: %s 来自%s %s", descriptor.name, filename, label, req.location)
                return True
            logger.warning("%s: %s 从%s %s 获取失败", descriptor.name, filename, label, req.location)
        return False

    def enumerate(self, descriptor: PackageDescriptor) -> list[str]:
        """列出构建该包将要拉取的文件（不访问网络）"""
        if descriptor.has_override:
            return []
        items = []
        for filename in self._files(descriptor):
            for _, strategy, req in self._chain(descriptor, filename):
                items.append(strategy.describe(req))
                break
        return items

    # ---- 内部 ----

    @staticmethod
    def _files(descriptor: PackageDescriptor) -> list[str]:
        files = [descriptor.source]
        if descriptor.patch:
            files.append(descriptor.patch)
        return files

    def _local(self, descriptor: PackageDescriptor, mode: FetchMode) -> bool:
        # 本地源码目录在 rsync 阶段同步，没有可拉取的文件
        if mode is FetchMode.SOURCE_CHECK:
            exists = Path(descriptor.override_srcdir).is_dir()
            if not exists:
                logger.warning("%s: 本地源码目录不存在 %s", descriptor.name, descriptor.override_srcdir)
            return exists
        return True

    def _chain(
        self, descriptor: PackageDescriptor, filename: str,
    ) -> Iterator[tuple[str, FetchStrategy, FetchRequest]]:
        def request(location: str) -> FetchRequest:
            return FetchRequest(
                location=location, filename=filename, dl_dir=descriptor.dl_dir,
                version=descriptor.dl_version, base_name=descriptor.base_name,
            )

        primary = self.config.primary_site
        if primary:
            method = SiteMethod.SCP if get_uri_scheme(primary) == "scp" else SiteMethod.WGET
            yield "主镜像", self.strategies[method], request(primary)

        method = descriptor.site_method
        # 附加补丁不在版本库快照里，按普通文件从站点下载
        if filename != descriptor.source and method.is_vcs:
            method = SiteMethod.WGET
        if method in self.strategies:
            yield "站点", self.strategies[method], request(descriptor.site)

        backup = self.config.backup_site
        if backup:
            yield "备份镜像", self.strategies[SiteMethod.WGET], request(backup)
