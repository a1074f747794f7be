"""完成标记跟踪

每个 (包, 阶段) 对应构建目录中的一个空文件 .stamp_<name>，
存在即表示该阶段上次执行成功且此后未被失效，这是引擎唯一的持久状态。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from pkgstage.core.models import PackageDescriptor, StageKind

logger = logging.getLogger(__name__)

MARKER_PREFIX = ".stamp_"

# rebuild 清除的标记：构建与全部安装阶段
REBUILD_KINDS = (
    StageKind.BUILD,
    StageKind.INSTALL_STAGING,
    StageKind.INSTALL_TARGET,
    StageKind.INSTALL_IMAGES,
    StageKind.INSTALL_HOST,
)


class CompletionTracker:
    """完成标记读写"""

    @staticmethod
    def marker_path(descriptor: PackageDescriptor, kind: StageKind) -> Path | None:
        name = kind.marker_name
        if name is None:
            return None
        return descriptor.build_dir / f"{MARKER_PREFIX}{name}"

    def is_done(self, descriptor: PackageDescriptor, kind: StageKind) -> bool:
        path = self.marker_path(descriptor, kind)
        return path is not None and path.exists()

    def mark_done(self, descriptor: PackageDescriptor, kind: StageKind) -> None:
        path = self.marker_path(descriptor, kind)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()

    def clear(self, descriptor: PackageDescriptor, kind: StageKind) -> bool:
        """删除单个标记，返回是否确实删除"""
        path = self.marker_path(descriptor, kind)
        if path is None or not path.exists():
            return False
        path.unlink()
        logger.debug("已清除标记: %s", path)
        return True

    def invalidate(
        self, descriptor: PackageDescriptor, kinds: Iterable[StageKind],
    ) -> list[StageKind]:
        """批量清除标记，返回被清除的阶段"""
        return [k for k in kinds if self.clear(descriptor, k)]

    def completed(self, descriptor: PackageDescriptor) -> list[StageKind]:
        """列出当前持有标记的阶段"""
        return [k for k in StageKind if self.is_done(descriptor, k)]


def rebuild_kinds(descriptor: PackageDescriptor) -> tuple[StageKind, ...]:
    """rebuild 需要清除的阶段（本地同步源码的包连同 rsync 标记）"""
    if descriptor.has_override:
        return REBUILD_KINDS + (StageKind.RSYNC,)
    return REBUILD_KINDS


def reconfigure_kinds(descriptor: PackageDescriptor) -> tuple[StageKind, ...]:
    """reconfigure 在 rebuild 基础上再清除 configure 标记"""
    return rebuild_kinds(descriptor) + (StageKind.CONFIGURE,)
