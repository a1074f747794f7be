"""领域协议定义

核心引擎只依赖这里的接口契约：源码拉取与补丁应用属于外部协作者，
具体实现位于 services 层，测试时可替换为 mock。
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from pkgstage.core.models import FetchMode, PackageDescriptor


class SourceFetcher(Protocol):
    """源码拉取协议 — 只需要"成功 / 失败"语义"""

    def fetch(
        self, descriptor: PackageDescriptor, mode: FetchMode = FetchMode.DOWNLOAD,
    ) -> bool:
        """按模式拉取包的源码归档（及附加补丁文件）"""
        ...


class PatchBackend(Protocol):
    """补丁应用协议"""

    def apply_patches(
        self, target_dir: Path, patch_dir: Path, *patterns: str,
        required: bool = False,
    ) -> bool:
        """把 patch_dir 下匹配 patterns 的补丁依次应用到 target_dir"""
        ...
