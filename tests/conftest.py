"""共享测试夹具"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from pkgstage.core.config import Config
from pkgstage.core.models import Declaration, PackageDescriptor, RawDescriptor
from pkgstage.core.resolver import DescriptorResolver
from pkgstage.utils.shell import CommandResult


class Recorder:
    """记录可调用命令的执行顺序"""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.failing: set[str] = set()

    def step(self, label: str) -> Any:
        def command(ctx: Any) -> bool:
            self.calls.append(label)
            return label not in self.failing
        command.__name__ = label
        return command

    def commands(self, name: str, *keys: str) -> dict[str, list[Any]]:
        return {key: [self.step(f"{name}:{key}")] for key in keys}


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        build_dir=str(tmp_path / "output" / "build"),
        dl_dir=str(tmp_path / "dl"),
        host_dir=str(tmp_path / "output" / "host"),
        staging_dir=str(tmp_path / "output" / "staging"),
        target_dir=str(tmp_path / "output" / "target"),
        images_dir=str(tmp_path / "output" / "images"),
        manifest=str(tmp_path / "packages.yml"),
        package_dirs=[str(tmp_path / "package"), str(tmp_path / "boot")],
    )


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def fetcher() -> MagicMock:
    m = MagicMock()
    m.fetch.return_value = True
    return m


@pytest.fixture
def patcher() -> MagicMock:
    m = MagicMock()
    m.apply_patches.return_value = True
    return m


@pytest.fixture
def ok_executor() -> MagicMock:
    """所有命令都成功的 CommandExecutor"""
    m = MagicMock()
    m.execute.return_value = CommandResult(returncode=0, stdout="", stderr="")
    return m


@pytest.fixture
def resolve(config: Config) -> Any:
    """RawDescriptor... → {包名: PackageDescriptor}"""

    def _resolve(*raws: RawDescriptor) -> dict[str, PackageDescriptor]:
        return DescriptorResolver(config).resolve_all([Declaration(raw=r) for r in raws])
    return _resolve
