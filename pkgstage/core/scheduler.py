"""包级调度器 - 在依赖约束下并行构建多个包

单个包内的阶段串行执行；没有依赖关系的包可以并行，
并行度由调用方的 max_workers 限定。某个包失败时，直接或间接依赖它的包
标记为 blocked 不再执行，无关的包照常继续。
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Mapping

from pkgstage.core.exceptions import StageFailedError
from pkgstage.core.executor import StageExecutor
from pkgstage.core.graph import topological_order
from pkgstage.core.models import PackageDescriptor

logger = logging.getLogger(__name__)


@dataclass
class PackageResult:
    """单个包的构建结果"""

    name: str
    status: str  # "success", "failed", "blocked"
    stage: str = ""
    message: str = ""
    duration: float = 0.0
    executed: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == "success"


class PackageScheduler:
    """可配置并行度的包调度器"""

    def __init__(self, executor: StageExecutor, max_workers: int = 1) -> None:
        self.executor = executor
        self.max_workers = max(1, max_workers)

    @property
    def descriptors(self) -> Mapping[str, PackageDescriptor]:
        return self.executor.descriptors

    def run(self, names: list[str]) -> list[PackageResult]:
        """构建 names 及其依赖闭包，结果按拓扑序返回"""
        order = topological_order(self.descriptors, names)
        if self.max_workers == 1:
            results = self._run_serial(order)
        else:
            results = self._run_parallel(order)
        return [results[name] for name in order]

    def _build_one(self, name: str) -> PackageResult:
        start = time.monotonic()
        try:
            executed = self.executor.run(name)
        except StageFailedError as e:
            return PackageResult(
                name=name, status="failed", stage=e.stage,
                message=str(e), duration=time.monotonic() - start,
            )
        return PackageResult(
            name=name, status="success",
            duration=time.monotonic() - start, executed=executed,
        )

    def _blocked_by(self, name: str, results: dict[str, PackageResult]) -> str:
        for dep in self.descriptors[name].dependencies:
            if dep in results and not results[dep].success:
                return dep
        return ""

    def _run_serial(self, order: list[str]) -> dict[str, PackageResult]:
        results: dict[str, PackageResult] = {}
        for name in order:
            blocker = self._blocked_by(name, results)
            if blocker:
                results[name] = PackageResult(name, "blocked", message=f"依赖 {blocker} 未完成")
                continue
            results[name] = self._build_one(name)
            logger.info("完成: %s -> %s", name, results[name].status)
        return results

    def _run_parallel(self, order: list[str]) -> dict[str, PackageResult]:
        results: dict[str, PackageResult] = {}
        pending = list(order)
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            running: dict[Future[PackageResult], str] = {}
            while pending or running:
                for name in list(pending):
                    blocker = self._blocked_by(name, results)
                    if blocker:
                        results[name] = PackageResult(name, "blocked", message=f"依赖 {blocker} 未完成")
                        pending.remove(name)
                    elif all(dep in results for dep in self.descriptors[name].dependencies):
                        running[pool.submit(self._build_one, name)] = name
                        pending.remove(name)
                if not running:
                    continue
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    results[name] = future.result()
                    logger.info("完成: %s -> %s", name, results[name].status)
        return results
