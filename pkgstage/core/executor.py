"""阶段执行器 / 完成标记跟踪

执行一个目标时先递归满足其全部前置阶段，再执行阶段本身：
  - 标记存在且没有前置阶段在本次调用中重新执行 → 直接跳过
    （仅约束顺序的边除外：依赖包的安装、本地同步包的 rsync）
  - 否则依次执行前置钩子 → 阶段命令 → 后置钩子，全部成功才写标记
任何失败都以 StageFailedError 上抛（带包名与阶段名），标记保持缺失，
依赖它的阶段不会开始；重新调用时从失败阶段继续。

失效级联:
  rebuild     清除 build + 全部安装标记（本地同步的包连同 rsync），再执行安装
  reconfigure 在 rebuild 基础上再清除 configure 标记
"""

from __future__ import annotations

import logging
import threading
from typing import Mapping

from pkgstage.core.actions import StageContext, package_env, run_command
from pkgstage.core.config import Config
from pkgstage.core.exceptions import DependencyError, StageFailedError, ValidationError
from pkgstage.core.graph import PackageGraph, StageGraphBuilder
from pkgstage.core.hooks import HookPipeline
from pkgstage.core.models import PackageDescriptor, Stage, StageKind, stage_id
from pkgstage.core.protocols import PatchBackend, SourceFetcher
from pkgstage.core.stamps import CompletionTracker, rebuild_kinds, reconfigure_kinds
from pkgstage.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


class StageExecutor:
    """阶段执行器 — 记录本次调用中已访问的阶段，调度器在多个包之间共享同一实例"""

    def __init__(
        self,
        descriptors: Mapping[str, PackageDescriptor],
        *,
        config: Config,
        hooks: HookPipeline | None = None,
        tracker: CompletionTracker | None = None,
        fetcher: SourceFetcher | None = None,
        patcher: PatchBackend | None = None,
        command_executor: CommandExecutor | None = None,
    ) -> None:
        self.descriptors = descriptors
        self.config = config
        self.hooks = hooks or HookPipeline()
        self.tracker = tracker or CompletionTracker()
        self.fetcher = fetcher
        self.patcher = patcher
        self.command_executor = command_executor

        builder = StageGraphBuilder(self.tracker)
        self.graphs: dict[str, PackageGraph] = {
            name: builder.build(desc) for name, desc in descriptors.items()
        }
        self._stages: dict[str, Stage] = {}
        self._edges: dict[str, list[str]] = {}
        for graph in self.graphs.values():
            self._stages.update(graph.stages)
            self._edges.update(graph.edges)

        # 本次调用中已访问的阶段 → 是否实际执行
        self._visited: dict[str, bool] = {}
        self._lock = threading.Lock()
        # 每个线程当前 run() 调用执行的阶段
        self._local = threading.local()

    # ---- 目标执行 ----

    def run(self, target: str) -> list[str]:
        """执行目标（<pkg> 等同于 <pkg>-install），返回本次实际执行的阶段"""
        node = self._node(target)
        self._local.executed = []
        self._visit(node, [])
        return list(self._local.executed)

    def _node(self, target: str) -> str:
        if target in self.graphs:
            return stage_id(target, StageKind.INSTALL)
        if target not in self._stages:
            raise ValidationError(f"未知目标: {target}")
        return target

    def _visit(self, node: str, path: list[str]) -> bool:
        with self._lock:
            if node in self._visited:
                return self._visited[node]
        if node in path:
            raise DependencyError(f"循环依赖: {' -> '.join(path + [node])}")
        if node not in self._stages:
            raise DependencyError(f"未知依赖目标: {node}")

        stage = self._stages[node]
        dirty = False
        for prereq in self._edges.get(node, []):
            ran = self._visit(prereq, path + [node])
            if ran and self.graphs[stage.package].propagates(prereq, node):
                dirty = True

        ran = self.run_stage(stage, dirty=dirty)
        with self._lock:
            self._visited[node] = ran
        return ran

    def run_stage(self, stage: Stage, *, dirty: bool = False) -> bool:
        """执行单个阶段，返回是否实际执行；失败抛 StageFailedError"""
        if not stage.enabled:
            return False
        if stage.synthetic:
            return dirty

        desc = self.descriptors[stage.package]
        if stage.marker is not None and self.tracker.is_done(desc, stage.kind):
            if not dirty:
                return False
            self.tracker.clear(desc, stage.kind)

        extra = {"package": desc.name, "stage": stage.kind.value}
        logger.info(">>> %s %s %s", desc.name, desc.version, stage.kind.value, extra=extra)
        ctx = self.context(desc, stage.kind)
        try:
            for point in stage.pre_hooks:
                self.hooks.run_all(desc.name, point, ctx)
            for cmd in stage.commands:
                run_command(cmd, ctx)
            for point in stage.post_hooks:
                self.hooks.run_all(desc.name, point, ctx)
        except Exception as e:
            # 可调用命令 / 钩子可能抛任意异常，一律归到本阶段
            logger.error("%s: 阶段 %s 失败: %s", desc.name, stage.kind.value, e, extra=extra)
            raise StageFailedError(desc.name, stage.kind.value, f"{type(e).__name__}: {e}") from e

        self.tracker.mark_done(desc, stage.kind)
        if hasattr(self._local, "executed"):
            self._local.executed.append(stage.id)
        return True

    def context(self, desc: PackageDescriptor, kind: StageKind) -> StageContext:
        return StageContext(
            descriptor=desc,
            stage=kind,
            config=self.config,
            tracker=self.tracker,
            fetcher=self.fetcher,
            patcher=self.patcher,
            executor=self.command_executor,
            env=package_env(desc, self.config),
        )

    # ---- 失效级联 ----

    def rebuild(self, package: str) -> list[str]:
        """清除构建与安装标记后重新执行安装"""
        desc = self._descriptor(package)
        cleared = self.tracker.invalidate(desc, rebuild_kinds(desc))
        logger.info("%s: rebuild 清除标记 %s", package, [k.value for k in cleared])
        return self.run(package)

    def reconfigure(self, package: str) -> list[str]:
        """清除配置、构建与安装标记后重新执行安装"""
        desc = self._descriptor(package)
        cleared = self.tracker.invalidate(desc, reconfigure_kinds(desc))
        logger.info("%s: reconfigure 清除标记 %s", package, [k.value for k in cleared])
        return self.run(package)

    def _descriptor(self, package: str) -> PackageDescriptor:
        desc = self.descriptors.get(package)
        if desc is None:
            raise ValidationError(f"未知包: {package}")
        return desc
