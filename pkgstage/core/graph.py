"""阶段图构建

由解析后的描述生成单个包的阶段图 {阶段标识: Stage} 及有序前置边。

常规拓扑:
    source → extract → patch → depends → configure → build
        → {install-staging, install-target, install-images}
本地源码覆盖拓扑:
    rsync → depends → configure → build → 安装叶子
    （source / extract / patch 退化为指向 rsync 的别名）
host 包只有一个 install-host 叶子。depends 节点向每个依赖包的
install 目标扇出，依赖列表为空时立即满足。
depends 的跨包边与本地同步包的 rsync 边只约束顺序，前置重新执行不会使下游失效。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from pkgstage.core import actions
from pkgstage.core.exceptions import DependencyError
from pkgstage.core.models import (
    INSTALL_LEAVES,
    Command,
    ExtensionPoint,
    PackageDescriptor,
    Stage,
    StageKind,
    stage_id,
)
from pkgstage.core.stamps import CompletionTracker

logger = logging.getLogger(__name__)

_E = ExtensionPoint

# 阶段 → (前置钩子扩展点, 后置钩子扩展点)
STAGE_HOOKS: dict[StageKind, tuple[tuple[ExtensionPoint, ...], tuple[ExtensionPoint, ...]]] = {
    StageKind.SOURCE: ((), (_E.POST_DOWNLOAD,)),
    StageKind.EXTRACT: ((), (_E.POST_EXTRACT,)),
    StageKind.RSYNC: ((), (_E.POST_RSYNC,)),
    StageKind.PATCH: ((_E.PRE_PATCH,), (_E.POST_PATCH,)),
    StageKind.CONFIGURE: ((_E.PRE_CONFIGURE,), (_E.POST_CONFIGURE,)),
    StageKind.BUILD: ((), (_E.POST_BUILD,)),
    StageKind.INSTALL_HOST: ((), (_E.POST_INSTALL_HOST,)),
    StageKind.INSTALL_STAGING: ((), (_E.POST_INSTALL_STAGING,)),
    StageKind.INSTALL_TARGET: ((), (_E.POST_INSTALL_TARGET,)),
    StageKind.INSTALL_IMAGES: ((), (_E.POST_INSTALL_IMAGES,)),
}

_INSTALL_COMMAND_KEYS = {
    StageKind.INSTALL_STAGING: "install_staging",
    StageKind.INSTALL_TARGET: "install_target",
    StageKind.INSTALL_IMAGES: "install_images",
}


@dataclass
class PackageGraph:
    """单个包的阶段图"""

    package: str
    stages: dict[str, Stage] = field(default_factory=dict)
    edges: dict[str, list[str]] = field(default_factory=dict)
    # 仅约束顺序的边 (前置, 阶段)：前置重新执行不会使阶段失效
    order_only: set[tuple[str, str]] = field(default_factory=set)

    def add(self, stage: Stage, prerequisites: list[str], order_only: Iterable[str] = ()) -> None:
        self.stages[stage.id] = stage
        self.edges[stage.id] = list(prerequisites)
        self.order_only.update((p, stage.id) for p in order_only)

    def stage(self, kind: StageKind) -> Stage:
        return self.stages[stage_id(self.package, kind)]

    def prerequisites(self, node: str) -> list[str]:
        return self.edges.get(node, [])

    def propagates(self, prerequisite: str, node: str) -> bool:
        """前置阶段重新执行时，node 是否需要随之重新执行"""
        return (prerequisite, node) not in self.order_only


class StageGraphBuilder:
    """由包描述构建阶段图"""

    def __init__(self, tracker: CompletionTracker | None = None) -> None:
        self.tracker = tracker or CompletionTracker()

    def build(self, d: PackageDescriptor) -> PackageGraph:
        g = PackageGraph(d.name)

        def sid(kind: StageKind) -> str:
            return stage_id(d.name, kind)

        def real(kind: StageKind, commands: Iterable[Command], prereqs: list[str]) -> None:
            pre, post = STAGE_HOOKS.get(kind, ((), ()))
            g.add(Stage(
                package=d.name, kind=kind, commands=list(commands),
                pre_hooks=pre, post_hooks=post,
                marker=self.tracker.marker_path(d, kind),
            ), prereqs)

        def synthetic(kind: StageKind, prereqs: list[str], order_only: Iterable[str] = ()) -> None:
            g.add(Stage(package=d.name, kind=kind, synthetic=True), prereqs, order_only)

        # 依赖包重新执行只保证顺序，不使本包失效
        dep_installs = [stage_id(dep, StageKind.INSTALL) for dep in d.dependencies]

        if d.has_override:
            real(StageKind.RSYNC, [actions.sync_override_srcdir], [])
            for alias in (StageKind.SOURCE, StageKind.EXTRACT, StageKind.PATCH):
                synthetic(alias, [sid(StageKind.RSYNC)])
            # rebuild 会重新同步源码，但不应因此重新配置
            synthetic(
                StageKind.DEPENDS, [sid(StageKind.RSYNC)] + dep_installs,
                order_only=[sid(StageKind.RSYNC)] + dep_installs,
            )
        else:
            extract_cmds = d.commands_for("extract")
            real(StageKind.SOURCE, [actions.fetch_sources], [])
            real(
                StageKind.EXTRACT,
                [actions.prepare_build_dir, *extract_cmds] if extract_cmds else [actions.extract_archive],
                [sid(StageKind.SOURCE)],
            )
            real(StageKind.PATCH, [actions.apply_package_patches], [sid(StageKind.EXTRACT)])
            synthetic(StageKind.DEPENDS, [sid(StageKind.PATCH)] + dep_installs, order_only=dep_installs)

        real(StageKind.CONFIGURE, d.commands_for("configure"), [sid(StageKind.DEPENDS)])
        real(StageKind.BUILD, d.commands_for("build"), [sid(StageKind.CONFIGURE)])

        if d.is_host:
            real(StageKind.INSTALL_HOST, d.commands_for("install"), [sid(StageKind.BUILD)])
            synthetic(StageKind.INSTALL, [sid(StageKind.INSTALL_HOST)])
        else:
            enabled = {
                StageKind.INSTALL_STAGING: d.install_staging,
                StageKind.INSTALL_TARGET: d.install_target,
                StageKind.INSTALL_IMAGES: d.install_images,
            }
            for kind in INSTALL_LEAVES:
                if enabled[kind]:
                    real(kind, d.commands_for(_INSTALL_COMMAND_KEYS[kind]), [sid(StageKind.BUILD)])
                else:
                    # 关闭的安装叶子：空操作，不依赖 build
                    g.add(Stage(package=d.name, kind=kind, enabled=False), [])
            synthetic(StageKind.INSTALL, [sid(k) for k in INSTALL_LEAVES])

        real(StageKind.UNINSTALL, [actions.uninstall], [sid(StageKind.CONFIGURE)])
        real(StageKind.CLEAN, [actions.clean], [sid(StageKind.UNINSTALL)])
        real(StageKind.DIRCLEAN, [actions.dirclean], [])
        return g


def topological_order(
    descriptors: Mapping[str, PackageDescriptor], roots: Iterable[str],
) -> list[str]:
    """依赖闭包的拓扑序（依赖在前），发现环时抛 DependencyError"""
    order: list[str] = []
    active: set[str] = set()
    done: set[str] = set()

    def visit(name: str, path: list[str]) -> None:
        if name in done:
            return
        if name in active:
            cycle = path[path.index(name):] + [name]
            raise DependencyError(f"循环依赖: {' -> '.join(cycle)}")
        if name not in descriptors:
            raise DependencyError(f"未知包: {name}")
        active.add(name)
        for dep in descriptors[name].dependencies:
            visit(dep, path + [name])
        active.discard(name)
        done.add(name)
        order.append(name)

    for root in roots:
        visit(root, [])
    return order


def check_acyclic(descriptors: Mapping[str, PackageDescriptor]) -> None:
    """配置阶段校验：整个包集合不得存在循环依赖"""
    topological_order(descriptors, sorted(descriptors))
