"""包服务 — CLI 共享的入口

负责「加载声明 → 解析描述 → 注册钩子 → 校验依赖」，并把每个
<pkg>[-stage] 入口映射到阶段执行器、调度器或审计操作。
任何配置错误（缺字段、未知依赖、循环依赖）都在执行任何阶段之前抛出。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pkgstage.core.config import Config
from pkgstage.core.exceptions import StageFailedError, ValidationError
from pkgstage.core.executor import StageExecutor
from pkgstage.core.graph import check_acyclic, topological_order
from pkgstage.core.hooks import Hook, HookPipeline
from pkgstage.core.models import ExtensionPoint, FetchMode, PackageDescriptor, StageKind, stage_id
from pkgstage.core.protocols import PatchBackend
from pkgstage.core.registry import PackageRegistry
from pkgstage.core.resolver import DescriptorResolver
from pkgstage.core.scheduler import PackageResult, PackageScheduler
from pkgstage.core.stamps import CompletionTracker
from pkgstage.services.patching import PatchApplier
from pkgstage.services.retrieval import RetrievalDispatcher
from pkgstage.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)

# 非阶段入口
ACTIONS = ("rebuild", "reconfigure", "show-depends", "source-check", "external-deps")


@dataclass
class TargetResult:
    """单个 make 目标的执行结果"""

    target: str
    status: str  # "success", "failed"
    package: str = ""
    stage: str = ""
    message: str = ""
    executed: list[str] = field(default_factory=list)
    output: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == "success"


class PackageService:
    """包构建服务"""

    def __init__(
        self,
        config: Config | None = None,
        registry: PackageRegistry | None = None,
        fetcher: RetrievalDispatcher | None = None,
        patcher: PatchBackend | None = None,
        command_executor: CommandExecutor | None = None,
    ) -> None:
        if config is None:
            from pkgstage.core.config import get_config
            config = get_config()
        self.config = config
        self.registry = registry or PackageRegistry(config.manifest, config.package_dirs)
        self.command_executor = command_executor
        self.fetcher = fetcher or RetrievalDispatcher(config, executor=command_executor)
        self.patcher = patcher or PatchApplier(command_executor)
        self.tracker = CompletionTracker()
        self.hooks = HookPipeline()

        declarations = self.registry.load()
        self.descriptors: dict[str, PackageDescriptor] = DescriptorResolver(config).resolve_all(declarations)
        for decl in declarations:
            self.hooks.register_commands(decl.raw.name, decl.raw.hooks)
        check_acyclic(self.descriptors)

    def get(self, name: str) -> PackageDescriptor:
        desc = self.descriptors.get(name)
        if desc is None:
            raise ValidationError(f"未知包: {name}")
        return desc

    def register_hook(self, package: str, point: ExtensionPoint | str, hook: Hook) -> None:
        self.get(package)
        self.hooks.register(package, point, hook)

    def executor(self) -> StageExecutor:
        """为一次调用创建阶段执行器"""
        return StageExecutor(
            self.descriptors,
            config=self.config,
            hooks=self.hooks,
            tracker=self.tracker,
            fetcher=self.fetcher,
            patcher=self.patcher,
            command_executor=self.command_executor,
        )

    # ---- make 入口 ----

    def parse_target(self, target: str) -> tuple[str, str]:
        """'<pkg>[-suffix]' → (包名, 后缀)；包名精确匹配优先"""
        if target in self.descriptors:
            return target, StageKind.INSTALL.value
        suffixes = sorted(
            [k.value for k in StageKind] + list(ACTIONS), key=len, reverse=True,
        )
        for suffix in suffixes:
            package = target[: -len(suffix) - 1]
            if target.endswith(f"-{suffix}") and package in self.descriptors:
                return package, suffix
        raise ValidationError(f"未知目标: {target}")

    def make(self, target: str) -> TargetResult:
        """执行一个 make 风格目标"""
        package, suffix = self.parse_target(target)
        result = TargetResult(target=target, status="success", package=package)
        try:
            if suffix == "show-depends":
                result.output = self.show_depends(package)
            elif suffix == "source-check":
                failed = [name for name, ok in self.source_check([package]) if not ok]
                if failed:
                    result.status = "failed"
                    result.stage = StageKind.SOURCE.value
                    result.message = f"源码不可达: {', '.join(failed)}"
            elif suffix == "external-deps":
                result.output = self.external_deps([package])
            elif suffix == "rebuild":
                result.executed = self.executor().rebuild(package)
            elif suffix == "reconfigure":
                result.executed = self.executor().reconfigure(package)
            else:
                result.executed = self.executor().run(stage_id(package, StageKind(suffix)))
        except StageFailedError as e:
            result.status = "failed"
            result.package = e.package
            result.stage = e.stage
            result.message = str(e)
        return result

    def build(self, names: list[str], max_workers: int | None = None) -> list[PackageResult]:
        """并行安装多个包（依赖闭包按拓扑序调度）"""
        for name in names:
            self.get(name)
        workers = max_workers if max_workers is not None else self.config.max_workers
        return PackageScheduler(self.executor(), workers).run(names)

    # ---- 审计 ----

    def show_depends(self, package: str) -> list[str]:
        return list(self.get(package).dependencies)

    def _closure(self, names: list[str] | None) -> list[str]:
        return topological_order(self.descriptors, names or sorted(self.descriptors))

    def source_check(self, names: list[str] | None = None) -> list[tuple[str, bool]]:
        """逐包验证源码可达，不下载"""
        results = []
        for name in self._closure(names):
            ok = self.fetcher.fetch(self.descriptors[name], FetchMode.SOURCE_CHECK)
            logger.info("source-check %s: %s", name, "ok" if ok else "不可达")
            results.append((name, ok))
        return results

    def external_deps(self, names: list[str] | None = None) -> list[str]:
        """构建将要拉取的文件，去重排序"""
        files: set[str] = set()
        for name in self._closure(names):
            files.update(self.fetcher.enumerate(self.descriptors[name]))
        return sorted(files)

    def list_packages(self) -> list[dict[str, Any]]:
        return [
            {
                "name": d.name,
                "type": d.type.value,
                "version": d.version,
                "site_method": d.site_method.value,
                "config_symbol": d.config_symbol,
                "dependencies": list(d.dependencies),
            }
            for d in sorted(self.descriptors.values(), key=lambda d: d.name)
        ]
