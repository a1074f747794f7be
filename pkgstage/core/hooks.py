"""钩子管线

按 (包, 扩展点) 保存有序的可调用对象列表：注册顺序即执行顺序，不去重。
钩子之间不做隔离，前一个钩子的副作用对后续钩子和阶段命令可见；
任一钩子抛出异常或返回 False 即中止后续钩子并使所在阶段失败。

用法:
    hooks = HookPipeline()
    hooks.register("zlib", ExtensionPoint.POST_PATCH, fix_makefile)
    hooks.run_all("zlib", ExtensionPoint.POST_PATCH, ctx)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from pkgstage.core.actions import run_command
from pkgstage.core.exceptions import ConfigError, HookError
from pkgstage.core.models import ExtensionPoint

if TYPE_CHECKING:
    from pkgstage.core.actions import StageContext

logger = logging.getLogger(__name__)

Hook = Callable[["StageContext"], Any]


class ShellHook:
    """以 shell 命令形式声明的钩子（来自描述文件的 hooks 段）"""

    def __init__(self, cmd: str) -> None:
        self.cmd = cmd

    def __call__(self, ctx: StageContext) -> None:
        run_command(self.cmd, ctx, label="hook")

    def __repr__(self) -> str:
        return f"ShellHook({self.cmd!r})"


class HookPipeline:
    """钩子注册与顺序执行"""

    def __init__(self) -> None:
        self._hooks: dict[tuple[str, ExtensionPoint], list[Hook]] = {}

    def register(self, package: str, point: ExtensionPoint | str, hook: Hook) -> None:
        key = (package, ExtensionPoint(point))
        self._hooks.setdefault(key, []).append(hook)

    def hooks_for(self, package: str, point: ExtensionPoint | str) -> list[Hook]:
        return list(self._hooks.get((package, ExtensionPoint(point)), []))

    def run_all(self, package: str, point: ExtensionPoint, ctx: StageContext) -> None:
        for hook in self.hooks_for(package, point):
            name = getattr(hook, "__name__", repr(hook))
            logger.debug("执行钩子 %s/%s: %s", package, point.value, name)
            if hook(ctx) is False:
                raise HookError(f"钩子 {name} ({point.value}) 返回失败")

    def register_commands(self, package: str, hooks: dict[str, list[Any]]) -> None:
        """注册描述文件中声明的钩子，字符串包装为 ShellHook"""
        for point, entries in hooks.items():
            try:
                ext = ExtensionPoint(point)
            except ValueError as e:
                raise ConfigError(f"{package}: 未知扩展点 {point}") from e
            for entry in entries:
                self.register(package, ext, entry if callable(entry) else ShellHook(str(entry)))
