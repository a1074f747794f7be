"""钩子管道测试"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from pkgstage.core.exceptions import ConfigError, HookError
from pkgstage.core.hooks import HookPipeline, ShellHook
from pkgstage.core.models import ExtensionPoint


class TestHookPipeline:
    def test_registration_order(self) -> None:
        calls: list[str] = []
        p = HookPipeline()
        p.register("a", ExtensionPoint.POST_BUILD, lambda ctx: calls.append("first"))
        p.register("a", "post-build", lambda ctx: calls.append("second"))
        p.register("b", ExtensionPoint.POST_BUILD, lambda ctx: calls.append("other"))
        p.run_all("a", ExtensionPoint.POST_BUILD, MagicMock())
        assert calls == ["first", "second"]

    def test_no_dedup(self) -> None:
        hook = MagicMock(return_value=None)
        p = HookPipeline()
        p.register("a", ExtensionPoint.PRE_PATCH, hook)
        p.register("a", ExtensionPoint.PRE_PATCH, hook)
        p.run_all("a", ExtensionPoint.PRE_PATCH, MagicMock())
        assert hook.call_count == 2

    def test_false_aborts_rest(self) -> None:
        later = MagicMock()
        p = HookPipeline()
        p.register("a", ExtensionPoint.PRE_CONFIGURE, lambda ctx: False)
        p.register("a", ExtensionPoint.PRE_CONFIGURE, later)
        with pytest.raises(HookError):
            p.run_all("a", ExtensionPoint.PRE_CONFIGURE, MagicMock())
        later.assert_not_called()

    def test_register_commands_wraps_strings(self) -> None:
        p = HookPipeline()
        p.register_commands("a", {"post-install-target": ["rm -f x"]})
        hooks = p.hooks_for("a", ExtensionPoint.POST_INSTALL_TARGET)
        assert len(hooks) == 1
        assert isinstance(hooks[0], ShellHook)
        assert hooks[0].cmd == "rm -f x"

    def test_unknown_point(self) -> None:
        with pytest.raises(ConfigError, match="未知扩展点"):
            HookPipeline().register_commands("a", {"post-nothing": ["x"]})
