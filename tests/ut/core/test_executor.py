"""阶段执行器测试：幂等、断点续跑、失效级联、依赖门控"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from pkgstage.core.config import Config
from pkgstage.core.exceptions import DependencyError, StageFailedError, ValidationError
from pkgstage.core.executor import StageExecutor
from pkgstage.core.hooks import HookPipeline
from pkgstage.core.models import ExtensionPoint, FetchMode, PackageType, RawDescriptor, StageKind
from pkgstage.core.stamps import CompletionTracker

STEPS = ("extract", "configure", "build", "install_target")


def _raw(recorder, name: str, deps: list[str] | None = None, **kwargs: Any) -> RawDescriptor:
    return RawDescriptor(
        name=name, version="1.0", site="http://example.com", dependencies=deps,
        commands=recorder.commands(name, *STEPS), **kwargs,
    )


@pytest.fixture()
def make_executor(config: Config, fetcher, patcher):
    def _make(descs, hooks: HookPipeline | None = None) -> StageExecutor:
        return StageExecutor(descs, config=config, hooks=hooks, fetcher=fetcher, patcher=patcher)
    return _make


class TestRun:
    def test_full_pipeline_order(self, resolve, recorder, make_executor, fetcher) -> None:
        descs = resolve(_raw(recorder, "a"))
        executed = make_executor(descs).run("a")
        assert executed == [
            "a-source", "a-extract", "a-patch", "a-configure", "a-build", "a-install-target",
        ]
        assert recorder.calls == ["a:extract", "a:configure", "a:build", "a:install_target"]
        fetcher.fetch.assert_called_once_with(descs["a"], FetchMode.DOWNLOAD)

    def test_idempotent(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"))
        make_executor(descs).run("a")
        recorder.calls.clear()
        assert make_executor(descs).run("a") == []
        assert recorder.calls == []

    def test_stage_target(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"))
        executed = make_executor(descs).run("a-configure")
        assert executed[-1] == "a-configure"
        assert "a:build" not in recorder.calls

    def test_unknown_target(self, resolve, recorder, make_executor) -> None:
        with pytest.raises(ValidationError, match="未知目标"):
            make_executor(resolve(_raw(recorder, "a"))).run("a-frobnicate")

    def test_markers_written(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"))
        make_executor(descs).run("a")
        stamps = {p.name for p in descs["a"].build_dir.glob(".stamp_*")}
        assert stamps == {
            ".stamp_downloaded", ".stamp_extracted", ".stamp_patched",
            ".stamp_configured", ".stamp_built", ".stamp_target_installed",
        }

    def test_disabled_leaf_not_run(self, resolve, recorder, make_executor) -> None:
        raw = _raw(recorder, "a", install_images=False)
        raw.commands.update(recorder.commands("a", "install_images"))
        descs = resolve(raw)
        make_executor(descs).run("a")
        assert "a:install_images" not in recorder.calls
        assert not CompletionTracker().is_done(descs["a"], StageKind.INSTALL_IMAGES)

    def test_host_package(self, resolve, recorder, make_executor) -> None:
        raw = RawDescriptor(
            name="host-a", type=PackageType.HOST, version="1.0", site="http://x",
            commands=recorder.commands("host-a", "extract", "build", "install"),
        )
        executed = make_executor(resolve(raw)).run("host-a")
        assert executed[-1] == "host-a-install-host"
        assert recorder.calls[-1] == "host-a:install"


class TestResume:
    def test_unexpected_exception_names_stage(self, resolve, recorder, make_executor) -> None:
        def broken(ctx: Any) -> None:
            raise KeyError("missing")

        raw = _raw(recorder, "a")
        raw.commands["build"] = [broken]
        descs = resolve(raw)
        with pytest.raises(StageFailedError, match="KeyError") as exc:
            make_executor(descs).run("a")
        assert (exc.value.package, exc.value.stage) == ("a", "build")
        assert not CompletionTracker().is_done(descs["a"], StageKind.BUILD)

    def test_resume_after_failure(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"))
        recorder.failing.add("a:build")
        with pytest.raises(StageFailedError) as exc:
            make_executor(descs).run("a")
        assert exc.value.package == "a"
        assert exc.value.stage == "build"
        tracker = CompletionTracker()
        assert tracker.is_done(descs["a"], StageKind.CONFIGURE)
        assert not tracker.is_done(descs["a"], StageKind.BUILD)

        recorder.failing.clear()
        recorder.calls.clear()
        executed = make_executor(descs).run("a")
        assert executed == ["a-build", "a-install-target"]
        assert recorder.calls == ["a:build", "a:install_target"]

    def test_missing_marker_reruns_downstream(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"))
        make_executor(descs).run("a")
        CompletionTracker().clear(descs["a"], StageKind.CONFIGURE)
        assert make_executor(descs).run("a") == ["a-configure", "a-build", "a-install-target"]


class TestInvalidation:
    def test_rebuild(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"))
        make_executor(descs).run("a")
        recorder.calls.clear()
        executed = make_executor(descs).rebuild("a")
        assert executed == ["a-build", "a-install-target"]
        assert recorder.calls == ["a:build", "a:install_target"]

    def test_reconfigure(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"))
        make_executor(descs).run("a")
        recorder.calls.clear()
        executed = make_executor(descs).reconfigure("a")
        assert executed == ["a-configure", "a-build", "a-install-target"]
        assert "a:extract" not in recorder.calls

    def test_rebuild_override_resyncs_without_reconfigure(
        self, resolve, recorder, make_executor, tmp_path: Path,
    ) -> None:
        src = tmp_path / "src-a"
        src.mkdir()
        (src / "main.c").write_text("int main(void) { return 0; }\n")
        descs = resolve(_raw(recorder, "a", override_srcdir=str(src)))
        make_executor(descs).run("a")
        recorder.calls.clear()
        executed = make_executor(descs).rebuild("a")
        assert executed == ["a-rsync", "a-build", "a-install-target"]
        assert recorder.calls == ["a:build", "a:install_target"]
        assert CompletionTracker().is_done(descs["a"], StageKind.CONFIGURE)

    def test_reconfigure_override(self, resolve, recorder, make_executor, tmp_path: Path) -> None:
        src = tmp_path / "src-a"
        src.mkdir()
        descs = resolve(_raw(recorder, "a", override_srcdir=str(src)))
        make_executor(descs).run("a")
        recorder.calls.clear()
        executed = make_executor(descs).reconfigure("a")
        assert executed == ["a-rsync", "a-configure", "a-build", "a-install-target"]

    def test_rebuild_host(self, resolve, recorder, make_executor) -> None:
        raw = RawDescriptor(
            name="host-a", type=PackageType.HOST, version="1.0", site="http://x",
            commands=recorder.commands("host-a", "extract", "configure", "build", "install"),
        )
        descs = resolve(raw)
        make_executor(descs).run("host-a")
        recorder.calls.clear()
        executed = make_executor(descs).rebuild("host-a")
        assert executed == ["host-a-build", "host-a-install-host"]
        assert recorder.calls == ["host-a:build", "host-a:install"]

    def test_clean_removes_only_build_marker(self, resolve, recorder, make_executor) -> None:
        raw = _raw(recorder, "a", install_staging=True)
        raw.commands.update(recorder.commands("a", "install_staging", "uninstall_staging",
                                              "uninstall_target", "clean"))
        descs = resolve(raw)
        make_executor(descs).run("a")
        recorder.calls.clear()
        make_executor(descs).run("a-clean")
        assert recorder.calls == ["a:uninstall_staging", "a:uninstall_target", "a:clean"]
        tracker = CompletionTracker()
        d = descs["a"]
        assert tracker.is_done(d, StageKind.CONFIGURE)
        assert not tracker.is_done(d, StageKind.BUILD)
        assert not tracker.is_done(d, StageKind.INSTALL_STAGING)
        assert not tracker.is_done(d, StageKind.INSTALL_TARGET)

    def test_dirclean(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"))
        make_executor(descs).run("a")
        make_executor(descs).run("a-dirclean")
        assert not descs["a"].build_dir.exists()


class TestDependencies:
    def test_gating(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"), _raw(recorder, "b", ["a"]))
        recorder.failing.add("a:install_target")
        with pytest.raises(StageFailedError) as exc:
            make_executor(descs).run("b")
        assert exc.value.package == "a"
        assert "b:configure" not in recorder.calls

    def test_dependency_installed_before_configure(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"), _raw(recorder, "b", ["a"]))
        make_executor(descs).run("b")
        assert recorder.calls.index("a:install_target") < recorder.calls.index("b:configure")

    def test_dependency_rerun_does_not_dirty_dependent(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"), _raw(recorder, "b", ["a"]))
        make_executor(descs).run("b")
        ex = make_executor(descs)
        ex.rebuild("a")
        assert ex.run("b") == []

    def test_cycle_at_run_time(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a", ["b"]), _raw(recorder, "b", ["a"]))
        with pytest.raises(DependencyError, match="循环依赖"):
            make_executor(descs).run("a")


class TestHooks:
    def test_pre_hook_failure_blocks_stage(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"))
        hooks = HookPipeline()
        hooks.register("a", ExtensionPoint.PRE_CONFIGURE, lambda ctx: False)
        with pytest.raises(StageFailedError, match="configure"):
            make_executor(descs, hooks).run("a")
        assert "a:configure" not in recorder.calls
        assert not CompletionTracker().is_done(descs["a"], StageKind.CONFIGURE)

    def test_post_hook_failure_withholds_marker(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"))
        hooks = HookPipeline()
        hooks.register("a", ExtensionPoint.POST_BUILD, recorder.step("hook"))
        recorder.failing.add("hook")
        with pytest.raises(StageFailedError):
            make_executor(descs, hooks).run("a")
        assert recorder.calls[-2:] == ["a:build", "hook"]
        assert not CompletionTracker().is_done(descs["a"], StageKind.BUILD)

    def test_hooks_see_context(self, resolve, recorder, make_executor) -> None:
        descs = resolve(_raw(recorder, "a"))
        seen: list[tuple[str, str]] = []
        hooks = HookPipeline()
        hooks.register("a", ExtensionPoint.POST_PATCH,
                       lambda ctx: seen.append((ctx.descriptor.name, ctx.stage.value)))
        make_executor(descs, hooks).run("a")
        assert seen == [("a", "patch")]


class TestOverride:
    def test_rsync_instead_of_fetch(self, resolve, recorder, make_executor, fetcher, tmp_path: Path) -> None:
        src = tmp_path / "src-a"
        (src / ".git").mkdir(parents=True)
        (src / "main.c").write_text("int main(void) { return 0; }\n")
        descs = resolve(_raw(recorder, "a", override_srcdir=str(src)))
        executed = make_executor(descs).run("a")
        assert executed[0] == "a-rsync"
        assert "a-source" not in executed
        fetcher.fetch.assert_not_called()
        build_dir = descs["a"].build_dir
        assert (build_dir / "main.c").is_file()
        assert not (build_dir / ".git").exists()
