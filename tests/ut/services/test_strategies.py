"""拉取策略测试（外部命令与网络均为 mock）"""

from __future__ import annotations

import tarfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from pkgstage.services.retrieval import (
    ArchiveFetchStrategy,
    BzrStrategy,
    FetchRequest,
    GitStrategy,
    HgStrategy,
    LocalFileStrategy,
    ScpStrategy,
    SvnStrategy,
)
from pkgstage.utils.shell import CommandResult


def _req(tmp_path: Path, location: str, **kwargs) -> FetchRequest:
    kwargs.setdefault("filename", "foo-1.0.tar.gz")
    return FetchRequest(
        location=location, dl_dir=tmp_path / "dl",
        version=kwargs.pop("version", "1.0"), base_name="foo-1.0", **kwargs,
    )


def _executor(*returncodes: int) -> MagicMock:
    m = MagicMock()
    m.execute.side_effect = [CommandResult(rc, "", "err") for rc in returncodes]
    return m


def _argv(executor: MagicMock) -> list[list[str]]:
    return [c.args[0] for c in executor.execute.call_args_list]


def _listing(req: FetchRequest) -> list[str]:
    return sorted(p.name for p in req.dl_dir.iterdir())


def _assert_staged(path: str, req: FetchRequest) -> None:
    """外部程序写入 dl_dir 下的临时文件，扩展名与目标一致"""
    staged = Path(path)
    assert staged.parent == req.dl_dir
    assert staged.name != req.filename
    assert staged.name.endswith(req.filename)


class TestGitStrategy:
    def test_bare_clone_then_archive(self, tmp_path: Path) -> None:
        ex = _executor(0, 0)
        req = _req(tmp_path, "git://example.com/foo.git", version="remotes/origin/stable")
        assert GitStrategy(ex).fetch(req)
        clone, archive = _argv(ex)
        assert clone[:3] == ["git", "clone", "--bare"]
        assert clone[3] == "git://example.com/foo.git"
        assert "--format=tar.gz" in archive
        assert "--prefix=foo-1.0/" in archive
        assert archive[-1] == "remotes/origin/stable"
        _assert_staged(archive[archive.index("-o") + 1], req)
        # 临时检出目录已清理，只留下归档
        assert _listing(req) == [req.filename]

    def test_failure_leaves_no_archive(self, tmp_path: Path) -> None:
        ex = _executor(0, 128)
        req = _req(tmp_path, "git://example.com/foo.git")
        assert GitStrategy(ex).fetch(req) is False
        assert not req.dest.exists()
        assert list(req.dl_dir.iterdir()) == []

    def test_check(self, tmp_path: Path) -> None:
        ex = _executor(0)
        assert GitStrategy(ex).check(_req(tmp_path, "git://x/foo.git"))
        assert _argv(ex) == [["git", "ls-remote", "--heads", "git://x/foo.git"]]


class TestSvnStrategy:
    def test_export_and_pack(self, tmp_path: Path) -> None:
        def fake_execute(args, **kwargs):
            tree = Path(args[-1])
            tree.mkdir(parents=True)
            (tree / "README").write_text("svn")
            return CommandResult(0, "", "")

        ex = MagicMock()
        ex.execute.side_effect = fake_execute
        req = _req(tmp_path, "svn://example.com/foo/trunk", version="1234")
        assert SvnStrategy(ex).fetch(req)
        assert _argv(ex)[0][:4] == ["svn", "export", "-r", "1234"]
        with tarfile.open(req.dest) as tf:
            assert "foo-1.0/README" in tf.getnames()
        assert _listing(req) == [req.filename]

    def test_export_failure(self, tmp_path: Path) -> None:
        req = _req(tmp_path, "svn://example.com/foo/trunk")
        assert SvnStrategy(_executor(1)).fetch(req) is False
        assert _listing(req) == []


class TestOtherVcs:
    def test_bzr(self, tmp_path: Path) -> None:
        ex = _executor(0)
        req = _req(tmp_path, "bzr://example.com/foo", version="42")
        assert BzrStrategy(ex).fetch(req)
        (argv,) = _argv(ex)
        assert argv[:2] == ["bzr", "export"]
        assert argv[3:] == ["bzr://example.com/foo", "-r", "42"]
        _assert_staged(argv[2], req)
        assert _listing(req) == [req.filename]

    def test_bzr_check(self, tmp_path: Path) -> None:
        ex = _executor(3)
        assert BzrStrategy(ex).check(_req(tmp_path, "bzr://x")) is False

    def test_hg(self, tmp_path: Path) -> None:
        ex = _executor(0, 0)
        req = _req(tmp_path, "hg://example.com/foo", version="v1")
        assert HgStrategy(ex).fetch(req)
        clone, archive = _argv(ex)
        assert clone[:5] == ["hg", "clone", "--noupdate", "--rev", "v1"]
        assert archive[:2] == ["hg", "archive"]
        assert "tgz" in archive
        _assert_staged(archive[-1], req)
        assert _listing(req) == [req.filename]

    def test_hg_check(self, tmp_path: Path) -> None:
        ex = _executor(0)
        assert HgStrategy(ex).check(_req(tmp_path, "hg://x"))
        assert _argv(ex)[0][:4] == ["hg", "incoming", "--force", "-l1"]


class TestScpStrategy:
    def test_fetch(self, tmp_path: Path) -> None:
        ex = _executor(0)
        req = _req(tmp_path, "scp://user@host:/srv/dl")
        assert ScpStrategy(ex).fetch(req)
        (argv,) = _argv(ex)
        assert argv[:2] == ["scp", "user@host:/srv/dl/foo-1.0.tar.gz"]
        _assert_staged(argv[2], req)
        assert req.dest.is_file()

    def test_check_via_ssh(self, tmp_path: Path) -> None:
        ex = _executor(0)
        assert ScpStrategy(ex).check(_req(tmp_path, "scp://user@host:/srv/dl"))
        assert _argv(ex) == [["ssh", "user@host", "ls", "/srv/dl/foo-1.0.tar.gz"]]


class TestLocalFileStrategy:
    def test_copy(self, tmp_path: Path) -> None:
        src = tmp_path / "mirror"
        src.mkdir()
        (src / "foo-1.0.tar.gz").write_bytes(b"data")
        req = _req(tmp_path, f"file://{src}")
        s = LocalFileStrategy()
        assert s.check(req)
        assert s.fetch(req)
        assert req.dest.read_bytes() == b"data"

    def test_missing(self, tmp_path: Path) -> None:
        req = _req(tmp_path, f"file://{tmp_path / 'nothing'}")
        assert LocalFileStrategy().fetch(req) is False
        assert LocalFileStrategy().check(req) is False


class TestArchiveFetchStrategy:
    def test_download(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        seen: list[str] = []

        def fake_retrieve(url: str, filename: str):
            seen.append(url)
            Path(filename).write_bytes(b"tarball")
            return filename, None

        monkeypatch.setattr("urllib.request.urlretrieve", fake_retrieve)
        req = _req(tmp_path, "http://example.com/dl/")
        assert ArchiveFetchStrategy().fetch(req)
        assert seen == ["http://example.com/dl/foo-1.0.tar.gz"]
        assert req.dest.read_bytes() == b"tarball"
        assert _listing(req) == [req.filename]

    def test_download_error_cleans_tmp(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_retrieve(url: str, filename: str):
            Path(filename).write_bytes(b"half")
            raise OSError("connection reset")

        monkeypatch.setattr("urllib.request.urlretrieve", fake_retrieve)
        req = _req(tmp_path, "http://example.com/dl")
        assert ArchiveFetchStrategy().fetch(req) is False
        assert list(req.dl_dir.iterdir()) == []

    def test_rejects_unsupported_scheme(self, tmp_path: Path) -> None:
        assert ArchiveFetchStrategy().fetch(_req(tmp_path, "git://example.com/foo.git")) is False

    def test_describe(self, tmp_path: Path) -> None:
        assert ArchiveFetchStrategy().describe(_req(tmp_path, "http://x")) == "foo-1.0.tar.gz"
