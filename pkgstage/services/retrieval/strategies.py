"""源码拉取策略 - 归档下载 / 版本控制快照 / scp / 本地文件

每种策略对同一个 FetchRequest 提供三种操作:
  fetch    实际拉取到 dl_dir
  check    只验证远端可达（source-check）
  describe 返回将要拉取的文件标识（external-deps）

版本控制策略总是产出指定版本的 tar.gz 快照而不是工作副本；
临时检出目录无论成败都会删除，失败时不留下归档。
所有策略先写入 dl_dir 下的唯一临时文件，成功后原子替换为目标文件，
共用同一归档的包（如 foo 与 host-foo）并发拉取时互不覆盖。
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import tempfile
import urllib.request
from dataclasses import dataclass
from pathlib import Path

from pkgstage.core.exceptions import ValidationError
from pkgstage.utils.net import join_url, split_domain, strip_uri_scheme, validate_url_scheme
from pkgstage.utils.shell import CommandExecutor, get_executor

logger = logging.getLogger(__name__)

_HEAD_TIMEOUT = 30


@dataclass
class FetchRequest:
    """一次拉取请求"""

    location: str     # 站点 / 仓库地址
    filename: str     # dl_dir 中的目标文件名
    dl_dir: Path
    version: str = ""     # 原始版本（分支 / 标签 / 修订号）
    base_name: str = ""   # 快照归档内的顶层目录名

    @property
    def dest(self) -> Path:
        return self.dl_dir / self.filename


def _temp_dest(req: FetchRequest) -> Path:
    """dl_dir 下的唯一临时文件，保留归档扩展名"""
    req.dl_dir.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=".tmp-", suffix=f"-{req.filename}", dir=req.dl_dir)
    os.close(fd)
    return Path(name)


def _commit(tmp: Path, req: FetchRequest, ok: bool) -> bool:
    """成功则替换为目标文件，否则删除临时文件"""
    if ok:
        tmp.replace(req.dest)
    else:
        tmp.unlink(missing_ok=True)
    return ok


class _CommandStrategy:
    """经由 CommandExecutor 调用外部程序的策略基类"""

    def __init__(self, executor: CommandExecutor | None = None) -> None:
        self._executor = executor

    @property
    def executor(self) -> CommandExecutor:
        return self._executor or get_executor()

    def _run(self, args: list[str], cwd: str = ".") -> bool:
        logger.info("  %s", " ".join(args))
        r = self.executor.execute(args, cwd=cwd)
        if not r.success:
            logger.warning("  %s 失败 (rc=%d): %s", args[0], r.returncode, r.stderr[:300])
        return r.success

    def describe(self, req: FetchRequest) -> str:
        return req.filename


class ArchiveFetchStrategy:
    """通用归档下载（http / https / ftp）"""

    def fetch(self, req: FetchRequest) -> bool:
        url = join_url(req.location, req.filename)
        try:
            validate_url_scheme(url, context=f"download {req.filename}")
        except ValidationError as e:
            logger.warning("  %s", e)
            return False
        tmp = _temp_dest(req)
        try:
            logger.info("  下载 %s", url)
            urllib.request.urlretrieve(url, str(tmp))  # nosec B310
        except OSError as e:
            logger.warning("  下载失败 %s: %s", url, e)
            return _commit(tmp, req, False)
        return _commit(tmp, req, True)

    def check(self, req: FetchRequest) -> bool:
        url = join_url(req.location, req.filename)
        try:
            validate_url_scheme(url, context=f"check {req.filename}")
            head = urllib.request.Request(url, method="HEAD")
            with urllib.request.urlopen(head, timeout=_HEAD_TIMEOUT) as resp:  # nosec B310
                return resp.status < 400
        except (ValidationError, OSError) as e:
            logger.warning("  不可达 %s: %s", url, e)
            return False

    def describe(self, req: FetchRequest) -> str:
        return req.filename


class GitStrategy(_CommandStrategy):
    """git: 裸克隆后 git archive 导出指定版本"""

    def fetch(self, req: FetchRequest) -> bool:
        tmp = _temp_dest(req)
        checkout = Path(tempfile.mkdtemp(prefix=f"{req.base_name}.", dir=req.dl_dir))
        repo = checkout / "repo.git"
        try:
            ok = self._run(["git", "clone", "--bare", req.location, str(repo)]) and self._run([
                "git", f"--git-dir={repo}", "archive", "--format=tar.gz",
                f"--prefix={req.base_name}/", "-o", str(tmp), req.version,
            ])
        finally:
            shutil.rmtree(checkout, ignore_errors=True)
        return _commit(tmp, req, ok)

    def check(self, req: FetchRequest) -> bool:
        return self._run(["git", "ls-remote", "--heads", req.location])


class SvnStrategy(_CommandStrategy):
    """svn: 导出指定修订后打包"""

    def fetch(self, req: FetchRequest) -> bool:
        tmp = _temp_dest(req)
        checkout = Path(tempfile.mkdtemp(prefix=f"{req.base_name}.", dir=req.dl_dir))
        tree = checkout / req.base_name
        try:
            ok = self._run(["svn", "export", "-r", req.version, req.location, str(tree)])
            if ok:
                with tarfile.open(tmp, "w:gz") as tf:
                    tf.add(str(tree), arcname=req.base_name)
        except (OSError, tarfile.TarError) as e:
            logger.warning("  svn 快照打包失败: %s", e)
            ok = False
        finally:
            shutil.rmtree(checkout, ignore_errors=True)
        return _commit(tmp, req, ok)

    def check(self, req: FetchRequest) -> bool:
        return self._run(["svn", "ls", req.location])


class BzrStrategy(_CommandStrategy):
    """bzr: bzr export 直接生成归档"""

    def fetch(self, req: FetchRequest) -> bool:
        tmp = _temp_dest(req)
        # 归档格式由文件扩展名决定
        ok = self._run(["bzr", "export", str(tmp), req.location, "-r", req.version])
        return _commit(tmp, req, ok)

    def check(self, req: FetchRequest) -> bool:
        return self._run(["bzr", "ls", "--quiet", req.location])


class HgStrategy(_CommandStrategy):
    """hg: 无工作区克隆后 hg archive 导出"""

    def fetch(self, req: FetchRequest) -> bool:
        tmp = _temp_dest(req)
        checkout = Path(tempfile.mkdtemp(prefix=f"{req.base_name}.", dir=req.dl_dir))
        repo = checkout / req.base_name
        try:
            ok = self._run([
                "hg", "clone", "--noupdate", "--rev", req.version, req.location, str(repo),
            ]) and self._run([
                "hg", "archive", "--repository", str(repo), "--type", "tgz",
                "--prefix", f"{req.base_name}/", "--rev", req.version, str(tmp),
            ])
        finally:
            shutil.rmtree(checkout, ignore_errors=True)
        return _commit(tmp, req, ok)

    def check(self, req: FetchRequest) -> bool:
        return self._run(["hg", "incoming", "--force", "-l1", req.location])


class ScpStrategy(_CommandStrategy):
    """scp: 从 'host:/path' 复制归档"""

    def _remote(self, req: FetchRequest) -> str:
        return join_url(strip_uri_scheme(req.location), req.filename)

    def fetch(self, req: FetchRequest) -> bool:
        tmp = _temp_dest(req)
        ok = self._run(["scp", self._remote(req), str(tmp)])
        return _commit(tmp, req, ok)

    def check(self, req: FetchRequest) -> bool:
        domain, path = split_domain(self._remote(req))
        return self._run(["ssh", domain, "ls", path])


class LocalFileStrategy:
    """file: 从本地路径复制归档"""

    @staticmethod
    def _path(req: FetchRequest) -> Path:
        return Path(strip_uri_scheme(req.location)) / req.filename

    def fetch(self, req: FetchRequest) -> bool:
        src = self._path(req)
        if not src.is_file():
            logger.warning("  本地文件不存在: %s", src)
            return False
        tmp = _temp_dest(req)
        try:
            shutil.copyfile(src, tmp)
        except OSError as e:
            logger.warning("  复制失败 %s: %s", src, e)
            return _commit(tmp, req, False)
        return _commit(tmp, req, True)

    def check(self, req: FetchRequest) -> bool:
        return self._path(req).is_file()

    def describe(self, req: FetchRequest) -> str:
        return req.filename
