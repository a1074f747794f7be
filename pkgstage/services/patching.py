"""补丁应用后端

按 glob 模式依次把补丁目录里的补丁应用到源码树:
  - .gz / .bz2 / .xz 压缩补丁先解压再交给 patch
  - 跳过 .orig / .rej / ~ 备份文件
  - 应用后源码树里残留 .rej 视为失败
required=True 的调用中，任何模式匹配不到文件都算失败。
"""

from __future__ import annotations

import bz2
import gzip
import logging
import lzma
from pathlib import Path

from pkgstage.core.exceptions import ExecutionError
from pkgstage.utils.shell import CommandExecutor, run_cmd

logger = logging.getLogger(__name__)

_DECOMPRESSORS = {
    ".gz": gzip.open,
    ".bz2": bz2.open,
    ".xz": lzma.open,
}
_SKIP_SUFFIXES = (".orig", ".rej", "~")


class PatchApplier:
    """基于 `patch -p1` 的补丁后端"""

    def __init__(self, executor: CommandExecutor | None = None) -> None:
        self.executor = executor

    def apply_patches(
        self, target_dir: Path, patch_dir: Path, *patterns: str,
        required: bool = False,
    ) -> bool:
        target_dir = Path(target_dir)
        patch_dir = Path(patch_dir)
        if not target_dir.is_dir():
            logger.error("补丁目标目录不存在: %s", target_dir)
            return False

        for pattern in patterns:
            matches = sorted(
                p for p in patch_dir.glob(pattern)
                if p.is_file() and not p.name.endswith(_SKIP_SUFFIXES)
            )
            if not matches:
                if required:
                    logger.error("未找到补丁: %s/%s", patch_dir, pattern)
                    return False
                continue
            for patch in matches:
                if not self._apply_one(target_dir, patch):
                    return False

        rejects = sorted(target_dir.rglob("*.rej"))
        if rejects:
            logger.error("补丁存在冲突: %s", ", ".join(str(r) for r in rejects))
            return False
        return True

    def _apply_one(self, target_dir: Path, patch: Path) -> bool:
        logger.info("  应用补丁 %s", patch.name)
        opener = _DECOMPRESSORS.get(patch.suffix)
        tmp: Path | None = None
        try:
            if opener is not None:
                tmp = target_dir / f".{patch.stem}.tmp"
                with opener(patch, "rb") as src:
                    tmp.write_bytes(src.read())
            run_cmd(
                ["patch", "-g0", "-p1", "-E", "-d", str(target_dir), "-i", str(tmp or patch)],
                label=f"patch {patch.name}", executor=self.executor,
            )
        except (ExecutionError, OSError, EOFError, lzma.LZMAError) as e:
            logger.error("  补丁 %s 应用失败: %s", patch.name, e)
            return False
        finally:
            if tmp is not None:
                tmp.unlink(missing_ok=True)
        return True
