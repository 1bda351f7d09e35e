"""Flatten multi-file verified sources into one compilation unit.

Each file is written under a scratch directory and ``forge flatten`` is run
once per file. The longest flattened output is kept: the file that pulls in
the most of the tree is the one that merged everything.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
from pathlib import Path

from hardrug.core.config import Settings, get_settings
from hardrug.core.errors import SourceParseError

logger = logging.getLogger(__name__)


class SourceFlattener:
    """Run ``forge flatten`` over a set of source files."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.forge_path = settings.forge_path
        self.scratch_dir = Path(settings.forge_scratch_dir)
        self.timeout = settings.forge_flatten_timeout

    async def flatten(self, source_files: dict[str, str]) -> str:
        """Return the longest flattened output over ``source_files``.

        Raises:
            SourceParseError: no file could be flattened.
        """
        if len(source_files) == 1:
            return next(iter(source_files.values()))

        try:
            written = self._write_files(source_files)
            longest = ""
            for relative in written:
                flattened = await self._flatten_one(relative)
                if len(flattened) > len(longest):
                    longest = flattened
        finally:
            shutil.rmtree(self.scratch_dir, ignore_errors=True)

        if not longest:
            raise SourceParseError(
                f"forge flatten produced no output for {len(source_files)} files"
            )
        return longest

    def _write_files(self, source_files: dict[str, str]) -> list[str]:
        root = self.scratch_dir.resolve()
        root.mkdir(parents=True, exist_ok=True)
        written = []
        for name, content in source_files.items():
            path = (root / name).resolve()
            if not path.is_relative_to(root):
                logger.warning("Skipping source path outside scratch dir: %s", name)
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
            written.append(str(path.relative_to(root)))
        return written

    async def _flatten_one(self, relative: str) -> str:
        cmd = [
            self.forge_path, "flatten",
            "--root", str(self.scratch_dir),
            str(self.scratch_dir / relative),
        ]
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("forge flatten failed for %s: %s", relative, e)
            return ""
        if result.returncode != 0:
            logger.debug("forge flatten exited %d for %s", result.returncode, relative)
            return ""
        return result.stdout
