"""Forge execution backend for invariant harnesses.

Runs a synthesized harness through Foundry's ``forge test`` against a fork
pinned at the deployment block:
  1. Maintain a single Foundry project (``foundry.toml``, ``forge-std``)
  2. Write the harness to ``test/test.sol``
  3. Run ``forge test --json`` with fork URL and block number
  4. Parse the JSON report (single blob or line-delimited)
  5. Remove the harness and build artifacts on every exit path

The project directory is a singleton working location, so only one run may
be in flight at a time; the task pipeline guarantees that.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from hardrug.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

TEST_PATH = "test/test.sol"
FORGE_STD_REPO = "foundry-rs/forge-std"


# ── Configuration ────────────────────────────────────────────────────────────


@dataclass
class ForgeConfig:
    """Configuration for the Forge execution backend."""
    forge_path: str = "forge"
    project_dir: str = "./working-forge"
    # Invariant campaign
    invariant_runs: int = 64
    invariant_depth: int = 32
    # Timeouts (seconds)
    test_timeout: int = 900
    install_timeout: int = 300

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ForgeConfig:
        settings = settings or get_settings()
        return cls(
            forge_path=settings.forge_path,
            project_dir=settings.forge_project_dir,
            invariant_runs=settings.invariant_runs,
            invariant_depth=settings.invariant_depth,
            test_timeout=settings.forge_test_timeout,
        )


# ── Forge Project Manager ───────────────────────────────────────────────────


class ForgeProjectManager:
    """Manages the Foundry project the harnesses run in."""

    def __init__(self, config: ForgeConfig) -> None:
        self.config = config
        self._project_dir = Path(config.project_dir)

    @property
    def project_dir(self) -> Path:
        return self._project_dir

    @property
    def test_file(self) -> Path:
        return self._project_dir / TEST_PATH

    def init_project(self) -> Path:
        """Create the project layout and install ``forge-std`` if missing."""
        (self._project_dir / "test").mkdir(parents=True, exist_ok=True)
        (self._project_dir / "lib").mkdir(parents=True, exist_ok=True)
        (self._project_dir / "foundry.toml").write_text(self._generate_foundry_toml())

        if not (self._project_dir / "lib" / "forge-std" / "src" / "Test.sol").exists():
            self._install_forge_std()
        return self._project_dir

    def write_test(self, code: str) -> Path:
        self.test_file.parent.mkdir(parents=True, exist_ok=True)
        self.test_file.write_text(code)
        return self.test_file

    def clean_run_artifacts(self) -> None:
        """Remove the harness file and build output of the last run."""
        self.test_file.unlink(missing_ok=True)
        for name in ("out", "cache"):
            path = self._project_dir / name
            if path.exists():
                shutil.rmtree(path, ignore_errors=True)

    def _generate_foundry_toml(self) -> str:
        config_lines = [
            "[profile.default]",
            'src = "test"',
            'test = "test"',
            'out = "out"',
            'libs = ["lib"]',
            'remappings = ["forge-std/=lib/forge-std/src/"]',
            "",
            "[invariant]",
            f"runs = {self.config.invariant_runs}",
            f"depth = {self.config.invariant_depth}",
            "fail_on_revert = false",
        ]
        return "\n".join(config_lines) + "\n"

    def _install_forge_std(self) -> None:
        logger.info("Installing forge-std into %s", self._project_dir)
        result = subprocess.run(
            [self.config.forge_path, "install", FORGE_STD_REPO, "--no-git"],
            capture_output=True,
            text=True,
            cwd=str(self._project_dir),
            timeout=self.config.install_timeout,
        )
        if result.returncode != 0:
            logger.warning("forge install failed: %s", result.stderr.strip()[-500:])


# ── Forge Executor ───────────────────────────────────────────────────────────


class ForgeExecutor:
    """Runs invariant harnesses via ``forge test`` on a forked chain.

    ``run`` never raises for tooling problems: a missing binary, a timeout,
    or unparseable output all yield an empty result.
    """

    def __init__(self, config: ForgeConfig | None = None) -> None:
        self.config = config or ForgeConfig.from_settings()
        self.project = ForgeProjectManager(self.config)
        self._forge_available: bool | None = None

    @property
    def available(self) -> bool:
        if self._forge_available is None:
            self._forge_available = self._check_forge()
        return self._forge_available

    def _check_forge(self) -> bool:
        """Check if forge is available on PATH."""
        try:
            result = subprocess.run(
                [self.config.forge_path, "--version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
            if result.returncode == 0:
                logger.info("Forge available: %s", result.stdout.strip())
                return True
        except (FileNotFoundError, subprocess.TimeoutExpired):
            pass
        logger.warning("Forge not available at %s", self.config.forge_path)
        return False

    def build_command(self, block_number: int, rpc_url: str) -> list[str]:
        return [
            self.config.forge_path, "test",
            "--match-path", TEST_PATH,
            "--fork-url", rpc_url,
            "--fork-block-number", str(block_number),
            "--json",
        ]

    async def run(
        self,
        source: str,
        block_number: int,
        rpc_url: str | None = None,
    ) -> dict[str, Any]:
        """Run ``source`` as the test file and return the parsed JSON report.

        Returns:
            Mapping of ``test/test.sol:<Contract>`` keys to result entries,
            or ``{}`` on tooling failure.
        """
        if not self.available:
            return {}

        rpc_url = rpc_url or get_settings().json_rpc_url
        try:
            await asyncio.to_thread(self.project.init_project)
            self.project.write_test(source)

            result = await asyncio.to_thread(
                subprocess.run,
                self.build_command(block_number, rpc_url),
                capture_output=True,
                text=True,
                cwd=str(self.project.project_dir),
                timeout=self.config.test_timeout,
            )

            report = parse_forge_json(result.stdout)
            if not report:
                logger.warning(
                    "forge test produced no JSON report (exit %d): %s",
                    result.returncode, result.stderr.strip()[-500:],
                )
            return report

        except subprocess.TimeoutExpired:
            logger.warning("forge test timed out after %ds", self.config.test_timeout)
            return {}
        except OSError as e:
            logger.error("forge test failed to run: %s", e)
            return {}
        finally:
            self.project.clean_run_artifacts()


# ── Parsing ──────────────────────────────────────────────────────────────────


def parse_forge_json(stdout: str) -> dict[str, Any]:
    """Parse ``forge test --json`` output.

    Older releases print one JSON document; some print one object per test
    file on its own line, possibly interleaved with compiler chatter.
    """
    text = (stdout or "").strip()
    if not text:
        return {}

    try:
        output = json.loads(text)
        return output if isinstance(output, dict) else {}
    except json.JSONDecodeError:
        pass

    merged: dict[str, Any] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            merged.update(obj)
    return merged
