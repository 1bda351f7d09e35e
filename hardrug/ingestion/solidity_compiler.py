"""Solidity parsing via the compiler's standard-JSON interface.

Only the AST is requested and compilation stops after parsing, so sources
that reference undeclared libraries or fail type checking still yield a
syntax tree.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import solcx
from solcx.exceptions import (
    DownloadError,
    SolcError,
    SolcInstallationError,
    SolcNotInstalled,
    UnsupportedVersionError,
)

from hardrug.core.config import get_settings
from hardrug.core.errors import ErrorCode, HardRugError, SourceParseError

logger = logging.getLogger(__name__)

SOURCE_NAME = "Contract.sol"

_PRAGMA_RE = re.compile(r"pragma\s+solidity\s+[\^~>=<]*\s*(\d+\.\d+\.\d+)")


class SolidityParser:
    """Parse Solidity source into a solc compact AST."""

    def __init__(self, version: str | None = None) -> None:
        self.version = version
        self._default_version = get_settings().default_solc_version

    def parse(self, source_code: str) -> dict[str, Any]:
        """Return the ``SourceUnit`` AST for ``source_code``.

        Raises:
            SourceParseError: the compiler reported errors or crashed.
            HardRugError: the required compiler could not be installed.
        """
        solc_version = self.version or self._detect_version(source_code) or self._default_version
        self._ensure_installed(solc_version)

        try:
            output = self._compile(source_code, solc_version, stop_after_parsing=True)
        except SolcError as e:
            if "stopAfter" not in str(e):
                raise SourceParseError(
                    f"solc {solc_version} failed to parse source", errors=_solc_messages(e),
                ) from e
            # Compilers predating settings.stopAfter reject the key outright
            logger.debug("Parse-only compile rejected by solc %s, retrying", solc_version)
            try:
                output = self._compile(source_code, solc_version, stop_after_parsing=False)
            except SolcError as retry_error:
                raise SourceParseError(
                    f"solc {solc_version} failed to parse source",
                    errors=_solc_messages(retry_error),
                ) from retry_error

        return self._extract_ast(output)

    def _compile(
        self,
        source_code: str,
        solc_version: str,
        stop_after_parsing: bool,
    ) -> dict[str, Any]:
        settings: dict[str, Any] = {
            "outputSelection": {"*": {"": ["ast"]}},
        }
        if stop_after_parsing:
            settings["stopAfter"] = "parsing"

        standard_input = {
            "language": "Solidity",
            "sources": {SOURCE_NAME: {"content": source_code}},
            "settings": settings,
        }
        return solcx.compile_standard(
            standard_input,
            solc_version=solc_version,
            allow_empty=True,
        )

    def _extract_ast(self, output: dict[str, Any]) -> dict[str, Any]:
        errors = [
            error.get("formattedMessage", error.get("message", ""))
            for error in output.get("errors", [])
            if error.get("severity") == "error"
        ]
        ast = output.get("sources", {}).get(SOURCE_NAME, {}).get("ast")
        if errors or not ast:
            raise SourceParseError("Solidity source failed to parse", errors=errors)
        return ast

    @staticmethod
    def _ensure_installed(solc_version: str) -> None:
        installed = {str(v) for v in solcx.get_installed_solc_versions()}
        if solc_version in installed:
            return
        logger.info("Installing solc %s", solc_version)
        try:
            solcx.install_solc(solc_version)
        except (
            DownloadError, SolcInstallationError, SolcNotInstalled, UnsupportedVersionError, OSError,
        ) as e:
            raise HardRugError(
                f"solc {solc_version} could not be installed: {e}", code=ErrorCode.TOOL_FAILURE,
            ) from e

    @staticmethod
    def _detect_version(source_code: str) -> str | None:
        return detect_version(source_code)


def _solc_messages(error: SolcError) -> list[str]:
    """Formatted compiler messages carried by a ``SolcError``."""
    entries = getattr(error, "error_dict", None) or []
    messages = [
        e.get("formattedMessage", e.get("message", ""))
        for e in entries
        if isinstance(e, dict) and e.get("severity") == "error"
    ]
    return messages or [str(error)]


def version_tuple(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in version.split("."))


def detect_version(source_code: str) -> str | None:
    """Detect the Solidity compiler version from pragma statements.

    Flattened sources carry one pragma per original file; the highest
    lower bound is the one every file can agree on.
    """
    versions = _PRAGMA_RE.findall(source_code)
    if not versions:
        return None
    return max(versions, key=version_tuple)
