"""Fetch verified smart contract source code from block explorers."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

from hardrug.core.chains import ChainConfig, get_chain_config
from hardrug.core.config import Settings, get_settings
from hardrug.core.errors import ErrorCode, UnsupportedInputError

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

# Exceptions considered transient and safe to retry
_TRANSIENT_MESSAGES = (
    "connection reset",
    "connection refused",
    "timed out",
    "timeout",
    "temporarily unavailable",
    "service unavailable",
    "rate limit",
)


def _is_transient(exc: Exception) -> bool:
    """Return True if the exception looks like a transient network failure."""
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    msg = str(exc).lower()
    return any(t in msg for t in _TRANSIENT_MESSAGES)


async def _retry_async(
    coro_factory,  # callable returning a coroutine
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 15.0,
    label: str = "operation",
):
    """Retry an async operation with exponential back-off on transient errors."""
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except Exception as exc:
            if attempt >= max_retries or not _is_transient(exc):
                raise
            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(
                "Transient error in %s (attempt %d/%d), retrying in %.1fs: %s",
                label, attempt + 1, max_retries, delay, exc,
            )
            await asyncio.sleep(delay)


@dataclass
class ContractSource:
    """Fetched contract source code and metadata."""

    address: str
    network: int
    contract_name: str = ""
    source_code: str = ""
    # Multi-file sources, path -> content
    source_files: dict[str, str] = field(default_factory=dict)

    @property
    def is_multi_file(self) -> bool:
        return bool(self.source_files)


def parse_source_field(source_code: str) -> dict[str, str]:
    """Split an explorer ``SourceCode`` field into files.

    Three shapes occur: plain Solidity text (returns ``{}``), a JSON object
    mapping paths to ``{"content": ...}``, and standard-JSON input wrapped
    in an extra pair of braces with the files under ``sources``.
    """
    text = source_code.strip()
    if not text.startswith("{"):
        return {}

    if text.startswith("{{"):
        text = text[1:-1]
    try:
        json_input = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("SourceCode looks like JSON but does not parse; treating as plain text")
        return {}
    if not isinstance(json_input, dict):
        return {}

    sources: dict[str, Any] = json_input.get("sources", json_input)
    return {
        name: src.get("content", "")
        for name, src in sources.items()
        if isinstance(src, dict)
    }


class ContractFetcher:
    """Fetch verified contract source code from block explorer APIs."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._client = httpx.AsyncClient(
            timeout=self.settings.explorer_timeout,
            proxy=self.settings.http_proxy or None,
        )

    async def fetch_contract_source(
        self,
        address: str,
        network: int | str,
    ) -> ContractSource:
        """Fetch verified source code for a contract from its block explorer.

        Args:
            address: Contract address (0x...)
            network: Numeric chain id

        Returns:
            ContractSource with flat source or per-file sources

        Raises:
            UnsupportedInputError: unknown network, bad address, or the
                contract is not verified.
        """
        if not _ADDRESS_RE.match(address):
            raise UnsupportedInputError(f"Invalid contract address format: {address}")

        chain_config = get_chain_config(network)
        if not chain_config:
            raise UnsupportedInputError(
                f"Unsupported network: {network}", code=ErrorCode.UNSUPPORTED_NETWORK,
            )

        params = {
            "module": "contract",
            "action": "getsourcecode",
            "address": address,
        }
        api_key = self._get_api_key(chain_config)
        if api_key:
            params["apikey"] = api_key

        async def _get() -> httpx.Response:
            response = await self._client.get(chain_config.explorer_api_url, params=params)
            response.raise_for_status()
            return response

        response = await _retry_async(_get, label=f"getsourcecode {address}")
        data = response.json()

        result = data.get("result")
        if data.get("status") != "1" or not isinstance(result, list) or not result:
            raise UnsupportedInputError(
                f"Contract not verified or not found at {address} on {chain_config.name}",
                code=ErrorCode.NOT_VERIFIED,
            )

        entry = result[0]
        source_code = entry.get("SourceCode", "") or ""
        if not source_code.strip():
            raise UnsupportedInputError(
                f"Contract at {address} on {chain_config.name} is not verified",
                code=ErrorCode.NOT_VERIFIED,
            )

        source_files = parse_source_field(source_code)
        return ContractSource(
            address=address,
            network=chain_config.chain_id,
            contract_name=entry.get("ContractName", ""),
            source_code="" if source_files else source_code,
            source_files=source_files,
        )

    def _get_api_key(self, chain_config: ChainConfig) -> str:
        """Resolve the API key for a chain's explorer."""
        return getattr(self.settings, chain_config.api_key_setting, "") or ""

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
