"""On-chain reads needed by the pipeline: deployed code and created addresses."""

from __future__ import annotations

import logging

import rlp
from eth_utils import keccak, to_bytes, to_checksum_address
from web3 import AsyncWeb3
from web3.providers import AsyncHTTPProvider

from hardrug.core.config import get_settings

logger = logging.getLogger(__name__)


def compute_contract_address(sender: str, nonce: int) -> str:
    """Address of a contract created by ``sender`` at account ``nonce``.

    keccak256(rlp([sender, nonce]))[12:], checksummed.
    """
    encoded = rlp.encode([to_bytes(hexstr=sender), nonce])
    return to_checksum_address(keccak(encoded)[12:])


class ChainReader:
    """Thin async wrapper over a JSON-RPC node."""

    def __init__(self, rpc_url: str | None = None, timeout: float = 30.0) -> None:
        self.rpc_url = rpc_url or get_settings().json_rpc_url
        self.w3 = AsyncWeb3(AsyncHTTPProvider(
            self.rpc_url,
            request_kwargs={"timeout": timeout},
        ))

    async def get_code(self, address: str, block_identifier: int | str = "latest") -> bytes:
        """Deployed runtime bytecode at ``address`` (empty for EOAs)."""
        code = await self.w3.eth.get_code(
            to_checksum_address(address), block_identifier=block_identifier,
        )
        logger.debug("Fetched %d bytes of code for %s", len(code), address)
        return bytes(code)
