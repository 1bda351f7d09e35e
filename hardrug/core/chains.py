"""Supported networks and their block-explorer endpoints."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ChainConfig:
    """Configuration for a supported EVM network."""

    chain_id: int
    name: str
    short_name: str
    explorer_api_url: str
    api_key_setting: str  # attribute name on Settings


# ── Chain Registry ───────────────────────────────────────────────────────────

CHAINS: dict[int, ChainConfig] = {
    1: ChainConfig(
        chain_id=1,
        name="Ethereum Mainnet",
        short_name="eth",
        explorer_api_url="https://api.etherscan.io/api",
        api_key_setting="etherscan_api_key",
    ),
    10: ChainConfig(
        chain_id=10,
        name="Optimism",
        short_name="op",
        explorer_api_url="https://api-optimistic.etherscan.io/api",
        api_key_setting="optimism_etherscan_api_key",
    ),
    56: ChainConfig(
        chain_id=56,
        name="BNB Smart Chain",
        short_name="bsc",
        explorer_api_url="https://api.bscscan.com/api",
        api_key_setting="bscscan_api_key",
    ),
    137: ChainConfig(
        chain_id=137,
        name="Polygon Mainnet",
        short_name="matic",
        explorer_api_url="https://api.polygonscan.com/api",
        api_key_setting="polygonscan_api_key",
    ),
    250: ChainConfig(
        chain_id=250,
        name="Fantom Opera",
        short_name="ftm",
        explorer_api_url="https://api.ftmscan.com/api",
        api_key_setting="ftmscan_api_key",
    ),
    42161: ChainConfig(
        chain_id=42161,
        name="Arbitrum One",
        short_name="arb",
        explorer_api_url="https://api.arbiscan.io/api",
        api_key_setting="arbiscan_api_key",
    ),
    43114: ChainConfig(
        chain_id=43114,
        name="Avalanche C-Chain",
        short_name="avax",
        explorer_api_url="https://api.snowtrace.io/api",
        api_key_setting="snowtrace_api_key",
    ),
}


def get_chain_config(chain_id: int | str) -> ChainConfig | None:
    """Get chain configuration by numeric chain id."""
    try:
        return CHAINS.get(int(chain_id))
    except (TypeError, ValueError):
        return None
