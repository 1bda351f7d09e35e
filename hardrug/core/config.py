"""Core configuration for the hard rug-pull detection engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="HARDRUG_",
        case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # ── Block explorers ──────────────────────────────────────────────────
    etherscan_api_key: str = ""
    optimism_etherscan_api_key: str = ""
    bscscan_api_key: str = ""
    polygonscan_api_key: str = ""
    ftmscan_api_key: str = ""
    arbiscan_api_key: str = ""
    snowtrace_api_key: str = ""
    explorer_timeout: float = 30.0
    http_proxy: str = ""

    # ── Chain access ─────────────────────────────────────────────────────
    json_rpc_url: str = "http://localhost:8545"

    # ── Solidity parsing ─────────────────────────────────────────────────
    default_solc_version: str = "0.8.19"

    # ── Foundry ──────────────────────────────────────────────────────────
    forge_path: str = "forge"
    forge_project_dir: str = "./working-forge"
    forge_scratch_dir: str = "./working"
    forge_test_timeout: int = 900
    forge_flatten_timeout: int = 120
    invariant_runs: int = 64
    invariant_depth: int = 32

    # ── Task pipeline ────────────────────────────────────────────────────
    queue_poll_interval: float = 10.0


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
