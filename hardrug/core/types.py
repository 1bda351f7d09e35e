"""Shared enums and types used across the engine."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class Severity(str, enum.Enum):
    """Finding severity level."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class FindingType(str, enum.Enum):
    """Classification of a finding for the alerting transport."""

    SUSPICIOUS = "suspicious"
    EXPLOIT = "exploit"
    INFO = "info"


class EntityType(str, enum.Enum):
    """Kind of entity a label is attached to."""

    ADDRESS = "address"
    TRANSACTION = "transaction"


# ── Inbound ──────────────────────────────────────────────────────────────────


class ContractCreationEvent(BaseModel):
    """A transaction record as delivered by the chain-event dispatcher."""

    network: int = 1
    tx_hash: str
    sender: str
    to: str | None = None
    data: str = "0x"
    nonce: int = 0
    block_number: int
    contract_address: str | None = None
    runtime_code: str | None = None

    @property
    def is_creation(self) -> bool:
        return self.to is None


# ── Outbound ─────────────────────────────────────────────────────────────────


class Label(BaseModel):
    """Entity label attached to a finding."""

    entity: str
    entity_type: EntityType = EntityType.ADDRESS
    label: str
    confidence: float = 0.5


class Finding(BaseModel):
    """A single alert emitted for a suspicious contract."""

    name: str
    alert_id: str
    description: str
    severity: Severity
    type: FindingType = FindingType.SUSPICIOUS
    metadata: dict[str, str] = Field(default_factory=dict)
    labels: list[Label] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
