"""Result interpreter — turn a forge JSON report into rug-pull findings.

Only entries scoped to the synthesized test file count. Sub-test results of
one test contract are ANDed (the ``setUp()`` phase excluded), failures whose
reason marks a low-level VM fault are discarded as inconclusive, and each
remaining failing test contract maps to one technique. Two or more
techniques on the same contract add an aggregate high-severity finding.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from hardrug.core.types import EntityType, Finding, FindingType, Label, Severity
from hardrug.fuzzer.forge_executor import TEST_PATH
from hardrug.fuzzer.harness import technique_from_test_name

logger = logging.getLogger(__name__)

SETUP_TEST = "setUp()"
VM_FAULT_MARKER = "EvmError"

AGGREGATE_ALERT_ID = "HARD-RUG-PULL-1"
TECHNIQUE_CONFIDENCE = 0.5
AGGREGATE_CONFIDENCE = 0.8


def technique_alert_id(technique: str) -> str:
    return f"HARD-RUG-PULL-{technique}-DYNAMIC"


# ── Data Models ──────────────────────────────────────────────────────────────


@dataclass
class SubTestResult:
    """One invariant/test function result inside a test contract."""
    name: str
    success: bool
    reason: str | None = None
    counterexample: Any = None

    @property
    def is_vm_fault(self) -> bool:
        return bool(self.reason) and self.reason.startswith(VM_FAULT_MARKER)

    @classmethod
    def from_json(cls, name: str, data: dict[str, Any]) -> SubTestResult:
        success = data.get("success")
        if not isinstance(success, bool):
            # Newer forge releases report a status string instead
            success = data.get("status") == "Success"
        return cls(
            name=name,
            success=success,
            reason=data.get("reason"),
            counterexample=data.get("counterexample"),
        )


@dataclass
class TestOutcome:
    """ANDed result of one synthesized test contract."""
    key: str
    contract_name: str
    technique: str
    sub_tests: list[SubTestResult] = field(default_factory=list)

    __test__ = False

    @property
    def failures(self) -> list[SubTestResult]:
        return [s for s in self.sub_tests if not s.success]

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def inconclusive(self) -> bool:
        """Every failure is a VM fault rather than a violated property."""
        return bool(self.failures) and all(s.is_vm_fault for s in self.failures)

    @property
    def reported_failure(self) -> SubTestResult | None:
        for sub in self.failures:
            if not sub.is_vm_fault:
                return sub
        return None


# ── Interpreter ──────────────────────────────────────────────────────────────


class ResultInterpreter:
    """Map forge reports for one contract to findings."""

    def __init__(self, test_path: str = TEST_PATH) -> None:
        self.test_path = test_path

    def outcomes(self, report: dict[str, Any]) -> list[TestOutcome]:
        results: list[TestOutcome] = []
        for key, entry in report.items():
            if not key.startswith(self.test_path) or not isinstance(entry, dict):
                continue
            contract_name = key.split(":", 1)[1] if ":" in key else key
            outcome = TestOutcome(
                key=key,
                contract_name=contract_name,
                technique=technique_from_test_name(contract_name),
            )
            for name, data in (entry.get("test_results") or {}).items():
                if name == SETUP_TEST or not isinstance(data, dict):
                    continue
                outcome.sub_tests.append(SubTestResult.from_json(name, data))
            results.append(outcome)
        return results

    def failed_outcomes(self, report: dict[str, Any]) -> list[TestOutcome]:
        failed = []
        for outcome in self.outcomes(report):
            if outcome.success:
                continue
            if outcome.inconclusive:
                logger.info(
                    "Discarding inconclusive %s: %s",
                    outcome.contract_name, outcome.failures[0].reason,
                    extra={"technique": outcome.technique},
                )
                continue
            failed.append(outcome)
        return failed

    def findings(
        self,
        report: dict[str, Any],
        deployer: str,
        contract_address: str,
    ) -> list[Finding]:
        """Medium finding per failing technique, plus a high aggregate for 2+."""
        findings: list[Finding] = []
        techniques: list[str] = []

        for outcome in self.failed_outcomes(report):
            failure = outcome.reported_failure
            techniques.append(outcome.technique)
            findings.append(technique_finding(
                outcome.technique,
                deployer,
                contract_address,
                reason=failure.reason if failure else None,
                counterexample=failure.counterexample if failure else None,
            ))

        if len(techniques) > 1:
            findings.append(aggregate_finding(techniques, deployer, contract_address))
        return findings


# ── Finding builders ─────────────────────────────────────────────────────────


def _description(deployer: str, contract_address: str) -> str:
    return (
        f"{deployer} deployed a token contract {contract_address} "
        "that may result in a hard rug pull"
    )


def _labels(deployer: str, contract_address: str, confidence: float) -> list[Label]:
    return [
        Label(entity=deployer, entity_type=EntityType.ADDRESS, label="scam", confidence=confidence),
        Label(
            entity=contract_address,
            entity_type=EntityType.ADDRESS,
            label="scam-contract",
            confidence=confidence,
        ),
    ]


def technique_finding(
    technique: str,
    deployer: str,
    contract_address: str,
    reason: str | None = None,
    counterexample: Any = None,
) -> Finding:
    alert_id = technique_alert_id(technique)
    metadata = {
        "attacker_deployer_address": deployer,
        "token_contract_address": contract_address,
    }
    if reason:
        metadata["failure_reason"] = reason
    if counterexample:
        metadata["counterexample"] = json.dumps(counterexample, default=str)

    return Finding(
        name=alert_id,
        alert_id=alert_id,
        description=_description(deployer, contract_address),
        severity=Severity.MEDIUM,
        type=FindingType.SUSPICIOUS,
        metadata=metadata,
        labels=_labels(deployer, contract_address, TECHNIQUE_CONFIDENCE),
    )


def aggregate_finding(
    techniques: list[str],
    deployer: str,
    contract_address: str,
) -> Finding:
    return Finding(
        name=AGGREGATE_ALERT_ID,
        alert_id=AGGREGATE_ALERT_ID,
        description=_description(deployer, contract_address),
        severity=Severity.HIGH,
        type=FindingType.SUSPICIOUS,
        metadata={
            "attacker_deployer_address": deployer,
            "token_contract_address": contract_address,
            "rugpull_techniques": ", ".join(techniques),
        },
        labels=_labels(deployer, contract_address, AGGREGATE_CONFIDENCE),
    )
