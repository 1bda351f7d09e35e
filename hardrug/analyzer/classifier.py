"""Contract classifier — inheritance-aware capability profile of a source tree.

Resolves the dependency map of every contract-like declaration, picks the
most-derived deployable contract as the entry point, and accumulates the
callable/internal functions and events of the entry and all its ancestors.
The profile says whether the entry looks like an ERC-20 token and/or an
Ownable contract; downstream stages only synthesize tests for those.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from hardrug.core.ast_analyzer import ContractSymbol, SourceUnitModel, analyze_ast
from hardrug.core.errors import SourceParseError
from hardrug.ingestion.solidity_compiler import SolidityParser

logger = logging.getLogger(__name__)

TOKEN_FUNCTIONS = (
    "name",
    "symbol",
    "decimals",
    "totalSupply",
    "balanceOf",
    "transfer",
    "transferFrom",
    "approve",
    "allowance",
)
TOKEN_EVENTS = ("Transfer", "Approval")

OWNABLE_FUNCTIONS = ("owner", "transferOwnership")
OWNABLE_EVENTS = ("OwnershipTransferred",)

BALANCE_VARIABLE = "_balances"


def is_token_contract(callable_functions: set[str], events: set[str]) -> bool:
    return all(f in callable_functions for f in TOKEN_FUNCTIONS) and all(
        e in events for e in TOKEN_EVENTS
    )


def is_ownable_contract(callable_functions: set[str], events: set[str]) -> bool:
    return all(f in callable_functions for f in OWNABLE_FUNCTIONS) and all(
        e in events for e in OWNABLE_EVENTS
    )


@dataclass
class ContractProfile:
    """Capability profile of the entry contract of a source tree."""

    entry: ContractSymbol
    dependency_tree: dict[str, list[str]] = field(default_factory=dict)
    callable_functions: set[str] = field(default_factory=set)
    internal_functions: set[str] = field(default_factory=set)
    events: set[str] = field(default_factory=set)
    has_balance_variable: bool = False
    model: SourceUnitModel = field(default_factory=SourceUnitModel)
    source: str = ""

    @property
    def entry_name(self) -> str:
        return self.entry.name

    @property
    def is_token_contract(self) -> bool:
        return is_token_contract(self.callable_functions, self.events)

    @property
    def is_ownable_contract(self) -> bool:
        return is_ownable_contract(self.callable_functions, self.events)

    @property
    def is_interesting(self) -> bool:
        return self.is_token_contract or self.is_ownable_contract

    def has_function(self, name: str) -> bool:
        return name in self.callable_functions or name in self.internal_functions

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_contract": self.entry_name,
            "dependency_tree": self.dependency_tree,
            "callable_functions": sorted(self.callable_functions),
            "internal_functions": sorted(self.internal_functions),
            "events": sorted(self.events),
            "is_token_contract": self.is_token_contract,
            "is_ownable_contract": self.is_ownable_contract,
            "has_balance_variable": self.has_balance_variable,
        }


class ContractClassifier:
    """Build a ``ContractProfile`` from Solidity source text."""

    def __init__(self, parser: SolidityParser | None = None) -> None:
        self._parser = parser or SolidityParser()

    def classify(self, source: str, entry_hint: str | None = None) -> ContractProfile:
        """Parse ``source`` and classify its entry contract.

        Raises:
            SourceParseError: the source does not parse or its
                inheritance graph cannot be resolved.
        """
        ast = self._parser.parse(source)
        return self.classify_ast(ast, source, entry_hint)

    def classify_ast(
        self,
        ast: dict[str, Any],
        source: str = "",
        entry_hint: str | None = None,
    ) -> ContractProfile:
        model = analyze_ast(ast)
        if not model.contracts:
            raise SourceParseError("No contract definitions found in source")

        tree, last_resolved = resolve_dependency_tree(model)

        entry: ContractSymbol | None = None
        if entry_hint:
            entry = model.get(entry_hint)
            if entry is None:
                logger.debug("Entry hint %s not declared in source; falling back", entry_hint)
        if entry is None:
            entry = last_resolved
        if entry is None:
            raise SourceParseError("No deployable contract found in source")

        profile = ContractProfile(
            entry=entry, dependency_tree=tree, model=model, source=source,
        )
        _collect_capabilities(profile, tree)
        return profile


def resolve_dependency_tree(
    model: SourceUnitModel,
) -> tuple[dict[str, list[str]], ContractSymbol | None]:
    """Resolve the contract dependency map in topological passes.

    Each pass scans the declarations in source order and adds every contract
    whose bases are all known. The deployable contract inserted last is the
    entry candidate ("most-derived wins").
    Interfaces, libraries and abstract contracts never become the entry.

    Raises:
        SourceParseError: a base contract is never declared.
    """
    tree: dict[str, list[str]] = {}
    expected = len(model.contract_names)
    last_resolved: ContractSymbol | None = None

    while len(tree) < expected:
        before = len(tree)
        for contract in model.contracts:
            if contract.name in tree:
                continue
            if all(base in tree for base in contract.bases):
                tree[contract.name] = list(contract.bases)
                if contract.is_deployable:
                    last_resolved = contract
        if len(tree) == before:
            missing = sorted(
                {b for c in model.contracts if c.name not in tree for b in c.bases} - model.contract_names
            )
            raise SourceParseError(
                "Unresolvable inheritance graph",
                errors=[f"Base contract not declared: {name}" for name in missing],
            )

    return tree, last_resolved


def _collect_capabilities(profile: ContractProfile, tree: dict[str, list[str]]) -> None:
    """Breadth-first walk from the entry, visiting each ancestor once."""
    model = profile.model
    visited: set[str] = set()
    worklist: deque[str] = deque([profile.entry.name])

    while worklist:
        name = worklist.popleft()
        if name in visited:
            continue
        visited.add(name)

        contract = profile.entry if name == profile.entry.name else model.get(name)
        if contract is None:
            continue

        for fn in contract.functions:
            if not fn.name or fn.kind != "function":
                continue
            if fn.is_callable:
                profile.callable_functions.add(fn.name)
            else:
                profile.internal_functions.add(fn.name)

        for var in contract.state_variables:
            if var.visibility == "public":
                profile.callable_functions.add(var.name)
            if var.name == BALANCE_VARIABLE and var.is_mapping:
                profile.has_balance_variable = True

        profile.events.update(contract.events)
        worklist.extend(tree.get(name, contract.bases))
