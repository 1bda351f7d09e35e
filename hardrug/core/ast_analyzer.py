"""Solidity symbol model — structured extraction from the solc compact AST.

Walks the ``SourceUnit`` produced by the compiler and extracts, per contract:
  - kind (contract / interface / library) and abstract flag
  - direct base contract names
  - functions with kind, visibility, typed parameters and body span
  - state variables with visibility and mapping-ness
  - event and enum names

Spans are kept as the compiler reports them: byte offsets into the UTF-8
encoded source that was parsed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

CALLABLE_VISIBILITIES = frozenset({"public", "external", "default"})


# ── Data Models ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SourceSpan:
    """Byte span from an AST ``src`` field (offset:length:fileIndex)."""
    offset: int = 0
    length: int = 0
    file_index: int = 0

    @property
    def end(self) -> int:
        return self.offset + self.length

    @classmethod
    def from_src(cls, src: str | None) -> "SourceSpan":
        """Parse AST 'src' field like '120:45:0'."""
        parts = (src or "").split(":")
        if len(parts) < 2:
            return cls()
        try:
            offset, length = int(parts[0]), int(parts[1])
            file_index = int(parts[2]) if len(parts) > 2 else 0
        except ValueError:
            return cls()
        return cls(offset=offset, length=length, file_index=file_index)

    def line_in(self, source: bytes) -> int:
        """1-based line number of the span start within ``source``."""
        return source[: self.offset].count(b"\n") + 1


@dataclass
class ParameterSymbol:
    """Function parameter with its raw type node kept for ABI derivation."""
    name: str
    type_node: dict[str, Any] = field(default_factory=dict)


@dataclass
class FunctionSymbol:
    """Parsed function definition."""
    name: str
    kind: str = "function"  # function, constructor, fallback, receive, modifier
    visibility: str = "public"
    parameters: list[ParameterSymbol] = field(default_factory=list)
    span: SourceSpan = field(default_factory=SourceSpan)
    body_span: SourceSpan | None = None

    @property
    def is_constructor(self) -> bool:
        return self.kind == "constructor"

    @property
    def is_callable(self) -> bool:
        return self.visibility in CALLABLE_VISIBILITIES


@dataclass
class StateVariableSymbol:
    """Parsed state variable."""
    name: str
    visibility: str = "internal"
    is_mapping: bool = False


@dataclass
class ContractSymbol:
    """Parsed contract-like declaration."""
    name: str
    kind: str = "contract"  # contract, interface, library
    is_abstract: bool = False
    bases: list[str] = field(default_factory=list)
    functions: list[FunctionSymbol] = field(default_factory=list)
    state_variables: list[StateVariableSymbol] = field(default_factory=list)
    events: list[str] = field(default_factory=list)
    enums: list[str] = field(default_factory=list)
    span: SourceSpan = field(default_factory=SourceSpan)

    @property
    def constructor(self) -> FunctionSymbol | None:
        for fn in self.functions:
            if fn.is_constructor:
                return fn
        return None

    @property
    def is_deployable(self) -> bool:
        return self.kind == "contract" and not self.is_abstract


@dataclass
class SourceUnitModel:
    """All contract-like declarations of one parsed compilation unit."""
    contracts: list[ContractSymbol] = field(default_factory=list)
    enums: list[str] = field(default_factory=list)
    pragma_version: str = ""

    def get(self, name: str) -> ContractSymbol | None:
        for contract in self.contracts:
            if contract.name == name:
                return contract
        return None

    @property
    def contract_names(self) -> set[str]:
        return {c.name for c in self.contracts}

    @property
    def enum_names(self) -> set[str]:
        names = set(self.enums)
        for contract in self.contracts:
            names.update(contract.enums)
        return names


# ── AST Visitor ──────────────────────────────────────────────────────────────


class SolidityASTAnalyzer:
    """Walk a solc compact AST and build a ``SourceUnitModel``.

    Supports AST node shapes from Solidity 0.4.x through 0.8.x.
    """

    def analyze(self, ast: dict[str, Any]) -> SourceUnitModel:
        model = SourceUnitModel()
        if not ast or ast.get("nodeType") != "SourceUnit":
            return model

        for node in ast.get("nodes", []):
            nt = node.get("nodeType", "")
            if nt == "ContractDefinition":
                model.contracts.append(self._visit_contract(node))
            elif nt == "EnumDefinition":
                model.enums.append(node.get("name", ""))
            elif nt == "PragmaDirective" and not model.pragma_version:
                literals = node.get("literals", [])
                if literals and literals[0] == "solidity":
                    model.pragma_version = "".join(literals[1:])
        return model

    # ── Contract visitor ─────────────────────────────────────────────

    def _visit_contract(self, node: dict) -> ContractSymbol:
        contract = ContractSymbol(
            name=node.get("name", ""),
            kind=node.get("contractKind", "contract"),
            is_abstract=bool(node.get("abstract", False)),
            span=SourceSpan.from_src(node.get("src")),
        )

        for base in node.get("baseContracts", []):
            name = base_name(base.get("baseName", {}))
            if name:
                contract.bases.append(name)

        for child in node.get("nodes", []):
            nt = child.get("nodeType", "")

            if nt == "FunctionDefinition":
                contract.functions.append(self._visit_function(child, contract.name))
            elif nt == "VariableDeclaration":
                contract.state_variables.append(self._visit_state_variable(child))
            elif nt == "EventDefinition":
                contract.events.append(child.get("name", ""))
            elif nt == "EnumDefinition":
                contract.enums.append(child.get("name", ""))

        return contract

    def _visit_function(self, node: dict, contract_name: str) -> FunctionSymbol:
        kind = node.get("kind")
        if kind is None:
            # Pre-0.5 ASTs: constructors are flagged or share the contract's name
            if node.get("isConstructor") or node.get("name") == contract_name:
                kind = "constructor"
            else:
                kind = "function"

        body = node.get("body")
        fn = FunctionSymbol(
            name=node.get("name", "") or "",
            kind=kind,
            visibility=node.get("visibility", "default") or "default",
            span=SourceSpan.from_src(node.get("src")),
            body_span=SourceSpan.from_src(body.get("src")) if isinstance(body, dict) else None,
        )
        for p in (node.get("parameters") or {}).get("parameters", []):
            fn.parameters.append(ParameterSymbol(
                name=p.get("name", ""),
                type_node=p.get("typeName") or {},
            ))
        return fn

    def _visit_state_variable(self, node: dict) -> StateVariableSymbol:
        type_node = node.get("typeName") or {}
        return StateVariableSymbol(
            name=node.get("name", ""),
            visibility=node.get("visibility", "internal"),
            is_mapping=type_node.get("nodeType") == "Mapping",
        )


def base_name(name_node: dict[str, Any]) -> str:
    """Name of a base contract / user-defined type across AST versions."""
    if not isinstance(name_node, dict):
        return ""
    path = name_node.get("pathNode")
    if isinstance(path, dict) and path.get("name"):
        return path["name"]
    return name_node.get("name", "") or name_node.get("namePath", "")


def analyze_ast(ast: dict[str, Any]) -> SourceUnitModel:
    """Convenience function to build the symbol model for an AST."""
    return SolidityASTAnalyzer().analyze(ast)
