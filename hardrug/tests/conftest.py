"""Shared fixtures for the HardRug test suite.

Compact-AST fixtures are assembled from the node builders below instead of
invoking solc, so the suite runs without a compiler. ``src`` spans are
computed from real source text where injection needs them.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from hardrug.analyzer.classifier import ContractClassifier, ContractProfile
from hardrug.core.config import get_settings
from hardrug.core.types import ContractCreationEvent


# ── AST node builders ────────────────────────────────────────────────────────


def elementary(name: str) -> dict[str, Any]:
    return {"nodeType": "ElementaryTypeName", "name": name}


def array_of(base: dict[str, Any], length: int | None = None) -> dict[str, Any]:
    return {
        "nodeType": "ArrayTypeName",
        "baseType": base,
        "length": None if length is None else {"nodeType": "Literal", "value": str(length)},
    }


def user_type(name: str) -> dict[str, Any]:
    return {"nodeType": "UserDefinedTypeName", "pathNode": {"name": name}}


def mapping() -> dict[str, Any]:
    return {
        "nodeType": "Mapping",
        "keyType": elementary("address"),
        "valueType": elementary("uint256"),
    }


def param(name: str, type_node: dict[str, Any]) -> dict[str, Any]:
    return {"nodeType": "VariableDeclaration", "name": name, "typeName": type_node}


def function(
    name: str,
    visibility: str = "public",
    kind: str = "function",
    params: list[dict[str, Any]] | None = None,
    src: str = "0:0:0",
    body_src: str | None = "0:0:0",
) -> dict[str, Any]:
    node: dict[str, Any] = {
        "nodeType": "FunctionDefinition",
        "name": name,
        "kind": kind,
        "visibility": visibility,
        "parameters": {"parameters": params or []},
        "src": src,
    }
    if body_src is not None:
        node["body"] = {"nodeType": "Block", "src": body_src}
    return node


def constructor(params: list[dict[str, Any]] | None = None, **kw: Any) -> dict[str, Any]:
    return function("", visibility="public", kind="constructor", params=params, **kw)


def state_var(name: str, visibility: str = "internal", is_mapping: bool = False) -> dict[str, Any]:
    return {
        "nodeType": "VariableDeclaration",
        "name": name,
        "visibility": visibility,
        "stateVariable": True,
        "typeName": mapping() if is_mapping else elementary("uint256"),
    }


def event(name: str) -> dict[str, Any]:
    return {"nodeType": "EventDefinition", "name": name}


def enum(name: str) -> dict[str, Any]:
    return {"nodeType": "EnumDefinition", "name": name}


def contract(
    name: str,
    nodes: list[dict[str, Any]] | None = None,
    bases: list[str] | None = None,
    kind: str = "contract",
    abstract: bool = False,
    src: str = "0:0:0",
) -> dict[str, Any]:
    return {
        "nodeType": "ContractDefinition",
        "name": name,
        "contractKind": kind,
        "abstract": abstract,
        "baseContracts": [{"baseName": {"name": b}} for b in bases or []],
        "nodes": nodes or [],
        "src": src,
    }


def source_unit(*nodes: dict[str, Any], pragma: str = "^0.8.19") -> dict[str, Any]:
    return {
        "nodeType": "SourceUnit",
        "nodes": [
            {"nodeType": "PragmaDirective", "literals": ["solidity", pragma]},
            *nodes,
        ],
    }


def erc20_nodes(include: tuple[str, ...] | None = None, with_mint: bool = True) -> list[dict[str, Any]]:
    names = include if include is not None else (
        "name", "symbol", "decimals", "totalSupply", "balanceOf",
        "transfer", "transferFrom", "approve", "allowance",
    )
    nodes = [function(n) for n in names]
    nodes += [event("Transfer"), event("Approval"), state_var("_balances", is_mapping=True)]
    if with_mint:
        nodes.append(function("_mint", visibility="internal"))
    return nodes


def ownable_nodes() -> list[dict[str, Any]]:
    return [
        function("owner"),
        function("transferOwnership"),
        function("_transferOwnership", visibility="internal"),
        event("OwnershipTransferred"),
    ]


# ── Span helpers ─────────────────────────────────────────────────────────────


def _matching_brace(raw: bytes, open_at: int) -> int:
    depth = 0
    for i in range(open_at, len(raw)):
        if raw[i:i + 1] == b"{":
            depth += 1
        elif raw[i:i + 1] == b"}":
            depth -= 1
            if depth == 0:
                return i
    raise ValueError("unbalanced braces")


def decl_src(source: str, marker: str) -> str:
    """``src`` of a declaration starting at ``marker`` through its closing brace."""
    raw = source.encode("utf-8")
    start = raw.index(marker.encode("utf-8"))
    end = _matching_brace(raw, raw.index(b"{", start))
    return f"{start}:{end - start + 1}:0"


def block_src(source: str, marker: str) -> str:
    """``src`` of the ``{...}`` block following ``marker``."""
    raw = source.encode("utf-8")
    open_at = raw.index(b"{", raw.index(marker.encode("utf-8")))
    end = _matching_brace(raw, open_at)
    return f"{open_at}:{end - open_at + 1}:0"


# ── Source fixtures ──────────────────────────────────────────────────────────


TOKEN_SOURCE = """// SPDX-License-Identifier: MIT
// Jéton: fixture with multi-byte characters (ü, ñ)
pragma solidity ^0.8.19;

contract ERC20 {
    mapping(address => uint256) internal _balances;
    event Transfer(address indexed from, address indexed to, uint256 value);
    event Approval(address indexed owner, address indexed spender, uint256 value);
    function _mint(address to, uint256 amount) internal { _balances[to] += amount; }
}

contract Ownable {
    event OwnershipTransferred(address indexed previousOwner, address indexed newOwner);
}

contract Token is ERC20, Ownable {
    constructor(uint256 supply, address treasury) {
        _mint(treasury, supply);
    }
}
"""

PLAIN_SOURCE = """// SPDX-License-Identifier: MIT
pragma solidity ^0.8.19;

contract Plain is ERC20 {
    uint256 public fee;
}
"""


def token_ast(source: str = TOKEN_SOURCE) -> dict[str, Any]:
    """AST for ``TOKEN_SOURCE``: ERC20 + Ownable parents, Token entry with a constructor."""
    return source_unit(
        contract("ERC20", erc20_nodes(), src=decl_src(source, "contract ERC20")),
        contract("Ownable", ownable_nodes(), src=decl_src(source, "contract Ownable")),
        contract(
            "Token",
            [
                constructor(
                    [param("supply", elementary("uint256")), param("treasury", elementary("address"))],
                    src=decl_src(source, "constructor("),
                    body_src=block_src(source, "constructor("),
                ),
            ],
            bases=["ERC20", "Ownable"],
            src=decl_src(source, "contract Token"),
        ),
    )


def plain_ast(source: str = PLAIN_SOURCE, with_mint: bool = True) -> dict[str, Any]:
    """AST for ``PLAIN_SOURCE``: a token without constructor or ownership."""
    return source_unit(
        contract("ERC20", erc20_nodes(with_mint=with_mint)),
        contract("Plain", [state_var("fee", visibility="public")], bases=["ERC20"],
                 src=decl_src(source, "contract Plain")),
    )


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached process-wide; reset around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def classifier() -> ContractClassifier:
    return ContractClassifier(parser=MagicMock())


@pytest.fixture
def token_profile(classifier: ContractClassifier) -> ContractProfile:
    return classifier.classify_ast(token_ast(), TOKEN_SOURCE)


@pytest.fixture
def plain_profile(classifier: ContractClassifier) -> ContractProfile:
    return classifier.classify_ast(plain_ast(), PLAIN_SOURCE)


@pytest.fixture
def creation_event() -> ContractCreationEvent:
    return ContractCreationEvent(
        network=1,
        tx_hash="0x" + "ab" * 32,
        sender="0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0",
        to=None,
        data="0x6080",
        nonce=0,
        block_number=17_000_000,
    )
