"""Constructor decoder — recover deployment arguments as Solidity literals.

The ABI-encoded constructor arguments are whatever follows the deployed
runtime code inside the creation transaction's input. They are decoded
against the entry contract's declared constructor parameters and rendered
as source-level expressions that can be pasted into ``new Entry(...)``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from eth_abi import decode
from eth_abi.exceptions import DecodingError, ParseError
from eth_utils import to_checksum_address

from hardrug.analyzer.classifier import ContractProfile
from hardrug.core.ast_analyzer import base_name
from hardrug.core.errors import ConstructorDecodeError, ErrorCode, UnsupportedInputError

logger = logging.getLogger(__name__)

SUFFIX_BYTES = 16

_ELEMENTARY_ALIASES = {
    "uint": "uint256",
    "int": "int256",
    "byte": "bytes1",
    "address payable": "address",
    "fixed": "fixed128x18",
    "ufixed": "ufixed128x18",
}


def to_bytes(data: bytes | str | None) -> bytes:
    """Accept raw bytes or a (0x-prefixed) hex string."""
    if data is None:
        return b""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    text = data[2:] if data.startswith(("0x", "0X")) else data
    try:
        return bytes.fromhex(text)
    except ValueError as e:
        raise ConstructorDecodeError(f"Invalid hex data: {e}") from e


def find_constructor_arguments(
    deployment_data: bytes | str,
    runtime_code: bytes | str,
) -> bytes | None:
    """Slice the ABI-encoded constructor arguments out of creation input.

    The last ``SUFFIX_BYTES`` of the runtime code (usually the metadata
    hash) are located by last occurrence; everything after them is the
    argument blob. Returns ``None`` when the suffix is not present.
    """
    data = to_bytes(deployment_data)
    code = to_bytes(runtime_code)
    if not code:
        return None
    suffix = code[-SUFFIX_BYTES:]
    loc = data.rfind(suffix)
    if loc < 0:
        return None
    return data[loc + len(suffix):]


# ── Type model ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ParamType:
    """ABI view of one constructor parameter.

    ``dims`` lists array dimensions in ABI string order (innermost first);
    ``None`` marks a dynamic dimension.
    """
    base_abi: str
    base_sol: str
    base_kind: str = "elementary"  # elementary, contract, enum
    dims: tuple[int | None, ...] = ()

    @property
    def abi_type(self) -> str:
        return self.base_abi + "".join(f"[{'' if d is None else d}]" for d in self.dims)

    @property
    def sol_type(self) -> str:
        return self.base_sol + "".join(f"[{'' if d is None else d}]" for d in self.dims)


@dataclass
class ConstructorSignature:
    params: list[ParamType] = field(default_factory=list)

    @property
    def abi_types(self) -> list[str]:
        return [p.abi_type for p in self.params]


@dataclass
class DecodedArgument:
    """One decoded constructor argument.

    ``literal`` is ``None`` for dynamic arrays, which Solidity cannot write
    inline; ``elements`` then holds the per-item literals and the harness
    materializes the array into a local before deployment.
    """
    param: ParamType
    value: Any
    literal: str | None
    elements: list[str] = field(default_factory=list)

    def materialize(self, var_name: str) -> tuple[list[str], str]:
        """Return (setup statements, expression) for use in a call."""
        if self.literal is not None:
            return [], self.literal
        element_type = ParamType(
            self.param.base_abi, self.param.base_sol, self.param.base_kind, self.param.dims[:-1],
        ).sol_type
        lines = [
            f"{element_type}[] memory {var_name} = new {element_type}[]({len(self.elements)});"
        ]
        lines.extend(f"{var_name}[{i}] = {item};" for i, item in enumerate(self.elements))
        return lines, var_name


# ── Decoder ──────────────────────────────────────────────────────────────────


class ConstructorDecoder:
    """Decode creation-call arguments for a classified entry contract."""

    def __init__(self, profile: ContractProfile) -> None:
        self.profile = profile

    def signature(self) -> ConstructorSignature | None:
        """Parameter types of the entry constructor, or ``None`` if absent."""
        constructor = self.profile.entry.constructor
        if constructor is None:
            return None
        return ConstructorSignature(
            params=[self._param_type(p.type_node) for p in constructor.parameters]
        )

    def decode(self, argument_blob: bytes | str | None) -> list[DecodedArgument]:
        """Decode ``argument_blob`` against the constructor signature.

        Raises:
            UnsupportedInputError: no constructor but a non-empty blob.
            ConstructorDecodeError: the blob does not match the signature.
        """
        blob = to_bytes(argument_blob)
        signature = self.signature()

        if signature is None or not signature.params:
            if blob and signature is None:
                raise UnsupportedInputError(
                    f"{self.profile.entry_name} has no constructor but {len(blob)} argument bytes",
                    code=ErrorCode.NO_CONSTRUCTOR_WITH_ARGS,
                )
            return []

        try:
            values = decode(signature.abi_types, blob)
        except (DecodingError, ParseError, ValueError, TypeError) as e:
            raise ConstructorDecodeError(
                f"Cannot decode constructor args as ({','.join(signature.abi_types)}): {e}"
            ) from e

        return [self._render(param, value) for param, value in zip(signature.params, values)]

    def render_literals(self, argument_blob: bytes | str | None) -> list[str]:
        """Decoded arguments as literal strings (dynamic arrays excluded)."""
        return [
            arg.literal if arg.literal is not None else "[" + ", ".join(arg.elements) + "]"
            for arg in self.decode(argument_blob)
        ]

    # ── Type unwrapping ──────────────────────────────────────────────

    def _param_type(self, type_node: dict[str, Any]) -> ParamType:
        dims: list[int | None] = []
        node = type_node
        while node.get("nodeType") == "ArrayTypeName":
            dims.append(_array_length(node.get("length")))
            node = node.get("baseType") or node.get("baseTypeName") or {}

        nt = node.get("nodeType")
        if nt == "ElementaryTypeName":
            name = node.get("name", "")
            if name == "address" or name.startswith("address "):
                name = "address"
            base = _ELEMENTARY_ALIASES.get(name, name)
            param = ParamType(base_abi=base, base_sol=base)
        elif nt == "UserDefinedTypeName":
            name = base_name(node)
            short = name.split(".")[-1]
            if short in self.profile.model.contract_names:
                param = ParamType(base_abi="address", base_sol=name, base_kind="contract")
            elif short in self.profile.model.enum_names:
                param = ParamType(base_abi="uint8", base_sol=name, base_kind="enum")
            else:
                raise ConstructorDecodeError(f"Unsupported constructor parameter type: {name}")
        else:
            raise ConstructorDecodeError(f"Unsupported constructor parameter node: {nt}")

        # AST nests the outermost dimension first; ABI strings list it last
        return ParamType(param.base_abi, param.base_sol, param.base_kind, tuple(reversed(dims)))

    # ── Rendering ────────────────────────────────────────────────────

    def _render(self, param: ParamType, value: Any) -> DecodedArgument:
        if param.dims and param.dims[-1] is None:
            if len(param.dims) > 1:
                raise ConstructorDecodeError(
                    f"Nested dynamic array argument {param.sol_type} cannot be materialized"
                )
            elements = [_render_scalar(param, item) for item in value]
            return DecodedArgument(param=param, value=value, literal=None, elements=elements)
        return DecodedArgument(param=param, value=value, literal=_render_value(param, value, param.dims))


def _array_length(length_node: Any) -> int | None:
    if not length_node:
        return None
    if isinstance(length_node, dict) and length_node.get("nodeType") == "Literal":
        try:
            return int(str(length_node.get("value", "")).replace("_", ""), 0)
        except ValueError:
            pass
    raise ConstructorDecodeError("Array length is not a literal")


def _render_value(param: ParamType, value: Any, dims: tuple[int | None, ...]) -> str:
    if not dims:
        return _render_scalar(param, value)
    if dims[-1] is None:
        raise ConstructorDecodeError(
            f"Nested dynamic array argument {param.sol_type} cannot be materialized"
        )
    items = [_render_value(param, item, dims[:-1]) for item in value]
    if items and len(dims) == 1 and param.base_abi.startswith(("uint", "int")) and param.base_kind == "elementary":
        # Integer array literals take the smallest fitting type unless the first item is cast
        items[0] = f"{param.base_sol}({items[0]})"
    return "[" + ", ".join(items) + "]"


def _render_scalar(param: ParamType, value: Any) -> str:
    if param.base_kind == "contract":
        return f"{param.base_sol}({to_checksum_address(value)})"
    if param.base_kind == "enum":
        return f"{param.base_sol}({int(value)})"

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if param.base_abi == "address":
        return to_checksum_address(value)
    if isinstance(value, (bytes, bytearray)):
        if param.base_abi == "bytes":
            return f'hex"{bytes(value).hex()}"'
        return "0x" + bytes(value).hex()
    if isinstance(value, str):
        return json.dumps(value)
    return str(value)
