"""Error taxonomy for the detection pipeline.

Every failure raised inside the pipeline carries an ``ErrorCode`` so the
worker can decide how loudly to log it before dropping the task:

    UNSUPPORTED_*   input we deliberately do not handle (skip quietly)
    PARSE/DECODE    malformed or non-standard source / call data (warn, drop)
    TOOL_FAILURE    the external engine crashed, timed out or lied (error)
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes attached to pipeline exceptions."""

    # Unsupported input
    UNSUPPORTED_NETWORK = "UNSUPPORTED_NETWORK"
    NOT_VERIFIED = "NOT_VERIFIED"
    BYTECODE_NOT_FOUND = "BYTECODE_NOT_FOUND"
    NO_CONSTRUCTOR_WITH_ARGS = "NO_CONSTRUCTOR_WITH_ARGS"

    # Parse / decode
    PARSE_ERROR = "PARSE_ERROR"
    DECODE_ERROR = "DECODE_ERROR"

    # Tooling
    TOOL_FAILURE = "TOOL_FAILURE"


class HardRugError(Exception):
    """Base class for all pipeline errors."""

    code: ErrorCode = ErrorCode.TOOL_FAILURE

    def __init__(self, message: str, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def is_unsupported(self) -> bool:
        return self.code in (
            ErrorCode.UNSUPPORTED_NETWORK,
            ErrorCode.NOT_VERIFIED,
            ErrorCode.BYTECODE_NOT_FOUND,
            ErrorCode.NO_CONSTRUCTOR_WITH_ARGS,
        )


class UnsupportedInputError(HardRugError):
    """Input the pipeline skips without emitting anything."""

    code = ErrorCode.UNSUPPORTED_NETWORK


class SourceParseError(HardRugError):
    """The Solidity source could not be parsed or resolved."""

    code = ErrorCode.PARSE_ERROR

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class ConstructorDecodeError(HardRugError):
    """Constructor arguments could not be decoded or rendered."""

    code = ErrorCode.DECODE_ERROR


class VerificationToolError(HardRugError):
    """The external verification engine failed."""

    code = ErrorCode.TOOL_FAILURE
