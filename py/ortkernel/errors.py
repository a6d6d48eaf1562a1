"""
Error hierarchy for the kernel bridge.

Categories:
- NativeCallError: an entry point returned a non-NULL status
- ContractError: a caller asked for something the engine cannot give
  (wrong attribute type, non-constant input, downcast mismatch, ...)
- UnavailableError: a capability that exists in the ABI but cannot be used
- InvariantViolation: the ABI contract itself is broken; not recoverable
"""

from enum import IntEnum
from typing import Optional


class ErrorCode(IntEnum):
    """Native status codes."""

    OK = 0
    FAIL = 1
    INVALID_ARGUMENT = 2
    NO_SUCHFILE = 3
    NO_MODEL = 4
    ENGINE_ERROR = 5
    RUNTIME_EXCEPTION = 6
    INVALID_PROTOBUF = 7
    MODEL_LOADED = 8
    NOT_IMPLEMENTED = 9
    INVALID_GRAPH = 10
    EP_FAIL = 11


class KernelBridgeError(Exception):
    """
    Base class for all bridge errors.

    Attributes:
        message: Human-readable error message
        context: Optional context dictionary for debugging
    """

    def __init__(self, message: str, context: Optional[dict] = None):
        self.message = message
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class NativeCallError(KernelBridgeError):
    """An entry point reported failure through its status."""

    def __init__(self, operation: str, code: int, native_message: str):
        try:
            self.code = ErrorCode(code)
        except ValueError:
            self.code = code
        self.operation = operation
        self.native_message = native_message
        super().__init__(
            f"{operation} failed: {native_message}",
            context={"code": getattr(self.code, "name", self.code)},
        )


class ContractError(KernelBridgeError):
    """The engine refused a request that a caller can recover from."""


class AttributeDecodeError(ContractError):
    """An attribute is missing, has another type, or failed to decode."""

    def __init__(self, name: str, kind: str, reason: str):
        self.name = name
        self.kind = kind
        super().__init__(
            f"cannot read attribute '{name}'",
            context={"kind": kind, "reason": reason},
        )


class ConstantInputError(ContractError):
    """Input index out of bounds or input is not constant."""

    def __init__(self, index: int):
        self.index = index
        super().__init__(
            "input index out of bounds or input is not constant",
            context={"index": index},
        )


class DowncastError(ContractError):
    """A value does not hold the requested tensor element type."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            "value cannot be downcast",
            context={"expected": expected, "actual": actual},
        )


class StringDecodeError(ContractError):
    """A native string was not NUL-terminated or not valid UTF-8."""


class NullHandleError(ContractError):
    """A native call produced a NULL handle where one was required."""


class HandleRetiredError(ContractError):
    """A borrowed handle was used after the call that lent it returned."""


class UnavailableError(KernelBridgeError):
    """A capability is declared but cannot be used."""


class EntryPointUnavailableError(UnavailableError):
    """The loaded library does not export an entry point."""

    def __init__(self, entry: str):
        self.entry = entry
        super().__init__(f"entry point '{entry}' is not available")


class ScratchBufferUnavailableError(UnavailableError):
    """Scratch buffer acquisition is switched off."""


class ParallelWorkError(KernelBridgeError):
    """At least one par_for work call raised."""

    def __init__(self, failures: int, total: int):
        self.failures = failures
        self.total = total
        super().__init__(
            "parallel work raised",
            context={"failed_calls": failures, "total": total},
        )


class ConfigurationError(KernelBridgeError):
    """The native library could not be located or loaded."""


class InvariantViolation(AssertionError):
    """
    The native layer broke its own contract (e.g. a fill call reported a
    different size than the preceding size query).

    Not a KernelBridgeError: code that recovers from bridge errors must
    never swallow this.
    """
