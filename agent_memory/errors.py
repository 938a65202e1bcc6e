"""
Error hierarchy for the memory recall engine.

- AgentMemoryError: base for everything raised by this package
- DimensionMismatch: vector length differs from the index dimensionality
- NotFound: unknown node, record or session id
- PartialFailure: record persisted but not semantically indexed
- PersistenceError: opaque failure surfaced from a record store backend
- ConfigurationError: invalid construction parameters

Each error carries a `recoverable` flag (used by the retry wrapper) and a
`to_dict()` representation used by the HTTP layer.
"""

from typing import Any, Dict, Optional


class AgentMemoryError(Exception):
    """Base exception for all memory engine errors."""

    recoverable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation for API responses."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "recoverable": self.recoverable,
        }


class DimensionMismatch(AgentMemoryError, ValueError):
    """Vector length does not match the configured dimensionality."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Expected vector of dimension {expected}, got {actual}")
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"expected": self.expected, "actual": self.actual})
        return data


class NotFound(AgentMemoryError, KeyError):
    """Unknown node, record or session identifier."""

    def __init__(self, kind: str, identifier: Any):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier

    # KeyError quotes its argument; keep the plain message
    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"kind": self.kind, "id": str(self.identifier)})
        return data


class PartialFailure(AgentMemoryError):
    """
    Record was persisted but could not be inserted into the index.

    The record is retrievable by id but stays pending (not searchable)
    until a valid vector is linked to it.
    """

    def __init__(self, record_id: str, reason: str, cause: Optional[BaseException] = None):
        super().__init__(f"Record {record_id} stored but not indexed: {reason}")
        self.record_id = record_id
        self.reason = reason
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"record_id": self.record_id, "reason": self.reason})
        return data


class PersistenceError(AgentMemoryError):
    """Failure reported by a record store backend."""

    recoverable = True


class ConfigurationError(AgentMemoryError):
    """Invalid construction parameter."""

    def __init__(self, parameter: str, value: Any, message: str):
        super().__init__(f"{message}. Parameter: {parameter}, Value: {value}")
        self.parameter = parameter
        self.value = value
