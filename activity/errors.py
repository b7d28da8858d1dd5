"""Exception types shared by the activity core."""

from __future__ import annotations


class IntelligenceUnavailable(RuntimeError):
    """The text-intelligence collaborator could not produce a usable answer."""


class MemorySchemaError(ValueError):
    """A stored memory payload does not match the expected shape."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid payload for {key}: {reason}")


class InvariantViolation(RuntimeError):
    """Internal bookkeeping went out of sync; this is a bug, not bad input."""
