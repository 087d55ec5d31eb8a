"""Flexible identifiers.

Canvas resource ids and JSON-RPC request ids arrive either as JSON strings
or as JSON integers. Both forms are wrapped in an Identifier whose
canonical string form decides equality and hashing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

MAX_INTEGER_ID = 2**64 - 1


class IdentifierError(ValueError):
    """Raised when a value cannot be used as an identifier."""

    pass


@dataclass(frozen=True)
class Identifier:
    """A text or non-negative 64-bit integer identifier.

    Two identifiers compare equal when their canonical forms match, so
    ``Identifier.parse("108367") == Identifier.parse(108367)``.
    """

    value: str | int

    def __post_init__(self) -> None:
        if isinstance(self.value, bool):
            raise IdentifierError("Boolean is not a valid identifier")
        if isinstance(self.value, int):
            if not 0 <= self.value <= MAX_INTEGER_ID:
                raise IdentifierError(
                    f"Integer identifier out of range: {self.value} (must be 0..2^64-1)"
                )
        elif isinstance(self.value, str):
            if not self.value:
                raise IdentifierError("Identifier must not be empty")
        else:
            raise IdentifierError(
                f"Identifier must be a string or integer, got {type(self.value).__name__}"
            )

    @classmethod
    def parse(cls, value: Any) -> Identifier:
        """Build an identifier from a decoded JSON value.

        Args:
            value: String, integer, or float without a fractional part.

        Returns:
            Identifier wrapping the value.

        Raises:
            IdentifierError: If the value cannot be an identifier.
        """
        if isinstance(value, Identifier):
            return value
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return cls(value)

    @property
    def is_integer(self) -> bool:
        """True when the identifier was supplied in integer form."""
        return isinstance(self.value, int)

    @property
    def canonical(self) -> str:
        """Canonical string form used for equality, hashing and cache keys."""
        return str(self.value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Identifier):
            return NotImplemented
        return self.canonical == other.canonical

    def __hash__(self) -> int:
        return hash(self.canonical)

    def __str__(self) -> str:
        return self.canonical
