"""
Store-agnostic markers for partial document updates.

Domain code builds plain ``dict`` patches; a value may be one of these
markers instead of a literal. Repositories translate them to the store's
update operators.
"""

from typing import Any, Iterable, Tuple


class _FieldDelete:
    """Sentinel: remove the field from the document."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "FIELD_DELETE"


FIELD_DELETE = _FieldDelete()


class Increment:
    """Add ``amount`` to a numeric field (created at ``amount`` if missing)."""

    __slots__ = ("amount",)

    def __init__(self, amount: int = 1) -> None:
        self.amount = amount

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Increment) and other.amount == self.amount

    def __repr__(self) -> str:
        return f"Increment({self.amount})"


class ArrayUnion:
    """Add values to an array field, skipping ones already present."""

    __slots__ = ("values",)

    def __init__(self, values: Iterable[Any]) -> None:
        self.values: Tuple[Any, ...] = tuple(values)

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, ArrayUnion) and set(other.values) == set(self.values)

    def __repr__(self) -> str:
        return f"ArrayUnion({list(self.values)!r})"
