"""Command-line flag helpers."""

from __future__ import annotations


class StringFlag:
    """A string option that remembers whether it was ever given.

    An empty string can be a meaningful value, so "unset" is tracked
    separately from the value itself.
    """

    __slots__ = ("_value",)

    def __init__(self) -> None:
        self._value: str | None = None

    def set(self, value: str) -> None:
        """Record a value for the flag."""
        self._value = value

    def is_set(self) -> bool:
        """Return True once a value has been recorded."""
        return self._value is not None

    def __str__(self) -> str:
        return self._value if self._value is not None else ""

    def __repr__(self) -> str:
        return f"StringFlag({self._value!r})"