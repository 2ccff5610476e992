"""Ordering of dimension names for outputs that need a fixed order."""

from __future__ import annotations

from typing import Iterable, Mapping


class Ordering:
    """Sorts dimension names by a preferred order.

    Names in the preferred order come first, in that order; all other
    names follow alphabetically. If a name appears several times in the
    preferred order, its last position counts.
    """

    def __init__(self, dimension_order: Iterable[str]) -> None:
        self._priority = {name: index for index, name in enumerate(dimension_order)}

    def _sort_key(self, name: str) -> tuple[int, int, str]:
        priority = self._priority.get(name)
        if priority is None:
            return (1, 0, name)
        return (0, priority, name)

    def less(self, current_order: list[str], i: int, j: int) -> bool:
        """Whether the name at position i belongs before the name at j."""
        return self._sort_key(current_order[i]) < self._sort_key(current_order[j])

    def sort(self, dimensions: Mapping[str, str]) -> list[str]:
        """Return the dimension names of the mapping in sorted order."""
        return sorted(dimensions, key=self._sort_key)