"""
Grid coordinates of slot ids and rectangular selections over them.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Sequence, Tuple

from ..cache import LRUCache
from .models import EventConfig
from .slots import format_slot_id


@dataclass(frozen=True)
class Coordinate:
    """Integer position of a cell: column index and time-row index."""
    column: int
    row: int


@dataclass(frozen=True)
class DragSelection:
    """Inclusive rectangle of cells, independent of drag direction."""
    min_column: int
    max_column: int
    min_row: int
    max_row: int

    @classmethod
    def from_corners(cls, start: Coordinate, current: Coordinate) -> "DragSelection":
        return cls(
            min_column=min(start.column, current.column),
            max_column=max(start.column, current.column),
            min_row=min(start.row, current.row),
            max_row=max(start.row, current.row),
        )

    @property
    def bounds(self) -> Tuple[int, int, int, int]:
        return (self.min_column, self.max_column, self.min_row, self.max_row)

    def contains(self, coordinate: Coordinate) -> bool:
        return (
            self.min_column <= coordinate.column <= self.max_column
            and self.min_row <= coordinate.row <= self.max_row
        )


class CoordinateCache:
    """
    Maps every slot id of one schedule view to its (column, row) position.

    Built once per view configuration (ordered columns x ordered time rows).
    """

    def __init__(self, columns: Sequence[str], rows: Sequence[str]):
        self.columns: Tuple[str, ...] = tuple(columns)
        self.rows: Tuple[str, ...] = tuple(rows)
        self._coordinates: Dict[str, Coordinate] = {}
        self._grid: List[List[str]] = []

        for column_index, column in enumerate(self.columns):
            column_slots: List[str] = []
            for row_index, mark in enumerate(self.rows):
                slot_id = format_slot_id(column, mark)
                self._coordinates[slot_id] = Coordinate(column_index, row_index)
                column_slots.append(slot_id)
            self._grid.append(column_slots)

    @classmethod
    def for_event(cls, config: EventConfig) -> "CoordinateCache":
        return cls(config.columns(), config.time_rows())

    def coordinates_of(self, slot_id: str) -> Coordinate | None:
        return self._coordinates.get(slot_id)

    def slot_at(self, column: int, row: int) -> str | None:
        if 0 <= column < len(self.columns) and 0 <= row < len(self.rows):
            return self._grid[column][row]
        return None

    def cells_in(self, selection: DragSelection) -> FrozenSet[str]:
        """
        Slot ids inside ``selection``.

        Only the rectangle's index ranges are visited; coordinates outside the
        grid are skipped.
        """
        first_column = max(selection.min_column, 0)
        last_column = min(selection.max_column, len(self.columns) - 1)
        first_row = max(selection.min_row, 0)
        last_row = min(selection.max_row, len(self.rows) - 1)

        return frozenset(
            self._grid[column][row]
            for column in range(first_column, last_column + 1)
            for row in range(first_row, last_row + 1)
        )

    def __contains__(self, slot_id: object) -> bool:
        return slot_id in self._coordinates

    def __len__(self) -> int:
        return len(self._coordinates)


class SelectionCache:
    """Memoizes ``cells_in`` per rectangle while a drag is in progress."""

    def __init__(self, coordinates: CoordinateCache, max_entries: int = 50):
        self._coordinates = coordinates
        self._cache: LRUCache = LRUCache(max_size=max_entries)

    def cells_in(self, selection: DragSelection) -> FrozenSet[str]:
        cells = self._cache.get(selection.bounds)
        if cells is None:
            cells = self._coordinates.cells_in(selection)
            self._cache.put(selection.bounds, cells)
        return cells

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
