"""
Rectangular drag selection over the slot grid.

Mouse and touch input arrive as one ``PointerEvent`` type; mouse events
carry the slot under the pointer, touch events only carry coordinates that
are resolved through a hit-test callback.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, FrozenSet

from .coordinates import Coordinate, CoordinateCache, DragSelection, SelectionCache
from .models import SelectionMode

logger = logging.getLogger(__name__)


class PointerKind(str, Enum):
    DOWN = "down"
    MOVE = "move"
    UP = "up"
    CANCEL = "cancel"


class DragState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


@dataclass(frozen=True)
class PointerEvent:
    kind: PointerKind
    x: float = 0.0
    y: float = 0.0
    target: str | None = None


@dataclass(frozen=True)
class SelectionDelta:
    """Committed result of one gesture."""
    slot_ids: FrozenSet[str]
    mode: SelectionMode
    is_click: bool = False


HitTest = Callable[[float, float], "str | None"]
IsSelected = Callable[[str], bool]


class DragSelectionEngine:
    """
    State machine turning pointer events into selection commits.

    IDLE --down on a cell--> DRAGGING --up--> IDLE (commit)
                                      --cancel--> IDLE (nothing)

    The gesture mode is fixed by the first cell: ``remove`` when it is
    already selected, ``add`` otherwise.
    """

    def __init__(
        self,
        coordinates: CoordinateCache,
        is_selected: IsSelected,
        hit_test: HitTest | None = None,
        max_cache_entries: int = 50,
    ):
        self.coordinates = coordinates
        self.is_selected = is_selected
        self.hit_test = hit_test
        self._selections = SelectionCache(coordinates, max_entries=max_cache_entries)
        self._reset()

    def _reset(self) -> None:
        self.state = DragState.IDLE
        self.mode: SelectionMode | None = None
        self._start: Coordinate | None = None
        self._current: Coordinate | None = None
        self._moved = False

    def _resolve(self, event: PointerEvent) -> Coordinate | None:
        slot_id = event.target
        if slot_id is None and self.hit_test is not None:
            slot_id = self.hit_test(event.x, event.y)
        if slot_id is None:
            return None
        return self.coordinates.coordinates_of(slot_id)

    def handle(self, event: PointerEvent) -> SelectionDelta | None:
        """
        Feed one pointer event.

        Returns:
            The commit when the event ends a gesture, otherwise None
        """
        kind = PointerKind(event.kind)

        if kind is PointerKind.CANCEL:
            self._reset()
            self._selections.clear()
            return None

        if kind is PointerKind.DOWN:
            cell = self._resolve(event)
            if cell is None:
                return None
            slot_id = self.coordinates.slot_at(cell.column, cell.row)
            self.mode = SelectionMode.REMOVE if self.is_selected(slot_id) else SelectionMode.ADD
            self.state = DragState.DRAGGING
            self._start = cell
            self._current = cell
            self._moved = False
            return None

        if self.state is not DragState.DRAGGING:
            return None

        cell = self._resolve(event)
        if cell is not None and cell != self._current:
            self._current = cell
            if cell != self._start:
                self._moved = True

        if kind is PointerKind.MOVE:
            return None

        return self._commit()

    def preview(self) -> FrozenSet[str]:
        """Slots of the rectangle currently being dragged."""
        selection = self.selection
        if selection is None:
            return frozenset()
        return self._selections.cells_in(selection)

    @property
    def selection(self) -> DragSelection | None:
        if self._start is None or self._current is None:
            return None
        return DragSelection.from_corners(self._start, self._current)

    def _commit(self) -> SelectionDelta:
        is_click = not self._moved and self._current == self._start
        delta = SelectionDelta(slot_ids=self.preview(), mode=self.mode, is_click=is_click)
        logger.debug(
            "Committed %s of %d slot(s)%s",
            delta.mode.value,
            len(delta.slot_ids),
            " (click)" if is_click else "",
        )
        self._reset()
        self._selections.clear()
        return delta
