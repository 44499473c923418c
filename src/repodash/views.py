"""Display rows, the render sink protocol, and the registry of open views.

The UI layer owns actual widgets; this module only tracks which views are open
and hands them ordered rows to display.
"""

import logging
from collections.abc import Hashable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)

C = TypeVar("C")


class RowKind(str, Enum):
    ITEM = "item"
    MESSAGE = "message"
    ACTION = "action"
    SEPARATOR = "separator"


@dataclass(frozen=True)
class MenuRow:
    """One line in a rendered list.

    Attributes:
        kind (RowKind): Item, informational message, action or separator.
        title (str): Primary text.
        detail (str | None): Secondary text.
        is_current (bool): Whether the row is checked (current branch etc.).
        payload (Any): The source object, for actions triggered by the row.
    """

    kind: RowKind
    title: str = ""
    detail: str | None = None
    is_current: bool = False
    payload: Any = None

    @classmethod
    def message(cls, title: str) -> "MenuRow":
        return cls(RowKind.MESSAGE, title)

    @classmethod
    def action(cls, title: str, payload: Any = None) -> "MenuRow":
        return cls(RowKind.ACTION, title, payload=payload)

    @classmethod
    def separator(cls) -> "MenuRow":
        return cls(RowKind.SEPARATOR)


class RenderSink(Protocol):
    """Receives the rows for one open view."""

    def render(self, rows: list[MenuRow]) -> None: ...


@dataclass
class ViewEntry(Generic[C]):
    view_id: Hashable
    context: C
    sink: RenderSink
    generation: int
    closed: bool = False


@dataclass
class ViewRegistry(Generic[C]):
    """Open views keyed by a stable view identity.

    Each registration gets a generation number. Closing or re-registering a
    view bumps the generation, so work started for an older generation can
    detect that it must no longer render.
    """

    _entries: dict[Hashable, ViewEntry[C]] = field(default_factory=dict)
    _generation: int = 0

    def register(self, view_id: Hashable, context: C, sink: RenderSink) -> ViewEntry[C]:
        self._generation += 1
        entry = ViewEntry(view_id, context, sink, self._generation)
        self._entries[view_id] = entry
        return entry

    def get(self, view_id: Hashable) -> ViewEntry[C] | None:
        entry = self._entries.get(view_id)
        if entry is None or entry.closed:
            return None
        return entry

    def close(self, view_id: Hashable) -> None:
        entry = self._entries.get(view_id)
        if entry is not None:
            entry.closed = True

    def is_live(self, entry: ViewEntry[C]) -> bool:
        """True if ``entry`` is still the open registration for its view."""
        current = self._entries.get(entry.view_id)
        return current is entry and not entry.closed

    def prune(self) -> int:
        """Drops closed views. Returns the number removed."""
        closed = [key for key, entry in self._entries.items() if entry.closed]
        for key in closed:
            del self._entries[key]
        if closed:
            logger.debug(f"Pruned {len(closed)} closed views")
        return len(closed)

    def clear(self) -> None:
        for entry in self._entries.values():
            entry.closed = True
        self._entries.clear()

    def live_entries(self) -> list[ViewEntry[C]]:
        return [entry for entry in self._entries.values() if not entry.closed]

    def render(self, entry: ViewEntry[C], rows: list[MenuRow]) -> bool:
        """Renders into ``entry`` only while it is live.

        Returns:
            bool: False if the view was closed or replaced and nothing was rendered.
        """
        if not self.is_live(entry):
            return False
        entry.sink.render(rows)
        return True
