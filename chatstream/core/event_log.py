"""Ordered, id-indexed collection of decoded stream events for one turn."""

from __future__ import annotations

import logging
from typing import Callable, Iterator, Optional

from chatstream.core.events import StreamEvent, correlation_key

logger = logging.getLogger(__name__)

Listener = Callable[[list[StreamEvent]], None]


class EventLog:
    """Events in first-seen order. Replacements keep the entry's position.

    Correlated events (see ``correlation_key``) are indexed by (family, id) so
    merges find their entry without scanning; at most one entry exists per key.
    """

    def __init__(self, listener: Optional[Listener] = None) -> None:
        self._events: list[StreamEvent] = []
        self._index: dict[tuple[str, str], int] = {}
        self._listener = listener

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[StreamEvent]:
        return iter(self._events)

    def __getitem__(self, position: int) -> StreamEvent:
        return self._events[position]

    def find(self, family: str, item_id: Optional[str]) -> Optional[int]:
        if not item_id:
            return None
        return self._index.get((family, item_id))

    def get(self, family: str, item_id: Optional[str]) -> Optional[StreamEvent]:
        position = self.find(family, item_id)
        return None if position is None else self._events[position]

    def last_of(self, family: str) -> Optional[int]:
        for position in range(len(self._events) - 1, -1, -1):
            if self._events[position].type == family:
                return position
        return None

    def append(self, event: StreamEvent) -> int:
        key = correlation_key(event)
        if key is not None and key in self._index:
            # One live entry per correlation id: an append for a known key is a replacement.
            position = self._index[key]
            self._events[position] = event
        else:
            position = len(self._events)
            self._events.append(event)
            if key is not None:
                self._index[key] = position
        self._notify()
        return position

    def extend(self, events: list[StreamEvent]) -> None:
        if not events:
            return
        listener, self._listener = self._listener, None
        try:
            for event in events:
                self.append(event)
        finally:
            self._listener = listener
        self._notify()

    def replace(self, position: int, event: StreamEvent) -> None:
        old_key = correlation_key(self._events[position])
        new_key = correlation_key(event)
        if old_key != new_key:
            if old_key is not None:
                self._index.pop(old_key, None)
            if new_key is not None:
                self._index[new_key] = position
        self._events[position] = event
        self._notify()

    def upsert(self, event: StreamEvent) -> int:
        """Replace the entry with the same correlation key in place, or append."""
        key = correlation_key(event)
        if key is not None and key in self._index:
            position = self._index[key]
            self.replace(position, event)
            return position
        return self.append(event)

    def snapshot(self) -> list[StreamEvent]:
        return [event.model_copy(deep=True) for event in self._events]

    def clear(self) -> None:
        self._events = []
        self._index = {}
        self._notify()

    def _notify(self) -> None:
        if self._listener is None:
            return
        try:
            self._listener(self.snapshot())
        except Exception as e:
            logger.exception("event log listener failed: %s", e)
