"""Text coalescer: batch text deltas per message id behind a short debounce."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from chatstream.core.event_log import EventLog
from chatstream.core.events import AssistantText
from chatstream.decoder.state import DecoderState

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 16


class DebounceTimer:
    """Re-armable one-shot timer on the running event loop."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._callback()


class TextCoalescer:
    """Accumulates text for the active message id and applies it to the log on flush.

    ``flush()`` is the single write path, used by the timer and by the driver
    at end of stream. It also drains events queued in ``state.pending_events``.
    """

    def __init__(
        self,
        state: DecoderState,
        log: EventLog,
        *,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        is_cancelled: Callable[[], bool] = lambda: False,
    ) -> None:
        self._state = state
        self._log = log
        self._is_cancelled = is_cancelled
        self._timer = DebounceTimer(debounce_ms / 1000.0, self.flush)

    @property
    def pending(self) -> bool:
        return bool(self._state.text_buffer or self._state.pending_events)

    def push(self, message_id: str, text: str) -> None:
        state = self._state
        if state.last_active_id and state.last_active_id != message_id:
            self.flush()
        state.text_buffer += text
        state.last_active_id = message_id
        self._timer.arm()

    def flush(self) -> None:
        self._timer.cancel()
        if self._is_cancelled():
            return
        state = self._state
        # The timer may fire after the active id moved on; whatever is buffered belongs to last_active_id.
        if state.text_buffer and state.last_active_id:
            self._append_text(state.last_active_id, state.text_buffer)
            state.text_buffer = ""
        if state.pending_events:
            events, state.pending_events = state.pending_events, []
            self._log.extend(events)

    def cancel(self) -> None:
        self._timer.cancel()

    def _append_text(self, message_id: str, text: str) -> None:
        position = self._log.find("assistant", message_id)
        if position is None:
            self._log.append(AssistantText(id=message_id, content=text))
            return
        existing = self._log[position]
        self._log.replace(position, existing.model_copy(update={"content": existing.content + text}))
