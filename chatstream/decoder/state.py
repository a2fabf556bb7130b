"""Decode session state: terminal states, cancellation token and per-turn buffers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from chatstream.core.events import StreamEvent

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self not in (SessionState.IDLE, SessionState.STREAMING)


class CancellationToken:
    """One-shot cancellation signal shared by the driver and its byte stream.

    Callbacks registered with ``on_cancel`` run once, synchronously, when
    ``cancel()`` is first called (or immediately if already cancelled).
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.exception("cancel callback failed: %s", e)

    def on_cancel(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    async def wait(self) -> None:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()


@dataclass
class DecoderState:
    """Mutable buffers owned by one driver for one turn."""

    line_buffer: str = ""
    text_buffer: str = ""
    last_active_id: Optional[str] = None
    message_id: Optional[str] = None
    pending_events: list[StreamEvent] = field(default_factory=list)
    completion_observed: bool = False
    generated_ids: int = 0

    def next_id(self, prefix: str = "assistant") -> str:
        """Deterministic per-session id, so replaying a stream reproduces the same events."""
        self.generated_ids += 1
        return f"{prefix}-{self.generated_ids}"

    def clear_buffers(self) -> None:
        self.line_buffer = ""
        self.text_buffer = ""
        self.last_active_id = None
        self.pending_events = []

    def reset(self) -> None:
        """Buffers plus per-turn markers; generated ids keep counting so they stay unique."""
        self.clear_buffers()
        self.message_id = None
        self.completion_observed = False
