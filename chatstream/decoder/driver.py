"""Stream driver: read a wire byte stream and reduce it into the event log.

The driver accepts any response with the httpx surface it uses
(``status_code``, ``reason_phrase``, ``is_success``, ``headers``,
``aiter_bytes()`` and ``aclose()``), so an ``httpx.Response`` opened with
``client.stream(...)`` can be passed straight in.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional, Protocol

from chatstream.core.event_log import EventLog, Listener
from chatstream.core.events import ErrorEvent, StreamEvent, UserText
from chatstream.decoder import mergers
from chatstream.decoder.coalescer import DEFAULT_DEBOUNCE_MS, TextCoalescer
from chatstream.decoder.state import CancellationToken, DecoderState, SessionState
from chatstream.protocol.frames import Frame, FrameKind, classify_line, is_content_part_done
from chatstream.protocol.payloads import (
    REASONING,
    REASONING_DELTA,
    REASONING_DONE,
    CodeInterpreterPayload,
    FileAnnotationPayload,
    IgnoredPayload,
    ReasoningPayload,
    StreamDonePayload,
    ToolPayload,
    WebSearchPayload,
    decode_content_part_done,
    decode_tool_payload,
)

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"

_EOF = object()


class StreamResponse(Protocol):
    """The subset of ``httpx.Response`` the driver reads."""

    status_code: int
    reason_phrase: str
    headers: Any

    @property
    def is_success(self) -> bool: ...

    def aiter_bytes(self, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class StreamDriver:
    """Decode session for one turn.

    Usage:
        driver = StreamDriver(listener=render)
        driver.add_user_message("hi")
        async with client.stream("POST", url, json=body) as response:
            await driver.begin(response)
        driver.state  # completed | timed_out | cancelled | errored
    """

    def __init__(
        self,
        *,
        token: Optional[CancellationToken] = None,
        listener: Optional[Listener] = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        annotation_suffix_length: int = mergers.DEFAULT_SUFFIX_LENGTH,
    ) -> None:
        self._token = token or CancellationToken()
        self._log = EventLog(listener)
        self._state = DecoderState()
        self._session = SessionState.IDLE
        self._request_id: Optional[str] = None
        self._suffix_length = annotation_suffix_length
        self._coalescer = TextCoalescer(
            self._state, self._log, debounce_ms=debounce_ms, is_cancelled=lambda: self._token.cancelled
        )
        self._token.on_cancel(self._on_token_cancelled)

    # ------------------------------------------------------------------
    # Read-only surface for renderers
    # ------------------------------------------------------------------

    @property
    def events(self) -> list[StreamEvent]:
        return self._log.snapshot()

    @property
    def state(self) -> SessionState:
        return self._session

    @property
    def streaming(self) -> bool:
        return self._session is SessionState.STREAMING

    @property
    def timed_out(self) -> bool:
        return self._session is SessionState.TIMED_OUT

    @property
    def request_id(self) -> Optional[str]:
        return self._request_id

    @property
    def token(self) -> CancellationToken:
        return self._token

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def add_user_message(self, content: str) -> Optional[UserText]:
        if not isinstance(content, str) or not content.strip():
            logger.warning("add_user_message: empty content ignored")
            return None
        event = UserText(id=self._state.next_id("user"), content=content.strip(), timestamp=_timestamp())
        self._log.append(event)
        return event

    def handle_error(self, error: BaseException) -> None:
        """Surface a transport failure raised before any response was available."""
        logger.error("chat request failed: %s", error)
        self._fail(str(error) or "An error occurred while sending your message")

    def cancel(self) -> None:
        self._token.cancel()

    def clear(self) -> None:
        """Drop events, buffers, request id and any terminal state; the driver can begin a new turn."""
        self._coalescer.cancel()
        self._state.reset()
        self._log.clear()
        self._request_id = None
        if self._session.terminal:
            self._session = SessionState.IDLE

    async def begin(self, response: StreamResponse) -> SessionState:
        if self._token.cancelled:
            self._session = SessionState.CANCELLED
            return self._session
        if self._session is not SessionState.IDLE:
            raise RuntimeError(f"driver already used for this turn (state={self._session.value})")

        headers = getattr(response, "headers", None) or {}
        self._request_id = headers.get(REQUEST_ID_HEADER)

        if not response.is_success:
            logger.error(
                "chat response error",
                extra={"status": response.status_code, "request_id": self._request_id},
            )
            self._fail(f"Request failed with status {response.status_code}: {response.reason_phrase}")
            return self._session

        reader = self._open_reader(response)
        if reader is None:
            self._fail("Failed to get response stream reader")
            return self._session

        self._session = SessionState.STREAMING
        try:
            await self._read_loop(reader)
        finally:
            if self._token.cancelled:
                await self._close(response)
        return self._session

    # ------------------------------------------------------------------
    # Read loop
    # ------------------------------------------------------------------

    @staticmethod
    def _open_reader(response: StreamResponse) -> Optional[AsyncIterator[bytes]]:
        aiter_bytes = getattr(response, "aiter_bytes", None)
        if not callable(aiter_bytes):
            return None
        try:
            return aiter_bytes().__aiter__()
        except Exception as e:
            logger.error("failed to open response stream: %s", e)
            return None

    async def _read_loop(self, reader: AsyncIterator[bytes]) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            if self._token.cancelled:
                return
            try:
                chunk = await self._next_chunk(reader)
            except Exception as e:
                if self._token.cancelled:
                    return
                logger.error("error reading stream chunk: %s", e)
                self._coalescer.flush()
                self._fail(str(e) or "Failed to read response stream")
                return
            if self._token.cancelled:
                return
            if chunk is _EOF:
                self._state.line_buffer += decoder.decode(b"", final=True)
                self._finish()
                return
            self._feed(decoder.decode(chunk))

    async def _next_chunk(self, reader: AsyncIterator[bytes]) -> Any:
        """Next chunk or ``_EOF``; returns early without a chunk if the token is cancelled."""

        async def read() -> Any:
            try:
                return await reader.__anext__()
            except StopAsyncIteration:
                return _EOF

        read_task = asyncio.ensure_future(read())
        cancel_task = asyncio.ensure_future(self._token.wait())
        try:
            await asyncio.wait({read_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
            if not read_task.done():
                read_task.cancel()
                await asyncio.gather(read_task, return_exceptions=True)
        if read_task.cancelled():
            return _EOF
        return read_task.result()

    def _feed(self, text: str) -> None:
        self._state.line_buffer += text
        lines = self._state.line_buffer.split("\n")
        self._state.line_buffer = lines.pop()
        for line in lines:
            if self._token.cancelled:
                return
            if line.strip():
                self.process_line(line)

    def _finish(self) -> None:
        tail, self._state.line_buffer = self._state.line_buffer, ""
        if tail.strip():
            self.process_line(tail)
        self._coalescer.flush()
        if self._state.completion_observed:
            self._session = SessionState.COMPLETED
        else:
            logger.warning("stream ended without completion marker", extra={"request_id": self._request_id})
            self._session = SessionState.TIMED_OUT

    def _fail(self, message: str) -> None:
        self._log.append(ErrorEvent(message=message))
        self._session = SessionState.ERRORED

    def _on_token_cancelled(self) -> None:
        self._coalescer.cancel()
        self._state.clear_buffers()
        if not self._session.terminal:
            self._session = SessionState.CANCELLED
        logger.info("stream cancelled", extra={"request_id": self._request_id})

    @staticmethod
    async def _close(response: StreamResponse) -> None:
        try:
            await response.aclose()
        except Exception as e:
            logger.debug("closing cancelled response failed: %s", e)

    # ------------------------------------------------------------------
    # Line dispatch
    # ------------------------------------------------------------------

    def process_line(self, line: str) -> None:
        """Apply one complete wire line to the event log.

        Must be called with a running event loop: text deltas arm the
        coalescer's debounce timer. A frame that fails to apply is logged
        and skipped; it never ends the turn.
        """
        if self._token.cancelled:
            return
        frame = classify_line(line)
        if frame.kind is FrameKind.IGNORED:
            return
        try:
            self._dispatch(frame)
        except Exception as e:
            logger.exception("failed to apply frame: %s", e, extra={"frame_kind": frame.kind.value})

    def _dispatch(self, frame: Frame) -> None:
        if frame.kind is FrameKind.TEXT_DELTA:
            self._on_text(frame.payload)
            return
        if frame.kind is FrameKind.META:
            message_id = frame.payload.get("messageId")
            if isinstance(message_id, str) and message_id:
                self._state.message_id = message_id
            return
        # Buffered text precedes any other frame in the log.
        self._coalescer.flush()
        if frame.kind is FrameKind.ERROR:
            mergers.add_error(self._log, frame.payload)
        elif frame.kind is FrameKind.TOOL:
            self._on_tool(frame.payload)
        elif frame.kind is FrameKind.JSON_OBJECT:
            self._on_json_object(frame)

    def _on_text(self, text: str) -> None:
        if not text:
            return
        if not self._state.message_id:
            self._state.message_id = self._state.next_id()
        self._coalescer.push(self._state.message_id, text)

    def _on_json_object(self, frame: Frame) -> None:
        payload = frame.payload
        if not is_content_part_done(payload):
            logger.debug("bare json line ignored", extra={"json_type": payload.get("type")})
            return
        content_part = decode_content_part_done(payload)
        if content_part is None:
            return
        mergers.replace_assistant_part(self._log, content_part.item_id, content_part.part)

    def _on_tool(self, data: dict[str, Any]) -> None:
        payload = decode_tool_payload(data)
        if payload is None or isinstance(payload, IgnoredPayload):
            return
        if isinstance(payload, StreamDonePayload):
            self._state.completion_observed = True
        elif isinstance(payload, ReasoningPayload):
            if payload.type == REASONING_DELTA:
                mergers.merge_reasoning_delta(self._log, payload)
            elif payload.type == REASONING_DONE:
                mergers.merge_reasoning_done(self._log, payload)
            elif payload.type == REASONING:
                self._state.pending_events.append(mergers.reasoning_event(payload))
        elif isinstance(payload, FileAnnotationPayload):
            mergers.attach_file_annotation(self._log, payload, self._suffix_length)
        elif isinstance(payload, CodeInterpreterPayload):
            mergers.merge_code_interpreter(self._log, payload)
        elif isinstance(payload, WebSearchPayload):
            mergers.merge_web_search(self._log, payload)
        elif isinstance(payload, ToolPayload):
            if payload.type == "mcp_call_completed":
                mergers.add_mcp_ui_content(self._log, payload, self._state.next_id())
            mergers.merge_tool(self._log, payload)
