"""Provider event encoder: OpenAI Responses stream events -> line-prefixed wire frames."""

from __future__ import annotations

import logging
import re
import uuid
from typing import Any, AsyncIterable, AsyncIterator, Callable, Iterable, Optional, Union

from chatstream.protocol.frames import FramePrefix, encode_frame, stream_done_frame
from chatstream.protocol.payloads import (
    FILE_ANNOTATION,
    REASONING_DELTA,
    REASONING_DONE,
    WEB_SEARCH_PREFIX,
    CodeInterpreterPayload,
    FileAnnotationPayload,
    ReasoningPayload,
    ToolPayload,
)

logger = logging.getLogger(__name__)

ProviderEvents = Union[AsyncIterable[Any], Iterable[Any]]

DEFAULT_FLUSH_THRESHOLD = 40
PASSTHROUGH_PREFIXES = (WEB_SEARCH_PREFIX,)

_SENTENCE_END = re.compile(r"[.!?\n]$")
_HTTP_STATUS_RE = re.compile(
    r"[\s.,;]*\(?\bhttp status(?: code)?\s*[:=]?\s*\d{3}\b(?:\s*\([^)]*\))?\)?",
    re.IGNORECASE,
)
_LEADING_STATUS_RE = re.compile(
    r"^\s*(?:error code:\s*\d{3}\s*-\s*|\d{3}(?:\s+[A-Za-z][A-Za-z ]*?)?\s*:\s*)",
    re.IGNORECASE,
)

# Stateless lifecycle events: provider type -> wire subtype
_SIMPLE_EVENTS = {
    "response.mcp_list_tools.in_progress": "tool_in_progress",
    "response.mcp_list_tools.completed": "tool_completed",
    "response.mcp_list_tools.failed": "tool_failed",
    "response.mcp_call.in_progress": "mcp_call_in_progress",
    "response.mcp_call.completed": "mcp_call_completed",
    "response.code_interpreter_call.in_progress": "code_interpreter_call_in_progress",
    "response.code_interpreter_call.interpreting": "code_interpreter_call_interpreting",
    "response.code_interpreter_call.completed": "code_interpreter_call_completed",
}

# Provider events that carry nothing the client renders
_QUIET_EVENTS = frozenset(
    {
        "response.in_progress",
        "response.completed",
        "response.output_text.done",
        "response.content_part.added",
        "response.content_part.done",
        "response.reasoning_summary_part.added",
        "response.reasoning_summary_part.done",
    }
)


class ProviderStreamError(RuntimeError):
    """Provider reported a failure inside the event stream."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.details = details


def sanitize_error_message(message: Optional[str], fallback: str = "Tool call failed") -> str:
    """Strip raw HTTP status fragments (e.g. ``Http status code: 424 (Failed Dependency)``)."""
    text = _HTTP_STATUS_RE.sub("", message or "")
    text = _LEADING_STATUS_RE.sub("", text).strip().rstrip(".,;:").strip()
    return text or fallback


def generate_message_id() -> str:
    return f"msg-{uuid.uuid4().hex[:12]}"


def _as_dict(event: Any) -> dict[str, Any]:
    if isinstance(event, dict):
        return event
    dump = getattr(event, "model_dump", None)
    if callable(dump):
        return dump()
    return dict(vars(event))


async def _aiter(events: ProviderEvents) -> AsyncIterator[Any]:
    if hasattr(events, "__aiter__"):
        async for event in events:  # type: ignore[union-attr]
            yield event
    else:
        for event in events:  # type: ignore[union-attr]
            yield event


class StreamEncoder:
    """Serialize one turn of provider events into wire frames.

    The first frame is always ``f:`` with the message id and the last is always
    ``t:{"type":"stream_done"}``, on success and on failure alike.
    """

    def __init__(
        self,
        *,
        flush_threshold: int = DEFAULT_FLUSH_THRESHOLD,
        message_id: Optional[str] = None,
        on_message_id: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.flush_threshold = flush_threshold
        self.message_id = message_id or generate_message_id()
        self._on_message_id = on_message_id
        self._buffer = ""
        self._metadata: dict[str, Any] = {}

    async def encode(self, events: ProviderEvents) -> AsyncIterator[bytes]:
        yield encode_frame(FramePrefix.META, {"messageId": self.message_id})
        if self._on_message_id:
            self._on_message_id(self.message_id)
        try:
            async for raw in _aiter(events):
                for frame in self._encode_event(_as_dict(raw)):
                    yield frame
            text = self._flush()
            if text:
                yield text
        except Exception as e:
            logger.error("error during streamed response: %s", e, exc_info=True)
            text = self._flush()
            if text:
                yield text
            yield self._error_frame(e)
        yield stream_done_frame()

    def _flush(self) -> Optional[bytes]:
        if not self._buffer:
            return None
        frame = encode_frame(FramePrefix.TEXT, self._buffer)
        self._buffer = ""
        return frame

    def _error_frame(self, exc: Exception) -> bytes:
        payload: dict[str, Any] = {
            "type": "error",
            "message": sanitize_error_message(str(exc), "An error occurred during streaming"),
        }
        details = getattr(exc, "details", None)
        if details is not None:
            payload["details"] = details
        return encode_frame(FramePrefix.ERROR, payload)

    def _tool(self, payload: Any) -> list[bytes]:
        """Flush pending text ahead of a tool-channel frame so wire order matches provider order."""
        frames = []
        text = self._flush()
        if text:
            frames.append(text)
        wire = payload if isinstance(payload, dict) else payload.to_wire()
        frames.append(encode_frame(FramePrefix.TOOL, wire))
        return frames

    def _encode_event(self, event: dict[str, Any]) -> list[bytes]:
        etype = event.get("type") or ""

        if etype == "response.output_text.delta":
            delta = event.get("delta")
            if not isinstance(delta, str):
                return []
            self._buffer += delta
            if len(self._buffer) > self.flush_threshold or _SENTENCE_END.search(delta):
                text = self._flush()
                return [text] if text else []
            return []

        if etype == "response.created":
            self._capture_metadata(event.get("response") or {})
            return []

        if etype in ("error", "response.failed"):
            raise self._provider_error(event)

        if etype in _SIMPLE_EVENTS:
            wire_type = _SIMPLE_EVENTS[etype]
            if wire_type.startswith("code_interpreter"):
                return self._tool(CodeInterpreterPayload(type=wire_type, item_id=event.get("item_id")))
            return self._tool(ToolPayload(type=wire_type, item_id=event.get("item_id")))

        if etype in ("response.output_item.added", "response.output_item.done"):
            return self._encode_output_item(event, added=etype.endswith("added"))

        if etype == "response.mcp_call.failed":
            logger.error("tool call failed", extra={"item_id": event.get("item_id")})
            return self._tool(
                ToolPayload(
                    type="mcp_call_failed",
                    item_id=event.get("item_id"),
                    error=sanitize_error_message(_error_text(event.get("error"))),
                )
            )

        if etype == "response.mcp_call_arguments.delta":
            return self._tool(
                ToolPayload(type="mcp_call_arguments_delta", item_id=event.get("item_id"), delta=event.get("delta"))
            )
        if etype == "response.mcp_call_arguments.done":
            return self._tool(
                ToolPayload(
                    type="mcp_call_arguments_done", item_id=event.get("item_id"), arguments=event.get("arguments")
                )
            )

        if etype == "response.code_interpreter_call_code.delta":
            return self._tool(
                CodeInterpreterPayload(
                    type="code_interpreter_call_code_delta", item_id=event.get("item_id"), delta=event.get("delta")
                )
            )
        if etype == "response.code_interpreter_call_code.done":
            return self._tool(
                CodeInterpreterPayload(
                    type="code_interpreter_call_code_done", item_id=event.get("item_id"), code=event.get("code")
                )
            )

        if etype == "response.output_text.annotation.added":
            annotation = event.get("annotation") or {}
            if annotation.get("type") != "container_file_citation":
                logger.debug("annotation dropped", extra={"annotation_type": annotation.get("type")})
                return []
            return self._tool(
                FileAnnotationPayload(type=FILE_ANNOTATION, item_id=event.get("item_id"), annotation=annotation)
            )

        if etype == "response.reasoning_summary_text.delta":
            return self._tool(ReasoningPayload(type=REASONING_DELTA, delta=event.get("delta") or "", **self._metadata))
        if etype == "response.reasoning_summary_text.done":
            return self._tool(ReasoningPayload(type=REASONING_DONE, **self._metadata))

        if etype.startswith(PASSTHROUGH_PREFIXES):
            return self._tool(dict(event))

        if etype not in _QUIET_EVENTS:
            logger.debug("unhandled provider event dropped", extra={"event_type": etype})
        return []

    def _encode_output_item(self, event: dict[str, Any], *, added: bool) -> list[bytes]:
        item = event.get("item") or {}
        item_type = item.get("type")
        if item_type == "mcp_list_tools":
            return self._tool(
                ToolPayload(
                    type="tool_added" if added else "tool_done",
                    item_id=item.get("id"),
                    server_label=item.get("server_label"),
                    tools=item.get("tools"),
                    error=sanitize_error_message(item["error"]) if item.get("error") else None,
                )
            )
        if item_type == "mcp_call":
            error = _error_text(item.get("error"))
            return self._tool(
                ToolPayload(
                    type="mcp_call_added" if added else "mcp_call_done",
                    item_id=item.get("id"),
                    server_label=item.get("server_label"),
                    tool_name=item.get("name"),
                    arguments=item.get("arguments") or None,
                    error=sanitize_error_message(error) if error else None,
                )
            )
        if item_type == "code_interpreter_call" and added:
            return self._tool(
                CodeInterpreterPayload(
                    type="code_interpreter_call_in_progress", item_id=item.get("id"), code=item.get("code") or None
                )
            )
        return []

    def _capture_metadata(self, response: dict[str, Any]) -> None:
        reasoning = response.get("reasoning") or {}
        metadata = {
            "effort": reasoning.get("effort"),
            "model": response.get("model"),
            "service_tier": response.get("service_tier"),
            "temperature": response.get("temperature"),
            "top_p": response.get("top_p"),
        }
        self._metadata = {k: v for k, v in metadata.items() if v is not None}

    @staticmethod
    def _provider_error(event: dict[str, Any]) -> ProviderStreamError:
        if event.get("type") == "response.failed":
            error = (event.get("response") or {}).get("error") or {}
        else:
            error = event
        message = _error_text(error) or "Provider stream failed"
        code = error.get("code") if isinstance(error, dict) else None
        return ProviderStreamError(message, details={"code": code} if code else None)


def _error_text(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or "")
    return str(error or "")


async def encode_stream(events: ProviderEvents, **kwargs: Any) -> AsyncIterator[bytes]:
    """Convenience wrapper: ``StreamEncoder(**kwargs).encode(events)``."""
    async for frame in StreamEncoder(**kwargs).encode(events):
        yield frame
