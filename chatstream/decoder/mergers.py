"""Fold decoded tool-channel payloads into the event log by correlation id."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from chatstream.core.event_log import EventLog
from chatstream.core.events import (
    AssistantText,
    CodeInterpreter,
    ErrorEvent,
    Reasoning,
    ToolCall,
    ToolList,
    ToolStatus,
    WebSearch,
    WebSearchStatus,
)
from chatstream.protocol.payloads import (
    CODE_DELTA,
    CODE_DONE,
    CodeInterpreterPayload,
    ContentPart,
    FileAnnotationPayload,
    ReasoningPayload,
    ToolPayload,
    WebSearchPayload,
)

logger = logging.getLogger(__name__)

DEFAULT_SUFFIX_LENGTH = 16

# Order matters: "mcp_call_arguments_done" must resolve before plain "done".
_STATUS_PRECEDENCE = (
    ("failed", ToolStatus.FAILED),
    ("in_progress", ToolStatus.IN_PROGRESS),
    ("completed", ToolStatus.COMPLETED),
    ("arguments_done", ToolStatus.ARGUMENTS_DONE),
    ("done", ToolStatus.DONE),
    ("arguments_delta", ToolStatus.ARGUMENTS_DELTA),
)

_WEB_SEARCH_SUFFIXES = (
    ("in_progress", WebSearchStatus.IN_PROGRESS),
    ("searching", WebSearchStatus.SEARCHING),
    ("completed", WebSearchStatus.COMPLETED),
    ("failed", WebSearchStatus.FAILED),
    ("result", WebSearchStatus.RESULT),
)


def tool_status(tool_type: str) -> Optional[ToolStatus]:
    for marker, status in _STATUS_PRECEDENCE:
        if marker in tool_type:
            return status
    return None


def _decode_json_field(name: str, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if value == "":
        return {}
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.debug("failed to parse tool %s", name, extra={"raw": value[:200]})
        return {}


def _merge_fields(existing: Any, incoming: dict[str, Any], always: tuple[str, ...]) -> Any:
    """Copy of ``existing`` with every non-empty incoming value applied; ``always`` keys apply unconditionally."""
    update = {k: v for k, v in incoming.items() if k in always or v not in (None, "", {}, [])}
    return existing.model_copy(update=update)


def merge_tool(log: EventLog, payload: ToolPayload) -> None:
    """Tool call (``mcp_call*``) and tool list (``tool_*``) frames."""
    fields: dict[str, Any] = {
        "item_id": payload.item_id,
        "tool_type": payload.type,
        "server_label": payload.server_label,
        "error": payload.error,
        "status": tool_status(payload.type),
    }
    if payload.is_tool_call:
        family, model = "tool_call", ToolCall
        fields.update(
            tool_name=payload.tool_name,
            arguments=_decode_json_field("arguments", payload.arguments),
            delta=_decode_json_field("delta", payload.delta),
            content=payload.content,
        )
    else:
        family, model = "tool_list", ToolList
        fields["tools"] = payload.tools

    position = log.find(family, payload.item_id)
    if position is None:
        log.append(model(**{k: v for k, v in fields.items() if v is not None}))
        return
    log.replace(position, _merge_fields(log[position], fields, always=("tool_type", "status")))


def _is_ui_resource(item: Any) -> bool:
    if not isinstance(item, dict) or item.get("type") != "resource":
        return False
    resource = item.get("resource")
    return isinstance(resource, dict) and str(resource.get("uri", "")).startswith("ui://")


def add_mcp_ui_content(log: EventLog, payload: ToolPayload, message_id: str) -> bool:
    """Completed tool calls returning ``ui://`` resources get their own assistant entry."""
    content = payload.content
    if not isinstance(content, list):
        return False
    has_ui = any(_is_ui_resource(item) for item in content)
    if has_ui:
        log.append(AssistantText(id=message_id, content="", mcp_content=content))
    return has_ui


def merge_code_interpreter(log: EventLog, payload: CodeInterpreterPayload) -> None:
    position = log.find("code_interpreter", payload.item_id)
    if position is None:
        code = payload.code or ""
        if payload.type == CODE_DELTA and payload.delta:
            code = payload.delta
        log.append(
            CodeInterpreter(
                item_id=payload.item_id,
                stage=payload.type,
                code=code,
                delta=payload.delta,
                annotation=payload.annotation,
            )
        )
        return

    existing = log[position]
    code = existing.code
    if payload.type == CODE_DELTA and payload.delta:
        code = existing.code + payload.delta
    elif payload.type == CODE_DONE and payload.code:
        code = payload.code
    log.replace(
        position,
        existing.model_copy(
            update={
                "stage": payload.type,
                "code": code,
                "delta": payload.delta or existing.delta,
                "annotation": payload.annotation or existing.annotation,
            }
        ),
    )


def attach_file_annotation(
    log: EventLog, payload: FileAnnotationPayload, suffix_length: int = DEFAULT_SUFFIX_LENGTH
) -> bool:
    """Attach to the code interpreter entry whose id ends with the same suffix.

    Annotation and code interpreter ids are issued independently upstream;
    the shared trailing substring is a best-effort correlation.
    """
    item_id = payload.item_id or ""
    suffix = item_id[-suffix_length:] if suffix_length > 0 else ""
    if suffix:
        for position in range(len(log) - 1, -1, -1):
            event = log[position]
            if event.type == "code_interpreter" and (event.item_id or "").endswith(suffix):
                log.replace(position, event.model_copy(update={"annotation": payload.annotation}))
                return True
    logger.warning(
        "file annotation without matching code interpreter call dropped",
        extra={"item_id": item_id, "file_id": payload.annotation.file_id},
    )
    return False


def _reasoning_metadata(existing: Optional[Reasoning], payload: ReasoningPayload) -> dict[str, Any]:
    def pick(name: str) -> Any:
        value = getattr(payload, name)
        if value in (None, "") and existing is not None:
            return getattr(existing, name)
        return value

    return {
        "effort": pick("effort") or "",
        "model": pick("model"),
        "service_tier": pick("service_tier"),
        "temperature": pick("temperature"),
        "top_p": pick("top_p"),
    }


def _open_reasoning(log: EventLog) -> Optional[int]:
    position = log.last_of("reasoning")
    if position is None or log[position].done:
        return None
    return position


def merge_reasoning_delta(log: EventLog, payload: ReasoningPayload) -> None:
    delta = payload.delta or ""
    position = _open_reasoning(log)
    if position is None:
        log.append(Reasoning(summary=delta, done=False, **_reasoning_metadata(None, payload)))
        return
    existing = log[position]
    update = _reasoning_metadata(existing, payload)
    update["summary"] = (existing.summary or "") + delta
    log.replace(position, existing.model_copy(update=update))


def merge_reasoning_done(log: EventLog, payload: ReasoningPayload) -> None:
    position = _open_reasoning(log)
    if position is None:
        logger.debug("reasoning done without open reasoning entry")
        return
    existing = log[position]
    update = _reasoning_metadata(existing, payload)
    update["done"] = True
    log.replace(position, existing.model_copy(update=update))


def reasoning_event(payload: ReasoningPayload) -> Reasoning:
    """Full reasoning frame; the driver queues it until the next coalescer flush."""
    return Reasoning(summary=payload.summary or None, **_reasoning_metadata(None, payload))


def web_search_status(type_: str) -> WebSearchStatus:
    for suffix, status in _WEB_SEARCH_SUFFIXES:
        if type_.endswith(suffix):
            return status
    return WebSearchStatus.IN_PROGRESS


def merge_web_search(log: EventLog, payload: WebSearchPayload) -> None:
    """Each web search frame carries the whole status, so the entry is replaced, not merged."""
    log.upsert(
        WebSearch(
            id=payload.item_id,
            status=web_search_status(payload.type),
            query=payload.query,
            error=payload.error,
            raw=payload.raw,
        )
    )


def add_error(log: EventLog, data: dict[str, Any]) -> None:
    message = data.get("message")
    log.append(
        ErrorEvent(
            message=message if isinstance(message, str) and message else "An error occurred during streaming",
            details=data.get("details"),
        )
    )


def replace_assistant_part(log: EventLog, item_id: str, part: ContentPart) -> None:
    """Full replacement of an assistant entry from a ``content-part-done`` object.

    Last write by arrival order wins, except that a replacement which is a
    strict prefix of the current content keeps the longer content.
    """
    text = part.text or ""
    annotations = [annotation.model_copy() for annotation in part.annotations]
    position = log.find("assistant", item_id)
    if position is None:
        log.append(AssistantText(id=item_id, content=text, file_annotations=annotations))
        return
    existing = log[position]
    content = text
    if existing.content.startswith(text) and len(existing.content) > len(text):
        content = existing.content
    log.replace(
        position,
        existing.model_copy(update={"content": content, "file_annotations": annotations}),
    )
