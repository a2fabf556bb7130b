"""Tool-channel (``t:``) payloads: one Pydantic model per sub-protocol.

Field names follow the wire (camelCase aliases); the encoder builds frames
from these models and the decoder validates incoming frames against them.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chatstream.core.events import FileAnnotation
from chatstream.protocol.frames import STREAM_DONE

logger = logging.getLogger(__name__)

WEB_SEARCH_PREFIX = "response.web_search_call."
CODE_INTERPRETER_PREFIX = "code_interpreter"
FILE_ANNOTATION = "code_interpreter_file_annotation"
CODE_DELTA = "code_interpreter_call_code_delta"
CODE_DONE = "code_interpreter_call_code_done"
TOOL_CALL_PREFIX = "mcp_call"
TOOL_LIST_PREFIX = "tool_"
TOOL_CALL_COMPLETED = "tool_call_completed"
REASONING = "reasoning"
REASONING_DELTA = "reasoning_summary_delta"
REASONING_DONE = "reasoning_summary_done"


class ToolChannelPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class StreamDonePayload(ToolChannelPayload):
    pass


class IgnoredPayload(ToolChannelPayload):
    """Known subtype with no effect on the event collection."""


class ToolPayload(ToolChannelPayload):
    """Tool call (``mcp_call*``) and tool list (``tool_*``) lifecycle frames."""

    item_id: Optional[str] = Field(default=None, alias="itemId")
    server_label: Optional[str] = Field(default=None, alias="serverLabel")
    tool_name: Optional[str] = Field(default=None, alias="toolName")
    tools: Optional[list[Any]] = None
    arguments: Any = None
    delta: Any = None
    error: Optional[str] = None
    content: Optional[list[Any]] = None

    @property
    def is_tool_call(self) -> bool:
        return self.type.startswith(TOOL_CALL_PREFIX)


class CodeInterpreterPayload(ToolChannelPayload):
    item_id: Optional[str] = Field(default=None, alias="itemId")
    code: Optional[str] = None
    delta: Optional[str] = None
    annotation: Optional[FileAnnotation] = None


class FileAnnotationPayload(ToolChannelPayload):
    item_id: Optional[str] = Field(default=None, alias="itemId")
    annotation: FileAnnotation


class ReasoningPayload(ToolChannelPayload):
    """Reasoning summary delta/done frames and full reasoning frames."""

    delta: Optional[str] = None
    summary: Optional[str] = None
    effort: Optional[str] = None
    model: Optional[str] = None
    service_tier: Optional[str] = Field(default=None, alias="serviceTier")
    temperature: Optional[float] = None
    top_p: Optional[float] = Field(default=None, alias="topP")


class WebSearchPayload(ToolChannelPayload):
    """Provider web search events, forwarded verbatim; the full frame is kept as ``raw``."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    item_id: Optional[str] = None
    query: Optional[str] = None
    error: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)


def payload_class(type_: str) -> Optional[type[ToolChannelPayload]]:
    """Select the payload model for a wire subtype; None for unknown subtypes."""
    if type_ == STREAM_DONE:
        return StreamDonePayload
    if type_ == TOOL_CALL_COMPLETED:
        return IgnoredPayload
    if type_ in (REASONING, REASONING_DELTA, REASONING_DONE):
        return ReasoningPayload
    if type_ == FILE_ANNOTATION:
        return FileAnnotationPayload
    if type_.startswith(CODE_INTERPRETER_PREFIX):
        return CodeInterpreterPayload
    if type_.startswith(WEB_SEARCH_PREFIX):
        return WebSearchPayload
    if type_.startswith(TOOL_CALL_PREFIX) or type_.startswith(TOOL_LIST_PREFIX):
        return ToolPayload
    return None


def decode_tool_payload(data: dict[str, Any]) -> Optional[ToolChannelPayload]:
    """Validate a decoded ``t:`` object into its payload model. Fails soft: returns None."""
    type_ = data.get("type")
    if not isinstance(type_, str):
        return None
    cls = payload_class(type_)
    if cls is None:
        logger.debug("unrecognized tool channel subtype", extra={"subtype": type_})
        return None
    try:
        payload = cls.model_validate(data)
    except ValidationError as e:
        logger.warning(
            "invalid tool channel payload",
            extra={"subtype": type_, "error": str(e)},
        )
        return None
    if isinstance(payload, WebSearchPayload):
        payload.raw = dict(data)
    return payload


class ContentPart(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    text: Optional[str] = None
    annotations: list[FileAnnotation] = Field(default_factory=list)


class ContentPartDonePayload(BaseModel):
    """Bare ``content-part-done`` object: the full text of one assistant item."""

    model_config = ConfigDict(extra="ignore")

    type: str
    item_id: str = Field(min_length=1)
    part: ContentPart


def decode_content_part_done(data: dict[str, Any]) -> Optional[ContentPartDonePayload]:
    """Validate a bare ``content-part-done`` object. Fails soft: returns None."""
    try:
        return ContentPartDonePayload.model_validate(data)
    except ValidationError as e:
        logger.warning("invalid content part payload", extra={"error": str(e)})
        return None
