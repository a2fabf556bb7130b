"""Decoded stream events. All events are Pydantic models discriminated by ``type``."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ToolStatus(str, Enum):
    """Status of a tool call or tool list, derived from the wire subtype."""

    FAILED = "failed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ARGUMENTS_DONE = "arguments_done"
    DONE = "done"
    ARGUMENTS_DELTA = "arguments_delta"


class WebSearchStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SEARCHING = "searching"
    COMPLETED = "completed"
    FAILED = "failed"
    RESULT = "result"


class FileAnnotation(BaseModel):
    """Container file citation attached to assistant text or a code interpreter run."""

    model_config = ConfigDict(extra="allow")

    type: str = "container_file_citation"
    container_id: str = ""
    file_id: str = ""
    filename: str = ""
    start_index: Optional[int] = None
    end_index: Optional[int] = None


class AssistantText(BaseModel):
    type: Literal["assistant"] = "assistant"
    id: str
    content: str = ""
    file_annotations: list[FileAnnotation] = Field(default_factory=list)
    mcp_content: Optional[list[Any]] = Field(
        default=None, description="MCP tool response content (e.g. ui:// resources)"
    )


class UserText(BaseModel):
    type: Literal["user"] = "user"
    id: str
    content: str
    timestamp: str


class ToolCall(BaseModel):
    """An MCP tool invocation, merged across its lifecycle frames by item_id."""

    type: Literal["tool_call"] = "tool_call"
    item_id: Optional[str] = None
    tool_type: str = ""
    server_label: Optional[str] = None
    tool_name: Optional[str] = None
    arguments: Any = None
    delta: Any = None
    error: Optional[str] = None
    content: Optional[list[Any]] = None
    status: Optional[ToolStatus] = None


class ToolList(BaseModel):
    """Tools advertised by one MCP server."""

    type: Literal["tool_list"] = "tool_list"
    item_id: Optional[str] = None
    tool_type: str = ""
    server_label: Optional[str] = None
    tools: Optional[list[Any]] = None
    error: Optional[str] = None
    status: Optional[ToolStatus] = None


class CodeInterpreter(BaseModel):
    type: Literal["code_interpreter"] = "code_interpreter"
    item_id: Optional[str] = None
    stage: str = Field(description="Wire subtype of the latest lifecycle frame")
    code: str = ""
    delta: Optional[str] = None
    annotation: Optional[FileAnnotation] = None


class Reasoning(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    effort: str = ""
    summary: Optional[str] = None
    model: Optional[str] = None
    service_tier: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    done: bool = False


class WebSearch(BaseModel):
    type: Literal["web_search"] = "web_search"
    id: Optional[str] = None
    status: WebSearchStatus = WebSearchStatus.IN_PROGRESS
    query: Optional[str] = None
    error: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str
    details: Any = None


StreamEvent = Annotated[
    Union[
        AssistantText,
        UserText,
        ToolCall,
        ToolList,
        CodeInterpreter,
        Reasoning,
        WebSearch,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]


def correlation_key(event: BaseModel) -> Optional[tuple[str, str]]:
    """(family, id) used to keep one live entry per correlated item; None when uncorrelated."""
    family = getattr(event, "type", "")
    if family in ("assistant", "web_search"):
        item_id = getattr(event, "id", None)
    elif family in ("tool_call", "tool_list", "code_interpreter"):
        item_id = getattr(event, "item_id", None)
    else:
        return None
    if not item_id:
        return None
    return family, item_id
