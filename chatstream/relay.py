"""Relay: validate a chat request, call the provider and encode its events for the client."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, AsyncIterator, Callable, Literal, Optional

from pydantic import BaseModel, Field, HttpUrl

from chatstream.models.streaming import ProviderEventSource
from chatstream.protocol.encoder import DEFAULT_FLUSH_THRESHOLD, StreamEncoder

logger = logging.getLogger(__name__)


class ServerStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class McpServer(BaseModel):
    id: str
    name: str
    url: HttpUrl
    status: ServerStatus
    tools: Optional[dict[str, Any]] = None


class MessagePart(BaseModel):
    type: str
    text: str


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str
    parts: Optional[list[MessagePart]] = None


class ChatRequest(BaseModel):
    id: str
    messages: list[ChatMessage]
    servers: dict[str, McpServer] = Field(default_factory=dict)
    model: str


def build_input(messages: list[ChatMessage]) -> str:
    """Fold the conversation into a single prompt string."""
    return "\n\n".join(
        f"{'User' if msg.role == 'user' else 'Assistant'}: {msg.content}" for msg in messages
    )


def build_tools(servers: dict[str, McpServer]) -> list[dict[str, Any]]:
    return [
        {
            "type": "mcp",
            "server_label": server.name,
            "server_url": str(server.url),
            "require_approval": "never",
        }
        for server in servers.values()
        if server.status is ServerStatus.CONNECTED
    ]


def relay_turn(
    request: ChatRequest,
    provider: ProviderEventSource,
    *,
    flush_threshold: int = DEFAULT_FLUSH_THRESHOLD,
    on_message_id: Optional[Callable[[str], None]] = None,
) -> AsyncIterator[bytes]:
    """Encoded wire stream for one turn. Raises ValueError for an empty conversation."""
    if not request.messages:
        raise ValueError("No messages provided")
    tools = build_tools(request.servers)
    logger.info(
        "relay turn",
        extra={"chat_id": request.id, "messages": len(request.messages), "tools": len(tools)},
    )
    events = provider.stream_events(build_input(request.messages), tools=tools, model=request.model)
    encoder = StreamEncoder(flush_threshold=flush_threshold, on_message_id=on_message_id)
    return encoder.encode(events)
