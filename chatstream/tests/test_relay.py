"""Tests for the chat relay: request -> provider call -> encoded frames."""

import json

import pytest
from pydantic import ValidationError

from chatstream.models.streaming import ProviderEventSource
from chatstream.relay import ChatMessage, ChatRequest, McpServer, build_input, build_tools, relay_turn


class FakeProvider:
    def __init__(self, events):
        self.events = events
        self.calls = []

    def stream_events(self, input, *, tools=None, model=None):
        self.calls.append({"input": input, "tools": tools, "model": model})

        async def _gen():
            for event in self.events:
                yield event

        return _gen()


def _server(name, status, url="https://mcp.example.com/sse"):
    return McpServer(id=name, name=name, url=url, status=status)


def test_build_input_labels_roles():
    messages = [
        ChatMessage(role="user", content="Hi"),
        ChatMessage(role="assistant", content="Hello!"),
        ChatMessage(role="user", content="Weather?"),
    ]
    assert build_input(messages) == "User: Hi\n\nAssistant: Hello!\n\nUser: Weather?"


def test_build_tools_only_connected_servers():
    tools = build_tools(
        {
            "a": _server("docs", "connected"),
            "b": _server("offline", "disconnected"),
            "c": _server("broken", "error"),
        }
    )
    assert tools == [
        {
            "type": "mcp",
            "server_label": "docs",
            "server_url": "https://mcp.example.com/sse",
            "require_approval": "never",
        }
    ]


def test_request_validation():
    with pytest.raises(ValidationError):
        ChatRequest(id="c", messages=[{"role": "robot", "content": "x"}], model="m")
    with pytest.raises(ValidationError):
        _server("docs", "connected", url="not a url")


def test_empty_conversation_rejected():
    request = ChatRequest(id="c", messages=[], model="gpt-4.1")
    with pytest.raises(ValueError, match="No messages provided"):
        relay_turn(request, FakeProvider([]))


def test_fake_provider_satisfies_protocol():
    assert isinstance(FakeProvider([]), ProviderEventSource)


@pytest.mark.asyncio
async def test_relay_turn_streams_encoded_frames():
    provider = FakeProvider([{"type": "response.output_text.delta", "delta": "Sunny."}])
    request = ChatRequest(
        id="chat-1",
        messages=[ChatMessage(role="user", content="Weather?")],
        servers={"a": _server("weather", "connected")},
        model="gpt-4.1-mini",
    )
    seen_ids = []
    frames = [f async for f in relay_turn(request, provider, on_message_id=seen_ids.append)]
    assert frames[0] == f'f:{{"messageId":"{seen_ids[0]}"}}\n'.encode()
    assert json.loads(frames[1][2:]) == "Sunny."
    assert frames[-1] == b't:{"type":"stream_done"}\n'
    call = provider.calls[0]
    assert call["input"] == "User: Weather?"
    assert call["model"] == "gpt-4.1-mini"
    assert call["tools"][0]["server_label"] == "weather"
