"""Tests for the OpenAI Responses gateway (client mocked)."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from chatstream.models.responses import ResponsesGateway
from chatstream.models.streaming import ProviderEventSource


class _Event:
    def __init__(self, **data):
        self._data = data

    def model_dump(self, exclude_none=False):
        if exclude_none:
            return {k: v for k, v in self._data.items() if v is not None}
        return dict(self._data)


class _Stream:
    def __init__(self, events):
        self._events = list(events)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._events:
            raise StopAsyncIteration
        return self._events.pop(0)


def _client(events):
    client = MagicMock()
    client.responses.create = AsyncMock(return_value=_Stream(events))
    return client


@pytest.mark.asyncio
async def test_stream_events_yields_dicts():
    client = _client(
        [
            _Event(type="response.output_text.delta", delta="Hi", logprobs=None),
            {"type": "response.completed"},
        ]
    )
    gateway = ResponsesGateway(model_name="gpt-4.1", client=client)
    events = [e async for e in gateway.stream_events("User: hi")]
    assert events == [{"type": "response.output_text.delta", "delta": "Hi"}, {"type": "response.completed"}]
    client.responses.create.assert_awaited_once_with(model="gpt-4.1", input="User: hi", stream=True)


@pytest.mark.asyncio
async def test_stream_events_passes_tools_and_model_override():
    client = _client([])
    gateway = ResponsesGateway(client=client)
    tools = [{"type": "mcp", "server_label": "docs", "server_url": "https://x", "require_approval": "never"}]
    assert [e async for e in gateway.stream_events("q", tools=tools, model="o4-mini")] == []
    client.responses.create.assert_awaited_once_with(model="o4-mini", input="q", stream=True, tools=tools)


@pytest.mark.asyncio
async def test_provider_error_propagates():
    client = MagicMock()
    client.responses.create = AsyncMock(side_effect=RuntimeError("rate limited"))
    gateway = ResponsesGateway(client=client)
    with pytest.raises(RuntimeError, match="rate limited"):
        [e async for e in gateway.stream_events("q")]


def test_gateway_satisfies_protocol():
    assert isinstance(ResponsesGateway(client=MagicMock()), ProviderEventSource)
