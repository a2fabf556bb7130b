"""OpenAI Responses API: stream typed events for one turn."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class ResponsesGateway:
    """Streams ``client.responses.create(stream=True)`` events as plain dicts."""

    def __init__(
        self,
        api_key: str = "",
        base_url: str | None = None,
        model_name: str = "gpt-4.1",
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key or None, base_url=base_url)
        self._model_name = model_name

    def stream_events(
        self,
        input: str,
        *,
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Async generator of provider events for one turn."""

        async def _stream() -> AsyncIterator[dict[str, Any]]:
            kwargs: dict[str, Any] = {
                "model": model or self._model_name,
                "input": input,
                "stream": True,
            }
            if tools:
                kwargs["tools"] = tools
            logger.debug("responses stream start", extra={"model": kwargs["model"], "tools": len(tools or [])})
            stream = await self._client.responses.create(**kwargs)
            async for event in stream:
                if hasattr(event, "model_dump"):
                    yield event.model_dump(exclude_none=True)
                else:
                    yield event

        return _stream()
