"""In-process transport: wrap wire bytes as an ``httpx.Response`` for the driver."""

from __future__ import annotations

from typing import AsyncIterable, AsyncIterator, Iterable, Optional, Union

import httpx

Chunks = Union[AsyncIterable[bytes], Iterable[bytes]]


class FrameStream(httpx.AsyncByteStream):
    """Async byte stream over encoder output or fixed chunks; chunk boundaries are preserved."""

    def __init__(self, chunks: Chunks) -> None:
        self._chunks = chunks
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        if hasattr(self._chunks, "__aiter__"):
            async for chunk in self._chunks:  # type: ignore[union-attr]
                if self.closed:
                    break
                yield chunk
        else:
            for chunk in self._chunks:  # type: ignore[union-attr]
                if self.closed:
                    break
                yield chunk

    async def aclose(self) -> None:
        self.closed = True
        aclose = getattr(self._chunks, "aclose", None)
        if callable(aclose):
            await aclose()


def stream_response(
    chunks: Chunks,
    *,
    status_code: int = 200,
    headers: Optional[dict[str, str]] = None,
) -> httpx.Response:
    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream", **(headers or {})},
        stream=FrameStream(chunks),
    )
