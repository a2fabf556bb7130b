"""Provider event contract for the encoder.

A provider yields an ordered async sequence of events. Each event is either a
dict or a Pydantic model (the OpenAI SDK's ``ResponseStreamEvent`` types) with
a ``type`` tag and type-specific fields, e.g.:

- ``response.output_text.delta``: ``delta``
- ``response.mcp_call_arguments.delta``: ``item_id``, ``delta``
- ``response.output_item.added``: ``item`` (``mcp_list_tools`` / ``mcp_call`` / ...)

The encoder reads only the tag and those fields; transport details of the
provider never reach the wire.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Protocol, runtime_checkable


@runtime_checkable
class ProviderEventSource(Protocol):
    """Protocol for providers that stream Responses-style events."""

    def stream_events(
        self, input: str, *, tools: list[dict[str, Any]] | None = None, model: str | None = None
    ) -> AsyncIterator[Any]:
        """Yield provider events for one turn."""
        ...
