"""Line-prefixed wire frames.

Each frame is one UTF-8 line ``<prefix>:<json>\\n``:

- ``f:`` message id for the turn, ``{"messageId": "..."}``
- ``0:`` text delta, a JSON string
- ``t:`` tool channel, a JSON object whose ``type`` selects the sub-protocol
- ``e:`` error, ``{"type": "error", "message": "...", "details": ...}``

A bare JSON object line (no prefix) is also accepted by the decoder; it is how
full ``content-part-done`` replacements of assistant text are delivered.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

STREAM_DONE = "stream_done"
CONTENT_PART_DONE_TYPES = frozenset({"content-part-done", "response.content_part.done"})


class FramePrefix(str, Enum):
    META = "f"
    TEXT = "0"
    TOOL = "t"
    ERROR = "e"


class FrameKind(str, Enum):
    IGNORED = "ignored"
    META = "meta"
    TEXT_DELTA = "text_delta"
    TOOL = "tool"
    ERROR = "error"
    JSON_OBJECT = "json_object"


@dataclass(frozen=True)
class Frame:
    kind: FrameKind
    payload: Any = None


IGNORED = Frame(FrameKind.IGNORED)

_KIND_BY_PREFIX = {
    FramePrefix.META.value: FrameKind.META,
    FramePrefix.TEXT.value: FrameKind.TEXT_DELTA,
    FramePrefix.TOOL.value: FrameKind.TOOL,
    FramePrefix.ERROR.value: FrameKind.ERROR,
}


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def encode_frame(prefix: FramePrefix, payload: Any) -> bytes:
    return f"{prefix.value}:{_dumps(payload)}\n".encode("utf-8")


def stream_done_frame() -> bytes:
    return encode_frame(FramePrefix.TOOL, {"type": STREAM_DONE})


def classify_line(line: str) -> Frame:
    """Classify one wire line and decode its JSON payload.

    Never raises: blank lines, empty payloads, malformed JSON and payloads of
    the wrong shape are logged and come back as ``IGNORED``.
    """
    if not line or not line.strip():
        return IGNORED
    kind = _KIND_BY_PREFIX.get(line[:1]) if line[1:2] == ":" else None
    if kind is None:
        return _classify_bare(line)

    raw = line[2:]
    if not raw.strip():
        logger.warning("empty frame payload", extra={"frame_kind": kind.value})
        return IGNORED
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(
            "malformed frame payload", extra={"frame_kind": kind.value, "error": str(e)}
        )
        return IGNORED

    if kind is FrameKind.TEXT_DELTA:
        if not isinstance(payload, str):
            logger.warning("text frame payload is not a string", extra={"payload_type": type(payload).__name__})
            return IGNORED
        return Frame(kind, payload)
    if not isinstance(payload, dict):
        logger.warning("frame payload is not an object", extra={"frame_kind": kind.value})
        return IGNORED
    if kind is FrameKind.TOOL and not isinstance(payload.get("type"), str):
        logger.warning("tool frame without type")
        return IGNORED
    return Frame(kind, payload)


def _classify_bare(line: str) -> Frame:
    stripped = line.strip()
    if not stripped.startswith("{"):
        logger.debug("unrecognized line", extra={"line_prefix": stripped[:16]})
        return IGNORED
    try:
        payload = json.loads(stripped)
    except json.JSONDecodeError:
        logger.debug("unrecognized line", extra={"line_prefix": stripped[:16]})
        return IGNORED
    if not isinstance(payload, dict):
        return IGNORED
    return Frame(FrameKind.JSON_OBJECT, payload)


def is_content_part_done(payload: dict[str, Any]) -> bool:
    return payload.get("type") in CONTENT_PART_DONE_TYPES and isinstance(payload.get("part"), dict)
