"""Entry point for chatstream: encode provider events, decode wire streams, or relay a live turn.

  chatstream encode events.jsonl > turn.wire   # provider events (one JSON per line) -> frames
  chatstream decode turn.wire                  # frames -> JSON event collection + terminal state
  chatstream chat "What changed today?"        # OpenAI Responses -> encoder -> driver
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Iterator, Optional

from chatstream.config import get_config
from chatstream.core.logging_config import setup_logging

if TYPE_CHECKING:
    from chatstream.config.loader import Config
    from chatstream.decoder.driver import StreamDriver

logger = logging.getLogger(__name__)


def _read_source(path: str) -> bytes:
    if path == "-":
        return sys.stdin.buffer.read()
    return Path(path).read_bytes()


def _iter_provider_events(raw: bytes) -> Iterator[dict[str, Any]]:
    for line_number, line in enumerate(raw.decode("utf-8").splitlines(), start=1):
        if not line.strip():
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("skipping invalid provider event", extra={"line_number": line_number, "error": str(e)})


def _chunks(data: bytes, size: int) -> Iterator[bytes]:
    for start in range(0, len(data), size):
        yield data[start : start + size]


def _report(driver: StreamDriver) -> dict[str, Any]:
    return {
        "state": driver.state.value,
        "request_id": driver.request_id,
        "events": [event.model_dump(mode="json", exclude_none=True) for event in driver.events],
    }


async def run_encode(config: Config, source: str) -> None:
    from chatstream.protocol.encoder import StreamEncoder

    encoder = StreamEncoder(flush_threshold=config.stream.flush_threshold)
    out = sys.stdout.buffer
    async for frame in encoder.encode(_iter_provider_events(_read_source(source))):
        out.write(frame)
    out.flush()


async def run_decode(config: Config, source: str) -> int:
    from chatstream.decoder.driver import StreamDriver
    from chatstream.decoder.transport import stream_response

    driver = StreamDriver(
        debounce_ms=config.stream.debounce_ms,
        annotation_suffix_length=config.stream.annotation_suffix_length,
    )
    data = _read_source(source)
    await driver.begin(stream_response(_chunks(data, config.stream.chunk_size)))
    print(json.dumps(_report(driver), ensure_ascii=False, indent=2))
    return 0 if driver.state.value == "completed" else 1


async def run_chat(config: Config, prompt: str, model: Optional[str]) -> int:
    from chatstream.decoder.driver import StreamDriver
    from chatstream.decoder.transport import stream_response
    from chatstream.models.responses import ResponsesGateway
    from chatstream.relay import ChatMessage, ChatRequest, relay_turn

    gateway = ResponsesGateway(
        api_key=config.provider.openai_api_key,
        base_url=config.provider.openai_base_url,
        model_name=config.provider.model,
    )
    request = ChatRequest(
        id="cli",
        messages=[ChatMessage(role="user", content=prompt)],
        model=model or config.provider.model,
    )
    driver = StreamDriver(
        debounce_ms=config.stream.debounce_ms,
        annotation_suffix_length=config.stream.annotation_suffix_length,
    )
    driver.add_user_message(prompt)
    frames: AsyncIterator[bytes] = relay_turn(
        request, gateway, flush_threshold=config.stream.flush_threshold
    )
    await driver.begin(stream_response(frames))
    print(json.dumps(_report(driver), ensure_ascii=False, indent=2))
    return 0 if driver.state.value == "completed" else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chatstream", description=__doc__.splitlines()[0])
    parser.add_argument("--config", help="YAML config path (default: bundled default.yaml)")
    sub = parser.add_subparsers(dest="command", required=True)
    enc = sub.add_parser("encode", help="provider events (JSON lines) -> wire frames")
    enc.add_argument("source", nargs="?", default="-")
    dec = sub.add_parser("decode", help="wire frames -> decoded event collection")
    dec.add_argument("source", nargs="?", default="-")
    chat = sub.add_parser("chat", help="run one turn against the OpenAI Responses API")
    chat.add_argument("prompt")
    chat.add_argument("--model")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    config = get_config(args.config)
    setup_logging(config.logging.level, use_json=config.logging.json_format)
    if args.command == "encode":
        asyncio.run(run_encode(config, args.source))
        return
    if args.command == "decode":
        sys.exit(asyncio.run(run_decode(config, args.source)))
    sys.exit(asyncio.run(run_chat(config, args.prompt, args.model)))


if __name__ == "__main__":
    main()
