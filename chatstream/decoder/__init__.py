"""Decoder: byte stream -> ordered, merged event collection."""

from chatstream.decoder.state import CancellationToken, DecoderState, SessionState
from chatstream.decoder.driver import StreamDriver

__all__ = [
    "CancellationToken",
    "DecoderState",
    "SessionState",
    "StreamDriver",
]
