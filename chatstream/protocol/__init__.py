"""Wire protocol: frame format, tool-channel payloads and the provider event encoder."""

from chatstream.protocol.encoder import StreamEncoder, encode_stream, sanitize_error_message
from chatstream.protocol.frames import Frame, FrameKind, FramePrefix, classify_line, encode_frame

__all__ = [
    "Frame",
    "FrameKind",
    "FramePrefix",
    "StreamEncoder",
    "classify_line",
    "encode_frame",
    "encode_stream",
    "sanitize_error_message",
]
