"""Media pacing: video-frame throttling and audio accumulation."""

from __future__ import annotations

import base64
import binascii
import time
from typing import Callable

from shakepay.errors import ProtocolError


def decode_base64_media(data: str) -> bytes:
    """Decode a base64 payload, tolerating a ``data:<mime>;base64,`` prefix."""
    if not isinstance(data, str) or not data:
        raise ProtocolError("media payload must be a non-empty base64 string")
    if data.startswith("data:"):
        _, _, data = data.partition(",")
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolError(f"media payload is not valid base64: {exc}") from exc


class VideoThrottle:
    """Admits at most one frame per *interval* seconds; the rest are dropped."""

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._interval = interval
        self._clock = clock
        self._last: float | None = None

    def admit(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self._interval:
            return False
        self._last = now
        return True

    def reset(self) -> None:
        self._last = None


class AudioBuffer:
    """Accumulates PCM chunks and releases them once *threshold* bytes are held.

    Chunks are concatenated in arrival order; a flush hands back everything
    held so far and empties the buffer.
    """

    def __init__(self, threshold: int) -> None:
        if threshold <= 0:
            raise ValueError("threshold must be positive")
        self._threshold = threshold
        self._buf = bytearray()

    def __len__(self) -> int:
        return len(self._buf)

    def add(self, chunk: bytes) -> bytes | None:
        self._buf.extend(chunk)
        if len(self._buf) < self._threshold:
            return None
        out = bytes(self._buf)
        self._buf.clear()
        return out

    def discard(self) -> None:
        self._buf.clear()
