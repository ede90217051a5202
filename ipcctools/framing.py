"""Wire framing for the host/SP serial link: COBS frames and hash arguments."""

from __future__ import annotations

import binascii
import enum
import logging
from collections.abc import Iterable

HASH_LEN = 32
TRACE = 5

_MAX_RUN = 0xFE


class FramingError(ValueError):
    """Raised when a frame or argument cannot be encoded or decoded."""


class LogLevel(enum.Enum):
    """Log verbosity as named on the command line."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def logging_level(self) -> int:
        """The matching numeric level for the ``logging`` module."""
        return {
            LogLevel.TRACE: TRACE,
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARNING: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
            LogLevel.CRITICAL: logging.CRITICAL,
        }[self]

    def __str__(self) -> str:
        return self.value


def parse_hash(text: str) -> bytes:
    """Parse a SHA-256 hash given as 64 hexadecimal characters."""
    try:
        raw = binascii.unhexlify(text)
    except (binascii.Error, ValueError) as exc:
        raise FramingError(f"Invalid hex string: {text}") from exc
    if len(raw) != HASH_LEN:
        raise FramingError(
            f"expected {HASH_LEN} bytes ({HASH_LEN * 2} hex chars), got {len(raw)} bytes"
        )
    return raw


def cobs_encode(data: bytes) -> bytes:
    """COBS-encode ``data``, appending the zero frame terminator."""
    out = bytearray()
    block = bytearray()
    ended_on_full_block = False
    for byte in data:
        if byte == 0:
            out.append(len(block) + 1)
            out += block
            block.clear()
            ended_on_full_block = False
            continue
        block.append(byte)
        ended_on_full_block = False
        if len(block) == _MAX_RUN:
            out.append(0xFF)
            out += block
            block.clear()
            ended_on_full_block = True
    if block or not ended_on_full_block:
        out.append(len(block) + 1)
        out += block
    out.append(0)
    return bytes(out)


def cobs_decode(data: bytes) -> bytes:
    """Decode one COBS frame that ends with a zero terminator.

    Bytes after the terminator are ignored.
    """
    data = bytes(data)
    out = bytearray()
    pos = 0
    size = len(data)
    first = True
    while True:
        if pos >= size:
            raise FramingError("truncated COBS frame: no terminator")
        code = data[pos]
        pos += 1
        if code == 0:
            if first:
                raise FramingError("empty COBS frame")
            return bytes(out)
        first = False
        end = pos + code - 1
        if end > size:
            raise FramingError("truncated COBS frame: block runs past end of data")
        block = data[pos:end]
        if 0 in block:
            raise FramingError(f"corrupt COBS frame: zero byte inside block at offset {pos}")
        out += block
        pos = end
        if code != 0xFF and pos < size and data[pos] != 0:
            out.append(0)


def read_frame(chunks: Iterable[bytes]) -> bytes:
    """Collect one COBS frame, terminator included, from a stream of chunks.

    Leading zero bytes are skipped; anything after the terminator in the
    final chunk is discarded.
    """
    frame = bytearray()
    for chunk in chunks:
        for byte in chunk:
            if byte != 0:
                frame.append(byte)
            elif frame:
                frame.append(0)
                return bytes(frame)
    raise FramingError("input ended before a complete frame was received")