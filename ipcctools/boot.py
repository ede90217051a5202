"""The boot header that prefixes a host phase 2 image."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar


class BootHeaderError(ValueError):
    """Raised when a boot header is truncated or fails validation."""


_LAYOUT = struct.Struct("<II4Q32s128s128s")

_SHA_LEN = 32
_NAME_LEN = 128


def _name_text(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return "[" + ", ".join(f"{b:02x}" for b in raw) + "]"


@dataclass(frozen=True)
class BootSpHeader:
    """Image boot header, laid out as a little-endian C structure."""

    MAGIC: ClassVar[int] = 0x1DEB0075
    VERSION: ClassVar[int] = 2
    HEADER_SIZE: ClassVar[int] = 0x1000
    FLAG_COMPRESSED: ClassVar[int] = 0x1
    SIZE: ClassVar[int] = _LAYOUT.size

    magic: int = MAGIC
    version: int = VERSION
    flags: int = 0
    data_size: int = 0
    image_size: int = 0
    target_size: int = 0
    sha256: bytes = bytes(_SHA_LEN)
    dataset: bytes = bytes(_NAME_LEN)
    imagename: bytes = bytes(_NAME_LEN)

    def __post_init__(self) -> None:
        for name, size in (
            ("sha256", _SHA_LEN),
            ("dataset", _NAME_LEN),
            ("imagename", _NAME_LEN),
        ):
            value = bytes(getattr(self, name))
            if len(value) != size:
                raise ValueError(
                    f"{name} must be {size} bytes, got {len(value)}"
                )
            object.__setattr__(self, name, value)
        for name, bits in (
            ("magic", 32),
            ("version", 32),
            ("flags", 64),
            ("data_size", 64),
            ("image_size", 64),
            ("target_size", 64),
        ):
            value = getattr(self, name)
            if not 0 <= value < (1 << bits):
                raise ValueError(f"{name} {value:#x} does not fit in {bits} bits")

    @classmethod
    def from_bytes(cls, data: bytes) -> "BootSpHeader":
        """Read a header from the start of ``data``; extra bytes are ignored."""
        if len(data) < _LAYOUT.size:
            raise BootHeaderError(
                f"boot header needs {_LAYOUT.size} bytes, got {len(data)}"
            )
        return cls(*_LAYOUT.unpack_from(bytes(data)))

    def to_bytes(self) -> bytes:
        """Return the header in its wire layout."""
        return _LAYOUT.pack(
            self.magic,
            self.version,
            self.flags,
            self.data_size,
            self.image_size,
            self.target_size,
            self.sha256,
            self.dataset,
            self.imagename,
        )

    def validate(self) -> None:
        """Check the magic number and version, raising on a mismatch."""
        if self.magic != self.MAGIC:
            raise BootHeaderError(
                f"invalid header magic: expected {self.MAGIC:#x}, got {self.magic:#x}"
            )
        if self.version != self.VERSION:
            raise BootHeaderError(
                f"invalid header version: expected {self.VERSION:#x}, "
                f"got {self.version:#x}"
            )

    def total_size(self) -> int:
        """Size of the whole image: the data plus the reserved header area."""
        return self.data_size + self.HEADER_SIZE

    def describe(self) -> list[str]:
        """Return human-readable lines describing the header's fields."""
        return [
            f"  flags:        {self.flags:#x}",
            f"  data size:    {self.data_size:#x}",
            f"  image size:   {self.image_size:#x}",
            f"  target size:  {self.target_size:#x}",
            f"  sha256:       {self.sha256.hex()}",
            f"  dataset name: {_name_text(self.dataset)}",
            f"  image name:   {_name_text(self.imagename)}",
        ]