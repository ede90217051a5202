"""Panic payload and boot header decoding, COBS framing and IPCC errors."""

__version__ = "0.1.0"
__all__ = ["boot", "errors", "framing", "panic"]