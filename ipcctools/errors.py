"""Errors reported by the IPCC library and their classification."""

from __future__ import annotations

import enum
import os
from typing import Union

ERR_LEN = 1024

IPCC_MIN_MESSAGE_SIZE = 19
IPCC_MAX_MESSAGE_SIZE = 4123
IPCC_MAX_DATA_SIZE = IPCC_MAX_MESSAGE_SIZE - IPCC_MIN_MESSAGE_SIZE


class LibipccErr(enum.IntEnum):
    """Error codes reported by the IPCC library."""

    OK = 0
    NO_MEM = 1
    INVALID_PARAM = 2
    INTERNAL = 3
    KEY_UNKNOWN = 4
    KEY_BUFTOOSMALL = 5
    KEY_READONLY = 6
    KEY_VALTOOLONG = 7
    KEY_ZERR = 8


class IpccError(Exception):
    """Base class for IPCC failures, carrying context and system detail."""

    description = "IPCC error"

    def __init__(self, context: str, errmsg: str, syserr: str) -> None:
        super().__init__(context, errmsg, syserr)
        self.context = context
        self.errmsg = errmsg
        self.syserr = syserr

    @property
    def detail(self) -> str:
        return f"{self.context}: {self.errmsg} ({self.syserr})"

    def __str__(self) -> str:
        return f"{self.description}: {self.detail}"


class NoMemError(IpccError):
    description = "Memory allocation error"


class InvalidParamError(IpccError):
    description = "Invalid parameter"


class InternalError(IpccError):
    description = "Internal error occurred"


class KeyUnknownError(IpccError):
    description = "Requested lookup key was not known to the SP"


class KeyBufTooSmallError(IpccError):
    description = (
        "Value for the requested lookup key was too large for the supplied buffer"
    )


class KeyReadonlyError(IpccError):
    description = "Attempted to write to read-only key"


class KeyValTooLongError(IpccError):
    description = "Attempted write to key failed because the value is too long"


class KeyZerrError(IpccError):
    description = "Compression or decompression failed"


class UnknownIpccError(IpccError):
    description = "Unknown libipcc error"


_BY_CODE: dict[int, type[IpccError]] = {
    LibipccErr.NO_MEM: NoMemError,
    LibipccErr.INVALID_PARAM: InvalidParamError,
    LibipccErr.INTERNAL: InternalError,
    LibipccErr.KEY_UNKNOWN: KeyUnknownError,
    LibipccErr.KEY_BUFTOOSMALL: KeyBufTooSmallError,
    LibipccErr.KEY_READONLY: KeyReadonlyError,
    LibipccErr.KEY_VALTOOLONG: KeyValTooLongError,
    LibipccErr.KEY_ZERR: KeyZerrError,
}


def _message_text(errmsg: Union[str, bytes, bytearray]) -> str:
    if isinstance(errmsg, str):
        return errmsg
    raw = bytes(errmsg)
    end = raw.find(b"\0")
    if end >= 0:
        raw = raw[:end]
    return raw.decode("utf-8", errors="replace")


def fatal_error(
    context: str, lerr: int, syserr: int, errmsg: Union[str, bytes, bytearray]
) -> IpccError:
    """Build the exception matching a library error code.

    ``errmsg`` may be text or a NUL-terminated byte buffer.  Raises
    ``ValueError`` when called with the success code.
    """
    if lerr == LibipccErr.OK:
        raise ValueError("called fatal on LIBIPCC_ERR_OK")
    if syserr == 0:
        sys_text = "no system errno"
    else:
        sys_text = f"{os.strerror(syserr)} (os error {syserr})"
    cls = _BY_CODE.get(lerr, UnknownIpccError)
    return cls(str(context), _message_text(errmsg), sys_text)