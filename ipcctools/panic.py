"""Decoding of host panic payloads (``HSSPanic``) carried over IPCC."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import Optional

_VERSION_MAX = 0x3F

_V1_STACKS = 0x10
_V1_DATALEN = 0x100
_V1_SYMLEN = 0x20
_V1_MSGLEN = 0x80

_U8 = struct.Struct("<B")
_V1_HEAD = struct.Struct("<BHII5Q")
_V1_STACK = struct.Struct(f"<{_V1_SYMLEN}sQQ")
_V2_HEAD = struct.Struct("<BHIQQQI5Q")
_V2_REGS = struct.Struct("<30Q")
_V2_COUNTS = struct.Struct("<HH")
_ITEM_HEAD = struct.Struct("<BH")
_STACK_ENTRY = struct.Struct("<QQ")

_U32_MAX = 0xFFFF_FFFF


class PanicDataError(ValueError):
    """Raised when a panic payload cannot be interpreted."""


@dataclass(frozen=True)
class PanicDataVersion:
    """Version of the panic data and whether it was read or inferred."""

    number: int
    inferred: bool = False

    def __str__(self) -> str:
        how = "inferred" if self.inferred else "determined"
        return f"{self.number} ({how})"


_CAUSE_NAMES = {
    0xCA11: "IPCC_PANIC_CALL",
    0xA900: "IPCC_PANIC_TRAP",
    0x5E00: "IPCC_PANIC_USERTRAP",
    0xEB00: "IPCC_PANIC_EARLYBOOT",
    0xEB97: "IPCC_PANIC_EARLYBOOT_PROM",
    0xEBA9: "IPCC_PANIC_EARLYBOOT_TRAP",
    0xEBFF: "IPCC_PANIC_EARLYBOOT_*",
}

_CAUSE_CALL = 0xCA11


@dataclass(frozen=True)
class PanicCause:
    """The cause of a panic, identified by its 16-bit code."""

    code: int

    @classmethod
    def from_code(cls, code: int) -> "PanicCause":
        if not 0 <= code <= 0xFFFF:
            raise ValueError(f"panic cause {code:#x} does not fit in 16 bits")
        return cls(code)

    @property
    def known(self) -> bool:
        return self.code in _CAUSE_NAMES

    @property
    def is_call(self) -> bool:
        return self.code == _CAUSE_CALL

    def __str__(self) -> str:
        name = _CAUSE_NAMES.get(self.code)
        if name is None:
            return f"<Unknown cause {self.code:#06x}>"
        return name


class Register(enum.Enum):
    """A host (AMD64) register."""

    rdi = "rdi"
    rsi = "rsi"
    rdx = "rdx"
    rcx = "rcx"
    r8 = "r8"
    r9 = "r9"
    rax = "rax"
    rbx = "rbx"
    rbp = "rbp"
    r10 = "r10"
    r11 = "r11"
    r12 = "r12"
    r13 = "r13"
    r14 = "r14"
    r15 = "r15"
    fsbase = "fsbase"
    gsbase = "gsbase"
    ds = "ds"
    es = "es"
    fs = "fs"
    gs = "gs"
    trapno = "trapno"
    err = "err"
    rip = "rip"
    cs = "cs"
    rfl = "rfl"
    rsp = "rsp"
    ss = "ss"

    def __str__(self) -> str:
        return self.name


# Field order of the saved register block in a version 2 payload.
_REG_FIELDS = (
    "savfp", "savpc", "rdi", "rsi", "rdx", "rcx", "r8", "r9", "rax", "rbx",
    "rbp", "r10", "r11", "r12", "r13", "r14", "r15", "fsbase", "gsbase",
    "ds", "es", "fs", "gs", "trapno", "err", "rip", "cs", "rfl", "rsp", "ss",
)

# Order in which the operating system displays registers.
_REG_DISPLAY = tuple(
    Register[name]
    for name in (
        "rdi", "rsi", "rdx", "rcx", "r8", "r9", "rax", "rbx", "rbp", "r10",
        "r11", "r12", "r13", "r14", "fsbase", "gsbase", "es", "fs", "gs",
        "trapno", "err", "rip", "cs", "rfl", "rsp", "ss",
    )
)


@dataclass(frozen=True)
class AdjustedTime:
    """Host wall-clock time: seconds and nanoseconds since the epoch."""

    sec: int
    nsec: int


@dataclass(frozen=True)
class StackFrame:
    """A caller address, with its symbol and offset when known."""

    address: int
    symbol: Optional[str]
    offset: int

    def __str__(self) -> str:
        if self.symbol is not None:
            return f"{self.symbol}+{self.offset:#x}"
        return f"{self.address:#x}"

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)


class _ItemType(enum.IntEnum):
    NOP = 0
    MESSAGE = 1
    STACK_ENTRY = 2
    ANCILLARY = 3


class _Reader:
    """Sequential little-endian reader over a byte string."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def take(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise PanicDataError(
                f"unexpected end of data at offset {self._pos}: "
                f"needed {size} bytes, {len(self._data) - self._pos} left"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def unpack(self, layout: struct.Struct) -> tuple:
        return layout.unpack(self.take(layout.size))

    def rest(self) -> bytes:
        chunk = self._data[self._pos:]
        self._pos = len(self._data)
        return chunk


@dataclass
class _RawV1:
    version: int
    cause: int
    error: int
    cpuid: int
    thread: int
    addr: int
    pc: int
    fp: int
    rp: int
    message: bytes
    stackidx: int
    stack: list


def _read_v1(data: bytes) -> _RawV1:
    reader = _Reader(data)
    head = reader.unpack(_V1_HEAD)
    message = reader.take(_V1_MSGLEN)
    (stackidx,) = reader.unpack(_U8)
    stack = [reader.unpack(_V1_STACK) for _ in range(_V1_STACKS)]
    reader.unpack(_U8)
    reader.take(_V1_DATALEN)
    return _RawV1(*head, message=message, stackidx=stackidx, stack=stack)


def _is_utf8(raw: bytes) -> bool:
    try:
        raw.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return True


def fix_panic_data(data: bytes) -> tuple[PanicDataVersion, bytes]:
    """Return the payload's version and the payload with lost bytes restored.

    Some service processors drop the first two bytes of the payload (the
    version and the low byte of the cause).  When the first byte is not a
    plausible version, those bytes are reconstructed and the version inferred.
    """
    data = bytes(data)
    if not data:
        raise PanicDataError("panic data is empty")

    first = data[0]
    if 0 < first < _VERSION_MAX:
        return PanicDataVersion(first), data

    missing = {0xCA: 0x11, 0x5E: 0x00, 0xA9: 0x00, 0xEB: 0xFF}.get(first)
    if missing is None:
        raise PanicDataError(f"could not decode `ipd_cause`: {first:#04x}")

    fixed = bytearray([0xFF, missing])
    fixed += data
    try:
        check = _read_v1(bytes(fixed))
    except PanicDataError as exc:
        raise PanicDataError(f"failed to deserialize panic data as version 1: {exc}") from exc

    looks_v1 = check.cpuid < 512 and all(_is_utf8(sym) for sym, _, _ in check.stack)
    version = PanicDataVersion(1 if looks_v1 else 2, inferred=True)
    fixed[0] = version.number
    return version, bytes(fixed)


@dataclass
class PanicData:
    """Host panic data as sent in an ``HSSPanic`` payload."""

    version: PanicDataVersion
    cause: PanicCause
    error_code: int
    cpuid: int
    hrtime: Optional[int]
    time: Optional[AdjustedTime]
    thread: int
    addr: int
    pc: int
    fp: int
    rp: int
    message: Optional[str]
    registers: Optional[dict[Register, int]]
    stack: list[StackFrame] = field(default_factory=list)

    @classmethod
    def from_bytes(cls, data: bytes) -> Optional["PanicData"]:
        """Decode a panic payload; an all-zero payload yields ``None``."""
        if not any(data):
            return None
        version, fixed = fix_panic_data(data)
        if version.number == 1:
            return cls._from_v1(version, fixed)
        if version.number == 2:
            return cls._from_v2(version, fixed)
        raise PanicDataError(f"unsupported IPCC panic data version: {version.number}")

    @classmethod
    def _from_v1(cls, version: PanicDataVersion, data: bytes) -> "PanicData":
        raw = _read_v1(data)
        try:
            message = raw.message.decode("utf-8").strip("\0")
        except UnicodeDecodeError as exc:
            raise PanicDataError(f"failed to decode ipd_message: {raw.message!r}") from exc

        stack = []
        for symbol, address, offset in raw.stack[: raw.stackidx]:
            try:
                name: Optional[str] = symbol.decode("utf-8").strip("\0")
            except UnicodeDecodeError:
                name = None
            stack.append(StackFrame(address=address, symbol=name, offset=offset))

        return cls(
            version=version,
            cause=PanicCause.from_code(raw.cause),
            error_code=raw.error,
            cpuid=raw.cpuid,
            hrtime=None,
            time=None,
            thread=raw.thread,
            addr=raw.addr,
            pc=raw.pc,
            fp=raw.fp,
            rp=raw.rp,
            message=message,
            registers=None,
            stack=stack,
        )

    @classmethod
    def _from_v2(cls, version: PanicDataVersion, data: bytes) -> "PanicData":
        reader = _Reader(data)
        (ver, cause_code, error, hrtime, tv_sec, tv_nsec, cpuid,
         thread, addr, pc, fp, rp) = reader.unpack(_V2_HEAD)
        if ver != 2:
            raise PanicDataError(f"expected panic data version 2, found {ver}")
        regs = dict(zip(_REG_FIELDS, reader.unpack(_V2_REGS)))
        nitems, _items_len = reader.unpack(_V2_COUNTS)

        items = []
        for _ in range(nitems):
            ftype, length = reader.unpack(_ITEM_HEAD)
            try:
                kind = _ItemType(ftype)
            except ValueError as exc:
                raise PanicDataError(f"invalid panic item type {ftype}") from exc
            items.append((kind, reader.take(max(length - 3, 0))))

        messages = [body for kind, body in items if kind is _ItemType.MESSAGE]
        if len(messages) > 1:
            raise PanicDataError("found unexpected message items in panic data")
        message = messages[0].decode("utf-8", errors="replace") if messages else None

        stack = []
        for kind, body in items:
            if kind is not _ItemType.STACK_ENTRY:
                continue
            entry = _Reader(body)
            try:
                address, offset = entry.unpack(_STACK_ENTRY)
            except PanicDataError as exc:
                raise PanicDataError(f"failed to deserialize stack item {body!r}") from exc
            symbol = entry.rest()
            stack.append(
                StackFrame(
                    address=address,
                    symbol=symbol.decode("utf-8", errors="replace") if symbol else None,
                    offset=offset,
                )
            )

        cause = PanicCause.from_code(cause_code)
        registers = (
            None
            if cause.is_call
            else {reg: regs[reg.name] for reg in _REG_DISPLAY}
        )

        if tv_nsec > _U32_MAX:
            raise PanicDataError(f"illegal nsec value (sec={tv_sec}, nsec={tv_nsec})")

        return cls(
            version=version,
            cause=cause,
            error_code=error,
            cpuid=cpuid,
            hrtime=hrtime,
            time=AdjustedTime(sec=tv_sec, nsec=tv_nsec),
            thread=thread,
            addr=addr,
            pc=pc,
            fp=fp,
            rp=rp,
            message=message,
            registers=registers,
            stack=stack,
        )