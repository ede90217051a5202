import struct

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ipcctools.panic import (
    AdjustedTime,
    PanicCause,
    PanicData,
    PanicDataError,
    PanicDataVersion,
    Register,
    StackFrame,
    fix_panic_data,
)


def build_v1(
    *,
    version=1,
    cause=0xCA11,
    error=7,
    cpuid=3,
    thread=0x1000,
    addr=0x2000,
    pc=0x3000,
    fp=0x4000,
    rp=0x5000,
    message=b"",
    frames=(),
    stackidx=None,
):
    out = struct.pack("<BHII5Q", version, cause, error, cpuid, thread, addr, pc, fp, rp)
    out += message.ljust(128, b"\0")
    out += struct.pack("<B", len(frames) if stackidx is None else stackidx)
    padded = list(frames) + [(b"", 0, 0)] * (16 - len(frames))
    for sym, a, o in padded:
        out += struct.pack("<32sQQ", sym, a, o)
    out += b"\0" + b"\0" * 256
    return out


def build_v2(
    *,
    cause=0xA900,
    error=5,
    hrtime=77,
    sec=1000,
    nsec=500,
    cpuid=2,
    registers=None,
    items=(),
    pad_to=0,
):
    regs = list(range(100, 130)) if registers is None else registers
    body = struct.pack(
        "<BHIQQQI5Q", 2, cause, error, hrtime, sec, nsec, cpuid,
        0x1000, 0x2000, 0x3000, 0x4000, 0x5000,
    )
    body += struct.pack("<30Q", *regs)
    item_bytes = b"".join(struct.pack("<BH", t, len(d) + 3) + d for t, d in items)
    body += struct.pack("<HH", len(items), len(item_bytes)) + item_bytes
    return body.ljust(pad_to, b"\0")


def message_item(text):
    return (1, text)


def stack_item(address, offset, symbol=b""):
    return (2, struct.pack("<QQ", address, offset) + symbol)


def test_all_zero_is_none():
    assert PanicData.from_bytes(bytes(64)) is None
    assert PanicData.from_bytes(b"") is None


def test_v1_determined():
    payload = build_v1(
        message=b"hello",
        frames=[(b"foo", 0xAAA, 0x10), (b"bar", 0xBBB, 0x20), (b"baz", 0xCCC, 0x30)],
        stackidx=2,
    )
    data = PanicData.from_bytes(payload)
    assert data.version == PanicDataVersion(1)
    assert str(data.version) == "1 (determined)"
    assert str(data.cause) == "IPCC_PANIC_CALL"
    assert data.error_code == 7
    assert data.cpuid == 3
    assert data.message == "hello"
    assert data.hrtime is None
    assert data.time is None
    assert data.registers is None
    assert (data.thread, data.addr, data.pc, data.fp, data.rp) == (
        0x1000, 0x2000, 0x3000, 0x4000, 0x5000,
    )
    assert data.stack == [
        StackFrame(address=0xAAA, symbol="foo", offset=0x10),
        StackFrame(address=0xBBB, symbol="bar", offset=0x20),
    ]
    assert str(data.stack[0]) == "foo+0x10"


def test_v1_invalid_symbol_falls_back_to_address():
    payload = build_v1(frames=[(b"\xff\xfe", 0xABC, 4)])
    data = PanicData.from_bytes(payload)
    assert data.stack[0].symbol is None
    assert str(data.stack[0]) == "0xabc"


def test_v1_invalid_message_raises():
    with pytest.raises(PanicDataError):
        PanicData.from_bytes(build_v1(message=b"\xff\xff"))


def test_v1_truncated_raises():
    with pytest.raises(PanicDataError):
        PanicData.from_bytes(build_v1()[:100])


def test_v2_determined_with_registers():
    payload = build_v2(
        items=[
            message_item(b"oops"),
            stack_item(0x111, 0x8, b"func"),
            (0, b""),
            stack_item(0x222, 0x9),
        ]
    )
    data = PanicData.from_bytes(payload)
    assert data.version == PanicDataVersion(2)
    assert data.cause == PanicCause.from_code(0xA900)
    assert str(data.cause) == "IPCC_PANIC_TRAP"
    assert data.error_code == 5
    assert data.hrtime == 77
    assert data.time == AdjustedTime(sec=1000, nsec=500)
    assert data.message == "oops"
    assert data.stack == [
        StackFrame(address=0x111, symbol="func", offset=0x8),
        StackFrame(address=0x222, symbol=None, offset=0x9),
    ]
    expected_order = [
        "rdi", "rsi", "rdx", "rcx", "r8", "r9", "rax", "rbx", "rbp", "r10",
        "r11", "r12", "r13", "r14", "fsbase", "gsbase", "es", "fs", "gs",
        "trapno", "err", "rip", "cs", "rfl", "rsp", "ss",
    ]
    assert [str(r) for r in data.registers] == expected_order
    assert data.registers[Register.rdi] == 102
    assert data.registers[Register.rip] == 125
    assert data.registers[Register.ss] == 129
    assert Register.r15 not in data.registers


def test_v2_call_has_no_registers():
    data = PanicData.from_bytes(build_v2(cause=0xCA11))
    assert data.registers is None
    assert data.message is None
    assert data.stack == []


def test_v2_two_messages_raise():
    payload = build_v2(items=[message_item(b"a"), message_item(b"b")])
    with pytest.raises(PanicDataError):
        PanicData.from_bytes(payload)


def test_v2_nsec_overflow_raises():
    with pytest.raises(PanicDataError):
        PanicData.from_bytes(build_v2(nsec=1 << 32))


def test_v2_bad_item_type_raises():
    with pytest.raises(PanicDataError):
        PanicData.from_bytes(build_v2(items=[(9, b"xx")]))


def test_v2_short_stack_item_raises():
    with pytest.raises(PanicDataError):
        PanicData.from_bytes(build_v2(items=[(2, b"\x01\x02")]))


def test_unsupported_version_raises():
    payload = bytearray(build_v1())
    payload[0] = 3
    with pytest.raises(PanicDataError, match="unsupported"):
        PanicData.from_bytes(bytes(payload))


def test_fix_restores_truncated_v1():
    original = build_v1(message=b"boom", frames=[(b"f", 1, 2)])
    version, fixed = fix_panic_data(original[2:])
    assert version == PanicDataVersion(1, inferred=True)
    assert str(version) == "1 (inferred)"
    assert fixed == original


def test_fix_passes_through_determined():
    original = build_v1()
    assert fix_panic_data(original) == (PanicDataVersion(1), original)


@pytest.mark.parametrize(
    "cause, name",
    [
        (0x5E00, "IPCC_PANIC_USERTRAP"),
        (0xEBFF, "IPCC_PANIC_EARLYBOOT_*"),
        (0xA900, "IPCC_PANIC_TRAP"),
    ],
)
def test_truncated_v1_cause_reconstruction(cause, name):
    original = build_v1(cause=cause, message=b"m")
    data = PanicData.from_bytes(original[2:])
    assert data.version.inferred
    assert data.cause.code == cause
    assert str(data.cause) == name
    assert data.message == "m"


def test_truncated_v2_is_inferred():
    original = build_v2(hrtime=0x12345678, items=[message_item(b"late")], pad_to=1300)
    data = PanicData.from_bytes(original[2:])
    assert data.version == PanicDataVersion(2, inferred=True)
    assert data.cause.code == 0xA900
    assert data.hrtime == 0x12345678
    assert data.message == "late"


def test_fix_unknown_first_byte_raises():
    with pytest.raises(PanicDataError, match="0x40"):
        fix_panic_data(b"\x40" + bytes(2000))


def test_fix_empty_raises():
    with pytest.raises(PanicDataError):
        fix_panic_data(b"")


def test_unknown_cause_display():
    cause = PanicCause.from_code(0x1234)
    assert not cause.known
    assert str(cause) == "<Unknown cause 0x1234>"
    assert str(PanicCause.from_code(0x12)) == "<Unknown cause 0x0012>"


def test_cause_out_of_range():
    with pytest.raises(ValueError):
        PanicCause.from_code(0x10000)


def test_stack_frame_width_format():
    frame = StackFrame(address=0x10, symbol="foo", offset=0x10)
    assert f"{frame:12}|" == str(frame).ljust(12) + "|"
    assert f"{frame}" == str(frame)


@settings(max_examples=200)
@given(st.binary(max_size=1400))
def test_from_bytes_never_fails_unexpectedly(blob):
    try:
        result = PanicData.from_bytes(blob)
    except PanicDataError:
        assert any(blob)
    else:
        assert (result is None) == (not any(blob))