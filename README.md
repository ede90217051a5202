# ipcctools

Helpers for data that crosses the inter-processor communications channel
(IPCC) between a host and its service processor (SP). The package is a
pure-Python library with no dependencies. It has no command-line entry point.

## Modules

- `ipcctools.panic` decodes `HSSPanic` payloads into `PanicData`. It handles
  both version 1 and version 2 of the panic layout. Some payloads arrive with
  their first two bytes missing. `fix_panic_data` restores those bytes and
  infers the version; `PanicDataVersion.inferred` records that the version
  was inferred. Errors are raised as `PanicDataError`.
- `ipcctools.boot` reads, writes, validates and describes the `BootSpHeader`
  that comes before a host phase 2 image. Errors are raised as
  `BootHeaderError`.
- `ipcctools.framing` provides COBS encoding and decoding (`cobs_encode`,
  `cobs_decode`). It also provides `read_frame`, which collects one
  zero-terminated frame from a stream of byte chunks, and `parse_hash`, which
  parses a 64-character hex SHA-256. It also defines the `LogLevel` names and
  their `logging` levels. Errors are raised as `FramingError`.
- `ipcctools.errors` defines the `IpccError` exception hierarchy and the
  `LibipccErr` codes. `fatal_error` builds the exception that matches a code.

## Installation

```
pip install .
```

## Decoding a panic payload

```python
from ipcctools.panic import PanicData, PanicDataError

try:
    panic = PanicData.from_bytes(raw)
except PanicDataError as exc:
    print(f"undecodable panic data: {exc}")
else:
    if panic is None:
        print("no panic recorded")
    else:
        print(panic.version, panic.cause, panic.message)
        if panic.registers is not None:
            for reg, value in panic.registers.items():
                print(f"  {reg} = {value:#x}")
        for frame in panic.stack:
            print(f"  {frame:30}")
```

`from_bytes` returns `None` when every byte of the payload is zero.

The two layouts fill in different fields:

- Version 1 payloads always carry a message. They never carry `hrtime`,
  `time` or `registers`.
- Version 2 payloads always carry `hrtime` and `time`.
- Version 2 payloads carry `registers` unless the cause is an explicit panic
  call. The registers come in the order the operating system displays them.

## Checking a boot image header

```python
from ipcctools.boot import BootSpHeader, BootHeaderError

header = BootSpHeader.from_bytes(image_prefix)  # extra bytes are ignored
header.validate()            # raises BootHeaderError on a bad magic or version
print(header.total_size())   # data size plus the 0x1000-byte header area
print("\n".join(header.describe()))
```

`BootSpHeader.to_bytes()` writes the header back in its wire layout.

## COBS framing

```python
from ipcctools.framing import cobs_encode, cobs_decode, read_frame

wire = cobs_encode(payload)     # includes the zero terminator
frame = read_frame([wire])      # leading zero bytes are skipped
assert cobs_decode(frame) == payload
```

`parse_hash("ab" * 32)` returns the 32 raw bytes. It raises `FramingError`
when the text is not valid hex or is the wrong length.

## Mapping libipcc errors

```python
from ipcctools.errors import fatal_error, LibipccErr

err = fatal_error("lookup of key 1 failed", LibipccErr.KEY_UNKNOWN, 0, "no such key")
raise err  # KeyUnknownError
```

`errmsg` may be a string or a NUL-terminated byte buffer. Unrecognised codes
map to `UnknownIpccError`. Passing `LibipccErr.OK` raises `ValueError`.

## What this package does not do

The package does not open serial ports. It does not talk to a service
processor or root of trust, and it does not call the IPCC system library.
It works only on bytes that you supply and hands back decoded values,
frames or exception objects.

## Running the tests

```
pip install .[test]
pytest
```