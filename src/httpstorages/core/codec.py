"""Binary framing for cached HTTP responses.

:func:`encode` turns a :class:`~httpstorages.models.SerializedResponse` into a
flat, self-describing byte frame and :func:`decode` reverses it. The frame
never relies on a sentinel or on end-of-buffer to find the body: the body
length is written explicitly, so binary bodies, padded buffers and frames
embedded in larger containers all decode exactly.

Frame layout (all integers big-endian)::

    magic      4 bytes   b"HSR1"
    status     u16
    version    u8 length + UTF-8 bytes     e.g. "HTTP/1.1"
    reason     u16 length + UTF-8 bytes
    count      u32                         number of header pairs
    pairs      count x (u16 name length, name, u32 value length, value)
    body_len   u64
    body       body_len raw bytes

:func:`decode` keeps its cursor in a local variable and only reads from a
:class:`memoryview` of the input, so one encoded buffer can be decoded by any
number of threads at the same time.

See Also:
    :mod:`httpstorages.core.compression` -- the LZ4 layer applied on top of
    this frame by :func:`encode_compressed` / :func:`decode_compressed`.
"""

from __future__ import annotations

import struct
from typing import Optional

import httpx

from httpstorages.core import compression
from httpstorages.exceptions import CodecError
from httpstorages.models import SerializedResponse

MAGIC = b"HSR1"

_U8 = struct.Struct(">B")
_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")
_U64 = struct.Struct(">Q")


# ------------------------------------------------------------------ #
# Encoding
# ------------------------------------------------------------------ #


def _text(value: str, prefix: struct.Struct, what: str) -> bytes:
    raw = value.encode("utf-8")
    if len(raw) >= 1 << (8 * prefix.size):
        raise CodecError(f"{what} too long to encode ({len(raw)} bytes)")
    return prefix.pack(len(raw)) + raw


def encode(response: SerializedResponse) -> bytes:
    """Serialise *response* into a single frame.

    Raises:
        CodecError: If a field does not fit its length prefix.
    """
    parts = [
        MAGIC,
        _U16.pack(response.status_code),
        _text(response.http_version, _U8, "HTTP version"),
        _text(response.reason, _U16, "Reason phrase"),
        _U32.pack(len(response.headers)),
    ]
    for name, value in response.headers:
        parts.append(_text(name, _U16, "Header name"))
        parts.append(_text(value, _U32, "Header value"))
    parts.append(_U64.pack(len(response.body)))
    parts.append(response.body)
    return b"".join(parts)


# ------------------------------------------------------------------ #
# Decoding
# ------------------------------------------------------------------ #


def _read(view: memoryview, offset: int, size: int, what: str) -> tuple[memoryview, int]:
    end = offset + size
    if end > len(view):
        raise CodecError(f"Truncated frame while reading {what}")
    return view[offset:end], end


def _read_int(view: memoryview, offset: int, fmt: struct.Struct, what: str) -> tuple[int, int]:
    chunk, offset = _read(view, offset, fmt.size, what)
    return fmt.unpack(chunk)[0], offset


def _read_text(view: memoryview, offset: int, prefix: struct.Struct, what: str) -> tuple[str, int]:
    length, offset = _read_int(view, offset, prefix, f"{what} length")
    chunk, offset = _read(view, offset, length, what)
    try:
        return str(chunk, "utf-8"), offset
    except UnicodeDecodeError as exc:
        raise CodecError(f"{what} is not valid UTF-8") from exc


def decode(data: bytes | bytearray | memoryview) -> SerializedResponse:
    """Parse one frame produced by :func:`encode`.

    Bytes after the declared body are ignored.

    Raises:
        CodecError: On a bad magic number, a truncated header section, or a
            declared body length larger than the bytes available.
    """
    view = memoryview(data)
    offset = 0

    magic, offset = _read(view, offset, len(MAGIC), "magic")
    if bytes(magic) != MAGIC:
        raise CodecError("Not an encoded response (bad magic)")

    status, offset = _read_int(view, offset, _U16, "status")
    version, offset = _read_text(view, offset, _U8, "HTTP version")
    reason, offset = _read_text(view, offset, _U16, "reason phrase")
    count, offset = _read_int(view, offset, _U32, "header count")

    headers: list[tuple[str, str]] = []
    for _ in range(count):
        name, offset = _read_text(view, offset, _U16, "header name")
        value, offset = _read_text(view, offset, _U32, "header value")
        headers.append((name, value))

    body_len, offset = _read_int(view, offset, _U64, "body length")
    if offset + body_len > len(view):
        raise CodecError(
            f"Declared body length {body_len} exceeds the {len(view) - offset} bytes available"
        )
    body = bytes(view[offset : offset + body_len])

    return SerializedResponse(
        status_code=status,
        reason=reason,
        http_version=version,
        headers=headers,
        body=body,
    )


def encode_compressed(response: SerializedResponse) -> bytes:
    """Encode *response* and wrap the frame in LZ4."""
    return compression.compress(encode(response))


def decode_compressed(data: bytes | bytearray | memoryview) -> SerializedResponse:
    """Inverse of :func:`encode_compressed`.

    Raises:
        CodecError: If either the LZ4 layer or the frame is malformed.
    """
    return decode(compression.decompress(data))


# ------------------------------------------------------------------ #
# httpx bridge
# ------------------------------------------------------------------ #


def from_httpx(response: httpx.Response) -> SerializedResponse:
    """Snapshot an :class:`httpx.Response` (body must already be read).

    Headers are taken from ``response.headers.multi_items()`` so order and
    duplicates are kept.
    """
    return SerializedResponse(
        status_code=response.status_code,
        reason=response.reason_phrase or "",
        http_version=response.http_version or "HTTP/1.1",
        headers=list(response.headers.multi_items()),
        body=response.content,
    )


def to_httpx(
    serialized: SerializedResponse, request: Optional[httpx.Request] = None
) -> httpx.Response:
    """Rebuild an :class:`httpx.Response` from a stored response.

    Bodies captured by :func:`from_httpx` are already decoded, so stored
    ``Content-Encoding`` headers are dropped; httpx would otherwise try to
    decode the body a second time.
    """
    headers = [
        (name, value)
        for name, value in serialized.headers
        if name.lower() != "content-encoding"
    ]
    return httpx.Response(
        status_code=serialized.status_code,
        headers=headers,
        content=serialized.body,
        request=request,
        extensions={
            "http_version": serialized.http_version.encode("ascii", "replace"),
            "reason_phrase": serialized.reason.encode("latin-1", "replace"),
        },
    )
