"""LZ4 frame compression for stored payloads.

Every payload written through
:meth:`~httpstorages.core.storer.CacheStorer.set_multi_level` is an LZ4
frame, the same framing used by the Go storages library, so entries written
by either side can be decompressed by the other.

Both directions are streaming: input is fed to a per-call
:class:`lz4.frame.LZ4FrameCompressor` / :class:`lz4.frame.LZ4FrameDecompressor`
in fixed-size slices of a :class:`memoryview`, so the input is never copied as
a whole. No compressor or decompressor object outlives a call, which makes
every function here safe to call from any number of threads at once.
"""

from __future__ import annotations

from typing import Iterable, Iterator

import lz4.frame

from httpstorages.exceptions import CodecError

DEFAULT_CHUNK_SIZE = 64 * 1024

# Little-endian LZ4 frame magic number 0x184D2204.
LZ4_FRAME_MAGIC = b"\x04\x22\x4d\x18"


def _chunks(data: bytes | bytearray | memoryview, chunk_size: int) -> Iterator[memoryview]:
    view = memoryview(data)
    for offset in range(0, len(view), chunk_size):
        yield view[offset : offset + chunk_size]


def compress_stream(chunks: Iterable[bytes | memoryview]) -> Iterator[bytes]:
    """Compress an iterable of byte chunks into a single LZ4 frame.

    Yields compressed pieces as they become available; concatenated, they
    form one complete frame.

    Raises:
        CodecError: If the encoder rejects the input.
    """
    compressor = lz4.frame.LZ4FrameCompressor(content_checksum=True)
    try:
        yield compressor.begin()
        for chunk in chunks:
            if len(chunk):
                piece = compressor.compress(chunk)
                if piece:
                    yield piece
        yield compressor.flush()
    except RuntimeError as exc:
        raise CodecError(f"LZ4 compression failed: {exc}") from exc


def compress(data: bytes | bytearray | memoryview, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> bytes:
    """Compress *data* into one LZ4 frame.

    The empty input compresses to a valid (non-empty) frame.

    Raises:
        CodecError: If the encoder rejects the input.
    """
    return b"".join(compress_stream(_chunks(data, chunk_size)))


def decompress(data: bytes | bytearray | memoryview, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> bytes:
    """Decompress one complete LZ4 frame.

    Raises:
        CodecError: If *data* is not an LZ4 frame, the frame is truncated,
            the content checksum does not match, or bytes follow the end of
            the frame.
    """
    decompressor = lz4.frame.LZ4FrameDecompressor()
    out: list[bytes] = []
    try:
        for chunk in _chunks(data, chunk_size):
            if decompressor.eof:
                raise CodecError("Trailing bytes after the end of the LZ4 frame")
            out.append(decompressor.decompress(chunk))
    except RuntimeError as exc:
        raise CodecError(f"LZ4 decompression failed: {exc}") from exc

    if not decompressor.eof:
        raise CodecError("Truncated LZ4 frame")
    if decompressor.unused_data:
        raise CodecError("Trailing bytes after the end of the LZ4 frame")
    return b"".join(out)


def is_compressed(data: bytes | bytearray | memoryview) -> bool:
    """Return ``True`` when *data* starts with the LZ4 frame magic number."""
    return bytes(data[:4]) == LZ4_FRAME_MAGIC
