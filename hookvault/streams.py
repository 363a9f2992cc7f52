"""Streaming primitives: bounded reads, counted writes, fan-out and gzip codec.

Nothing here buffers a whole input stream on the read side; compressed
output is accumulated in memory because it is what gets persisted or
enqueued, and it is bounded by the read ceiling upstream.
"""

from __future__ import annotations

import gzip
import io
import zlib
from collections.abc import AsyncIterable, AsyncIterator
from typing import BinaryIO, Protocol

from hookvault.errors import CapExceeded, CodecError

# Size of the scratch buffer used when packing/unpacking streams
PACK_BUFFER_SIZE = 4096


class Writer(Protocol):
    def write(self, data: bytes) -> int: ...


# ── Readers ───────────────────────────────────────────────────────────────


class BoundedReader(io.RawIOBase):
    """Readable wrapper that refuses to read past ``cap`` bytes.

    End of stream is an empty read. Crossing the ceiling raises
    :class:`CapExceeded` carrying the bytes of the read that crossed it.
    """

    def __init__(self, source: BinaryIO, cap: int) -> None:
        super().__init__()
        self._source = source
        self.cap = cap
        self.num_read = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        data = self._source.read(size)
        self.num_read += len(data)
        if self.num_read > self.cap:
            raise CapExceeded(self.cap, data)
        return data

    def readinto(self, buffer) -> int:
        data = self.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)


async def bounded_chunks(
    chunks: AsyncIterable[bytes], cap: int
) -> AsyncIterator[bytes]:
    """Async counterpart of :class:`BoundedReader` for chunked bodies."""
    total = 0
    async for chunk in chunks:
        total += len(chunk)
        if total > cap:
            raise CapExceeded(cap, chunk)
        yield chunk


class TeeReader(io.RawIOBase):
    """Every byte read from ``source`` is first written to ``sink``."""

    def __init__(self, source: BinaryIO, sink: Writer) -> None:
        super().__init__()
        self._source = source
        self._sink = sink

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        data = self._source.read(size)
        if data:
            self._sink.write(data)
        return data

    def readinto(self, buffer) -> int:
        data = self.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)


# ── Writers ───────────────────────────────────────────────────────────────


class CountingWriter:
    """Keeps track of the number of bytes written to ``out``."""

    def __init__(self, out: Writer) -> None:
        self._out = out
        self.written = 0

    def write(self, data: bytes) -> int:
        num = self._out.write(data)
        if num is None:
            num = len(data)
        self.written += num
        return num

    def write_str(self, text: str) -> int:
        return self.write(text.encode("utf-8"))


class MultiWriter:
    """Fan-out writer: one write drives every wrapped writer in order."""

    def __init__(self, *writers: Writer) -> None:
        self._writers = writers

    def write(self, data: bytes) -> int:
        for w in self._writers:
            w.write(data)
        return len(data)


# ── Codec ─────────────────────────────────────────────────────────────────


class Packer:
    """Incremental gzip compressor; ``close()`` returns the packed bytes."""

    def __init__(self) -> None:
        self._buf = io.BytesIO()
        self._gz = gzip.GzipFile(fileobj=self._buf, mode="wb")
        self.packed: bytes | None = None

    def write(self, data: bytes) -> int:
        return self._gz.write(data)

    def close(self) -> bytes:
        if self.packed is None:
            self._gz.close()
            self.packed = self._buf.getvalue()
        return self.packed


def _drain(reader: BinaryIO) -> None:
    scratch = bytearray(PACK_BUFFER_SIZE)
    while reader.readinto(scratch):
        pass


def pack(source: BinaryIO) -> io.BytesIO:
    """Return a stream holding the gzip-compressed contents of ``source``.

    The input is tee'd through the compressor while being drained through
    a fixed-size scratch buffer. Errors from ``source`` (including
    :class:`CapExceeded`) propagate unchanged.
    """
    packer = Packer()
    _drain(TeeReader(source, packer))
    return io.BytesIO(packer.close())


def unpack_to(out: Writer, source: BinaryIO) -> int:
    """Decompress ``source`` into ``out``. Returns the decompressed size."""
    total = 0
    try:
        with gzip.GzipFile(fileobj=source, mode="rb") as gz:
            while True:
                chunk = gz.read(PACK_BUFFER_SIZE)
                if not chunk:
                    break
                out.write(chunk)
                total += len(chunk)
    except (OSError, EOFError, zlib.error) as exc:
        raise CodecError(f"failed to unpack data: {exc}") from exc
    return total


def unpack(source: BinaryIO) -> io.BytesIO:
    """Inverse of :func:`pack`."""
    buf = io.BytesIO()
    unpack_to(buf, source)
    buf.seek(0)
    return buf
