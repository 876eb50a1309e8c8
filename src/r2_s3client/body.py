"""Request body normalization.

Every accepted input shape becomes one of three variants, each knowing how
to turn itself into content for the HTTP client together with its length.
The provider needs a Content-Length on uploads, so only bodies whose size is
known up front are streamed; everything else is buffered first.
"""

from dataclasses import dataclass
from r2_s3client.signer import sha256_hex
from r2_s3client.signer import UNSIGNED_PAYLOAD

import asyncio
import inspect
import io


CHUNK_SIZE = 64 * 1024


def _to_bytes(chunk):
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    return bytes(chunk)


@dataclass(frozen=True)
class BytesBody:
    data: bytes = b""

    async def prepare(self):
        return self.data, len(self.data)


@dataclass(frozen=True)
class StreamBody:
    """A synchronous binary file-like object.

    Reads run in a worker thread so a slow file does not stall the loop.

    ``length`` is the number of bytes left to read, or None when the stream
    cannot tell; such streams are read into memory before sending.
    """

    stream: object
    length: int | None = None

    async def prepare(self):
        if self.length is None:
            data = _to_bytes(await asyncio.to_thread(self.stream.read) or b"")
            return data, len(data)
        return self._chunks(), self.length

    async def _chunks(self):
        remaining = self.length
        while remaining > 0:
            chunk = await asyncio.to_thread(self.stream.read, min(CHUNK_SIZE, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield _to_bytes(chunk)


@dataclass(frozen=True)
class AsyncChunksBody:
    """An async iterable of byte chunks, drained into one buffer."""

    chunks: object

    async def prepare(self):
        buffer = bytearray()
        async for chunk in self.chunks:
            if chunk:
                buffer += _to_bytes(chunk)
        data = bytes(buffer)
        return data, len(data)


EMPTY = BytesBody(b"")


def _remaining_length(stream):
    try:
        position = stream.tell()
        end = stream.seek(0, io.SEEK_END)
        stream.seek(position)
    except (AttributeError, OSError, ValueError):
        return None
    return max(0, end - position)


async def _read_async(blob):
    while True:
        chunk = await blob.read(CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


def normalize(value):
    """Return the body variant for ``value``; None and empty input give EMPTY."""
    if value is None:
        return EMPTY
    if isinstance(value, (BytesBody, StreamBody, AsyncChunksBody)):
        return value
    if isinstance(value, str):
        return BytesBody(value.encode("utf-8")) if value else EMPTY
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BytesBody(bytes(value)) if len(value) else EMPTY
    if hasattr(value, "__aiter__"):
        return AsyncChunksBody(value)
    read = getattr(value, "read", None)
    if read is not None:
        if inspect.iscoroutinefunction(read):
            return AsyncChunksBody(_read_async(value))
        return StreamBody(value, _remaining_length(value))
    raise TypeError(f"Unsupported body type: {type(value).__name__}")


def payload_hash(body, unsigned=True):
    """Return the x-amz-content-sha256 value for a normalized body.

    Object data always goes out as UNSIGNED-PAYLOAD; only small in-memory
    bodies that must be authenticated are hashed.
    """
    if unsigned:
        return UNSIGNED_PAYLOAD
    if not isinstance(body, BytesBody):
        raise TypeError("Only in-memory bodies can carry a signed payload hash")
    return sha256_hex(body.data)
