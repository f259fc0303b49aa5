"""aws-chunked body framing with a per-chunk signature chain.

Each frame on the wire is::

    hex(size);chunk-signature=<64 hex chars>\\r\\n<size bytes>\\r\\n

and the stream ends with a zero-length frame. Every chunk signature signs
the previous one, starting from the seed signature of the request itself.
"""

import hashlib
from typing import AsyncIterable, AsyncIterator, Iterable, Iterator, Union

from s3_sigv4.credentials import Credentials
from s3_sigv4.errors import SigningError
from s3_sigv4.signing import SigningContext, compute_signature, derive_signing_key
from s3_sigv4.utils import EMPTY_SHA256

CHUNK_ALGORITHM = "AWS4-HMAC-SHA256-PAYLOAD"
DEFAULT_CHUNK_SIZE = 64 * 1024
MIN_CHUNK_SIZE = 8 * 1024

_SIGNATURE_LENGTH = 64
_FRAME_OVERHEAD = len(";chunk-signature=") + _SIGNATURE_LENGTH + 2 * len("\r\n")

ByteSource = Union[bytes, Iterable[bytes], AsyncIterable[bytes]]


def encoded_length(decoded_length: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Exact byte count of the framed stream for a payload of decoded_length.

    This is the value of ``Content-Length``; ``x-amz-decoded-content-length``
    carries decoded_length itself.
    """
    if decoded_length < 0:
        raise ValueError("Payload length must not be negative")
    full_chunks, remainder = divmod(decoded_length, chunk_size)
    total = full_chunks * (len(f"{chunk_size:x}") + _FRAME_OVERHEAD + chunk_size)
    if remainder:
        total += len(f"{remainder:x}") + _FRAME_OVERHEAD + remainder
    # terminating zero-length chunk
    total += 1 + _FRAME_OVERHEAD
    return total


class ChunkSignatureChain:
    """Running signature state for one streamed request.

    Owned by a single upload; chunks must be signed in send order.
    """

    def __init__(self, seed_signature: str, credentials: Credentials, context: SigningContext):
        if len(seed_signature) != _SIGNATURE_LENGTH:
            raise SigningError("Seed signature must be 64 hex characters")
        self._previous = seed_signature
        self._context = context
        self._signing_key = derive_signing_key(
            credentials.secret_key, context.date_stamp, context.region, context.service
        )

    @property
    def previous_signature(self) -> str:
        return self._previous

    def next_signature(self, chunk: bytes) -> str:
        text = "\n".join(
            [
                CHUNK_ALGORITHM,
                self._context.amz_date,
                self._context.scope,
                self._previous,
                EMPTY_SHA256,
                hashlib.sha256(chunk).hexdigest(),
            ]
        )
        self._previous = compute_signature(self._signing_key, text)
        return self._previous


class ChunkedBodyEncoder:
    """Re-buffer a byte source into signed aws-chunked frames.

    The total unencoded length must be known upfront so ``content_length``
    can be sent before the body. Iterate once, sync or async; a second
    iteration raises SigningError since the signature chain cannot rewind.

    Args:
        source: bytes, an iterable of bytes, or an async iterable of bytes
        decoded_length: Total number of payload bytes the source yields
        chain: Signature chain seeded with the request signature
        chunk_size: Payload bytes per frame (the last one may be shorter)
    """

    def __init__(
        self,
        source: ByteSource,
        decoded_length: int,
        chain: ChunkSignatureChain,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if chunk_size < MIN_CHUNK_SIZE:
            raise ValueError(f"Chunk size must be at least {MIN_CHUNK_SIZE} bytes")
        self._source = source
        self._decoded_length = decoded_length
        self._chain = chain
        self._chunk_size = chunk_size
        self._consumed = False
        self._sent = 0

    @property
    def decoded_length(self) -> int:
        return self._decoded_length

    @property
    def content_length(self) -> int:
        return encoded_length(self._decoded_length, self._chunk_size)

    def _claim(self) -> None:
        if self._consumed:
            raise SigningError("Chunked body can only be iterated once")
        self._consumed = True

    def _frame(self, chunk: bytes) -> bytes:
        if self._sent + len(chunk) > self._decoded_length:
            raise SigningError(
                f"Source produced more than the declared {self._decoded_length} bytes"
            )
        signature = self._chain.next_signature(chunk)
        self._sent += len(chunk)
        return b"".join(
            [
                f"{len(chunk):x};chunk-signature={signature}\r\n".encode("ascii"),
                chunk,
                b"\r\n",
            ]
        )

    def _final(self) -> bytes:
        if self._sent != self._decoded_length:
            raise SigningError(
                f"Source produced {self._sent} bytes, declared {self._decoded_length}"
            )
        return self._frame(b"")

    def _drain(self, buffer: bytearray) -> Iterator[bytes]:
        while len(buffer) >= self._chunk_size:
            chunk = bytes(buffer[: self._chunk_size])
            del buffer[: self._chunk_size]
            yield self._frame(chunk)

    def __iter__(self) -> Iterator[bytes]:
        self._claim()
        if hasattr(self._source, "__aiter__"):
            raise TypeError("Async source must be consumed with 'async for'")
        pieces = [self._source] if isinstance(self._source, (bytes, bytearray)) else self._source
        buffer = bytearray()
        for piece in pieces:
            buffer.extend(piece)
            yield from self._drain(buffer)
        if buffer:
            yield self._frame(bytes(buffer))
        yield self._final()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        self._claim()
        buffer = bytearray()
        if hasattr(self._source, "__aiter__"):
            async for piece in self._source:
                buffer.extend(piece)
                for frame in self._drain(buffer):
                    yield frame
        else:
            pieces = [self._source] if isinstance(self._source, (bytes, bytearray)) else self._source
            for piece in pieces:
                buffer.extend(piece)
                for frame in self._drain(buffer):
                    yield frame
        if buffer:
            yield self._frame(bytes(buffer))
        yield self._final()


def decode_chunked(stream: bytes) -> tuple[bytes, list[str]]:
    """Strip aws-chunked framing.

    Returns:
        Tuple of (payload bytes, chunk signatures in order)

    Raises:
        ValueError: If the framing is malformed
    """
    payload = bytearray()
    signatures = []
    position = 0
    while True:
        header_end = stream.find(b"\r\n", position)
        if header_end < 0:
            raise ValueError("Missing chunk header terminator")
        header = stream[position:header_end].decode("ascii")
        size_text, _, extension = header.partition(";")
        if not extension.startswith("chunk-signature="):
            raise ValueError(f"Malformed chunk header: {header!r}")
        size = int(size_text, 16)
        signatures.append(extension[len("chunk-signature="):])
        start = header_end + 2
        end = start + size
        if stream[end:end + 2] != b"\r\n":
            raise ValueError("Chunk data not followed by CRLF")
        payload.extend(stream[start:end])
        position = end + 2
        if size == 0:
            break
    if position != len(stream):
        raise ValueError("Trailing bytes after final chunk")
    return bytes(payload), signatures
