"""Assemble, sign, send and interpret S3 requests."""

import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Callable, Iterable, Mapping, Optional, Union

from s3_sigv4.chunked import ChunkedBodyEncoder, ChunkSignatureChain, encoded_length
from s3_sigv4.clock import Clock
from s3_sigv4.config import AddressingStyle, EndpointConfig
from s3_sigv4.credentials import CredentialSource, snapshot_credentials
from s3_sigv4.errors import RequestTimeTooSkewed
from s3_sigv4.http_capture import HTTPCapture
from s3_sigv4.responses import is_error_document, parse_error, parse_server_time
from s3_sigv4.signing import (
    STREAMING_PAYLOAD,
    UNSIGNED_PAYLOAD,
    RequestDescriptor,
    SigningContext,
    canonical_query_string,
    canonical_uri,
    sign_header,
)
from s3_sigv4.transport import AiohttpTransport, Response, Transport, TransportRequest
from s3_sigv4.utils import EMPTY_SHA256, calculate_content_sha256

logger = logging.getLogger(__name__)

Body = Union[None, bytes, bytearray, str, Iterable[bytes], AsyncIterable[bytes]]
Query = Union[Mapping[str, Optional[str]], Iterable[tuple[str, Optional[str]]]]

# Headers whose values the executor computes itself
_MANAGED_HEADERS = {
    "host",
    "authorization",
    "content-length",
    "x-amz-date",
    "x-amz-content-sha256",
    "x-amz-decoded-content-length",
    "x-amz-security-token",
}


@dataclass
class _PreparedBody:
    payload_hash: str
    content_length: Optional[int]
    data: Union[None, bytes, AsyncIterable[bytes]]
    replayable: bool
    chunked: bool = False
    decoded_length: Optional[int] = None


async def _aiter_source(source: Union[Iterable[bytes], AsyncIterable[bytes]]) -> AsyncIterator[bytes]:
    if hasattr(source, "__aiter__"):
        async for piece in source:
            yield bytes(piece)
    else:
        for piece in source:
            yield bytes(piece)


class RequestExecutor:
    """Build, sign and send one request per ``execute`` call.

    Credentials are snapshotted once per attempt and never kept. A
    ``RequestTimeTooSkewed`` rejection resynchronizes the clock and retries
    exactly once when the body can be replayed; every other failure is
    raised to the caller.

    Args:
        config: Endpoint configuration
        credentials: Credential source consulted for every request
        transport: HTTP transport (an AiohttpTransport by default)
        clock: Clock used for signing timestamps
        capture_hook: Called with an HTTPCapture for every exchange
    """

    def __init__(
        self,
        config: EndpointConfig,
        credentials: CredentialSource,
        transport: Optional[Transport] = None,
        clock: Optional[Clock] = None,
        capture_hook: Optional[Callable[[HTTPCapture], None]] = None,
    ):
        self.config = config
        self.credentials = credentials
        self.transport = transport or AiohttpTransport(verify_ssl=config.verify_ssl)
        self.clock = clock or Clock()
        self.capture_hook = capture_hook

    async def close(self) -> None:
        await self.transport.close()

    def _prepare_body(self, body: Body, content_length: Optional[int]) -> _PreparedBody:
        if body is None:
            return _PreparedBody(EMPTY_SHA256, None, None, replayable=True)
        if isinstance(body, str):
            body = body.encode("utf-8")
        if isinstance(body, (bytes, bytearray)):
            body = bytes(body)
            return _PreparedBody(calculate_content_sha256(body), len(body), body, replayable=True)

        if content_length is None:
            raise ValueError("Streaming bodies require a declared content_length")
        if self.config.chunked_upload:
            return _PreparedBody(
                STREAMING_PAYLOAD,
                None,
                body,
                replayable=False,
                chunked=True,
                decoded_length=content_length,
            )
        return _PreparedBody(
            UNSIGNED_PAYLOAD, content_length, _aiter_source(body), replayable=False
        )

    def _build_headers(self, host: str, headers: Optional[Mapping[str, str]], prepared: _PreparedBody) -> dict[str, str]:
        result = {"Host": host, "User-Agent": self.config.user_agent}
        encodings = []
        for name, value in (headers or {}).items():
            if name.lower() in _MANAGED_HEADERS:
                continue
            if prepared.chunked and name.lower() == "content-encoding":
                encodings.append(value)
                continue
            result[name] = value
        if prepared.chunked:
            result["Content-Encoding"] = ",".join(["aws-chunked"] + encodings)
            result["x-amz-decoded-content-length"] = str(prepared.decoded_length)
            result["Content-Length"] = str(
                encoded_length(prepared.decoded_length, self.config.chunk_size)
            )
        elif prepared.content_length is not None:
            result["Content-Length"] = str(prepared.content_length)
        return result

    async def execute(
        self,
        method: str,
        bucket: Optional[str] = None,
        object_name: Optional[str] = None,
        query_params: Optional[Query] = None,
        headers: Optional[Mapping[str, str]] = None,
        body: Body = None,
        content_length: Optional[int] = None,
        addressing_style: Optional[AddressingStyle] = None,
    ) -> Response:
        """Send a signed request and return the 2xx response.

        Args:
            method: HTTP method
            bucket: Bucket name, or None for service-level requests
            object_name: Object key (decoded), requires a bucket
            query_params: Query parameters; a None value sends ``key=``
            headers: Extra headers, all of which are signed
            body: bytes/str, or a sync/async iterable of bytes
            content_length: Total length of a streamed body
            addressing_style: Per-request override of the configured style

        Returns:
            Response with a 2xx status

        Raises:
            ServiceError: For error responses (with request_id attached)
            TransportError: On connection failure or timeout
            CredentialError: If credentials are missing or unusable
        """
        if bucket is not None and not bucket:
            raise ValueError("Bucket name cannot be empty.")
        if object_name is not None:
            if not object_name:
                raise ValueError("Object name cannot be empty.")
            if bucket is None:
                raise ValueError("Object name given without a bucket name.")

        prepared = self._prepare_body(body, content_length)
        host, path = self.config.resolve(bucket, object_name, addressing_style)
        if isinstance(query_params, Mapping):
            query = list(query_params.items())
        else:
            query = list(query_params or ())
        query_string = canonical_query_string(query)
        url = f"{self.config.scheme}://{host}{canonical_uri(path)}"
        if query_string:
            url += f"?{query_string}"

        attempt = 1
        while True:
            response = await self._send_once(method, host, path, query, url, headers, prepared, attempt)
            if response.ok:
                return response
            error = parse_error(response.status, response.body, response.headers)
            if isinstance(error, RequestTimeTooSkewed) and attempt == 1 and prepared.replayable:
                server_time = parse_server_time(response.body, response.headers)
                if server_time is not None:
                    self.clock.resync(server_time)
                    attempt += 1
                    continue
            logger.debug("%s %s failed: %s", method, url, error)
            raise error

    async def _send_once(
        self,
        method: str,
        host: str,
        path: str,
        query: list,
        url: str,
        headers: Optional[Mapping[str, str]],
        prepared: _PreparedBody,
        attempt: int,
    ) -> Response:
        credentials = await snapshot_credentials(self.credentials)
        context = SigningContext(region=self.config.region, timestamp=self.clock.now())
        request_headers = self._build_headers(host, headers, prepared)
        descriptor = RequestDescriptor(
            method=method,
            host=host,
            path=path,
            query=query,
            headers=request_headers,
            payload_hash=prepared.payload_hash,
        )
        signature = sign_header(descriptor, credentials, context)
        request_headers.update(signature.headers())

        data = prepared.data
        if prepared.chunked:
            chain = ChunkSignatureChain(signature.signature, credentials, context)
            data = ChunkedBodyEncoder(prepared.data, prepared.decoded_length, chain, self.config.chunk_size)

        capture = HTTPCapture(
            method=method,
            url=url,
            request_headers=dict(request_headers),
            request_body_length=int(request_headers.get("Content-Length", 0)),
            streamed=not prepared.replayable,
            attempt=attempt,
        )
        logger.debug("Sending request (attempt %d)\n%s", attempt, capture.request_to_text())

        response = await self.transport.send(
            TransportRequest(method=method.upper(), url=url, headers=request_headers, body=data)
        )

        capture.status_code = response.status
        capture.response_headers = dict(response.headers)
        capture.response_body = response.body
        logger.debug("Received response\n%s", capture.response_to_text())
        if self.capture_hook is not None:
            self.capture_hook(capture)
        return response


def raise_for_error_document(response: Response) -> None:
    """Raise when a 200 response carries an ``<Error>`` document.

    CompleteMultipartUpload and CopyObject may fail after the status line
    has already been sent.
    """
    if is_error_document(response.body):
        raise parse_error(response.status, response.body, response.headers)
