"""HTTP transport seam consumed by the request executor."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterable, Optional, Protocol, Union

import aiohttp
from yarl import URL

from s3_sigv4.errors import TransportError

logger = logging.getLogger(__name__)

RequestBody = Union[None, bytes, AsyncIterable[bytes]]


@dataclass
class TransportRequest:
    """Fully signed request ready for the wire."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: RequestBody = None


@dataclass
class Response:
    """Status, headers (lower-cased names) and body of an HTTP response."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self):
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)


class Transport(Protocol):
    async def send(self, request: TransportRequest) -> Response:
        ...

    async def close(self) -> None:
        ...


class AiohttpTransport:
    """Transport backed by a lazily created ``aiohttp.ClientSession``.

    Timeouts are enforced here and reported as TransportError. Cancelling a
    pending ``send`` closes its connection.
    """

    def __init__(
        self,
        verify_ssl: bool = True,
        timeout: float = 300,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._verify_ssl = verify_ssl
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                # Signed requests must go out exactly as built
                auto_decompress=False,
                skip_auto_headers=("Content-Type",),
            )
            self._owns_session = True
        return self._session

    async def send(self, request: TransportRequest) -> Response:
        session = await self._get_session()
        try:
            async with session.request(
                request.method,
                URL(request.url, encoded=True),
                headers=request.headers,
                data=request.body,
                ssl=None if self._verify_ssl else False,
                allow_redirects=False,
            ) as resp:
                body = await resp.read()
                return Response(status=resp.status, headers=dict(resp.headers), body=body)
        except asyncio.TimeoutError as e:
            raise TransportError(f"{request.method} {request.url} timed out") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{request.method} {request.url} failed: {e}") from e

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            logger.debug("Closing aiohttp session")
            await self._session.close()

    async def __aenter__(self) -> "AiohttpTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
