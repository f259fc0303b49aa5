"""S3 client facade over the executor, multipart coordinator and presigner."""

import asyncio
import logging
from typing import AsyncIterable, Callable, Iterable, Mapping, Optional, Union

from s3_sigv4.clock import Clock
from s3_sigv4.config import EndpointConfig
from s3_sigv4.credentials import Boto3CredentialSource, CredentialSource, EnvCredentialSource
from s3_sigv4.errors import CredentialUnavailable
from s3_sigv4.executor import RequestExecutor
from s3_sigv4.http_capture import HTTPCapture
from s3_sigv4.multipart import MIN_PART_SIZE, MultipartUploadCoordinator
from s3_sigv4.presign import DEFAULT_EXPIRES, PresignedUrl, PresignedUrlGenerator
from s3_sigv4.transport import Response, Transport

logger = logging.getLogger(__name__)

MAX_OBJECT_SIZE = 5 * 1024 ** 4


class _FirstAvailableSource:
    """Environment credentials, falling back to a boto3 profile."""

    def __init__(self, profile_name: Optional[str] = None):
        self._env = EnvCredentialSource()
        self._profile_name = profile_name
        self._boto3: Optional[Boto3CredentialSource] = None

    def get(self):
        try:
            return self._env.get()
        except CredentialUnavailable:
            if self._boto3 is None:
                self._boto3 = Boto3CredentialSource(profile_name=self._profile_name)
            return self._boto3.get()


class S3Client:
    """Object operations signed with AWS Signature Version 4.

    Args:
        config: Endpoint configuration
        credentials: Credential source
        transport: HTTP transport; aiohttp by default
        clock: Signing clock
        capture_hook: Receives an HTTPCapture for every exchange
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
        self.clock = clock or Clock()
        self.executor = RequestExecutor(
            config, credentials, transport=transport, clock=self.clock, capture_hook=capture_hook
        )
        self.presigner = PresignedUrlGenerator(config, credentials, clock=self.clock)

    @classmethod
    def from_env(cls, profile_name: Optional[str] = None, **kwargs) -> "S3Client":
        """Client for ``EndpointConfig.from_env()`` with env or boto3 credentials."""
        return cls(EndpointConfig.from_env(), _FirstAvailableSource(profile_name), **kwargs)

    async def close(self) -> None:
        await self.executor.close()

    async def __aenter__(self) -> "S3Client":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def put_object(
        self,
        bucket: str,
        object_name: str,
        data: Union[bytes, str],
        content_type: str = "application/octet-stream",
        headers: Optional[Mapping[str, str]] = None,
    ) -> Response:
        """Upload an in-memory payload in a single PUT."""
        request_headers = {"Content-Type": content_type, **(headers or {})}
        return await self.executor.execute(
            "PUT", bucket, object_name, headers=request_headers, body=data
        )

    async def put_object_stream(
        self,
        bucket: str,
        object_name: str,
        stream: Union[Iterable[bytes], AsyncIterable[bytes]],
        length: Optional[int] = None,
        content_type: str = "application/octet-stream",
        part_size: int = MIN_PART_SIZE,
        concurrency: int = 4,
    ) -> Optional[str]:
        """Upload a stream of bytes.

        With a known ``length`` and chunked upload enabled (or a payload
        below the part size) the stream goes out as one streamed PUT.
        Otherwise it is cut into ``part_size`` pieces and sent as a multipart
        upload, which is aborted if a part fails.

        Returns:
            The ETag of the new object, when reported
        """
        if length is not None and length >= MAX_OBJECT_SIZE:
            raise ValueError("Maximum object size is 5 TiB")
        if part_size < MIN_PART_SIZE:
            raise ValueError("part_size must be at least 5 MiB")
        headers = {"Content-Type": content_type}
        if length is not None and (self.config.chunked_upload or length < part_size):
            response = await self.executor.execute(
                "PUT",
                bucket,
                object_name,
                headers=headers,
                body=stream,
                content_length=length,
            )
            return response.header("etag")

        upload = self.create_multipart_upload(bucket, object_name, headers=headers)
        await upload.initiate()
        semaphore = asyncio.Semaphore(concurrency)
        tasks: list[asyncio.Future] = []

        async def _upload(number: int, piece: bytes):
            try:
                return await upload.upload_part(number, piece)
            finally:
                semaphore.release()

        try:
            async for piece in _repartition(stream, part_size):
                await semaphore.acquire()
                tasks.append(asyncio.ensure_future(_upload(len(tasks) + 1, piece)))
            if not tasks:
                await semaphore.acquire()
                tasks.append(asyncio.ensure_future(_upload(1, b"")))
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            # Cancellation never aborts the session
            for task in tasks:
                task.cancel()
            raise
        except Exception:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning("Part upload failed, aborting %s/%s", bucket, object_name)
            await upload.abort()
            raise
        result = await upload.complete()
        return result.etag

    async def get_object(
        self,
        bucket: str,
        object_name: str,
        version_id: Optional[str] = None,
        byte_range: Optional[tuple[int, int]] = None,
    ) -> Response:
        query = {"versionId": version_id} if version_id else None
        headers = {"Range": f"bytes={byte_range[0]}-{byte_range[1]}"} if byte_range else None
        return await self.executor.execute(
            "GET", bucket, object_name, query_params=query, headers=headers
        )

    async def stat_object(self, bucket: str, object_name: str, version_id: Optional[str] = None) -> dict[str, str]:
        """Return the object's response headers from a HEAD request."""
        query = {"versionId": version_id} if version_id else None
        response = await self.executor.execute("HEAD", bucket, object_name, query_params=query)
        return response.headers

    async def remove_object(self, bucket: str, object_name: str, version_id: Optional[str] = None) -> None:
        query = {"versionId": version_id} if version_id else None
        await self.executor.execute("DELETE", bucket, object_name, query_params=query)

    def create_multipart_upload(
        self,
        bucket: str,
        object_name: str,
        headers: Optional[Mapping[str, str]] = None,
    ) -> MultipartUploadCoordinator:
        """Return an idle coordinator; call ``initiate()`` to start it."""
        return MultipartUploadCoordinator(self.executor, bucket, object_name, headers=headers)

    async def presigned_get_object(
        self,
        bucket: str,
        object_name: str,
        expires_seconds: int = DEFAULT_EXPIRES,
        version_id: Optional[str] = None,
        response_headers: Optional[Mapping[str, str]] = None,
    ) -> PresignedUrl:
        return await self.presigner.presign(
            "GET",
            bucket,
            object_name,
            expires_seconds=expires_seconds,
            version_id=version_id,
            response_headers=response_headers,
        )

    async def presigned_put_object(
        self,
        bucket: str,
        object_name: str,
        expires_seconds: int = DEFAULT_EXPIRES,
    ) -> PresignedUrl:
        return await self.presigner.presign(
            "PUT", bucket, object_name, expires_seconds=expires_seconds
        )


async def _repartition(
    stream: Union[Iterable[bytes], AsyncIterable[bytes]],
    part_size: int,
):
    """Regroup a byte stream into part_size pieces; the last may be shorter."""
    buffer = bytearray()
    if hasattr(stream, "__aiter__"):
        async for piece in stream:
            buffer.extend(piece)
            while len(buffer) >= part_size:
                yield bytes(buffer[:part_size])
                del buffer[:part_size]
    else:
        for piece in stream:
            buffer.extend(piece)
            while len(buffer) >= part_size:
                yield bytes(buffer[:part_size])
                del buffer[:part_size]
    if buffer:
        yield bytes(buffer)
