"""Multipart upload lifecycle: initiate, upload parts, complete or abort.

State machine::

    IDLE -> INITIATED -> UPLOADING_PARTS -> COMPLETING -> COMMITTED
                 \\              \\
                  +--------------+--> ABORTING -> ABORTED

Part uploads may run concurrently. ``complete`` and ``abort`` are
exclusive: they are rejected with InvalidState while any part upload of the
same session is in flight. Nothing here aborts implicitly.
"""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterable, Iterable, Mapping, Optional, Union

from s3_sigv4.errors import IncompleteUpload, InvalidState, ServiceError
from s3_sigv4.executor import RequestExecutor, raise_for_error_document
from s3_sigv4.responses import (
    CompleteMultipartUploadResult,
    Part,
    build_complete_multipart_upload,
    parse_complete_multipart_upload,
    parse_initiate_multipart_upload,
    parse_list_parts,
)

logger = logging.getLogger(__name__)

MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10000
MAX_PART_SIZE = 5 * 1024 ** 3
MIN_PART_SIZE = 5 * 1024 ** 2


class UploadState(Enum):
    IDLE = "idle"
    INITIATED = "initiated"
    UPLOADING_PARTS = "uploading_parts"
    COMPLETING = "completing"
    COMMITTED = "committed"
    ABORTING = "aborting"
    ABORTED = "aborted"


_ACCEPTS_PARTS = {UploadState.INITIATED, UploadState.UPLOADING_PARTS}


def _normalize_etag(etag: str) -> str:
    return etag.strip().strip('"')


class MultipartUploadCoordinator:
    """Drive one multipart upload session through a RequestExecutor.

    Args:
        executor: Executor used for every step
        bucket: Target bucket
        object_name: Target key
        headers: Extra headers for the initiate call (content type, metadata)
    """

    def __init__(
        self,
        executor: RequestExecutor,
        bucket: str,
        object_name: str,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.executor = executor
        self.bucket = bucket
        self.object_name = object_name
        self.headers = dict(headers or {})
        self.upload_id: Optional[str] = None
        self.state = UploadState.IDLE
        self._parts: dict[int, str] = {}
        self._in_flight: set[int] = set()

    @property
    def parts(self) -> list[Part]:
        """Uploaded parts sorted by part number."""
        return [Part(n, self._parts[n]) for n in sorted(self._parts)]

    def _transition(self, new_state: UploadState) -> None:
        logger.info(
            "Multipart upload %s/%s [%s]: %s -> %s",
            self.bucket,
            self.object_name,
            self.upload_id,
            self.state.value,
            new_state.value,
        )
        self.state = new_state

    def _require(self, allowed: set, operation: str) -> None:
        if self.state not in allowed:
            raise InvalidState(f"Cannot {operation} in state {self.state.value}")

    def _require_idle_parts(self, operation: str) -> None:
        if self._in_flight:
            raise InvalidState(
                f"Cannot {operation} while parts {sorted(self._in_flight)} are uploading"
            )

    async def initiate(self) -> str:
        """Create the upload on the server and return its upload id."""
        self._require({UploadState.IDLE}, "initiate")
        response = await self.executor.execute(
            "POST",
            self.bucket,
            self.object_name,
            query_params={"uploads": None},
            headers=self.headers,
        )
        self.upload_id = parse_initiate_multipart_upload(response.body)
        self._transition(UploadState.INITIATED)
        return self.upload_id

    async def upload_part(
        self,
        part_number: int,
        data: Union[bytes, Iterable[bytes], AsyncIterable[bytes]],
        content_length: Optional[int] = None,
    ) -> Part:
        """Upload one part and record its ETag.

        A part that failed may be retried; a part that succeeded may not be
        uploaded again.

        Raises:
            ValueError: If part_number or the part size is out of range
            InvalidState: Outside INITIATED/UPLOADING_PARTS, or if the part
                is already uploaded or in flight
        """
        if not MIN_PART_NUMBER <= part_number <= MAX_PART_NUMBER:
            raise ValueError(
                f"part_number must be between {MIN_PART_NUMBER} and {MAX_PART_NUMBER}"
            )
        size = len(data) if isinstance(data, (bytes, bytearray)) else content_length
        if size is not None and size > MAX_PART_SIZE:
            raise ValueError("Part size must not exceed 5 GiB")
        self._require(_ACCEPTS_PARTS, "upload a part")
        if part_number in self._parts or part_number in self._in_flight:
            raise InvalidState(f"Part {part_number} is already uploaded or uploading")

        self._in_flight.add(part_number)
        if self.state is UploadState.INITIATED:
            self._transition(UploadState.UPLOADING_PARTS)
        try:
            response = await self.executor.execute(
                "PUT",
                self.bucket,
                self.object_name,
                query_params={"partNumber": str(part_number), "uploadId": self.upload_id},
                body=data,
                content_length=content_length,
            )
        finally:
            self._in_flight.discard(part_number)

        etag = response.header("etag")
        if not etag:
            raise ServiceError(
                status=response.status,
                code="MissingETag",
                message=f"UploadPart response for part {part_number} carries no ETag",
                request_id=response.header("x-amz-request-id"),
            )
        self._parts[part_number] = etag
        return Part(part_number, etag)

    async def upload_parts(
        self,
        pieces: Iterable[bytes],
        concurrency: int = 4,
        first_part_number: int = 1,
    ) -> list[Part]:
        """Upload pieces as consecutive parts with bounded parallelism.

        When a part fails the remaining uploads are cancelled and awaited
        before the error is raised, so the session can be aborted or the
        failed parts retried straight away.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        semaphore = asyncio.Semaphore(concurrency)

        async def _upload(number: int, piece: bytes) -> Part:
            async with semaphore:
                return await self.upload_part(number, piece)

        tasks = [
            asyncio.ensure_future(_upload(number, piece))
            for number, piece in enumerate(pieces, start=first_part_number)
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _build_manifest(self, manifest: Optional[Iterable[Part]]) -> list[Part]:
        if manifest is None:
            parts = self.parts
        else:
            parts = sorted(manifest, key=lambda p: p.part_number)
        if not parts:
            raise IncompleteUpload("No parts to complete")

        numbers = [p.part_number for p in parts]
        expected = list(range(1, len(parts) + 1))
        if numbers != expected:
            missing = sorted(set(range(1, max(numbers) + 1)) - set(numbers))
            raise IncompleteUpload(
                f"Part numbers must be contiguous from 1; missing {missing}, got {numbers}"
            )
        for part in parts:
            recorded = self._parts.get(part.part_number)
            if recorded is None:
                raise IncompleteUpload(f"Part {part.part_number} has no recorded ETag")
            if _normalize_etag(part.etag) != _normalize_etag(recorded):
                raise IncompleteUpload(
                    f"ETag mismatch for part {part.part_number}: "
                    f"{part.etag!r} != {recorded!r}"
                )
        return [Part(p.part_number, self._parts[p.part_number]) for p in parts]

    async def complete(self, manifest: Optional[Iterable[Part]] = None) -> CompleteMultipartUploadResult:
        """Commit the uploaded parts as one object.

        Args:
            manifest: Parts to commit, in any order; defaults to every
                uploaded part

        Raises:
            IncompleteUpload: Before any network call, when the manifest is
                empty, has a gap, or carries an unknown or mismatched ETag
            InvalidState: If not uploading or part uploads are in flight
        """
        self._require(_ACCEPTS_PARTS, "complete")
        self._require_idle_parts("complete")
        parts = self._build_manifest(manifest)

        previous = self.state
        self._transition(UploadState.COMPLETING)
        try:
            response = await self.executor.execute(
                "POST",
                self.bucket,
                self.object_name,
                query_params={"uploadId": self.upload_id},
                headers={"Content-Type": "application/xml"},
                body=build_complete_multipart_upload(parts),
            )
            raise_for_error_document(response)
        except BaseException:
            # No implicit abort, the object may already be assembled
            self._transition(previous)
            raise
        result = parse_complete_multipart_upload(response.body)
        result.version_id = response.header("x-amz-version-id")
        self._transition(UploadState.COMMITTED)
        return result

    async def abort(self) -> None:
        """Discard the upload and every uploaded part. Safe to repeat.

        Raises:
            InvalidState: After commit, while completing or aborting, or
                while part uploads are in flight
        """
        if self.state in (UploadState.ABORTED, UploadState.IDLE):
            self._transition(UploadState.ABORTED)
            return
        self._require(_ACCEPTS_PARTS, "abort")
        self._require_idle_parts("abort")

        previous = self.state
        self._transition(UploadState.ABORTING)
        try:
            await self.executor.execute(
                "DELETE",
                self.bucket,
                self.object_name,
                query_params={"uploadId": self.upload_id},
            )
        except ServiceError as e:
            if e.code != "NoSuchUpload":
                self._transition(previous)
                raise
        except BaseException:
            self._transition(previous)
            raise
        self._transition(UploadState.ABORTED)

    async def list_parts(self) -> list[Part]:
        """Fetch the server's part list and merge it into the session.

        Lets a caller resume after losing track of an acknowledged part.
        """
        self._require(_ACCEPTS_PARTS, "list parts")
        parts: list[Part] = []
        marker: Optional[int] = None
        while True:
            query = {"uploadId": self.upload_id, "max-parts": "1000"}
            if marker is not None:
                query["part-number-marker"] = str(marker)
            response = await self.executor.execute(
                "GET", self.bucket, self.object_name, query_params=query
            )
            page, marker = parse_list_parts(response.body)
            parts.extend(page)
            if marker is None:
                break
        for part in parts:
            self._parts.setdefault(part.part_number, part.etag)
        if parts and self.state is UploadState.INITIATED:
            self._transition(UploadState.UPLOADING_PARTS)
        return parts
