"""Error taxonomy for signing and executing S3 requests."""

from typing import Optional


class S3SigV4Error(Exception):
    """Base class for every error raised by this package."""


class CredentialError(S3SigV4Error):
    """Credentials are missing or unusable for signing."""


class CredentialUnavailable(CredentialError):
    """The credential source could not produce credentials."""


class SigningError(S3SigV4Error):
    """The request cannot be represented in a signable form."""


class TransportError(S3SigV4Error):
    """Connection failure or timeout reported by the transport.

    Never retried by the executor.
    """


class ServiceError(S3SigV4Error):
    """Error document returned by the S3 service.

    Attributes:
        status: HTTP status code of the response
        code: S3 error code (e.g. ``NoSuchKey``)
        message: Human readable message from the service
        resource: Resource the error refers to, if reported
        request_id: Server-side request id, always attached when known
        host_id: Extended request id (``x-amz-id-2``), if reported
    """

    def __init__(
        self,
        status: int,
        code: str,
        message: str = "",
        resource: Optional[str] = None,
        request_id: Optional[str] = None,
        host_id: Optional[str] = None,
    ):
        self.status = status
        self.code = code
        self.message = message
        self.resource = resource
        self.request_id = request_id
        self.host_id = host_id
        super().__init__(str(self))

    def __str__(self) -> str:
        text = f"{self.code} (HTTP {self.status}): {self.message}"
        if self.resource:
            text += f" [resource={self.resource}]"
        if self.request_id:
            text += f" [request_id={self.request_id}]"
        return text


class AuthenticationRejected(ServiceError):
    """The service refused the request signature or the caller's identity."""


class RequestTimeTooSkewed(ServiceError):
    """The signing timestamp differs too much from the server clock."""


class IncompleteUpload(S3SigV4Error):
    """A multipart manifest is missing parts or carries mismatched ETags."""


class InvalidExpiry(S3SigV4Error):
    """Presigned URL expiry outside ``(0, 604800]`` seconds."""


class InvalidState(S3SigV4Error):
    """Operation not allowed in the current multipart upload state."""


AUTHENTICATION_ERROR_CODES = {
    "SignatureDoesNotMatch",
    "AccessDenied",
    "InvalidAccessKeyId",
}


def error_class_for(code: str) -> type:
    """Pick the ServiceError subclass for an S3 error code."""
    if code == "RequestTimeTooSkewed":
        return RequestTimeTooSkewed
    if code in AUTHENTICATION_ERROR_CODES:
        return AuthenticationRejected
    return ServiceError
