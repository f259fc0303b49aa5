"""AWS Signature Version 4 request signing and execution for S3-compatible storage"""

from s3_sigv4.client import S3Client
from s3_sigv4.config import AddressingStyle, EndpointConfig
from s3_sigv4.credentials import (
    Boto3CredentialSource,
    Credentials,
    EnvCredentialSource,
    StaticCredentialSource,
)
from s3_sigv4.signing import (
    HeaderSignature,
    RequestDescriptor,
    SigningContext,
    SigningMode,
    derive_signing_key,
    sign,
    sign_header,
    sign_query,
)
from s3_sigv4.chunked import ChunkedBodyEncoder, ChunkSignatureChain, encoded_length
from s3_sigv4.clock import Clock, FixedClock
from s3_sigv4.executor import RequestExecutor
from s3_sigv4.multipart import MultipartUploadCoordinator, UploadState
from s3_sigv4.presign import PresignedUrl, PresignedUrlGenerator, verify_presigned_url
from s3_sigv4.responses import Part
from s3_sigv4.transport import AiohttpTransport, Response, TransportRequest
from s3_sigv4.http_capture import HTTPCapture
from s3_sigv4.errors import (
    AuthenticationRejected,
    CredentialError,
    CredentialUnavailable,
    IncompleteUpload,
    InvalidExpiry,
    InvalidState,
    RequestTimeTooSkewed,
    S3SigV4Error,
    ServiceError,
    SigningError,
    TransportError,
)

__version__ = "0.1.0"

__all__ = [
    # Client
    "S3Client",
    "EndpointConfig",
    "AddressingStyle",
    # Credentials
    "Credentials",
    "StaticCredentialSource",
    "EnvCredentialSource",
    "Boto3CredentialSource",
    # Signing
    "RequestDescriptor",
    "SigningContext",
    "SigningMode",
    "HeaderSignature",
    "derive_signing_key",
    "sign",
    "sign_header",
    "sign_query",
    "Clock",
    "FixedClock",
    # Chunked bodies
    "ChunkedBodyEncoder",
    "ChunkSignatureChain",
    "encoded_length",
    # Execution
    "RequestExecutor",
    "AiohttpTransport",
    "TransportRequest",
    "Response",
    "HTTPCapture",
    # Multipart
    "MultipartUploadCoordinator",
    "UploadState",
    "Part",
    # Presigned URLs
    "PresignedUrl",
    "PresignedUrlGenerator",
    "verify_presigned_url",
    # Errors
    "S3SigV4Error",
    "CredentialError",
    "CredentialUnavailable",
    "SigningError",
    "TransportError",
    "ServiceError",
    "AuthenticationRejected",
    "RequestTimeTooSkewed",
    "IncompleteUpload",
    "InvalidExpiry",
    "InvalidState",
]
