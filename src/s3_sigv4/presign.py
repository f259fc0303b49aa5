"""Presigned URL generation and verification."""

import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional
from urllib.parse import parse_qsl, unquote, urlsplit

from s3_sigv4.clock import Clock
from s3_sigv4.config import EndpointConfig
from s3_sigv4.credentials import CredentialSource, Credentials, snapshot_credentials
from s3_sigv4.errors import AuthenticationRejected, InvalidExpiry, SigningError
from s3_sigv4.signing import (
    ALGORITHM,
    MAX_PRESIGN_EXPIRES,
    RequestDescriptor,
    SigningContext,
    canonical_query_string,
    canonical_uri,
    sign_query,
)
from s3_sigv4.utils import AMZ_DATE_FORMAT

DEFAULT_EXPIRES = MAX_PRESIGN_EXPIRES

_AUTH_PARAMS = {
    "X-Amz-Algorithm",
    "X-Amz-Credential",
    "X-Amz-Date",
    "X-Amz-Expires",
    "X-Amz-SignedHeaders",
    "X-Amz-Security-Token",
    "X-Amz-Signature",
}


@dataclass(frozen=True)
class PresignedUrl:
    """A minted presigned URL; carries no server-side state."""

    url: str
    method: str
    expires_at: datetime


def presign_url(
    config: EndpointConfig,
    credentials: Credentials,
    method: str,
    bucket: str,
    object_name: Optional[str],
    expires_seconds: int,
    timestamp: datetime,
    extra_query: Optional[Mapping[str, Optional[str]]] = None,
) -> PresignedUrl:
    """Build a query-signed URL. Pure given credentials and a clock reading.

    Raises:
        InvalidExpiry: If expires_seconds is outside ``(0, 604800]``
    """
    host, path = config.resolve(bucket, object_name)
    query = list((extra_query or {}).items())
    context = SigningContext(region=config.region, timestamp=timestamp)
    descriptor = RequestDescriptor(method=method.upper(), host=host, path=path, query=query)
    params = sign_query(descriptor, credentials, context, expires_seconds)

    signature = params.pop("X-Amz-Signature")
    query_string = canonical_query_string(query + list(params.items()))
    url = (
        f"{config.scheme}://{host}{canonical_uri(path)}"
        f"?{query_string}&X-Amz-Signature={signature}"
    )
    return PresignedUrl(
        url=url,
        method=method.upper(),
        expires_at=context.timestamp + timedelta(seconds=expires_seconds),
    )


def _reject(code: str, message: str) -> AuthenticationRejected:
    return AuthenticationRejected(status=403, code=code, message=message)


def verify_presigned_url(
    url: str,
    method: str,
    credentials: Credentials,
    region: str,
    now: Optional[datetime] = None,
) -> None:
    """Check a presigned URL the way the service would.

    Only URLs signing the ``host`` header alone are supported.

    Raises:
        AuthenticationRejected: ``SignatureDoesNotMatch`` when any signed
            part differs, ``AccessDenied`` when the URL has expired
    """
    parts = urlsplit(url)
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    auth = {k: v for k, v in pairs if k in _AUTH_PARAMS}
    query = [(k, v) for k, v in pairs if k not in _AUTH_PARAMS]

    missing = sorted(
        {"X-Amz-Algorithm", "X-Amz-Credential", "X-Amz-Date", "X-Amz-Expires",
         "X-Amz-SignedHeaders", "X-Amz-Signature"} - set(auth)
    )
    if missing:
        raise _reject("AuthorizationQueryParametersError", f"Missing {', '.join(missing)}")
    if auth["X-Amz-Algorithm"] != ALGORITHM or auth["X-Amz-SignedHeaders"] != "host":
        raise _reject("SignatureDoesNotMatch", "Unsupported algorithm or signed headers")

    try:
        signed_at = datetime.strptime(auth["X-Amz-Date"], AMZ_DATE_FORMAT).replace(tzinfo=timezone.utc)
        expires_seconds = int(auth["X-Amz-Expires"])
        context = SigningContext(region=region, timestamp=signed_at)
    except (ValueError, SigningError) as e:
        raise _reject("AuthorizationQueryParametersError", str(e)) from e
    if auth["X-Amz-Credential"] != f"{credentials.access_key}/{context.scope}":
        raise _reject("SignatureDoesNotMatch", "Credential scope does not match")
    if auth.get("X-Amz-Security-Token") != credentials.session_token:
        raise _reject("SignatureDoesNotMatch", "Security token does not match")

    descriptor = RequestDescriptor(
        method=method.upper(), host=parts.netloc, path=unquote(parts.path) or "/", query=query
    )
    try:
        expected = sign_query(descriptor, credentials, context, expires_seconds)["X-Amz-Signature"]
    except InvalidExpiry as e:
        raise _reject("AuthorizationQueryParametersError", str(e)) from e
    if not hmac.compare_digest(expected, auth["X-Amz-Signature"]):
        raise _reject("SignatureDoesNotMatch", "The request signature does not match")

    now = now or datetime.now(timezone.utc)
    if now > signed_at + timedelta(seconds=expires_seconds):
        raise _reject("AccessDenied", "Request has expired")


class PresignedUrlGenerator:
    """Mint presigned URLs from a credential source and clock.

    No request is sent.
    """

    def __init__(
        self,
        config: EndpointConfig,
        credentials: CredentialSource,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.credentials = credentials
        self.clock = clock or Clock()

    async def presign(
        self,
        method: str,
        bucket: str,
        object_name: Optional[str] = None,
        expires_seconds: int = DEFAULT_EXPIRES,
        extra_query: Optional[Mapping[str, Optional[str]]] = None,
        version_id: Optional[str] = None,
        response_headers: Optional[Mapping[str, str]] = None,
        request_date: Optional[datetime] = None,
    ) -> PresignedUrl:
        """Presign ``method`` on a bucket or object.

        Args:
            method: HTTP method the URL is valid for
            bucket: Bucket name
            object_name: Object key
            expires_seconds: Validity window, 1 second to 7 days
            extra_query: Additional signed query parameters
            version_id: Object version to address
            response_headers: Response overrides such as
                ``response-content-type``
            request_date: Signing time; defaults to the clock

        Returns:
            PresignedUrl

        Raises:
            InvalidExpiry: If expires_seconds is outside ``(0, 604800]``
        """
        query = dict(extra_query or {})
        if version_id:
            query["versionId"] = version_id
        query.update(response_headers or {})
        credentials = await snapshot_credentials(self.credentials)
        return presign_url(
            self.config,
            credentials,
            method,
            bucket,
            object_name,
            expires_seconds,
            request_date or self.clock.now(),
            extra_query=query,
        )
