"""AWS Signature Version 4 signing for S3 requests.

Both signing modes share one canonicalization path:

    CanonicalRequest =
        Method + '\\n' +
        CanonicalURI + '\\n' +
        CanonicalQueryString + '\\n' +
        CanonicalHeaders + '\\n' +
        SignedHeaders + '\\n' +
        PayloadHash

Header mode places the signature in ``Authorization``; query mode returns
the ``X-Amz-*`` parameters of a presigned URL. All functions are pure:
credentials and the timestamp are passed in, nothing is cached.
"""

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence, Union

from s3_sigv4.credentials import Credentials
from s3_sigv4.errors import InvalidExpiry, SigningError
from s3_sigv4.utils import EMPTY_SHA256, amz_date, amz_short_date, uri_encode

ALGORITHM = "AWS4-HMAC-SHA256"
SERVICE = "s3"
TERMINATOR = "aws4_request"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
STREAMING_PAYLOAD = "STREAMING-AWS4-HMAC-SHA256-PAYLOAD"
MAX_PRESIGN_EXPIRES = 7 * 24 * 3600

# Headers rewritten by proxies or the transport, never part of the signature
UNSIGNABLE_HEADERS = {"authorization", "user-agent", "expect", "x-amzn-trace-id"}

HeaderValue = Union[str, int, Sequence[str]]
HeaderInput = Union[Mapping[str, HeaderValue], Iterable[tuple[str, str]]]
QueryInput = Union[Mapping[str, Optional[str]], Iterable[tuple[str, Optional[str]]]]


class SigningMode(Enum):
    """Where the signature is carried."""

    HEADER = "header"
    QUERY = "query"


@dataclass(frozen=True)
class SigningContext:
    """Region, service and timestamp binding one signature.

    The timestamp is normalized to UTC and truncated to the second so that
    ``amz_date`` is exactly the ``x-amz-date`` value sent on the wire.
    """

    region: str
    timestamp: datetime
    service: str = SERVICE

    def __post_init__(self):
        if not self.region:
            raise SigningError("Region must not be empty")
        if self.timestamp.tzinfo is None:
            raise SigningError("Signing timestamp must be timezone-aware")
        try:
            normalized = self.timestamp.astimezone(timezone.utc).replace(microsecond=0)
        except (OverflowError, ValueError) as e:
            raise SigningError(f"Unrepresentable signing timestamp: {e}") from e
        if normalized.year < 1000:
            raise SigningError(f"Unrepresentable signing timestamp: {normalized.isoformat()}")
        object.__setattr__(self, "timestamp", normalized)

    @property
    def amz_date(self) -> str:
        return amz_date(self.timestamp)

    @property
    def date_stamp(self) -> str:
        return amz_short_date(self.timestamp)

    @property
    def scope(self) -> str:
        return f"{self.date_stamp}/{self.region}/{self.service}/{TERMINATOR}"


@dataclass
class RequestDescriptor:
    """Everything about an HTTP request that takes part in signing.

    ``path`` is the decoded resource path (``/bucket/key``); it is
    URI-encoded during canonicalization. ``payload_hash`` is only used in
    header mode; query mode always signs ``UNSIGNED-PAYLOAD``.
    """

    method: str
    host: str
    path: str = "/"
    query: QueryInput = ()
    headers: HeaderInput = ()
    payload_hash: str = EMPTY_SHA256


@dataclass(frozen=True)
class HeaderSignature:
    """Result of header-mode signing."""

    authorization: str
    x_amz_date: str
    x_amz_content_sha256: str
    signature: str
    signed_headers: str
    session_token: Optional[str] = None

    def headers(self) -> dict[str, str]:
        """Headers the request must carry for the signature to verify."""
        result = {
            "x-amz-date": self.x_amz_date,
            "x-amz-content-sha256": self.x_amz_content_sha256,
            "Authorization": self.authorization,
        }
        if self.session_token:
            result["x-amz-security-token"] = self.session_token
        return result


def _normalize_query(query: QueryInput) -> list[tuple[str, str]]:
    items = query.items() if isinstance(query, Mapping) else query
    return [(str(k), "" if v is None else str(v)) for k, v in items]


def _normalize_headers(headers: HeaderInput) -> dict[str, list[str]]:
    """Group header values by lower-cased name, keeping their original order."""
    items = headers.items() if isinstance(headers, Mapping) else headers
    grouped: dict[str, list[str]] = {}
    for name, value in items:
        key = name.strip().lower()
        if not key or any(c.isspace() or ord(c) < 33 or c == ":" for c in key):
            raise SigningError(f"Unrepresentable header name: {name!r}")
        values = [value] if isinstance(value, (str, int)) else list(value)
        for v in values:
            v = str(v)
            if "\n" in v or "\r" in v:
                raise SigningError(f"Header {name!r} contains a line break")
            grouped.setdefault(key, []).append(v)
    return grouped


def _header_value(values: list[str]) -> str:
    # Trim and collapse inner whitespace runs, multiple values comma-joined
    return ",".join(" ".join(v.split()) for v in values)


def canonical_uri(path: str) -> str:
    """URI-encode a resource path, leaving ``/`` unescaped."""
    if not path.startswith("/"):
        path = "/" + path
    return uri_encode(path, safe="/")


def canonical_query_string(query: QueryInput) -> str:
    """Encode and sort parameters by key, then by value.

    An empty query yields an empty string, which still occupies its line
    in the canonical request.
    """
    pairs = sorted((uri_encode(k), uri_encode(v)) for k, v in _normalize_query(query))
    return "&".join(f"{k}={v}" for k, v in pairs)


def canonical_headers(headers: HeaderInput) -> tuple[str, str]:
    """Return ``(canonical_headers, signed_headers)`` for a header set."""
    grouped = _normalize_headers(headers)
    names = sorted(name for name in grouped if name not in UNSIGNABLE_HEADERS)
    if "host" not in names:
        raise SigningError("The host header must be signed")
    canonical = "".join(f"{name}:{_header_value(grouped[name])}\n" for name in names)
    return canonical, ";".join(names)


def canonical_request(
    method: str,
    path: str,
    query: QueryInput,
    headers: HeaderInput,
    payload_hash: str,
) -> tuple[str, str]:
    """Build the canonical request.

    Returns:
        Tuple of (canonical request string, signed headers list)
    """
    header_block, signed_headers = canonical_headers(headers)
    request = "\n".join(
        [
            method.upper(),
            canonical_uri(path),
            canonical_query_string(query),
            header_block,
            signed_headers,
            payload_hash,
        ]
    )
    return request, signed_headers


def string_to_sign(context: SigningContext, canonical: str) -> str:
    return "\n".join(
        [
            ALGORITHM,
            context.amz_date,
            context.scope,
            hashlib.sha256(canonical.encode("utf-8")).hexdigest(),
        ]
    )


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(
    secret_key: str,
    date_stamp: str,
    region: str,
    service: str = SERVICE,
) -> bytes:
    """Derive the signing key: secret -> date -> region -> service -> aws4_request."""
    date_key = _hmac(f"AWS4{secret_key}".encode("utf-8"), date_stamp)
    region_key = _hmac(date_key, region)
    service_key = _hmac(region_key, service)
    return _hmac(service_key, TERMINATOR)


def compute_signature(signing_key: bytes, text: str) -> str:
    return hmac.new(signing_key, text.encode("utf-8"), hashlib.sha256).hexdigest()


def _context_key(credentials: Credentials, context: SigningContext) -> bytes:
    return derive_signing_key(
        credentials.secret_key, context.date_stamp, context.region, context.service
    )


def sign_header(
    descriptor: RequestDescriptor,
    credentials: Credentials,
    context: SigningContext,
) -> HeaderSignature:
    """Sign a request for the ``Authorization`` header.

    ``host``, ``x-amz-date``, ``x-amz-content-sha256`` and, with a session
    token, ``x-amz-security-token`` are set by the signer and override any
    caller supplied values.

    Raises:
        CredentialError: If the access or secret key is empty
        SigningError: If the header set cannot be canonicalized
    """
    credentials.validate()
    headers = _normalize_headers(descriptor.headers)
    headers["host"] = [descriptor.host]
    headers["x-amz-date"] = [context.amz_date]
    headers["x-amz-content-sha256"] = [descriptor.payload_hash]
    if credentials.session_token:
        headers["x-amz-security-token"] = [credentials.session_token]

    canonical, signed_headers = canonical_request(
        descriptor.method,
        descriptor.path,
        descriptor.query,
        headers,
        descriptor.payload_hash,
    )
    signature = compute_signature(
        _context_key(credentials, context), string_to_sign(context, canonical)
    )
    authorization = (
        f"{ALGORITHM} Credential={credentials.access_key}/{context.scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    return HeaderSignature(
        authorization=authorization,
        x_amz_date=context.amz_date,
        x_amz_content_sha256=descriptor.payload_hash,
        signature=signature,
        signed_headers=signed_headers,
        session_token=credentials.session_token,
    )


def sign_query(
    descriptor: RequestDescriptor,
    credentials: Credentials,
    context: SigningContext,
    expires_seconds: int,
) -> dict[str, str]:
    """Sign a request in its query string.

    Returns:
        The ``X-Amz-*`` parameters, ``X-Amz-Signature`` last, to be merged
        with the descriptor's own query parameters.

    Raises:
        InvalidExpiry: If expires_seconds is outside ``(0, 604800]``
        CredentialError: If the access or secret key is empty
        SigningError: If the query already carries a signature
    """
    if not 0 < expires_seconds <= MAX_PRESIGN_EXPIRES:
        raise InvalidExpiry(
            f"Expiry must be between 1 and {MAX_PRESIGN_EXPIRES} seconds, got {expires_seconds}"
        )
    credentials.validate()
    query = _normalize_query(descriptor.query)
    if any(k == "X-Amz-Signature" for k, _ in query):
        raise SigningError("Query string is already signed")

    headers = _normalize_headers(descriptor.headers)
    headers["host"] = [descriptor.host]
    _, signed_headers = canonical_headers(headers)

    params = {
        "X-Amz-Algorithm": ALGORITHM,
        "X-Amz-Credential": f"{credentials.access_key}/{context.scope}",
        "X-Amz-Date": context.amz_date,
        "X-Amz-Expires": str(expires_seconds),
        "X-Amz-SignedHeaders": signed_headers,
    }
    if credentials.session_token:
        params["X-Amz-Security-Token"] = credentials.session_token

    canonical, _ = canonical_request(
        descriptor.method,
        descriptor.path,
        query + list(params.items()),
        headers,
        UNSIGNED_PAYLOAD,
    )
    params["X-Amz-Signature"] = compute_signature(
        _context_key(credentials, context), string_to_sign(context, canonical)
    )
    return params


def sign(
    descriptor: RequestDescriptor,
    credentials: Credentials,
    context: SigningContext,
    mode: SigningMode = SigningMode.HEADER,
    expires_seconds: Optional[int] = None,
) -> Union[HeaderSignature, dict[str, str]]:
    """Dispatch to header or query signing."""
    if mode is SigningMode.HEADER:
        return sign_header(descriptor, credentials, context)
    if mode is SigningMode.QUERY:
        if expires_seconds is None:
            raise InvalidExpiry("Query signing requires expires_seconds")
        return sign_query(descriptor, credentials, context, expires_seconds)
    raise SigningError(f"Unknown signing mode: {mode!r}")
