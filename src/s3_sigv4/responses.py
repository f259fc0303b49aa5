"""XML documents exchanged with the S3 service."""

from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional
import xml.etree.ElementTree as ET
from xml.sax.saxutils import escape as xml_escape

from s3_sigv4.errors import ServiceError, error_class_for

S3_NS = "{http://s3.amazonaws.com/doc/2006-03-01/}"

# Codes used when the response carries no error document (HEAD, empty bodies)
STATUS_CODES = {
    301: "PermanentRedirect",
    307: "Redirect",
    400: "BadRequest",
    403: "AccessDenied",
    404: "NotFound",
    405: "MethodNotAllowed",
    409: "Conflict",
    412: "PreconditionFailed",
    501: "NotImplemented",
    503: "ServiceUnavailable",
}


@dataclass
class Part:
    """One uploaded part of a multipart upload."""

    part_number: int
    etag: str


@dataclass
class CompleteMultipartUploadResult:
    location: Optional[str]
    bucket: Optional[str]
    key: Optional[str]
    etag: Optional[str]
    version_id: Optional[str] = None


def _find_text(root: ET.Element, tag: str) -> Optional[str]:
    """Find a child element's text with or without the S3 namespace."""
    elem = root.find(f"{S3_NS}{tag}")
    if elem is None:
        elem = root.find(tag)
    return elem.text if elem is not None else None


def _local_name(tag: str) -> str:
    return tag.split("}", 1)[1] if "}" in tag else tag


def parse_xml(body: bytes) -> Optional[ET.Element]:
    """Parse a response body, returning None when it is not XML."""
    if not body or not body.strip():
        return None
    try:
        return ET.fromstring(body)
    except ET.ParseError:
        return None


def is_error_document(body: bytes) -> bool:
    root = parse_xml(body)
    return root is not None and _local_name(root.tag) == "Error"


def parse_error(status: int, body: bytes, headers: dict) -> ServiceError:
    """Turn an error response into the matching ServiceError.

    The request id comes from the document, falling back to the
    ``x-amz-request-id`` header so it is never lost.
    """
    headers = {k.lower(): v for k, v in headers.items()}
    root = parse_xml(body)
    code = message = resource = request_id = host_id = None
    if root is not None and _local_name(root.tag) == "Error":
        code = _find_text(root, "Code")
        message = _find_text(root, "Message")
        resource = _find_text(root, "Resource")
        request_id = _find_text(root, "RequestId")
        host_id = _find_text(root, "HostId")
    if not code:
        code = STATUS_CODES.get(status, f"HTTP{status}")
    if not message:
        message = body.decode("utf-8", errors="replace")[:200] if root is None and body else ""
    error_class = error_class_for(code)
    return error_class(
        status=status,
        code=code,
        message=message,
        resource=resource,
        request_id=request_id or headers.get("x-amz-request-id"),
        host_id=host_id or headers.get("x-amz-id-2"),
    )


def parse_server_time(body: bytes, headers: dict) -> Optional[datetime]:
    """Server clock reading from a RequestTimeTooSkewed response.

    Prefers the document's ``ServerTime`` and falls back to the ``Date``
    header.
    """
    root = parse_xml(body)
    if root is not None:
        text = _find_text(root, "ServerTime")
        if text:
            try:
                value = datetime.fromisoformat(text.strip().replace("Z", "+00:00"))
            except ValueError:
                value = None
            if value is not None:
                return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    date_header = {k.lower(): v for k, v in headers.items()}.get("date")
    if date_header:
        try:
            return parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            return None
    return None


def parse_initiate_multipart_upload(body: bytes) -> str:
    """Return the UploadId from an InitiateMultipartUploadResult."""
    root = parse_xml(body)
    upload_id = _find_text(root, "UploadId") if root is not None else None
    if not upload_id:
        raise ValueError("InitiateMultipartUploadResult carries no UploadId")
    return upload_id


def build_complete_multipart_upload(parts: list[Part]) -> bytes:
    """Serialize the completion manifest in the given order."""
    parts_xml = "\n".join(
        f"  <Part>\n    <PartNumber>{part.part_number}</PartNumber>\n"
        f"    <ETag>{xml_escape(part.etag)}</ETag>\n  </Part>"
        for part in parts
    )
    xml_body = f'''<?xml version="1.0" encoding="UTF-8"?>
<CompleteMultipartUpload xmlns="http://s3.amazonaws.com/doc/2006-03-01/">
{parts_xml}
</CompleteMultipartUpload>'''
    return xml_body.encode("utf-8")


def parse_complete_multipart_upload(body: bytes) -> CompleteMultipartUploadResult:
    root = parse_xml(body)
    if root is None:
        return CompleteMultipartUploadResult(None, None, None, None)
    return CompleteMultipartUploadResult(
        location=_find_text(root, "Location"),
        bucket=_find_text(root, "Bucket"),
        key=_find_text(root, "Key"),
        etag=_find_text(root, "ETag"),
    )


def parse_list_parts(body: bytes) -> tuple[list[Part], Optional[int]]:
    """Parse a ListPartsResult page.

    Returns:
        Tuple of (parts, next part-number marker or None when not truncated)
    """
    root = parse_xml(body)
    if root is None:
        return [], None
    parts = []
    for elem in list(root.findall(f"{S3_NS}Part")) + list(root.findall("Part")):
        parts.append(
            Part(
                part_number=int(_find_text(elem, "PartNumber")),
                etag=_find_text(elem, "ETag") or "",
            )
        )
    truncated = (_find_text(root, "IsTruncated") or "false").lower() == "true"
    marker = _find_text(root, "NextPartNumberMarker")
    return parts, int(marker) if truncated and marker else None
