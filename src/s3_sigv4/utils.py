"""Hashing, encoding and validation helpers shared by the signer and executor."""

import hashlib
import ipaddress
import re
from datetime import datetime
from typing import Union
from urllib.parse import quote

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"
AMZ_SHORT_DATE_FORMAT = "%Y%m%d"

_VALID_BUCKET_NAME = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")
_DNS_LABEL = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")


def calculate_content_sha256(content: Union[str, bytes]) -> str:
    """Calculate x-amz-content-sha256 header value (hex encoded).

    Args:
        content: Request body as string or bytes

    Returns:
        Hex-encoded SHA256 hash
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def uri_encode(value: Union[str, bytes], safe: str = "") -> str:
    """Percent-encode every byte except RFC 3986 unreserved characters.

    Args:
        value: Text (UTF-8 encoded first) or raw bytes
        safe: Extra characters left as-is, e.g. ``"/"`` for paths

    Returns:
        Encoded string with upper-case hex escapes
    """
    if isinstance(value, str):
        value = value.encode("utf-8")
    return quote(value, safe=safe + "~")


def amz_date(timestamp: datetime) -> str:
    """Format a timestamp as used in ``x-amz-date``."""
    return timestamp.strftime(AMZ_DATE_FORMAT)


def amz_short_date(timestamp: datetime) -> str:
    """Format the date part of the credential scope."""
    return timestamp.strftime(AMZ_SHORT_DATE_FORMAT)


def is_virtual_hostable(name: str) -> bool:
    """Whether a bucket name can be used as the leading part of a host name."""
    if not name or len(name) > 63:
        return False
    return all(_DNS_LABEL.match(label) for label in name.split("."))


def check_bucket_name(name: str) -> None:
    """Validate a bucket name against S3 naming rules.

    Raises:
        ValueError: If the name breaks any rule
    """
    if len(name) < 3 or len(name) > 63:
        raise ValueError("Bucket name must be between 3 and 63 characters long.")
    if not _VALID_BUCKET_NAME.match(name):
        raise ValueError(
            "Bucket name can consist only of lowercase letters, numbers, dots (.) "
            "and hyphens (-), and must begin and end with a letter or number."
        )
    if ".." in name or ".-" in name or "-." in name:
        raise ValueError(
            "Bucket name cannot contain two adjacent periods, "
            "or a period adjacent to a hyphen."
        )
    if name.startswith("xn--"):
        raise ValueError("Bucket name cannot start with the prefix xn--.")
    if name.endswith("-s3alias"):
        raise ValueError("Bucket name cannot end with the suffix -s3alias.")
    try:
        ipaddress.IPv4Address(name)
    except ValueError:
        return
    raise ValueError("Bucket name cannot be an IP address.")
