"""Endpoint configuration with environment loading."""

import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
from urllib.parse import urlsplit

from s3_sigv4.chunked import DEFAULT_CHUNK_SIZE, MIN_CHUNK_SIZE
from s3_sigv4.utils import is_virtual_hostable

_VALID_HOST = re.compile(r"^[A-Za-z0-9_\-.]+(:\d+)?$")
_DEFAULT_PORTS = {"http": 80, "https": 443}


class AddressingStyle(Enum):
    """How the bucket is placed in the request URL."""

    PATH = "path"  # endpoint/bucket/object
    VIRTUAL = "virtual"  # bucket.endpoint/object


@dataclass
class EndpointConfig:
    """Configuration for an S3-compatible endpoint.

    ``chunked_upload`` decides how bodies of declared length but streamed
    content are sent: as signed aws-chunked frames, or as a plain stream
    signed with ``UNSIGNED-PAYLOAD``.
    """

    url: str
    region: str = "us-east-1"
    addressing_style: Union[AddressingStyle, str] = AddressingStyle.PATH
    verify_ssl: bool = True
    chunked_upload: bool = True
    chunk_size: int = DEFAULT_CHUNK_SIZE
    user_agent: str = "s3-sigv4/0.1.0"

    def __post_init__(self):
        self.url = self._normalize_endpoint(self.url)
        if isinstance(self.addressing_style, str):
            self.addressing_style = AddressingStyle(self.addressing_style.lower())
        if self.chunk_size < MIN_CHUNK_SIZE:
            raise ValueError(f"chunk_size must be at least {MIN_CHUNK_SIZE} bytes")

        parts = urlsplit(self.url)
        if parts.path not in ("", "/") or parts.query or parts.fragment:
            raise ValueError(f"Endpoint URL must not carry a path or query: {self.url}")
        netloc = parts.netloc
        if parts.port is not None and parts.port == _DEFAULT_PORTS[parts.scheme]:
            netloc = parts.hostname
        if not _VALID_HOST.match(netloc):
            raise ValueError(f"Invalid endpoint host: {netloc!r}")
        self._scheme = parts.scheme
        self._host = netloc

    @staticmethod
    def _normalize_endpoint(url: Optional[str]) -> str:
        """Ensure endpoint URL has proper scheme."""
        if not url:
            raise ValueError("Endpoint URL is required")
        url = url.rstrip("/")
        if not url.startswith(("http://", "https://")):
            return f"https://{url}"
        return url

    @property
    def scheme(self) -> str:
        return self._scheme

    @property
    def host(self) -> str:
        """Endpoint host, with the port only when it is not the default."""
        return self._host

    @property
    def secure(self) -> bool:
        return self._scheme == "https"

    def resolve(
        self,
        bucket: Optional[str] = None,
        object_name: Optional[str] = None,
        addressing_style: Optional[AddressingStyle] = None,
    ) -> tuple[str, str]:
        """Map bucket and object to ``(host, decoded path)`` for the addressing style.

        ``addressing_style`` overrides the configured style for one request.

        Virtual-hosted addressing falls back to path style for bucket names
        that are not valid host labels, and for names with dots over TLS,
        where the wildcard certificate cannot match.
        """
        if not bucket:
            return self._host, "/"
        style = AddressingStyle(addressing_style or self.addressing_style)
        virtual = (
            style is AddressingStyle.VIRTUAL
            and is_virtual_hostable(bucket)
            and not (self.secure and "." in bucket)
        )
        if virtual:
            return f"{bucket}.{self._host}", f"/{object_name}" if object_name else "/"
        if object_name:
            return self._host, f"/{bucket}/{object_name}"
        return self._host, f"/{bucket}"

    @classmethod
    def from_env(cls) -> "EndpointConfig":
        """Load configuration from environment variables.

        Without ``S3_ENDPOINT`` the regional AWS endpoint is used with
        virtual-hosted addressing; custom endpoints default to path style.
        """
        region = os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1"))
        url = os.getenv("S3_ENDPOINT")
        if url:
            default_style = AddressingStyle.PATH.value
        else:
            default_style = AddressingStyle.VIRTUAL.value
            if region == "us-east-1":
                url = "https://s3.amazonaws.com"
            else:
                url = f"https://s3.{region}.amazonaws.com"
        return cls(
            url=url,
            region=region,
            addressing_style=os.getenv("S3_ADDRESSING_STYLE", default_style),
            # SSL verification enabled by default
            # Set S3_VERIFY_SSL=false to disable (use with caution)
            verify_ssl=os.getenv("S3_VERIFY_SSL", "true").lower() == "true",
            chunked_upload=os.getenv("S3_CHUNKED_UPLOAD", "true").lower() == "true",
            chunk_size=int(os.getenv("S3_CHUNK_SIZE", str(DEFAULT_CHUNK_SIZE))),
        )
