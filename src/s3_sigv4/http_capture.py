"""Redacted capture of signed HTTP exchanges for debug logging."""

import re
from dataclasses import dataclass, field
import xml.dom.minidom

REDACTED_HEADERS = {"authorization", "x-amz-security-token"}

_REDACTED_QUERY = re.compile(r"(X-Amz-(?:Signature|Security-Token|Credential)=)[^&]*")


def redact_url(url: str) -> str:
    """Mask presigned credentials and signatures in a URL."""
    return _REDACTED_QUERY.sub(r"\1[REDACTED]", url)


@dataclass
class HTTPCapture:
    """One request/response pair as seen by the executor."""

    # Request details
    method: str
    url: str
    request_headers: dict = field(default_factory=dict)
    request_body_length: int = 0
    streamed: bool = False

    # Response details
    status_code: int = 0
    response_headers: dict = field(default_factory=dict)
    response_body: bytes = b""

    attempt: int = 1

    def request_to_text(self) -> str:
        """Render the request like an HTTP/1.1 message head."""
        lines = [f"{self.method} {redact_url(self.url)} HTTP/1.1"]
        for key, value in self.request_headers.items():
            if key.lower() in REDACTED_HEADERS:
                lines.append(f"{key}: [REDACTED]")
            else:
                lines.append(f"{key}: {value}")
        if self.streamed:
            lines.append(f"[streamed body, {self.request_body_length} bytes]")
        elif self.request_body_length:
            lines.append(f"[body, {self.request_body_length} bytes]")
        return "\n".join(lines)

    def response_to_text(self, max_body_len: int = 2000) -> str:
        """Render the response, pretty-printing XML bodies."""
        lines = [f"HTTP/1.1 {self.status_code}"]
        for key, value in self.response_headers.items():
            lines.append(f"{key}: {value}")
        if self.response_body:
            lines.append("")
            body_str = self._format_xml(self._decode_body(self.response_body))
            if len(body_str) > max_body_len:
                body_str = body_str[:max_body_len] + "\n... [truncated]"
            lines.append(body_str)
        return "\n".join(lines)

    def _decode_body(self, body: bytes) -> str:
        """Decode bytes to string."""
        try:
            return body.decode("utf-8")
        except UnicodeDecodeError:
            return body.decode("latin-1")

    def _format_xml(self, text: str) -> str:
        """Pretty-print XML if possible."""
        if not text.lstrip().startswith("<"):
            return text
        try:
            dom = xml.dom.minidom.parseString(text.encode("utf-8"))
        except Exception:
            return text
        pretty = dom.toprettyxml(indent="  ")
        return pretty.split("\n", 1)[1] if pretty.startswith("<?xml") else pretty
