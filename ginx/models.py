import platform
from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from typing import List, Optional, Tuple

Headers = List[Tuple[str, str]]


class Protocol(Enum):
    """Protocol a request arrived on."""
    HTTP = 'http'
    HTTPS = 'https'


class Mode(Enum):
    """Protocol exposure of a rule."""
    HTTP = 'http'
    HTTPS = 'https'
    HTTP_AND_HTTPS = 'http+https'

    def exposed_on(self, protocol: Protocol) -> bool:
        """Whether a rule in this mode is reachable over ``protocol``."""
        if self is Mode.HTTP_AND_HTTPS:
            return True
        if self is Mode.HTTP:
            return protocol is Protocol.HTTP
        if self is Mode.HTTPS:
            return protocol is Protocol.HTTPS
        raise AssertionError(f"unhandled mode {self!r}")


@dataclass(frozen=True)
class Rule:
    """A single virtual host mapping."""
    host: str
    backend_port: int
    mode: Mode = Mode.HTTP


@dataclass
class HTTPRequest:
    """Model representing an inbound HTTP request."""
    method: str
    path: str
    protocol: str
    headers: Headers
    body: Optional[bytes] = None

    @classmethod
    def from_raw_data(cls, header_data: bytes) -> Optional['HTTPRequest']:
        """
        Create HTTPRequest instance from the raw header block.

        Args:
            header_data: Request line and headers, without the blank line

        Returns:
            The parsed request, or None if the block is malformed
        """
        try:
            lines = header_data.decode('iso-8859-1').split('\r\n')

            # Parse request line
            method, path, protocol = lines[0].split()
            if not protocol.startswith('HTTP/'):
                return None

            # Parse headers, keeping order and duplicates
            headers = []
            for line in lines[1:]:
                if not line:
                    continue
                key, value = line.split(':', 1)
                if not key or key != key.strip():
                    return None
                headers.append((key, value.strip()))

            return cls(
                method=method,
                path=path,
                protocol=protocol,
                headers=headers
            )
        except ValueError:
            return None

    def get_header(self, name: str) -> Optional[str]:
        """Return the first value of a header, matched case-insensitively."""
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None

    def has_header(self, name: str) -> bool:
        return self.get_header(name) is not None


def error_html(status_code: int, text: str) -> str:
    """Generate the HTML for an error page."""
    e = f"{status_code} {HTTPStatus(status_code).phrase}"
    return (
        f"<html><head><title>{e}</title></head><body><center>"
        f"<h1>{e}</h1><p>{text}</p></center><br><hr><center>"
        f"<p>ginx running on Python {platform.python_version()}</p>"
        "</center></body></html>"
    )


@dataclass
class HTTPResponse:
    """Model representing an HTTP response sent back to the client."""
    status_code: int
    status_message: str
    headers: Headers = field(default_factory=list)
    body: bytes = b''
    protocol: str = 'HTTP/1.1'

    def get_header(self, name: str) -> Optional[str]:
        """Return the first value of a header, matched case-insensitively."""
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None

    def to_bytes(self) -> bytes:
        """Convert response to wire format."""
        head = f"{self.protocol} {self.status_code} {self.status_message}\r\n"
        head += ''.join(f"{k}: {v}\r\n" for k, v in self.headers)
        head += "\r\n"
        return head.encode('iso-8859-1') + self.body

    @classmethod
    def create_error(cls, status_code: int, text: str) -> 'HTTPResponse':
        """
        Create an error response with an HTML body.

        The text is embedded as-is, it is not escaped.
        """
        body = error_html(status_code, text).encode('utf-8')
        return cls(
            status_code=status_code,
            status_message=HTTPStatus(status_code).phrase,
            headers=[
                ('Content-Type', 'text/html'),
                ('Content-Length', str(len(body))),
                ('Connection', 'close')
            ],
            body=body
        )

    @classmethod
    def create_redirect(cls, location: str) -> 'HTTPResponse':
        """Create a permanent redirect with an empty body."""
        return cls(
            status_code=301,
            status_message=HTTPStatus(301).phrase,
            headers=[
                ('Location', location),
                ('Content-Length', '0'),
                ('Connection', 'close')
            ]
        )
