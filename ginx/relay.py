import http.client
import logging
from typing import Optional

from .models import Headers, HTTPRequest, HTTPResponse, Rule

logger = logging.getLogger(__name__)


EMPTY_CHUNKED_BODY = b"0\r\n\r\n"


class RelayError(Exception):
    """The backend could not be reached or answered with garbage."""


def is_chunked(headers: Headers) -> bool:
    """Whether the last transfer coding of the message is chunked."""
    for key, value in headers:
        if key.lower() == 'transfer-encoding':
            if value.lower().split(',')[-1].strip() == 'chunked':
                return True
    return False


def override_host(headers: Headers, host: str) -> Headers:
    """
    Return a copy of the headers with Host set to ``host``.

    The first Host header is replaced in place and any further ones are
    dropped. If there is none, Host is put first.
    """
    result = []
    replaced = False
    for key, value in headers:
        if key.lower() == 'host':
            if not replaced:
                result.append((key, host))
                replaced = True
            continue
        result.append((key, value))
    if not replaced:
        result.insert(0, ('Host', host))
    return result


class ForwardingRelay:
    """Forwards requests to backends on the forward address."""

    def __init__(self, forward_address: str, timeout: Optional[float] = None):
        """
        Initialize the relay.

        Args:
            forward_address: Address every backend listens on
            timeout: Backend socket timeout in seconds, None to wait forever
        """
        self._forward_address = forward_address
        self._timeout = timeout

    @property
    def forward_address(self) -> str:
        return self._forward_address

    def forward(self, rule: Rule, request: HTTPRequest) -> HTTPResponse:
        """
        Send the request to the rule's backend and buffer the whole response.

        The listener protocol is not needed here, backends are always
        reached over plain HTTP.

        Args:
            rule: Rule the request resolved to
            request: Inbound request, body already read

        Returns:
            The backend response, ready to be sent to the client

        Raises:
            RelayError: On any transport failure talking to the backend
        """
        logger.debug(f"Forwarding {request.method} {request.path} to "
                     f"{self._forward_address}:{rule.backend_port} as {rule.host}")
        connection = http.client.HTTPConnection(
            self._forward_address, rule.backend_port, timeout=self._timeout)
        try:
            connection.putrequest(request.method, request.path,
                                  skip_host=True, skip_accept_encoding=True)
            outbound_headers = override_host(request.headers, rule.host)
            for key, value in outbound_headers:
                connection.putheader(key, value)

            outbound_body = request.body
            if outbound_body is None and is_chunked(outbound_headers):
                # Chunked bodies are not relayed, close the message empty
                outbound_body = EMPTY_CHUNKED_BODY
            connection.endheaders(outbound_body)

            backend_response = connection.getresponse()
            status = backend_response.status
            reason = backend_response.reason
            headers = backend_response.getheaders()
            chunked = backend_response.chunked
            body = backend_response.read()
        except (OSError, http.client.HTTPException) as e:
            raise RelayError(str(e) or e.__class__.__name__) from e
        finally:
            connection.close()

        if chunked:
            # Body was de-chunked while buffering
            headers = [(k, v) for k, v in headers
                       if k.lower() != 'transfer-encoding']
            headers.append(('Content-Length', str(len(body))))

        return HTTPResponse(
            status_code=status,
            status_message=reason,
            headers=headers,
            body=body
        )
