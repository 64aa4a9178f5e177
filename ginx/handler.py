import socket
import ssl
import logging
from typing import Optional, Tuple

from .models import HTTPRequest, HTTPResponse, Protocol
from .relay import ForwardingRelay, RelayError
from .routing import HostResolver, RedirectPolicy

logger = logging.getLogger(__name__)

MAX_HEADER_BYTES = 65536
CONTINUE_RESPONSE = b'HTTP/1.1 100 Continue\r\n\r\n'


class RequestError(Exception):
    """The client sent something that cannot be forwarded."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class RequestHandler:
    """Handles processing of individual HTTP requests for one listener."""

    def __init__(self, protocol: Protocol, resolver: HostResolver,
                 redirect_policy: RedirectPolicy, relay: ForwardingRelay,
                 timeout: Optional[float] = 5, buffer_size: int = 4096,
                 ssl_context: Optional[ssl.SSLContext] = None):
        """
        Initialize the request handler.

        Args:
            protocol: Protocol of the listener this handler serves
            resolver: Picks the rule for each request
            redirect_policy: Decides on HTTP to HTTPS upgrades
            relay: Talks to the backends
            timeout: Client socket timeout in seconds
            buffer_size: Size of each read from the client
            ssl_context: Server side TLS context, required for HTTPS
        """
        if protocol is Protocol.HTTPS and ssl_context is None:
            raise ValueError("https handler needs an ssl context")
        self._protocol = protocol
        self._resolver = resolver
        self._redirect_policy = redirect_policy
        self._relay = relay
        self._timeout = timeout
        self._buffer_size = buffer_size
        self._ssl_context = ssl_context

    @property
    def protocol(self) -> Protocol:
        return self._protocol

    def handle_client(self, client_socket: socket.socket,
                      client_address: Tuple[str, int]) -> None:
        """
        Handle an individual client connection.

        Args:
            client_socket: Socket object for client connection
            client_address: Tuple of client's IP and port
        """
        try:
            client_socket.settimeout(self._timeout)
            if self._ssl_context is not None:
                try:
                    client_socket = self._ssl_context.wrap_socket(
                        client_socket, server_side=True)
                except OSError as e:
                    logger.debug(f"TLS handshake with {client_address} failed: {e}")
                    return
            self._serve(client_socket, client_address)
        finally:
            client_socket.close()

    def _serve(self, client_socket: socket.socket,
               client_address: Tuple[str, int]) -> None:
        try:
            request = self._read_request(client_socket)
            if request is None:
                return
            response = self._dispatch(request)
        except ConnectionError as e:
            logger.debug(f"Client {client_address} went away: {e}")
            return
        except RequestError as e:
            self._send_error_page(client_socket, e.status_code, str(e))
            return
        except RelayError as e:
            logger.warning(f"Backend error for client {client_address}: {e}")
            self._send_error_page(client_socket, 500, str(e))
            return
        except Exception as e:
            logger.error(f"Error handling client {client_address}: {e}")
            self._send_error_page(client_socket, 500, str(e))
            return

        try:
            client_socket.sendall(response.to_bytes())
        except OSError as e:
            logger.debug(f"Could not deliver response to {client_address}: {e}")

    def _dispatch(self, request: HTTPRequest) -> HTTPResponse:
        """Route a fully read request to a redirect or to its backend."""
        rule = self._resolver.resolve(self._protocol, request.get_header('Host'))
        if self._redirect_policy.should_redirect(self._protocol, rule):
            return self._redirect_policy.redirect(rule, request)
        return self._relay.forward(rule, request)

    def _send_error_page(self, client_socket: socket.socket,
                         status_code: int, message: str) -> None:
        """
        Best effort error page, sent before any other response bytes.

        If the client is already gone the failure is dropped on purpose and
        the connection is abandoned.
        """
        try:
            client_socket.sendall(
                HTTPResponse.create_error(status_code, message).to_bytes())
        except OSError:
            pass

    def _read_request(self, client_socket: socket.socket) -> Optional[HTTPRequest]:
        """
        Read the complete HTTP request from the client socket.

        Returns:
            The request with its body, or None if the client sent nothing
        """
        request_data = bytearray()

        # HTTP messages have headers and body separated by double CRLF
        while b'\r\n\r\n' not in request_data:
            if len(request_data) > MAX_HEADER_BYTES:
                raise RequestError(431, "request header fields too large")
            try:
                chunk = client_socket.recv(self._buffer_size)
            except socket.timeout:
                if not request_data:
                    return None
                raise RequestError(408, "timed out reading request")
            if not chunk:
                if not request_data.strip():
                    return None
                raise RequestError(400, "incomplete request")
            request_data.extend(chunk)

        header_data, _, body = bytes(request_data).partition(b'\r\n\r\n')
        if len(header_data) > MAX_HEADER_BYTES:
            raise RequestError(431, "request header fields too large")

        request = HTTPRequest.from_raw_data(header_data)
        if request is None:
            raise RequestError(400, "malformed request")

        # Only Content-Length signals a body
        content_length = request.get_header('Content-Length')
        if content_length is None:
            return request
        if not content_length.isdecimal():
            raise RequestError(400, f"invalid content-length: '{content_length}'")
        total_length = int(content_length)

        expect = request.get_header('Expect')
        if (len(body) < total_length and expect is not None
                and expect.lower() == '100-continue'):
            client_socket.sendall(CONTINUE_RESPONSE)

        body = bytearray(body)
        while len(body) < total_length:
            try:
                chunk = client_socket.recv(
                    min(self._buffer_size, total_length - len(body)))
            except socket.timeout:
                raise RequestError(408, "timed out reading request body")
            if not chunk:
                raise RequestError(400, "incomplete request body")
            body.extend(chunk)

        request.body = bytes(body[:total_length])
        return request
