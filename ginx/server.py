import socket
import threading
import logging
from typing import Optional, Tuple

from .handler import RequestHandler

logger = logging.getLogger(__name__)


class ProxyServer:
    """One listening socket, serving each connection on its own thread."""

    def __init__(self, handler: RequestHandler, host: str = "0.0.0.0",
                 port: int = 80, backlog: int = 128):
        """
        Initialize the proxy server.

        Args:
            handler: Handles every accepted connection
            host: Host address to bind
            port: Port number to listen on
            backlog: Listen queue size
        """
        self._handler = handler
        self._host = host
        self._port = port
        self._backlog = backlog

        self._server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        self._running = False
        self._ready = threading.Event()

    @property
    def host(self) -> str:
        """Get the host address."""
        return self._host

    @property
    def port(self) -> int:
        """Get the port number."""
        return self._port

    @property
    def server_socket(self) -> socket.socket:
        """Get the server socket."""
        return self._server_socket

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is listening."""
        return self._ready.wait(timeout)

    def bind(self) -> None:
        """Bind and listen, so address errors surface in the caller's thread."""
        if self._ready.is_set():
            return
        self._server_socket.bind((self._host, self._port))
        self._port = self._server_socket.getsockname()[1]
        self._server_socket.listen(self._backlog)
        self._ready.set()
        logger.debug(f"{self._handler.protocol.value} listener bound to "
                     f"{self._host}:{self._port}")

    def start(self) -> None:
        """Start the server. Blocks until shutdown() is called."""
        self._running = True
        try:
            self.bind()

            while self._running:
                try:
                    client_socket, client_address = self._server_socket.accept()
                    if not self._running:
                        client_socket.close()
                        break

                    # Handle each client in a separate thread
                    thread = threading.Thread(
                        target=self._handler.handle_client,
                        args=(client_socket, client_address)
                    )
                    thread.daemon = True
                    thread.start()
                except OSError as e:
                    if self._running:  # Only log if we're still meant to be running
                        logger.error(f"Server error: {e}")

        finally:
            self._server_socket.close()

    def shutdown(self) -> None:
        """Shutdown the proxy server gracefully."""
        self._running = False
        # Create a dummy connection to unblock accept()
        if self._ready.is_set():
            try:
                with socket.create_connection(self._wake_address(), timeout=1):
                    pass
            except OSError:
                pass
        self._server_socket.close()

    def _wake_address(self) -> Tuple[str, int]:
        if self._host in ("", "0.0.0.0"):
            return "127.0.0.1", self._port
        return self._host, self._port
