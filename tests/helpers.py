import json
import logging
import os
import socket
import threading
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

logger = logging.getLogger(__name__)


def free_port() -> int:
    """Ask the OS for a port nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


class EchoBackendHandler(BaseHTTPRequestHandler):
    """Backend that answers every request with a JSON description of it."""
    protocol_version = 'HTTP/1.1'

    def do_GET(self):
        if self.path == '/missing':
            self._send_json(404, {"error": "Not found"})
        elif self.path == '/chunked':
            self._send_chunked([b'hello ', b'chunked ', b'world'])
        elif self.path == '/cookies':
            self.send_response(200)
            self.send_header('Set-Cookie', 'a=1')
            self.send_header('Set-Cookie', 'b=2')
            self.send_header('Content-Length', '0')
            self.end_headers()
        else:
            self._echo()

    def do_POST(self):
        self._echo()

    def do_PUT(self):
        self._echo()

    def do_DELETE(self):
        self._echo()

    def _read_body(self) -> bytes:
        if self.headers.get('Transfer-Encoding', '').lower() == 'chunked':
            body = bytearray()
            while True:
                size = int(self.rfile.readline().split(b';')[0].strip(), 16)
                if size == 0:
                    # Skip trailers up to the blank line
                    while self.rfile.readline() not in (b'\r\n', b'\n', b''):
                        pass
                    return bytes(body)
                body.extend(self.rfile.read(size))
                self.rfile.readline()
        content_length = int(self.headers.get('Content-Length', 0))
        return self.rfile.read(content_length) if content_length > 0 else b''

    def _echo(self):
        body = self._read_body()
        self._send_json(200, {
            "backend": self.server.name,
            "method": self.command,
            "path": self.path,
            "headers": self.headers.items(),
            "body": body.decode('utf-8')
        })

    def _send_json(self, status_code: int, data: dict):
        response_data = json.dumps(data).encode('utf-8')
        self.send_response(status_code)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(response_data)))
        self.end_headers()
        self.wfile.write(response_data)

    def _send_chunked(self, chunks):
        self.send_response(200)
        self.send_header('Content-Type', 'text/plain')
        self.send_header('Transfer-Encoding', 'chunked')
        self.end_headers()
        for chunk in chunks:
            self.wfile.write(f"{len(chunk):x}\r\n".encode('ascii') + chunk + b"\r\n")
        self.wfile.write(b"0\r\n\r\n")

    def log_message(self, format, *args):
        """Override to use our logger."""
        logger.debug(f"{self.address_string()} - {format % args}")


def start_backend(name: str) -> Tuple[ThreadingHTTPServer, threading.Thread]:
    """Start an echo backend on a free port in a daemon thread."""
    server = ThreadingHTTPServer(('127.0.0.1', 0), EchoBackendHandler)
    server.name = name
    thread = threading.Thread(target=server.serve_forever)
    thread.daemon = True
    thread.start()
    return server, thread


def raw_exchange(port: int, data: bytes) -> bytes:
    """Send raw bytes to the proxy and read until it closes the connection."""
    with socket.create_connection(("127.0.0.1", port), timeout=10) as s:
        s.sendall(data)
        response = bytearray()
        try:
            while True:
                chunk = s.recv(4096)
                if not chunk:
                    break
                response.extend(chunk)
        except ConnectionResetError:
            pass
    return bytes(response)


def stop_backend(server: ThreadingHTTPServer, thread: threading.Thread) -> None:
    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


def write_self_signed_certificate(directory: str) -> Tuple[str, str]:
    """Write a throwaway certificate and key for localhost, return their paths."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName("localhost")]),
                       critical=False)
        .sign(key, hashes.SHA256())
    )

    certificate_path = os.path.join(directory, "cert.pem")
    key_path = os.path.join(directory, "key.pem")
    with open(certificate_path, "wb") as f:
        f.write(certificate.public_bytes(serialization.Encoding.PEM))
    with open(key_path, "wb") as f:
        f.write(key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption()
        ))
    return certificate_path, key_path
