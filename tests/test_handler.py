import logging
import threading
import unittest
import sys
import os

# Add the parent directory to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ginx.handler import RequestHandler
from ginx.models import Protocol
from ginx.routing import HostResolver, RedirectPolicy
from ginx.rules import RuleTable
from ginx.server import ProxyServer
from tests.helpers import raw_exchange


class FailingRelay:
    """Relay whose backend call blows up with an unexpected error."""

    def __init__(self):
        self.calls = 0

    def forward(self, rule, request):
        self.calls += 1
        raise RuntimeError("relay exploded")


class TestUnexpectedErrors(unittest.TestCase):
    """Test cases for faults outside the known error kinds."""

    def setUp(self):
        self.relay = FailingRelay()
        table = RuleTable.from_tokens(["a:1"], https_enabled=False)
        handler = RequestHandler(Protocol.HTTP, HostResolver(table),
                                 RedirectPolicy(443), self.relay)
        self.server = ProxyServer(handler, host="127.0.0.1", port=0)
        self.thread = threading.Thread(target=self.server.start)
        self.thread.daemon = True
        self.thread.start()
        self.assertTrue(self.server.wait_ready(timeout=5))

    def tearDown(self):
        self.server.shutdown()
        self.thread.join(timeout=5)

    def test_unexpected_error_becomes_500(self):
        # Act
        with self.assertLogs("ginx.handler", level=logging.ERROR) as logs:
            response = raw_exchange(self.server.port,
                                    b"GET / HTTP/1.1\r\nHost: a\r\n\r\n")

        # Assert
        self.assertTrue(response.startswith(b"HTTP/1.1 500 Internal Server Error\r\n"))
        self.assertIn(b"relay exploded", response)
        self.assertIn(b"Connection: close", response)
        self.assertEqual(self.relay.calls, 1)
        self.assertIn("relay exploded", logs.output[0])

    def test_listener_survives_unexpected_error(self):
        request = b"GET / HTTP/1.1\r\nHost: a\r\n\r\n"
        with self.assertLogs("ginx.handler", level=logging.ERROR):
            first = raw_exchange(self.server.port, request)
            second = raw_exchange(self.server.port, request)

        self.assertTrue(first.startswith(b"HTTP/1.1 500"))
        self.assertTrue(second.startswith(b"HTTP/1.1 500"))
        self.assertEqual(self.relay.calls, 2)


if __name__ == '__main__':
    unittest.main()
