import threading
import logging
from typing import List

from .config import ProxyConfig
from .handler import RequestHandler
from .models import Protocol
from .relay import ForwardingRelay
from .routing import HostResolver, RedirectPolicy
from .rules import format_rule
from .server import ProxyServer

logger = logging.getLogger(__name__)


def startup_lines(config: ProxyConfig) -> List[str]:
    """Describe the active listeners and where every rule sends traffic."""
    lines = []
    for protocol in Protocol:
        if config.rule_table.exposes(protocol):
            lines.append(f"listening for {protocol.value} traffic on "
                         f"{config.listen_address}:{config.port_for(protocol)}")
    for rule in config.rule_table.rules:
        lines.extend(format_rule(rule, config.http_port, config.https_port,
                                 config.forward_address))
    return lines


class VirtualHostProxy:
    """
    A virtual host reverse proxy.

    Starts an HTTP listener if any rule is reachable over HTTP and an HTTPS
    listener if any rule is reachable over HTTPS. Both share one resolver,
    redirect policy and relay built from the same immutable config.
    """

    def __init__(self, config: ProxyConfig):
        self._config = config
        self._threads: List[threading.Thread] = []

        resolver = HostResolver(config.rule_table)
        redirect_policy = RedirectPolicy(config.https_port)
        relay = ForwardingRelay(config.forward_address, config.backend_timeout)

        self._servers: List[ProxyServer] = []
        for protocol in Protocol:
            if not config.rule_table.exposes(protocol):
                continue
            handler = RequestHandler(
                protocol, resolver, redirect_policy, relay,
                timeout=config.client_timeout,
                buffer_size=config.buffer_size,
                ssl_context=config.ssl_context if protocol is Protocol.HTTPS else None
            )
            self._servers.append(ProxyServer(
                handler,
                host=config.listen_address,
                port=config.port_for(protocol),
                backlog=config.max_connections
            ))

    @property
    def config(self) -> ProxyConfig:
        return self._config

    @property
    def servers(self) -> List[ProxyServer]:
        return list(self._servers)

    def start(self) -> None:
        """Bind every listener, then serve them on background threads."""
        try:
            for server in self._servers:
                server.bind()
        except OSError:
            for server in self._servers:
                server.shutdown()
            raise
        for server in self._servers:
            thread = threading.Thread(target=server.start)
            thread.daemon = True
            thread.start()
            self._threads.append(thread)

        for line in startup_lines(self._config):
            logger.info(line)

    def serve_forever(self) -> None:
        """Block until the listeners stop, starting them if needed."""
        if not self._threads:
            self.start()
        for thread in self._threads:
            thread.join()

    def shutdown(self) -> None:
        for server in self._servers:
            server.shutdown()
        for thread in self._threads:
            thread.join(timeout=5)
        self._threads = []
