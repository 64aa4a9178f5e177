import json
import ssl
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .models import Protocol
from .rules import ConfigError, RuleTable

DEFAULTS: Dict[str, Any] = {
    "listen_address": "0.0.0.0",
    "http_port": 80,
    "https_port": 443,
    "forward_address": "127.0.0.1",
    "certificate": None,
    "key": None,
    "rules": [],
    "client_timeout": 5,
    "backend_timeout": None,
    "max_connections": 128,
    "buffer_size": 4096
}


@dataclass(frozen=True)
class ProxyConfig:
    """Validated, read-only settings for a running proxy."""
    rule_table: RuleTable
    listen_address: str = "0.0.0.0"
    http_port: int = 80
    https_port: int = 443
    forward_address: str = "127.0.0.1"
    ssl_context: Optional[ssl.SSLContext] = None
    client_timeout: Optional[float] = 5
    backend_timeout: Optional[float] = None
    max_connections: int = 128
    buffer_size: int = 4096

    @property
    def https_enabled(self) -> bool:
        return self.ssl_context is not None

    def port_for(self, protocol: Protocol) -> int:
        if protocol is Protocol.HTTP:
            return self.http_port
        return self.https_port


def load_ssl_context(certificate_path: str, key_path: str) -> ssl.SSLContext:
    """
    Load a certificate and key into a server side TLS context.

    Raises:
        ConfigError: If either file cannot be read or they do not match
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        context.load_cert_chain(certfile=certificate_path, keyfile=key_path)
    except (OSError, ssl.SSLError) as e:
        raise ConfigError(
            f"could not load certificate '{certificate_path}' and key '{key_path}': {e}")
    return context


def load_config_file(config_path: str) -> Dict[str, Any]:
    """
    Load settings from a JSON configuration file.

    Args:
        config_path: Path to JSON configuration file

    Returns:
        The defaults updated with the file's values
    """
    config = dict(DEFAULTS)
    try:
        with open(config_path, 'r') as f:
            file_config = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"error loading config file: {e}")
    if not isinstance(file_config, dict):
        raise ConfigError(f"error loading config file: {config_path} is not a JSON object")

    unknown = set(file_config) - set(DEFAULTS)
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(sorted(unknown))}")
    config.update(file_config)
    return config
