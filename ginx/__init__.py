"""
A virtual host reverse proxy.
"""

from .config import ProxyConfig
from .handler import RequestHandler
from .models import HTTPRequest, HTTPResponse, Mode, Protocol, Rule
from .proxy import VirtualHostProxy
from .relay import ForwardingRelay, RelayError
from .routing import HostResolver, RedirectPolicy
from .rules import ConfigError, RuleTable
from .server import ProxyServer

__all__ = ['ProxyConfig', 'RequestHandler', 'HTTPRequest', 'HTTPResponse', 'Mode',
           'Protocol', 'Rule', 'VirtualHostProxy', 'ForwardingRelay', 'RelayError',
           'HostResolver', 'RedirectPolicy', 'ConfigError', 'RuleTable', 'ProxyServer']
