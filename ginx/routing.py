from typing import Optional

from .models import HTTPRequest, HTTPResponse, Mode, Protocol, Rule
from .rules import RuleTable


def normalize_host(host_header: str) -> str:
    """Lowercase a Host header value and strip any port suffix."""
    return host_header.lower().split(':')[0]


class HostResolver:
    """Selects the rule a request belongs to from its Host header."""

    def __init__(self, rule_table: RuleTable):
        self._rules = {
            Protocol.HTTP: rule_table.http_rules,
            Protocol.HTTPS: rule_table.https_rules
        }

    def resolve(self, protocol: Protocol, host_header: Optional[str]) -> Rule:
        """
        Resolve the rule for a request.

        The first rule of the protocol is the default. When several rules
        share a host, the last one registered wins.

        Args:
            protocol: Protocol the request arrived on
            host_header: Raw Host header value, or None if absent

        Returns:
            The matching rule, or the default rule when nothing matches
        """
        rules = self._rules[protocol]
        rule = rules[0]
        if host_header is not None:
            host = normalize_host(host_header)
            for candidate in rules:
                if candidate.host == host:
                    rule = candidate
        return rule


class RedirectPolicy:
    """Decides when HTTP traffic must be upgraded to HTTPS."""

    def __init__(self, https_port: int):
        self._https_port = https_port

    def should_redirect(self, protocol: Protocol, rule: Rule) -> bool:
        return protocol is Protocol.HTTP and rule.mode is Mode.HTTP_AND_HTTPS

    def location(self, rule: Rule, request: HTTPRequest) -> str:
        return f"https://{rule.host}:{self._https_port}{request.path}"

    def redirect(self, rule: Rule, request: HTTPRequest) -> HTTPResponse:
        """Build the 301 response sending the client to the HTTPS side."""
        return HTTPResponse.create_redirect(self.location(rule, request))
