from dataclasses import dataclass
from typing import Iterable, List, Tuple

from .models import Mode, Protocol, Rule


class ConfigError(ValueError):
    """Fatal configuration problem, reported before any listener starts."""


def parse_rule(token: str, https_enabled: bool) -> Rule:
    """
    Parse a single ``[@|#]<host>:<port>`` rule token.

    Args:
        token: Raw rule token
        https_enabled: Whether a certificate and key were supplied

    Returns:
        The parsed rule

    Raises:
        ConfigError: If the token is malformed or needs HTTPS when it is disabled
    """
    fields = token.lower().split(':')
    if len(fields) != 2:
        raise ConfigError(f"malformed rule: '{token}'")
    host = fields[0].strip()
    port = fields[1].strip()

    mode = Mode.HTTP
    if host.startswith('@'):
        if not https_enabled:
            raise ConfigError(
                f"must specify https rules after specifying certificate and key: '{token}'")
        host = host[1:]
        mode = Mode.HTTPS
    elif host.startswith('#'):
        if not https_enabled:
            raise ConfigError(
                f"must specify http+https rules after specifying certificate and key: '{token}'")
        host = host[1:]
        mode = Mode.HTTP_AND_HTTPS

    if not host or not port.isdecimal() or not 0 < int(port) < 65536:
        raise ConfigError(f"malformed rule: '{token}'")

    try:
        # Internationalized names are kept in their ASCII form
        host = host.encode('idna').decode('ascii')
    except UnicodeError:
        raise ConfigError(f"malformed rule: '{token}'")

    return Rule(host=host, backend_port=int(port), mode=mode)


def split_rule_list(argument: str) -> List[str]:
    """Split a comma-separated rule list into tokens."""
    return argument.split(',')


@dataclass(frozen=True)
class RuleTable:
    """Immutable set of virtual host rules, in registration order."""
    rules: Tuple[Rule, ...]

    @classmethod
    def from_tokens(cls, tokens: Iterable[str], https_enabled: bool) -> 'RuleTable':
        """
        Build the table from raw rule tokens.

        Raises:
            ConfigError: On any malformed token or when no rules are given
        """
        rules = tuple(parse_rule(token, https_enabled) for token in tokens)
        if not rules:
            raise ConfigError("must define at least one rule")
        return cls(rules)

    @property
    def http_rules(self) -> Tuple[Rule, ...]:
        """Rules reachable over HTTP."""
        return self.rules_for(Protocol.HTTP)

    @property
    def https_rules(self) -> Tuple[Rule, ...]:
        """Rules reachable over HTTPS."""
        return self.rules_for(Protocol.HTTPS)

    def rules_for(self, protocol: Protocol) -> Tuple[Rule, ...]:
        return tuple(rule for rule in self.rules if rule.mode.exposed_on(protocol))

    def exposes(self, protocol: Protocol) -> bool:
        return any(rule.mode.exposed_on(protocol) for rule in self.rules)


def format_rule(rule: Rule, http_port: int, https_port: int,
                forward_address: str) -> List[str]:
    """Return the startup log lines describing where a rule sends traffic."""
    backend = f"http://{forward_address}:{rule.backend_port}/*"
    http_side = f"http://{rule.host}:{http_port}/*"
    https_side = f"https://{rule.host}:{https_port}/*"

    if rule.mode is Mode.HTTP:
        return [f"{http_side} -> {backend}"]
    if rule.mode is Mode.HTTPS:
        return [f"{https_side} -> {backend}"]
    if rule.mode is Mode.HTTP_AND_HTTPS:
        return [f"{http_side} -> {https_side}", f"{https_side} -> {backend}"]
    raise AssertionError(f"unhandled mode {rule.mode!r}")
