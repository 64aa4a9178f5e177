import argparse
import logging
import sys
from typing import List, Optional

from .config import DEFAULTS, ProxyConfig, load_config_file, load_ssl_context
from .proxy import VirtualHostProxy
from .rules import ConfigError, RuleTable, split_rule_list

logger = logging.getLogger(__name__)

USAGE = ("ginx [-p <http_port>] [-a <listen_address>] [-f <forward_address>] "
         "[-s <certificate_path> <key_path> [-q <https_port>]] [-c <config.json>] [-v] "
         "[@|#]<host>:<port>[,...]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ginx',
        usage=USAGE,
        description="ginx - simple reverse proxy for virtual hosting",
        epilog="rules: <host>:<port> forwards http traffic, @<host>:<port> "
               "forwards https traffic, #<host>:<port> redirects http to https "
               "and forwards https traffic."
    )
    parser.add_argument('-p', dest='http_port', type=int,
                        help="The port to listen for HTTP traffic on [default: 80].")
    parser.add_argument('-q', dest='https_port', type=int,
                        help="The port to listen for HTTPS traffic on [default: 443].")
    parser.add_argument('-a', dest='listen_address',
                        help="The address to listen on [default: 0.0.0.0].")
    parser.add_argument('-f', dest='forward_address',
                        help="The address to forward requests to [default: 127.0.0.1].")
    parser.add_argument('-s', dest='tls', nargs=2, metavar=('CERTIFICATE', 'KEY'),
                        help="The certificate and key to use for HTTPS.")
    parser.add_argument('-c', dest='config',
                        help="JSON file with default settings.")
    parser.add_argument('-v', dest='verbose', action='store_true',
                        help="Log every connection problem.")
    parser.add_argument('rules', nargs='*', metavar='RULES',
                        help="Comma-separated rules.")
    return parser


def _check_port(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 < value < 65536:
        raise ConfigError(f"invalid {name}: {value!r}")
    return value


def _check_positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"invalid {name}: {value!r}")
    return value


def _check_timeout(value, name: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"invalid {name}: {value!r}")
    return value


def _check_string(value, name: str) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"invalid {name}: {value!r}")
    return value


def _rule_tokens(rules) -> List[str]:
    if isinstance(rules, str):
        return split_rule_list(rules)
    if not isinstance(rules, list) or not all(isinstance(token, str) for token in rules):
        raise ConfigError(f"invalid rules: {rules!r}")
    return list(rules)


def build_config(args: argparse.Namespace) -> ProxyConfig:
    """
    Turn parsed arguments into a validated ProxyConfig.

    Raises:
        ConfigError: On any invalid setting
    """
    settings = load_config_file(args.config) if args.config else dict(DEFAULTS)
    for key in ('http_port', 'https_port', 'listen_address', 'forward_address'):
        value = getattr(args, key)
        if value is not None:
            settings[key] = value
    if args.tls:
        settings['certificate'], settings['key'] = args.tls

    ssl_context = None
    if settings['certificate'] or settings['key']:
        if not (settings['certificate'] and settings['key']):
            raise ConfigError("https needs both a certificate and a key")
        ssl_context = load_ssl_context(_check_string(settings['certificate'], 'certificate'),
                                       _check_string(settings['key'], 'key'))
    elif args.https_port is not None:
        raise ConfigError("must specify https port after specifying certificate and key")

    if args.rules:
        tokens = [token for argument in args.rules for token in split_rule_list(argument)]
    else:
        tokens = _rule_tokens(settings['rules'])

    return ProxyConfig(
        rule_table=RuleTable.from_tokens(tokens, https_enabled=ssl_context is not None),
        listen_address=_check_string(settings['listen_address'], 'listen address'),
        http_port=_check_port(settings['http_port'], 'http port'),
        https_port=_check_port(settings['https_port'], 'https port'),
        forward_address=_check_string(settings['forward_address'], 'forward address'),
        ssl_context=ssl_context,
        client_timeout=_check_timeout(settings['client_timeout'], 'client timeout'),
        backend_timeout=_check_timeout(settings['backend_timeout'], 'backend timeout'),
        max_connections=_check_positive_int(settings['max_connections'], 'max connections'),
        buffer_size=_check_positive_int(settings['buffer_size'], 'buffer size')
    )


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(message)s')

    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error(f"error: {e}")
        return 1

    proxy = VirtualHostProxy(config)
    try:
        proxy.start()
    except OSError as e:
        logger.error(f"error: {e}")
        return 1

    try:
        proxy.serve_forever()
    except KeyboardInterrupt:
        logger.info("shutting down")
    finally:
        proxy.shutdown()
    return 0
