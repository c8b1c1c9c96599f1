"""
jenkinscli Command Line
Entry point of the ``jenkins-cli`` command.

Responsibilities:
- Parse the options and the command to run
- Build the ConnectionFactory from options and environment
- Connect, optionally authenticate, execute, close
- Turn every error into a single diagnostic and an exit status
"""

import argparse
import logging
import os
import sys
from importlib import metadata
from pathlib import Path
from typing import List, Optional
from urllib.parse import unquote, urlsplit, urlunsplit

from .client import CLI, create_factory
from .errors import AuthenticationError, CLIError, ConfigurationError, CryptoFailure
from .keys import PrivateKeyProvider
from .selector import Mode
from .tunnel import parse_address

LOGGER = logging.getLogger(__name__)

URL_ENVIRONMENT = ("JENKINS_URL", "HUDSON_URL")

# Level names the Java client accepted for -logger
LEVELS = {
    "ALL": logging.NOTSET,
    "FINEST": logging.DEBUG,
    "FINER": logging.DEBUG,
    "FINE": logging.DEBUG,
    "CONFIG": logging.INFO,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "SEVERE": logging.ERROR,
    "OFF": logging.CRITICAL + 1,
}


def parse_level(name: str) -> int:
    level = LEVELS.get(name.upper())
    if level is None:
        level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise argparse.ArgumentTypeError(f"unknown log level: {name}")
    return level


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jenkins-cli",
        description="Run a command on a Jenkins server.",
        allow_abbrev=False,
    )
    parser.add_argument("-s", dest="url", metavar="URL",
                        help="Jenkins root URL (default: $JENKINS_URL)")
    modes = parser.add_mutually_exclusive_group()
    modes.add_argument("-http", dest="mode", action="store_const", const=Mode.HTTP,
                       help="use the plain protocol over HTTP")
    modes.add_argument("-ssh", dest="mode", action="store_const", const=Mode.SSH,
                       help="use SSH")
    modes.add_argument("-remoting", dest="mode", action="store_const", const=Mode.CLI_PORT,
                       help="use the remoting protocol over the CLI port")
    parser.add_argument("-i", dest="keys", action="append", default=[], metavar="KEY",
                        help="SSH private key file used for authentication")
    parser.add_argument("-p", dest="proxy", metavar="HOST:PORT",
                        help="HTTP proxy to tunnel the CLI connection through")
    parser.add_argument("-noKeyAuth", action="store_true",
                        help="don't try to load the SSH authentication private key")
    parser.add_argument("-noCertificateCheck", action="store_true",
                        help="bypass HTTPS certificate check entirely. Use with caution")
    parser.add_argument("-user", help="user name for -ssh")
    parser.add_argument("-auth", metavar="USER:SECRET",
                        help="HTTP authentication, or @FILE to read it from a file")
    parser.add_argument("-logger", type=parse_level, metavar="LEVEL",
                        help="log level (FINE, INFO, SEVERE, ... or Python names)")
    parser.add_argument("-strictHostKeyChecking", action="store_true",
                        help="refuse SSH host keys missing from known_hosts")
    parser.add_argument("-version", action="store_true",
                        help="print the client version and exit")
    parser.add_argument("command", nargs=argparse.REMAINDER,
                        help="command and its arguments (default: help)")
    return parser


def version() -> str:
    try:
        return metadata.version("jenkinscli")
    except metadata.PackageNotFoundError:
        return "unknown"


def split_userinfo(url: str):
    """Return ``url`` without credentials, and "user:password" if it had some."""
    parts = urlsplit(url)
    if parts.username is None:
        return url, None
    netloc = parts.hostname or ""
    if parts.port is not None:
        netloc += f":{parts.port}"
    userinfo = unquote(parts.username)
    if parts.password is not None:
        userinfo += ":" + unquote(parts.password)
    return urlunsplit(parts._replace(netloc=netloc)), userinfo


def read_auth(value: str) -> str:
    if value.startswith("@"):
        try:
            return Path(value[1:]).read_text().strip()
        except OSError as e:
            raise ConfigurationError(f"Failed to read {value[1:]}: {e}") from e
    return value


def load_keys(args) -> PrivateKeyProvider:
    provider = PrivateKeyProvider()
    for path in args.keys:
        try:
            provider.read_from(path)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Failed to load the private key {path}: {e}") from e
    if not args.keys and not args.noKeyAuth:
        provider.read_from_default_locations()
    return provider


def run(args) -> int:
    url = args.url or next((os.environ[name] for name in URL_ENVIRONMENT if os.environ.get(name)), None)
    if not url:
        raise ConfigurationError("Jenkins URL is not specified; use -s or set JENKINS_URL")
    url, userinfo = split_userinfo(url)

    if args.user and args.auth:
        print("[WARN] -user and -auth are mutually exclusive", file=sys.stderr)
    if args.user and args.mode is not Mode.SSH:
        print("[WARN] -user is only used with -ssh", file=sys.stderr)

    proxy = None
    if args.proxy:
        parse_address(args.proxy)
        proxy = args.proxy

    if args.noCertificateCheck:
        print("[WARN] Skipping HTTPS certificate checks altogether. "
              "Note that this is not secure at all.", file=sys.stderr)

    keys = load_keys(args)
    factory = create_factory(
        url,
        https_proxy_tunnel=proxy,
        verify_tls=not args.noCertificateCheck,
        user=args.user,
        keys=keys.keys,
        accept_unknown_host_keys=not args.strictHostKeyChecking,
    )
    if args.auth:
        factory.basic_auth(read_auth(args.auth))
    elif userinfo:
        factory.basic_auth(userinfo)

    session = factory.connect(args.mode)
    try:
        if isinstance(session, CLI) and keys.has_keys():
            try:
                session.authenticate(keys.keys)
            except (AuthenticationError, CryptoFailure) as e:
                if args.keys:
                    raise
                LOGGER.debug("Key authentication failed", exc_info=e)
                print("[WARN] Failed to authenticate with your SSH keys. Proceeding as anonymous",
                      file=sys.stderr)
        return session.execute(args.command or ["help"])
    finally:
        session.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.version:
        print(f"Version: {version()}")
        return 0

    logging.basicConfig(
        level=args.logger if args.logger is not None else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return run(args)
    except CLIError as e:
        LOGGER.debug("Fatal error", exc_info=e)
        print(f"[!] {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n[!] Interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
