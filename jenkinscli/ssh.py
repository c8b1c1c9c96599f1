"""
jenkinscli SSH Mode
Runs a command through the server's SSH endpoint with paramiko.

The SSH library does its own transport security; this module only finds the
endpoint, authenticates with the loaded keys, builds the remote command line
and wires the three standard streams to the exec channel.

Unknown host keys are accepted with a warning unless
``ConnectionFactory.accept_unknown_host_keys`` is False
(-strictHostKeyChecking); a key that contradicts known_hosts is always fatal.
"""

import io
import logging
import socket
import sys
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional

import paramiko

from . import crypto
from .discovery import probe_ssh_endpoint
from .errors import (
    AuthenticationExhausted,
    ConfigurationError,
    ConnectFailure,
    NoKeyAvailable,
)
from .keepalive import StreamPump
from .resources import Closables

LOGGER = logging.getLogger(__name__)

KNOWN_HOSTS = Path.home() / ".ssh" / "known_hosts"
OUTPUT_JOIN_TIMEOUT = 10.0

_NEEDS_QUOTING = set(" \t\n\r\f\"'\\")
_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t", "\f": "\\f", "\b": "\\b"}


def quote_arg(arg: str) -> str:
    """Double-quote ``arg`` for the server's tokenizer, only when needed."""
    if arg and not _NEEDS_QUOTING.intersection(arg):
        return arg
    return '"' + "".join(_ESCAPES.get(ch, ch) for ch in arg) + '"'


def build_command(args: Iterable[str]) -> str:
    return " ".join(quote_arg(arg) for arg in args)


def to_paramiko_key(key: crypto.AsymmetricKey) -> Optional[paramiko.PKey]:
    """Convert a loaded private key; None for key types paramiko cannot offer."""
    if crypto.key_algorithm(key) != "RSA":
        return None
    return paramiko.RSAKey.from_private_key(io.StringIO(key.export_key("PEM").decode("ascii")))


def check_host_key(host: str, port: int, key: paramiko.PKey,
                   known_hosts: paramiko.HostKeys, accept_unknown: bool):
    """Compare the server key with known_hosts."""
    name = host if port == 22 else f"[{host}]:{port}"
    entry = known_hosts.lookup(name)
    if entry is None or key.get_name() not in entry:
        if not accept_unknown:
            raise ConnectFailure(f"Unknown host key for {name}")
        LOGGER.warning("Unknown host key for %s", name)
        return
    if entry[key.get_name()] != key:
        raise ConnectFailure(f"Host key for {name} does not match {KNOWN_HOSTS}")


def _load_known_hosts(path: Path = KNOWN_HOSTS) -> paramiko.HostKeys:
    known = paramiko.HostKeys()
    if path.exists():
        try:
            known.load(str(path))
        except (OSError, paramiko.SSHException) as e:
            LOGGER.warning("Failed to read %s: %s", path, e)
    return known


class SshCLI:
    """Session over SSH; every execute() opens a new exec channel."""

    def __init__(self, factory, known_hosts: Optional[paramiko.HostKeys] = None):
        if not factory.user:
            raise ConfigurationError("-user required when using -ssh")
        self.closables = Closables()
        try:
            host, port = probe_ssh_endpoint(factory.url, factory.http_client(self.closables))
            LOGGER.debug("Connecting via SSH to: %s:%d", host, port)
            try:
                sock = socket.create_connection((host, port), timeout=factory.connect_timeout)
            except OSError as e:
                raise ConnectFailure(f"Failed to connect to {host}:{port}: {e}") from e
            self.closables.add(sock, f"socket to {host}:{port}")

            self.transport = paramiko.Transport(sock)
            self.closables.add(self.transport, "SSH transport")
            self.transport.start_client(timeout=factory.connect_timeout)
            check_host_key(host, port, self.transport.get_remote_server_key(),
                           known_hosts if known_hosts is not None else _load_known_hosts(),
                           factory.accept_unknown_host_keys)
            self._authenticate(factory.user, factory.keys)
        except paramiko.SSHException as e:
            self.closables.close()
            raise ConnectFailure(f"SSH connection failed: {e}") from e
        except BaseException:
            self.closables.close()
            raise

    def _authenticate(self, user: str, keys: List[crypto.AsymmetricKey]):
        if not keys:
            raise NoKeyAvailable("No private key is available for use in authentication")
        for key in keys:
            pkey = to_paramiko_key(key)
            if pkey is None:
                LOGGER.warning("Skipping %s private key, not supported over SSH", crypto.key_algorithm(key))
                continue
            LOGGER.info("Offering %s private key", crypto.key_algorithm(key))
            try:
                self.transport.auth_publickey(user, pkey)
                return
            except paramiko.AuthenticationException as e:
                LOGGER.debug("Key rejected: %s", e)
        raise AuthenticationExhausted(f"Authentication failed for {user}. No private key accepted.")

    def execute(self, args: List[str], stdin: Optional[BinaryIO] = None,
                stdout: Optional[BinaryIO] = None, stderr: Optional[BinaryIO] = None) -> int:
        """Run the command remotely and return its exit status."""
        command = build_command(args)
        try:
            channel = self.transport.open_session()
            channel.exec_command(command)
        except paramiko.SSHException as e:
            raise ConnectFailure(f"Failed to start '{command}': {e}") from e

        StreamPump(stdin or sys.stdin.buffer, channel.makefile("wb"),
                   on_end=channel.shutdown_write, name="ssh stdin").start()
        outputs = [
            StreamPump(channel.recv, stdout or sys.stdout.buffer, name="ssh stdout"),
            StreamPump(channel.recv_stderr, stderr or sys.stderr.buffer, name="ssh stderr"),
        ]
        for pump in outputs:
            pump.start()
        try:
            status = channel.recv_exit_status()
            for pump in outputs:
                pump.join(OUTPUT_JOIN_TIMEOUT)
        finally:
            channel.close()
        return status

    def close(self) -> List[Exception]:
        return self.closables.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
