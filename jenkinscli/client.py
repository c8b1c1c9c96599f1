"""
jenkinscli Client
Connects to a Jenkins server and runs CLI commands on it.

Responsibilities:
- Hold the connection settings (ConnectionFactory)
- Pick a transport, falling back from the CLI port to plain HTTP
- Own every resource of a session and release it exactly once
- Execute commands, optionally after public key authentication
"""

import base64
import io
import locale
import logging
import sys
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, List, Optional

import httpx

from . import auth
from .connection import Connection
from .crypto import AsymmetricKey
from .discovery import probe
from .duplex import FullDuplexHttpStream, fetch_crumb
from .errors import ConfigurationError, ConnectFailure, UpgradeRefused, VersionMismatch
from .handshake import connect_cli_port
from .keepalive import PingThread, StreamPump, ignore_dead
from .plain import ClientSide
from .protocol import CONNECT_TIMEOUT, ENTRY_POINT_PROPERTY, ENTRY_POINT_VERSION, PING_INTERVAL, PING_TIMEOUT
from .remoting import ChannelFactory, load_channel_factory
from .resources import Closables
from .selector import Mode, TransportSelector

LOGGER = logging.getLogger(__name__)

UPGRADE_SCRIPT = b"hudson.remoting.Channel.current().setRestricted(false)"


def default_locale() -> str:
    """Locale name in the server's format, e.g. "en_US"."""
    return locale.getlocale()[0] or "en"


def default_encoding() -> str:
    return locale.getpreferredencoding(False)


def _sink(stream: BinaryIO) -> Callable[[bytes], None]:
    def write(chunk: bytes):
        stream.write(chunk)
        stream.flush()
    return write


@dataclass
class ConnectionFactory:
    """Settings shared by every connection to one server."""
    url: str
    executor: Optional[Executor] = None
    https_proxy_tunnel: Optional[str] = None
    authorization: Optional[str] = None
    channel_factory: Optional[ChannelFactory] = None
    verify_tls: bool = True
    connect_timeout: float = CONNECT_TIMEOUT
    user: Optional[str] = None
    keys: List[AsymmetricKey] = field(default_factory=list)
    accept_unknown_host_keys: bool = True
    http: Optional[httpx.Client] = None

    def __post_init__(self):
        if not self.url.endswith("/"):
            self.url += "/"

    def basic_auth(self, userinfo: str) -> "ConnectionFactory":
        """Use HTTP basic authentication with "user:password" or "user:token"."""
        self.authorization = "Basic " + base64.b64encode(userinfo.encode("utf-8")).decode("ascii")
        return self

    def http_client(self, closables: Closables) -> httpx.Client:
        """The shared client, or a new one owned by ``closables``."""
        if self.http is not None:
            return self.http
        client = httpx.Client(verify=self.verify_tls, follow_redirects=True,
                              timeout=httpx.Timeout(10.0))
        closables.add(client, "HTTP client")
        return client

    # Transports

    def connect_cli_port(self) -> "CLI":
        """Remoting over the CLI port, secured by the version 2 handshake."""
        if self.channel_factory is None:
            raise ConfigurationError("No remoting implementation is installed")
        closables = Closables()
        try:
            endpoint = probe(self.url, self.http_client(closables))
            if self.authorization:
                LOGGER.warning("-auth ignored when using the CLI port")
            conn = connect_cli_port(endpoint, closables, self.https_proxy_tunnel, self.connect_timeout)
            return CLI(self, conn, closables)
        except BaseException:
            closables.close()
            raise

    def connect_http(self) -> "PlainCLI":
        """Framed plain protocol over full duplex HTTP."""
        closables = Closables()
        try:
            return PlainCLI(self, closables)
        except BaseException:
            closables.close()
            raise

    def connect_ssh(self):
        from .ssh import SshCLI
        return SshCLI(self)

    def connect(self, mode: Optional[Mode] = None):
        """
        Open a session with ``mode``, or with the fallback chain when None.

        Returns CLI, PlainCLI or SshCLI; all of them support execute() and close().
        """
        attempts = []
        if mode is Mode.CLI_PORT or (mode is None and self.channel_factory is not None):
            attempts.append(("CLI port", self.connect_cli_port))
        elif mode is None:
            LOGGER.debug("No remoting implementation installed; skipping the CLI port")
        if mode in (None, Mode.HTTP):
            attempts.append(("HTTP", self.connect_http))
        if mode is Mode.SSH:
            attempts.append(("SSH", self.connect_ssh))

        selector = TransportSelector(attempts, fallback=mode is None)
        session = selector.select()
        LOGGER.debug("Connected via %s", selector.selected)
        return session


class CLI:
    """
    Session over a remoting channel.

    The channel gets ``conn`` and a thread pool; a ping thread keeps the
    connection busy while it lives.
    """

    def __init__(self, factory: ConnectionFactory, conn: Connection, closables: Closables):
        self.url = factory.url
        self.closables = closables
        self.owns_pool = factory.executor is None
        self.pool = factory.executor or ThreadPoolExecutor(thread_name_prefix="CLI.pool")
        self._closed = False
        if self.owns_pool:
            closables.add(lambda: self.pool.shutdown(wait=False), "CLI.pool")

        self.channel = factory.channel_factory(f"CLI connection to {self.url}", conn.reader, conn.writer, self.pool)
        try:
            self.entry_point = self.channel.wait_for_remote_property(ENTRY_POINT_PROPERTY)
            if self.entry_point.protocol_version() != ENTRY_POINT_VERSION:
                raise VersionMismatch("Version mismatch. This CLI cannot work with this Jenkins server")
        except BaseException:
            self.channel.close()
            raise

        self.ping = PingThread(self.channel, PING_TIMEOUT, PING_INTERVAL, on_dead=ignore_dead)
        self.ping.start()

    def execute(self, args: List[str], stdin: Optional[BinaryIO] = None,
                stdout: Optional[BinaryIO] = None, stderr: Optional[BinaryIO] = None) -> int:
        return self.entry_point.main(
            list(args), default_locale(),
            stdin or sys.stdin.buffer,
            stdout or sys.stdout.buffer,
            stderr or sys.stderr.buffer,
        )

    def has_command(self, name: str) -> bool:
        """True if the server knows the command ``name``."""
        return self.entry_point.has_command(name)

    def authenticate(self, keys) -> AsymmetricKey:
        """Public key authentication; returns the server's identity."""
        return auth.authenticate(self.entry_point, keys)

    def upgrade(self):
        """
        Lift the security restriction on the channel.

        Needs the administer permission on the server.
        """
        out = io.BytesIO()
        if self.execute(["groovy", "="], io.BytesIO(UPGRADE_SCRIPT), out, out) != 0:
            raise UpgradeRefused(out.getvalue().decode("utf-8", "replace"))

    def close(self) -> List[Exception]:
        """Shut the channel down and release every resource, once."""
        if self._closed:
            return []
        self._closed = True
        self.ping.stop()
        errors: List[Exception] = []
        try:
            self.channel.close()
            self.channel.join()
        except Exception as e:
            LOGGER.warning("Failed to close the channel: %s", e)
            errors.append(e)
        return errors + self.closables.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class PlainCLI:
    """Session running one command over the plain HTTP protocol."""

    def __init__(self, factory: ConnectionFactory, closables: Closables):
        self.url = factory.url
        self.closables = closables
        self._used = False

        LOGGER.debug("Trying to connect to %s via plain protocol over HTTP", self.url)
        http = factory.http_client(closables)
        crumb = fetch_crumb(http, self.url)
        self.streams = FullDuplexHttpStream(self.url + "cli?remoting=false", http,
                                            factory.authorization, crumb)
        closables.add(self.streams, "full duplex HTTP stream")

    def execute(self, args: List[str], stdin: Optional[BinaryIO] = None,
                stdout: Optional[BinaryIO] = None, stderr: Optional[BinaryIO] = None,
                encoding: Optional[str] = None, locale_name: Optional[str] = None) -> int:
        """Run one command and block until the server reports its exit code."""
        if self._used:
            raise ConfigurationError("A plain HTTP session runs a single command")
        self._used = True

        try:
            side = ClientSide(self.streams.input, self.streams.output,
                              on_stdout=_sink(stdout or sys.stdout.buffer),
                              on_stderr=_sink(stderr or sys.stderr.buffer))
            for arg in args:
                side.send_arg(arg)
            side.send_encoding(encoding or default_encoding())
            side.send_locale(locale_name or default_locale())
            side.send_start()
        except OSError as e:
            raise ConnectFailure(f"Failed to send the command: {e}") from e
        side.begin()

        pump = StreamPump(stdin or sys.stdin.buffer, side.stream_stdin(),
                          on_end=side.send_end_stdin)
        pump.start()
        return side.wait_for_exit()

    def close(self) -> List[Exception]:
        return self.closables.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def create_factory(url: str, **settings) -> ConnectionFactory:
    """ConnectionFactory with the installed remoting implementation, if any."""
    settings.setdefault("channel_factory", load_channel_factory())
    return ConnectionFactory(url, **settings)

