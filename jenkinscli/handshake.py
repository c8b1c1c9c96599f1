"""
jenkinscli Handshake
Opens the CLI port and runs the versioned handshake on it.

Protocol 2 (synchronous, one step at a time):
1. client -> "Protocol:CLI2-connect"
2. server -> "Welcome" (anything else aborts)
3. Diffie-Hellman on the server's parameters
4. AES/CFB8 with the folded secret on both directions
5. server -> signature of the raw secret, checked against X-Instance-Identity

Protocol 1 only sends "Protocol:CLI-connect": no greeting check, no crypto.

A failed handshake is never resumed; the socket is closed and a retry needs
a fresh connection.
"""

import logging
import socket
from typing import Optional

from . import crypto
from .connection import Connection
from .discovery import EndpointDescriptor
from .errors import CLIError, ConnectFailure, CryptoFailure, HandshakeMismatch, IdentitySpoofed
from .protocol import CONNECT_TIMEOUT, GREETING, PROTOCOL_V1, PROTOCOL_V2
from .resources import Closables
from .tunnel import open_tunnel

LOGGER = logging.getLogger(__name__)


def negotiate(conn: Connection, endpoint: EndpointDescriptor) -> Connection:
    """
    Run the handshake for ``endpoint.version`` over ``conn``.

    Returns the Connection to hand to the channel: ``conn`` itself for
    protocol 1, an encrypted wrapper of it for protocol 2.
    """
    if endpoint.version == 1:
        try:
            conn.write_utf(PROTOCOL_V1)
        except OSError as e:
            raise ConnectFailure(f"Failed to send the protocol preamble: {e}") from e
        # the greeting is left on the wire; the channel skips it
        return conn
    if endpoint.version != 2:
        raise HandshakeMismatch(f"Unsupported CLI protocol version {endpoint.version}")

    identity = endpoint.identity_key()

    try:
        conn.write_utf(PROTOCOL_V2)
        greeting = conn.read_utf()
    except (OSError, EOFError, UnicodeDecodeError) as e:
        raise HandshakeMismatch(f"Handshaking failed: {e}") from e
    if greeting != GREETING:
        raise HandshakeMismatch(f"Handshaking failed: {greeting!r}")

    try:
        secret = conn.diffie_hellman(False)
        secure = conn.encrypt(crypto.session_key(secret))
        signature = secure.read_byte_array()
    except (OSError, EOFError) as e:
        raise ConnectFailure(f"Connection lost while negotiating transport security: {e}") from e
    except (ValueError, TypeError) as e:
        raise CryptoFailure(f"Failed to negotiate transport security: {e}") from e

    if identity is not None:
        if not crypto.verify(identity, signature, secret):
            raise IdentitySpoofed("Server identity signature validation failed.")
        LOGGER.debug("Server identity verified")
    else:
        LOGGER.debug("No instance identity advertised; skipping server verification")
    return secure


def _open_socket(endpoint: EndpointDescriptor, proxy: Optional[str], timeout: float) -> socket.socket:
    if proxy:
        return open_tunnel(proxy, endpoint.host, endpoint.port, timeout)
    try:
        sock = socket.create_connection(endpoint.address, timeout=timeout)
    except OSError as e:
        raise ConnectFailure(f"Failed to connect to {endpoint.host}:{endpoint.port}: {e}") from e
    sock.settimeout(None)
    return sock


def connect_cli_port(endpoint: EndpointDescriptor, closables: Closables,
                     proxy: Optional[str] = None,
                     timeout: float = CONNECT_TIMEOUT) -> Connection:
    """
    Open the CLI port (through ``proxy`` when given) and negotiate it.

    On success the socket is registered in ``closables``; on failure it is
    closed here.
    """
    LOGGER.debug("Trying to connect directly via TCP/IP to %s:%d", endpoint.host, endpoint.port)
    sock = _open_socket(endpoint, proxy, timeout)
    try:
        # detect peers that vanish silently, and leave buffering to us
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        # proxies handle half-close poorly: the socket is closed after the session instead
        conn = negotiate(Connection.over_socket(sock, half_close=not proxy), endpoint)
    except CLIError:
        sock.close()
        raise
    except OSError as e:
        sock.close()
        raise ConnectFailure(f"Failed to configure socket: {e}") from e
    closables.add(sock, f"socket to {endpoint.host}:{endpoint.port}")
    return conn
