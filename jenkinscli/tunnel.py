"""
jenkinscli Proxy Tunnel
HTTP CONNECT tunnel through an HTTPS proxy, opened before any handshake.
"""

import logging
import socket
from typing import Tuple

from .errors import ConfigurationError, ConnectFailure, ProxyTunnelFailed
from .protocol import CONNECT_TIMEOUT, PROXY_CONNECT, PROXY_OK_PREFIX

LOGGER = logging.getLogger(__name__)

# Proxies answer with a handful of header lines; anything bigger is not a proxy.
MAX_RESPONSE_BYTES = 64 * 1024


def parse_address(address: str) -> Tuple[str, int]:
    """Split "host:port" into its parts."""
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ConfigurationError(f"Expected host:port, got '{address}'")
    try:
        return host, int(port)
    except ValueError:
        raise ConfigurationError(f"Invalid port in '{address}'") from None


def _read_response(sock: socket.socket) -> bytes:
    """Read the proxy response up to and including the blank line."""
    response = bytearray()
    while not response.endswith(b"\r\n\r\n"):
        ch = sock.recv(1)
        if not ch:
            raise ProxyTunnelFailed(
                f"Failed to read the HTTP proxy response: {response.decode('iso-8859-1')}")
        response += ch
        if len(response) > MAX_RESPONSE_BYTES:
            raise ProxyTunnelFailed("HTTP proxy response too large")
    return bytes(response)


def open_tunnel(proxy: str, host: str, port: int,
                timeout: float = CONNECT_TIMEOUT) -> socket.socket:
    """
    Connect to ``proxy`` ("host:port") and ask it to tunnel to host:port.

    Returns the socket, now talking to the destination. On any failure the
    socket is closed before raising.
    """
    proxy_host, proxy_port = parse_address(proxy)
    LOGGER.debug("Opening tunnel to %s:%d through %s", host, port, proxy)
    try:
        sock = socket.create_connection((proxy_host, proxy_port), timeout=timeout)
    except OSError as e:
        raise ConnectFailure(f"Failed to connect to proxy {proxy}: {e}") from e

    try:
        sock.sendall(PROXY_CONNECT.format(host=host, port=port).encode("ascii"))
        response = _read_response(sock).decode("iso-8859-1")
        status = response.split("\r\n", 1)[0]
        if not status.startswith(PROXY_OK_PREFIX):
            raise ProxyTunnelFailed(
                f"Failed to establish a connection through HTTP proxy: {response.strip()}")
        sock.settimeout(None)
    except ProxyTunnelFailed:
        sock.close()
        raise
    except OSError as e:
        sock.close()
        raise ProxyTunnelFailed(f"Failed to talk to proxy {proxy}: {e}") from e

    LOGGER.debug("Tunnel established: %s", status)
    return sock
