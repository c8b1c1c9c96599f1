"""
jenkinscli Capability Discovery
Probe a Jenkins URL for the transports it advertises in its response headers.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlsplit

import httpx

from . import crypto
from .errors import ConnectFailure, DiscoveryFailure, NoPortAdvertised, NoServerDetected
from .protocol import (
    CLI2_PORT_HEADER,
    CLI_HOST_HEADER,
    CLI_PORT_HEADER,
    IDENTITY_HEADER,
    LEGACY_CLI_PORT_HEADER,
    SERVER_SIGNATURE_HEADERS,
    SSH_ENDPOINT_HEADER,
)

LOGGER = logging.getLogger(__name__)

# Bytes of body read before giving up on draining and just closing.
DRAIN_LIMIT = 1024 * 1024


@dataclass(frozen=True)
class EndpointDescriptor:
    """Where and how to reach the CLI port."""
    host: str
    port: int
    version: int
    identity: Optional[str] = None

    @property
    def address(self) -> Tuple[str, int]:
        return self.host, self.port

    def identity_key(self):
        """The advertised instance identity as an RSA key, or None."""
        if self.identity is None:
            return None
        try:
            return crypto.import_identity(self.identity)
        except (ValueError, IndexError, TypeError) as e:
            raise DiscoveryFailure(f"Malformed {IDENTITY_HEADER} header: {e}") from e


def _drain(response: httpx.Response, limit: int = DRAIN_LIMIT):
    """Read and discard the body, up to ``limit`` bytes."""
    seen = 0
    for chunk in response.iter_bytes():
        seen += len(chunk)
        if seen >= limit:
            LOGGER.debug("Stopped draining %s after %d bytes", response.url, seen)
            break


def _head(url: str, http: httpx.Client) -> httpx.Headers:
    """GET ``url`` and return its headers. The body is always drained and closed."""
    try:
        with http.stream("GET", url) as response:
            headers = response.headers
            try:
                _drain(response)
            except (httpx.HTTPError, httpx.StreamError) as e:
                LOGGER.debug("Failed to drain %s: %s", url, e)
            return headers
    except httpx.HTTPError as e:
        raise ConnectFailure(f"Failed to connect to {url}: {e}") from e


def _port(value: str, header: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise DiscoveryFailure(f"Invalid {header} header: '{value}'") from None


def probe(url: str, http: httpx.Client) -> EndpointDescriptor:
    """
    Find the CLI port advertised by the server at ``url``.

    The versioned (CLI2) port wins over the legacy one.
    """
    host = urlsplit(url).hostname
    if not host:
        raise DiscoveryFailure(f"Invalid URL: {url}")

    headers = _head(url, http)
    host = headers.get(CLI_HOST_HEADER) or host
    legacy = headers.get(CLI_PORT_HEADER)
    if legacy is None:
        legacy = headers.get(LEGACY_CLI_PORT_HEADER)
    versioned = headers.get(CLI2_PORT_HEADER)
    identity = headers.get(IDENTITY_HEADER)

    if legacy is None and versioned is None:
        if not any(name in headers for name in SERVER_SIGNATURE_HEADERS):
            raise NoServerDetected(f"There's no Jenkins running at {url}")
        raise NoPortAdvertised(f"No {CLI2_PORT_HEADER} among {sorted(headers.keys())}")

    if versioned is not None:
        endpoint = EndpointDescriptor(host, _port(versioned, CLI2_PORT_HEADER), 2, identity)
    else:
        endpoint = EndpointDescriptor(host, _port(legacy, CLI_PORT_HEADER), 1, identity)
    LOGGER.debug("Discovered CLI endpoint %s:%d (protocol %d)", endpoint.host, endpoint.port, endpoint.version)
    return endpoint


def probe_ssh_endpoint(url: str, http: httpx.Client) -> Tuple[str, int]:
    """Return the (host, port) of the server's SSH endpoint."""
    headers = _head(url.rstrip("/") + "/login", http)
    description = headers.get(SSH_ENDPOINT_HEADER)
    if description is None:
        raise DiscoveryFailure(f"No header '{SSH_ENDPOINT_HEADER}' returned by Jenkins")
    host, sep, port = description.rpartition(":")
    if not sep:
        raise DiscoveryFailure(f"Invalid {SSH_ENDPOINT_HEADER} header: '{description}'")
    return host, _port(port, SSH_ENDPOINT_HEADER)
