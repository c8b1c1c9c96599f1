"""Pytest configuration and shared fixtures."""

import base64
import socket

import pytest
from Crypto.PublicKey import RSA

from jenkinscli import crypto


@pytest.fixture(scope="session")
def dh_parameters():
    """Small DH group; generating one per test would be too slow."""
    return crypto.generate_dh_parameters(512)


@pytest.fixture(scope="session")
def identity_key() -> RSA.RsaKey:
    """Instance identity of the fake server."""
    return RSA.generate(1024)


@pytest.fixture(scope="session")
def identity_header(identity_key) -> str:
    return base64.b64encode(crypto.public_der(identity_key)).decode("ascii")


@pytest.fixture(scope="session")
def client_key() -> RSA.RsaKey:
    return RSA.generate(1024)


@pytest.fixture
def socket_pair():
    """Connected (client, server) sockets, closed after the test."""
    client, server = socket.socketpair()
    yield client, server
    client.close()
    server.close()
