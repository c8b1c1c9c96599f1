"""Tests for public key authentication against a fake entry point."""

import io
import threading

import pytest
from Crypto.PublicKey import RSA

from jenkinscli import crypto
from jenkinscli.auth import authenticate
from jenkinscli.connection import Connection, SocketInput, SocketOutput
from jenkinscli.errors import (
    AuthenticationExhausted,
    AuthenticationUnsupported,
    IdentitySpoofed,
    NoKeyAvailable,
)


class FakeAuthEntryPoint:
    """Runs the server side of the "ssh" conversation on a thread."""

    def __init__(self, socket_pair, parameters, identity, authorized, forge=False):
        self.client, self.server = socket_pair
        self.parameters = parameters
        self.identity = identity
        self.authorized = [crypto.public_der(key) for key in authorized]
        self.forge = forge
        self.offered = []
        self.protocols = []
        self.thread = threading.Thread(target=self._serve, daemon=True)

    def authenticate(self, protocol):
        self.protocols.append(protocol)
        self.thread.start()
        return io.BufferedReader(SocketInput(self.client)), SocketOutput(self.client)

    def _serve(self):
        conn = Connection.over_socket(self.server)
        secret = conn.diffie_hellman(True, self.parameters)
        conn.prove_identity(b"forged" if self.forge else secret, self.identity)
        while True:
            try:
                key = conn.verify_identity(secret)
            except EOFError:
                return
            self.offered.append(key)
            conn.write_boolean(key is not None and crypto.public_der(key) in self.authorized)


def test_first_accepted_key_wins(socket_pair, dh_parameters, identity_key, client_key):
    stranger = RSA.generate(1024)
    entry_point = FakeAuthEntryPoint(socket_pair, dh_parameters, identity_key, [client_key])

    server = authenticate(entry_point, [stranger, client_key])

    assert crypto.public_der(server) == crypto.public_der(identity_key)
    assert entry_point.protocols == ["ssh"]
    assert len(entry_point.offered) == 2


def test_no_key_accepted(socket_pair, dh_parameters, identity_key, client_key):
    entry_point = FakeAuthEntryPoint(socket_pair, dh_parameters, identity_key, [])
    with pytest.raises(AuthenticationExhausted):
        authenticate(entry_point, [client_key])


def test_forged_server_identity(socket_pair, dh_parameters, identity_key, client_key):
    entry_point = FakeAuthEntryPoint(socket_pair, dh_parameters, identity_key, [client_key], forge=True)
    with pytest.raises(IdentitySpoofed):
        authenticate(entry_point, [client_key])
    assert entry_point.offered == []


def test_no_keys_fails_before_any_exchange(socket_pair, dh_parameters, identity_key):
    entry_point = FakeAuthEntryPoint(socket_pair, dh_parameters, identity_key, [])
    with pytest.raises(NoKeyAvailable):
        authenticate(entry_point, [])
    assert entry_point.protocols == []


def test_server_without_key_authentication():
    class OldEntryPoint:
        def authenticate(self, protocol):
            raise NotImplementedError(protocol)

    with pytest.raises(AuthenticationUnsupported):
        authenticate(OldEntryPoint(), [object()])
