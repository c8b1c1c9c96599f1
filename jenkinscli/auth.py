"""
jenkinscli Public Key Authentication
Challenge-response proof of identity run on top of an established channel.

1. the entry point opens an "ssh" pipe pair
2. Diffie-Hellman on the pipes (server generates the group)
3. the server proves its identity over the shared secret
4. each private key, in order, proves possession until one is accepted
"""

import logging
from typing import Iterable, List

from . import crypto
from .connection import Connection
from .errors import (
    AuthenticationError,
    AuthenticationExhausted,
    AuthenticationUnsupported,
    CryptoFailure,
    IdentitySpoofed,
    NoKeyAvailable,
)

LOGGER = logging.getLogger(__name__)

AUTH_PROTOCOL = "ssh"


def authenticate(entry_point, keys: Iterable[crypto.AsymmetricKey]) -> crypto.AsymmetricKey:
    """
    Authenticate with the first key the server accepts.

    Returns the server's identity as a public key.
    """
    candidates: List[crypto.AsymmetricKey] = list(keys)
    if not candidates:
        raise NoKeyAvailable("No private key is available for use in authentication")

    try:
        reader, writer = entry_point.authenticate(AUTH_PROTOCOL)
    except (NotImplementedError, AttributeError) as e:
        raise AuthenticationUnsupported("The server doesn't support public key authentication") from e

    conn = Connection(reader, writer)
    try:
        try:
            secret = conn.diffie_hellman(False)
            server = conn.verify_identity(secret)
        except (OSError, EOFError) as e:
            raise AuthenticationError(f"Authentication conversation broken: {e}") from e
        except (ValueError, TypeError) as e:
            raise CryptoFailure(f"Failed to agree on a key with the server: {e}") from e
        if server is None:
            raise IdentitySpoofed("Server identity signature validation failed.")

        for key in candidates:
            LOGGER.debug("Offering %s private key", crypto.key_algorithm(key))
            try:
                conn.prove_identity(secret, key)
                accepted = conn.read_boolean()
            except (OSError, EOFError) as e:
                raise AuthenticationError(f"Authentication conversation broken: {e}") from e
            if accepted:
                LOGGER.debug("Server accepted the %s key", crypto.key_algorithm(key))
                return server
        raise AuthenticationExhausted("Authentication failed. No private key accepted.")
    finally:
        conn.close()
