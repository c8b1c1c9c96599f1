"""
jenkinscli Crypto Module
Key agreement, session cipher and identity signatures for the CLI port.

- Diffie-Hellman over the server's parameters (cryptography)
- AES/CFB8/NoPadding session streams, IV equal to the folded key (pycryptodome)
- SHA1withRSA / SHA1withDSA signatures (pycryptodome)

Keys travel as DER-encoded X.509 SubjectPublicKeyInfo.
"""

import base64
from typing import Tuple, Union

from Crypto.Cipher import AES
from Crypto.Hash import SHA1
from Crypto.PublicKey import DSA, RSA
from Crypto.Signature import DSS, pkcs1_15
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dh

from .protocol import SESSION_KEY_BYTES

AsymmetricKey = Union[RSA.RsaKey, DSA.DsaKey]

DEFAULT_DH_KEY_SIZE = 512


def fold(data: bytes, size: int) -> bytes:
    """
    XOR-fold ``data`` into ``size`` bytes.

    Longer input wraps around onto the result; shorter input is repeated.
    """
    if not data:
        raise ValueError("Cannot fold an empty secret")
    result = bytearray(size)
    for i in range(max(len(data), size) - 1, -1, -1):
        result[i % size] ^= data[i % len(data)]
    return bytes(result)


def session_key(secret: bytes) -> bytes:
    """Fold a raw shared secret into the 128-bit AES session key."""
    return fold(secret, SESSION_KEY_BYTES)


def session_ciphers(key: bytes):
    """
    Create the (encryptor, decryptor) pair for one connection.

    CFB with 8-bit segments is a stream mode: any number of bytes can be
    processed per call and no padding is involved.
    """
    encryptor = AES.new(key, AES.MODE_CFB, iv=key, segment_size=8)
    decryptor = AES.new(key, AES.MODE_CFB, iv=key, segment_size=8)
    return encryptor, decryptor


# Diffie-Hellman

def _encode_public(key) -> bytes:
    return key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _load_dh_public(der: bytes) -> dh.DHPublicKey:
    key = serialization.load_der_public_key(der)
    if not isinstance(key, dh.DHPublicKey):
        raise ValueError(f"Expected a DH public key, got {type(key).__name__}")
    return key


def generate_dh_parameters(key_size: int = DEFAULT_DH_KEY_SIZE) -> dh.DHParameters:
    """Generate fresh DH group parameters (the key-pair generator's role)."""
    return dh.generate_parameters(generator=2, key_size=key_size)


def dh_initiate(parameters: dh.DHParameters) -> Tuple[dh.DHPrivateKey, bytes]:
    """Create our half from known parameters. Returns (private key, encoded public half)."""
    private = parameters.generate_private_key()
    return private, _encode_public(private.public_key())


def dh_complete(private: dh.DHPrivateKey, peer_half: bytes) -> bytes:
    """Derive the shared secret from our private key and the peer's encoded half."""
    return private.exchange(_load_dh_public(peer_half))


def dh_respond(peer_half: bytes) -> Tuple[bytes, bytes]:
    """
    Answer a key agreement started by the peer.

    Our key pair is generated from the parameters embedded in the peer's half.
    Returns (encoded public half, shared secret).
    """
    peer = _load_dh_public(peer_half)
    private = peer.parameters().generate_private_key()
    return _encode_public(private.public_key()), private.exchange(peer)


# Asymmetric keys and signatures

def key_algorithm(key: AsymmetricKey) -> str:
    """Algorithm name used on the wire ("RSA" or "DSA")."""
    if isinstance(key, RSA.RsaKey):
        return "RSA"
    if isinstance(key, DSA.DsaKey):
        return "DSA"
    raise ValueError(f"Unknown key type: {type(key).__name__}")


def public_der(key: AsymmetricKey) -> bytes:
    """DER-encoded X.509 form of the public half of ``key``."""
    return key.public_key().export_key(format="DER")


def import_public_key(der: bytes, algorithm: str = "RSA") -> AsymmetricKey:
    if algorithm == "RSA":
        return RSA.import_key(der)
    if algorithm == "DSA":
        return DSA.import_key(der)
    raise ValueError(f"Unsupported key algorithm: {algorithm}")


def import_identity(encoded: str) -> RSA.RsaKey:
    """Decode the base64 instance identity advertised in the response headers."""
    return RSA.import_key(base64.b64decode(encoded))


def _signer(key: AsymmetricKey):
    if key_algorithm(key) == "RSA":
        return pkcs1_15.new(key)
    return DSS.new(key, "fips-186-3", encoding="der")


def sign(key: AsymmetricKey, *parts: bytes) -> bytes:
    """SHA1with<alg> signature over the concatenation of ``parts``."""
    digest = SHA1.new(b"".join(parts))
    return _signer(key).sign(digest)


def verify(key: AsymmetricKey, signature: bytes, *parts: bytes) -> bool:
    """Check a SHA1with<alg> signature. Returns False instead of raising on mismatch."""
    digest = SHA1.new(b"".join(parts))
    try:
        _signer(key).verify(digest, signature)
        return True
    except (ValueError, TypeError):
        return False
