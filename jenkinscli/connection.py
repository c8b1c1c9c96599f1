"""
jenkinscli Connection Module
Length-prefixed primitives over a raw duplex byte stream.

A Connection is a reader/writer pair. It knows how to:
- read and write big-endian ints, booleans, byte arrays and UTF strings
- exchange public keys and serialized signatures
- run a Diffie-Hellman exchange from either side
- wrap itself into an encrypted Connection
- prove and verify identities against a shared secret

Readers must block until the requested byte count is available (io.BufferedReader
semantics). Writes are flushed after every primitive.
"""

import base64
import io
import logging
import socket
import struct
from typing import Optional

from . import crypto

LOGGER = logging.getLogger(__name__)

# Stream header and class descriptor of a serialized byte[] object,
# followed on the wire by an int32 length and the bytes.
_OBJECT_STREAM_HEADER = b"\xac\xed\x00\x05"
_BYTE_ARRAY_DESCRIPTOR = (
    b"\x75"                                  # array
    b"\x72\x00\x02[B"                        # class descriptor "[B"
    b"\xac\xf3\x17\xf8\x06\x08\x54\xe0"      # serial version UID
    b"\x02\x00\x00"                          # serializable, no fields
    b"\x78\x70"                              # end of block data, no superclass
)


def encode_utf(text: str) -> bytes:
    """
    Encode a string as <uint16 length><modified UTF-8>.

    NUL becomes 0xC0 0x80 and supplementary characters are written as
    surrogate pairs, three bytes each.
    """
    out = bytearray()
    for ch in text:
        code = ord(ch)
        if code == 0:
            out += b"\xc0\x80"
        elif code > 0xFFFF:
            code -= 0x10000
            for unit in (0xD800 + (code >> 10), 0xDC00 + (code & 0x3FF)):
                out += chr(unit).encode("utf-8", "surrogatepass")
        else:
            out += ch.encode("utf-8", "surrogatepass")
    if len(out) > 0xFFFF:
        raise ValueError(f"String too long for a UTF frame: {len(out)} bytes")
    return struct.pack(">H", len(out)) + bytes(out)


def decode_utf(data: bytes) -> str:
    """Inverse of encode_utf, without the length prefix."""
    text = data.replace(b"\xc0\x80", b"\x00").decode("utf-8", "surrogatepass")
    # join surrogate pairs back into single code points
    return text.encode("utf-16-be", "surrogatepass").decode("utf-16-be", "surrogatepass")


class SocketInput(io.RawIOBase):
    """Raw readable side of a socket. Closing it leaves the socket open."""

    def __init__(self, sock: socket.socket):
        self.sock = sock

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        return self.sock.recv_into(buffer)


class SocketOutput(io.RawIOBase):
    """
    Raw writable side of a socket.

    close() half-closes the socket unless ``half_close`` is False, in which
    case it is a no-op and the owner closes the socket itself.
    """

    def __init__(self, sock: socket.socket, half_close: bool = True):
        self.sock = sock
        self.half_close = half_close

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        self.sock.sendall(data)
        return len(data)

    def close(self):
        if not self.closed and self.half_close:
            try:
                self.sock.shutdown(socket.SHUT_WR)
            except OSError as e:
                LOGGER.debug("Half-close failed: %s", e)
        super().close()


class CipherInput(io.RawIOBase):
    """Decrypts everything read from ``raw``."""

    def __init__(self, raw, cipher):
        self.raw = raw
        self.cipher = cipher

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        read_some = getattr(self.raw, "read1", self.raw.read)
        data = read_some(len(buffer))
        if not data:
            return 0
        plain = self.cipher.decrypt(data)
        buffer[:len(plain)] = plain
        return len(plain)

    def close(self):
        if not self.closed:
            self.raw.close()
        super().close()


class CipherOutput(io.RawIOBase):
    """Encrypts everything written to ``raw``."""

    def __init__(self, raw, cipher):
        self.raw = raw
        self.cipher = cipher

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if not data:
            return 0
        self.raw.write(self.cipher.encrypt(bytes(data)))
        self.raw.flush()
        return len(data)

    def close(self):
        if not self.closed:
            self.raw.close()
        super().close()


class Connection:
    """A duplex byte stream with the primitives of the CLI handshake."""

    def __init__(self, reader, writer):
        self.reader = reader
        self.writer = writer

    @classmethod
    def over_socket(cls, sock: socket.socket, half_close: bool = True) -> "Connection":
        """Wrap a connected socket; see SocketOutput for ``half_close``."""
        return cls(io.BufferedReader(SocketInput(sock)), SocketOutput(sock, half_close))

    # Raw I/O

    def read_fully(self, size: int) -> bytes:
        """Read exactly ``size`` bytes or raise EOFError."""
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self.reader.read(remaining)
            if not chunk:
                raise EOFError(f"Connection closed with {remaining} of {size} bytes unread")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def write(self, data: bytes):
        self.writer.write(data)
        self.writer.flush()

    # Primitives

    def write_int(self, value: int):
        self.write(struct.pack(">i", value))

    def read_int(self) -> int:
        return struct.unpack(">i", self.read_fully(4))[0]

    def write_boolean(self, value: bool):
        self.write(b"\x01" if value else b"\x00")

    def read_boolean(self) -> bool:
        return self.read_fully(1) != b"\x00"

    def write_utf(self, text: str):
        self.write(encode_utf(text))

    def read_utf(self) -> str:
        length = struct.unpack(">H", self.read_fully(2))[0]
        return decode_utf(self.read_fully(length))

    def write_byte_array(self, data: bytes):
        self.write(struct.pack(">i", len(data)) + data)

    def read_byte_array(self) -> bytes:
        size = self.read_int()
        if size < 0:
            raise ValueError(f"Negative byte array length: {size}")
        return self.read_fully(size)

    def write_key(self, der: bytes):
        """Send a DER-encoded public key as a base64 UTF string."""
        self.write_utf(base64.b64encode(der).decode("ascii"))

    def read_key(self) -> bytes:
        return base64.b64decode(self.read_utf())

    def write_object_bytes(self, data: bytes):
        """Send ``data`` as a serialized byte array object."""
        self.write(_OBJECT_STREAM_HEADER + _BYTE_ARRAY_DESCRIPTOR + struct.pack(">i", len(data)) + data)

    def read_object_bytes(self) -> bytes:
        expected = _OBJECT_STREAM_HEADER + _BYTE_ARRAY_DESCRIPTOR
        header = self.read_fully(len(expected))
        if header != expected:
            raise ValueError("Expected a serialized byte array")
        return self.read_byte_array()

    # Key agreement and identities

    def diffie_hellman(self, side: bool, parameters=None) -> bytes:
        """
        Run a Diffie-Hellman exchange and return the raw shared secret.

        ``side`` True generates the group (``parameters`` or fresh ones) and
        sends its half first; False waits for the peer's half and answers
        with a key pair built on the peer's parameters.
        """
        if side:
            private, half = crypto.dh_initiate(parameters or crypto.generate_dh_parameters())
            self.write_key(half)
            return crypto.dh_complete(private, self.read_key())

        half, secret = crypto.dh_respond(self.read_key())
        self.write_key(half)
        return secret

    def encrypt(self, key: bytes) -> "Connection":
        """Wrap both directions into AES/CFB8 using ``key`` from now on."""
        encryptor, decryptor = crypto.session_ciphers(key)
        return Connection(
            io.BufferedReader(CipherInput(self.reader, decryptor)),
            CipherOutput(self.writer, encryptor),
        )

    def prove_identity(self, secret: bytes, key: crypto.AsymmetricKey):
        """Send our algorithm, public key and a signature over key + secret."""
        encoded = crypto.public_der(key)
        self.write_utf(crypto.key_algorithm(key))
        self.write_key(encoded)
        self.write_object_bytes(crypto.sign(key, encoded, secret))

    def verify_identity(self, secret: bytes) -> Optional[crypto.AsymmetricKey]:
        """
        Read the peer's identity proof.

        Returns the peer's public key when its signature over key + secret
        holds, None otherwise.
        """
        algorithm = self.read_utf()
        encoded = self.read_key()
        signature = self.read_object_bytes()
        key = crypto.import_public_key(encoded, algorithm)
        if not crypto.verify(key, signature, encoded, secret):
            return None
        return key

    def close(self):
        for stream in (self.writer, self.reader):
            try:
                stream.close()
            except OSError as e:
                LOGGER.debug("Error closing %r: %s", stream, e)
