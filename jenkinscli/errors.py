"""
jenkinscli Errors
Exception taxonomy shared by every transport.

Component boundaries translate OSError / EOFError / httpx errors into these,
chained with ``raise ... from``. Only the command-line entry point turns them
into diagnostics and exit codes.
"""

from dataclasses import dataclass
from typing import List, Optional


class CLIError(Exception):
    """Base class for every failure raised by jenkinscli."""


class ConfigurationError(CLIError):
    """Invalid combination of options or a missing collaborator."""


# Capability discovery

class DiscoveryFailure(CLIError):
    """The server could not be probed for its transports."""


class NoServerDetected(DiscoveryFailure):
    """No Jenkins signature header in the capability response."""


class NoPortAdvertised(DiscoveryFailure):
    """A Jenkins server answered but advertises no CLI port."""


# Connecting

class ConnectFailure(CLIError):
    """Socket, HTTP or proxy level failure while opening a transport."""


class ProxyTunnelFailed(ConnectFailure):
    """The HTTPS proxy refused or botched the CONNECT request."""


# Handshake

class ProtocolMismatch(CLIError):
    """The peer spoke something other than the expected protocol."""


class HandshakeMismatch(ProtocolMismatch):
    """Unexpected greeting from the CLI port."""


class VersionMismatch(ProtocolMismatch):
    """The remote entry point speaks another protocol version."""


class CryptoFailure(CLIError):
    """Key agreement, cipher setup or signature verification failed."""


class IdentitySpoofed(CryptoFailure):
    """The server's identity signature does not match its advertised key."""


# Post-connect authentication

class AuthenticationError(CLIError):
    """Public key authentication did not succeed."""


class NoKeyAvailable(AuthenticationError):
    """Authentication was requested without any private key."""


class AuthenticationExhausted(AuthenticationError):
    """Every offered private key was rejected."""


class AuthenticationUnsupported(AuthenticationError):
    """The server does not support public key authentication."""


class UpgradeRefused(CLIError):
    """The server refused to lift the channel restriction."""


# Plain HTTP framing

class FramingViolation(CLIError):
    """Malformed, unknown or out-of-order frame on the plain HTTP protocol."""


# Transport selection

@dataclass
class AttemptFailure:
    """One failed transport attempt, kept for the final diagnostic."""
    transport: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.transport}: {self.error}"


class TransportExhausted(CLIError):
    """
    Every transport of the fallback chain failed.

    ``primary`` is the failure of the last attempt; ``superseded`` lists the
    earlier attempts, in the order they were made.
    """

    def __init__(self, primary: AttemptFailure, superseded: Optional[List[AttemptFailure]] = None):
        self.primary = primary
        self.superseded = list(superseded or [])
        detail = "; ".join(str(f) for f in self.superseded)
        message = str(primary)
        if detail:
            message += f" (after {detail})"
        super().__init__(message)

    @property
    def failures(self) -> List[AttemptFailure]:
        """All attempts, in order."""
        return self.superseded + [self.primary]
