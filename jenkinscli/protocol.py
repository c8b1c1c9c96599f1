"""
jenkinscli Protocol Definitions (Shared)
Wire literals, header names and frame opcodes spoken with the server.

Three transports exist:
- CLI port: raw TCP, optionally secured by the version 2 handshake
- Plain HTTP: framed duplex protocol over a download/upload request pair
- SSH: the server's SSH endpoint, driven by paramiko
"""

from enum import IntEnum

# Capability discovery headers
JENKINS_HEADER = "X-Jenkins"
HUDSON_HEADER = "X-Hudson"
SERVER_SIGNATURE_HEADERS = (JENKINS_HEADER, HUDSON_HEADER)

CLI_HOST_HEADER = "X-Jenkins-CLI-Host"
CLI_PORT_HEADER = "X-Jenkins-CLI-Port"
LEGACY_CLI_PORT_HEADER = "X-Hudson-CLI-Port"  # deprecated alias of CLI_PORT_HEADER
CLI2_PORT_HEADER = "X-Jenkins-CLI2-Port"
IDENTITY_HEADER = "X-Instance-Identity"
SSH_ENDPOINT_HEADER = "X-SSH-Endpoint"

# Full duplex HTTP
DUPLEX_HEADER = "Hudson-Duplex"
SESSION_HEADER = "Session"
SIDE_HEADER = "Side"
CRUMB_PATH = 'crumbIssuer/api/xml/?xpath=concat(//crumbRequestField,":",//crumb)'
DUPLEX_SENTINEL = 0x00

# CLI port handshake
PROTOCOL_V1 = "Protocol:CLI-connect"
PROTOCOL_V2 = "Protocol:CLI2-connect"
GREETING = "Welcome"
SESSION_KEY_BYTES = 128 // 8

# Remote entry point exported by the server over the remoting channel
ENTRY_POINT_PROPERTY = "hudson.cli.CliEntryPoint"
ENTRY_POINT_VERSION = 1

# HTTPS proxy tunnel
PROXY_CONNECT = "CONNECT {host}:{port} HTTP/1.0\r\n\r\n"
PROXY_OK_PREFIX = "HTTP/1.0 200 "

# Timing (seconds)
CONNECT_TIMEOUT = 3.0
PING_INTERVAL = 15.0
PING_TIMEOUT = PING_INTERVAL * 3 / 4


class Op(IntEnum):
    """
    Plain HTTP frame opcodes.

    Frame layout: <int32 payload length><1-byte opcode><payload>
    """
    ARG = 0        # client: writeUTF argument
    LOCALE = 1     # client: writeUTF locale, e.g. "en_US"
    ENCODING = 2   # client: writeUTF charset name
    START = 3      # client: empty, begin execution
    EXIT = 4       # server: int32 exit code
    STDIN = 5      # client: raw bytes
    END_STDIN = 6  # client: empty
    STDOUT = 7     # server: raw bytes
    STDERR = 8     # server: raw bytes

    @property
    def client_side(self) -> bool:
        return self not in SERVER_OPS


SERVER_OPS = frozenset({Op.EXIT, Op.STDOUT, Op.STDERR})

# Example exchange (plain HTTP):
#
# Client -> Server
#   ARG "who-am-i"
#   ENCODING "UTF-8"
#   LOCALE "en_US"
#   START
#   STDIN <bytes> ...
#   END_STDIN
#
# Server -> Client
#   0x00 (sentinel, before any frame)
#   STDOUT <bytes> ... / STDERR <bytes> ...
#   EXIT 0
