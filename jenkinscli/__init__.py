"""
jenkinscli
Client side of the Jenkins CLI: finds the server's transports, secures the
CLI port with the version 2 handshake, falls back to framed plain HTTP and
runs commands.
"""

from .client import CLI, ConnectionFactory, PlainCLI, create_factory
from .errors import CLIError, TransportExhausted
from .selector import Mode

__version__ = "0.1.0"
