"""
jenkinscli Remoting Seam
Interfaces of the external RPC layer that runs over an established stream.

jenkinscli only establishes the byte stream; a remoting implementation turns
it into a Channel exposing the server's CLI entry point. Implementations
register a ChannelFactory under the ``jenkinscli.remoting`` entry point group.
"""

import logging
from concurrent.futures import Executor
from importlib.metadata import entry_points
from typing import BinaryIO, List, Optional, Protocol, Tuple

LOGGER = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "jenkinscli.remoting"


class EntryPoint(Protocol):
    """Remote CLI entry point exported by the server."""

    def protocol_version(self) -> int: ...

    def main(self, args: List[str], locale: str,
             stdin: BinaryIO, stdout: BinaryIO, stderr: BinaryIO) -> int: ...

    def has_command(self, name: str) -> bool: ...

    def authenticate(self, protocol: str) -> Tuple[BinaryIO, BinaryIO]:
        """Open an authentication conversation; returns (server->client, client->server)."""
        ...


class Channel(Protocol):
    """A remoting channel over one duplex stream."""

    def wait_for_remote_property(self, name: str) -> EntryPoint: ...

    def ping(self, timeout: float) -> None: ...

    def close(self) -> None: ...

    def join(self, timeout: Optional[float] = None) -> None: ...


class ChannelFactory(Protocol):
    def __call__(self, name: str, reader: BinaryIO, writer: BinaryIO,
                 executor: Executor) -> Channel: ...


def load_channel_factory() -> Optional[ChannelFactory]:
    """The first installed remoting implementation, or None."""
    for entry in entry_points(group=ENTRY_POINT_GROUP):
        LOGGER.debug("Using remoting implementation %s", entry.value)
        return entry.load()
    return None
