"""
jenkinscli Keepalive & I/O Pump
Background threads that live as long as a connection.

- PingThread: periodic no-op round trips so that idle connections are not
  reclaimed by proxies or HTTP servers with short read timeouts
- StreamPump: copies a local stream into a remote-bound sink until EOF
"""

import logging
import threading
from typing import Callable, Optional

from .protocol import PING_INTERVAL, PING_TIMEOUT

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 8192


def ignore_dead(error: BaseException) -> None:
    """on_dead handler for pings that only exist to generate traffic."""
    LOGGER.debug("Ping failed, ignoring: %s", error)


class PingThread(threading.Thread):
    """
    Calls ``channel.ping(timeout)`` every ``interval`` seconds until stopped.

    A failed or late ping is reported to ``on_dead``; the thread keeps going.
    """

    def __init__(self, channel, timeout: float = PING_TIMEOUT,
                 interval: float = PING_INTERVAL,
                 on_dead: Callable[[BaseException], None] = ignore_dead):
        super().__init__(name=f"Ping thread for {channel}", daemon=True)
        self.channel = channel
        self.timeout = timeout
        self.interval = interval
        self.on_dead = on_dead
        self._stopped = threading.Event()

    def run(self):
        while not self._stopped.wait(self.interval):
            try:
                self.channel.ping(self.timeout)
            except Exception as e:
                if self._stopped.is_set():
                    break
                self.on_dead(e)

    def stop(self):
        self._stopped.set()


class StreamPump(threading.Thread):
    """
    Copies ``source`` into ``sink`` until end of stream.

    ``source`` is a readable stream or a recv-style callable taking a size.

    ``on_end`` runs exactly once afterward, also when reading or writing
    failed. Errors are kept in ``error`` for the owner to inspect.
    """

    def __init__(self, source, sink, on_end: Optional[Callable[[], object]] = None,
                 name: str = "input reader"):
        super().__init__(name=name, daemon=True)
        self.source = source
        self.sink = sink
        self.on_end = on_end
        self.error: Optional[BaseException] = None
        self._ended = False
        self._lock = threading.Lock()

    def _read(self) -> bytes:
        if callable(self.source):
            return self.source(CHUNK_SIZE)
        read_some = getattr(self.source, "read1", None) or self.source.read
        return read_some(CHUNK_SIZE)

    def run(self):
        try:
            while True:
                chunk = self._read()
                if not chunk:
                    break
                self.sink.write(chunk)
                if hasattr(self.sink, "flush"):
                    self.sink.flush()
        except Exception as e:
            LOGGER.debug("%s stopped: %s", self.name, e)
            self.error = e
        finally:
            self.end()

    def end(self):
        """Signal end of input, once."""
        with self._lock:
            if self._ended:
                return
            self._ended = True
        if self.on_end is None:
            return
        try:
            self.on_end()
        except Exception as e:
            LOGGER.debug("%s failed to signal end of input: %s", self.name, e)
            if self.error is None:
                self.error = e
