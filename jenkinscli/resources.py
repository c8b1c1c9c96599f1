"""
jenkinscli Resources
Ordered set of resources released when a CLI session ends.
"""

import logging
import threading
from typing import Callable, List, Tuple

LOGGER = logging.getLogger(__name__)


class Closables:
    """
    Resources (sockets, streams, pools) owned by one session.

    close() releases them in reverse order of registration, exactly once.
    A failing close never stops the others: errors are collected and
    returned. Closing again is a no-op.
    """

    def __init__(self):
        self._items: List[Tuple[str, Callable[[], object]]] = []
        self._lock = threading.Lock()
        self._closed = False

    def add(self, resource, name: str = "") -> None:
        """Register anything with a close() method, or a zero-argument callable."""
        closer = resource.close if hasattr(resource, "close") else resource
        if not callable(closer):
            raise TypeError(f"Cannot close {resource!r}")
        with self._lock:
            if self._closed:
                raise RuntimeError("Resource set already closed")
            self._items.append((name or repr(resource), closer))

    def __len__(self) -> int:
        return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> List[Exception]:
        with self._lock:
            if self._closed:
                return []
            self._closed = True
            items, self._items = self._items, []

        errors: List[Exception] = []
        for name, closer in reversed(items):
            try:
                closer()
            except Exception as e:
                LOGGER.warning("Failed to close %s: %s", name, e)
                errors.append(e)
        return errors

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
