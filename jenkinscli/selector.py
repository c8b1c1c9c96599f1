"""
jenkinscli Transport Selector
Tries candidate transports in order and keeps every failure.

Implicit mode: CLI port first, framed HTTP on any failure.
Explicit mode: exactly one candidate, its failure is raised unchanged.
"""

import logging
from enum import Enum
from typing import Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

import httpx

from .errors import AttemptFailure, CLIError, TransportExhausted

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class Mode(Enum):
    """Transport requested on the command line."""
    CLI_PORT = "cli-port"
    HTTP = "http"
    SSH = "ssh"


class State(Enum):
    UNATTEMPTED = "unattempted"
    TRY_PRIMARY = "try-primary"
    TRY_SECONDARY = "try-secondary"
    ESTABLISHED = "established"
    FAILED = "failed"


# Errors that make the selector move on to the next candidate.
RECOVERABLE = (CLIError, OSError, EOFError, httpx.HTTPError)

Attempt = Tuple[str, Callable[[], T]]


class TransportSelector(Generic[T]):
    """
    Runs ``attempts`` (name, opener) in order until one returns.

    With ``fallback`` False only the first attempt runs and its error
    propagates as is.
    """

    def __init__(self, attempts: Sequence[Attempt], fallback: bool = True):
        if not attempts:
            raise ValueError("No transport to try")
        self.attempts = list(attempts)
        self.fallback = fallback
        self.state = State.UNATTEMPTED
        self.failures: List[AttemptFailure] = []
        self.selected: Optional[str] = None

    def select(self) -> T:
        candidates = self.attempts if self.fallback else self.attempts[:1]
        for index, (name, opener) in enumerate(candidates):
            self.state = State.TRY_PRIMARY if index == 0 else State.TRY_SECONDARY
            try:
                result = opener()
            except RECOVERABLE as e:
                self.failures.append(AttemptFailure(name, e))
                if not self.fallback:
                    self.state = State.FAILED
                    raise
                if index + 1 < len(candidates):
                    LOGGER.warning("Failed to connect via %s. Falling back to %s: %s",
                                   name, candidates[index + 1][0], e)
                    LOGGER.debug("Connection failure details", exc_info=e)
                continue
            self.state = State.ESTABLISHED
            self.selected = name
            return result

        self.state = State.FAILED
        raise TransportExhausted(self.failures[-1], self.failures[:-1])

