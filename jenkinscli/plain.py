"""
jenkinscli Plain Protocol (Client Side)
Framed command protocol over a full duplex HTTP stream.

Client frames must go out in this order:
    ARG*  ENCODING  LOCALE  START  STDIN*  END_STDIN
Server frames (STDOUT, STDERR, EXIT) arrive on a reader thread at any time.
EXIT is terminal: the waiting caller is released and later sends are dropped.
"""

import logging
import struct
import threading
from enum import IntEnum
from typing import Callable, Optional

from .connection import encode_utf
from .errors import FramingViolation
from .protocol import DUPLEX_SENTINEL, Op

LOGGER = logging.getLogger(__name__)

# Upper bound on a single frame payload accepted from the server.
MAX_FRAME = 16 * 1024 * 1024


class Phase(IntEnum):
    ARGS = 0
    ENCODING_SENT = 1
    LOCALE_SENT = 2
    STARTED = 3
    STDIN_CLOSED = 4


class ExitOutcome:
    """Exit code of the remote command, set exactly once."""

    def __init__(self):
        self._cond = threading.Condition()
        self.code = -1
        self.observed = False
        self.error: Optional[BaseException] = None

    def set(self, code: int) -> bool:
        """Record the exit code. Returns False if an outcome was already recorded."""
        with self._cond:
            if self.observed or self.error is not None:
                return False
            self.code = code
            self.observed = True
            self._cond.notify_all()
            return True

    def fail(self, error: BaseException) -> bool:
        """Release waiters with ``error`` unless the exit code already arrived."""
        with self._cond:
            if self.observed or self.error is not None:
                return False
            self.error = error
            self._cond.notify_all()
            return True

    @property
    def done(self) -> bool:
        return self.observed or self.error is not None

    def wait(self, timeout: Optional[float] = None) -> int:
        with self._cond:
            if not self._cond.wait_for(lambda: self.done, timeout):
                raise TimeoutError("No exit code received in time")
            if self.error is not None:
                raise self.error
            return self.code


class StdinStream:
    """File-like object turning writes into STDIN frames."""

    def __init__(self, side: "ClientSide"):
        self.side = side

    def write(self, data: bytes) -> int:
        if data:
            self.side.send_stdin(bytes(data))
        return len(data)

    def flush(self):
        pass

    def close(self):
        self.side.send_end_stdin()


class ClientSide:
    """
    Client end of the plain protocol.

    ``reader`` must be positioned at the start of the response body;
    the leading sentinel byte is checked here.
    """

    def __init__(self, reader, writer,
                 on_stdout: Callable[[bytes], None],
                 on_stderr: Callable[[bytes], None]):
        self.reader = reader
        self.writer = writer
        self.on_stdout = on_stdout
        self.on_stderr = on_stderr
        self.exit = ExitOutcome()
        self.phase = Phase.ARGS
        self._lock = threading.Lock()
        self._reader_thread: Optional[threading.Thread] = None

        first = reader.read(1)
        if first != bytes([DUPLEX_SENTINEL]):
            raise FramingViolation(f"Expected to see initial zero byte, got {first!r}")

    # Sending

    def _send(self, op: Op, payload: bytes = b""):
        """Write one frame. Caller holds the lock."""
        if self.exit.done:
            LOGGER.debug("Dropping %s frame sent after exit", op.name)
            return
        self.writer.write(struct.pack(">iB", len(payload), op) + payload)
        self.writer.flush()

    def _advance(self, op: Op, allowed_from: Phase, to: Phase):
        if self.phase != allowed_from:
            raise FramingViolation(f"{op.name} not allowed after phase {self.phase.name}")
        self.phase = to

    def send_arg(self, arg: str):
        with self._lock:
            if self.phase != Phase.ARGS:
                raise FramingViolation("Arguments must precede the encoding frame")
            self._send(Op.ARG, encode_utf(arg))

    def send_encoding(self, encoding: str):
        with self._lock:
            self._advance(Op.ENCODING, Phase.ARGS, Phase.ENCODING_SENT)
            self._send(Op.ENCODING, encode_utf(encoding))

    def send_locale(self, locale_name: str):
        with self._lock:
            self._advance(Op.LOCALE, Phase.ENCODING_SENT, Phase.LOCALE_SENT)
            self._send(Op.LOCALE, encode_utf(locale_name))

    def send_start(self):
        with self._lock:
            self._advance(Op.START, Phase.LOCALE_SENT, Phase.STARTED)
            self._send(Op.START)

    def send_stdin(self, chunk: bytes):
        with self._lock:
            if self.phase != Phase.STARTED:
                raise FramingViolation(f"STDIN not allowed in phase {self.phase.name}")
            self._send(Op.STDIN, chunk)

    def send_end_stdin(self) -> bool:
        """Send END_STDIN once. Returns False if it was already sent."""
        with self._lock:
            if self.phase == Phase.STDIN_CLOSED:
                return False
            self._advance(Op.END_STDIN, Phase.STARTED, Phase.STDIN_CLOSED)
            self._send(Op.END_STDIN)
            return True

    def stream_stdin(self) -> StdinStream:
        return StdinStream(self)

    # Receiving

    def _read_exact(self, size: int) -> bytes:
        data = b""
        while len(data) < size:
            chunk = self.reader.read(size - len(data))
            if not chunk:
                raise EOFError("Connection closed")
            data += chunk
        return data

    def read_frame(self):
        """Read and dispatch one server frame. Returns the opcode."""
        length, code = struct.unpack(">iB", self._read_exact(5))
        if length < 0 or length > MAX_FRAME:
            raise FramingViolation(f"Invalid frame length {length}")
        try:
            op = Op(code)
        except ValueError:
            raise FramingViolation(f"Unknown opcode {code}") from None
        if op.client_side:
            raise FramingViolation(f"Unexpected client frame {op.name} from server")
        payload = self._read_exact(length)

        if op == Op.STDOUT:
            self.on_stdout(payload)
        elif op == Op.STDERR:
            self.on_stderr(payload)
        elif op == Op.EXIT:
            if length != 4:
                raise FramingViolation(f"EXIT frame carries {length} bytes")
            self.on_exit(struct.unpack(">i", payload)[0])
        return op

    def on_exit(self, code: int):
        LOGGER.debug("Remote command exited with %d", code)
        self.exit.set(code)

    def _read_loop(self):
        try:
            while not self.exit.done:
                self.read_frame()
        except FramingViolation as e:
            self.exit.fail(e)
        except (OSError, EOFError) as e:
            self.exit.fail(FramingViolation(f"Connection closed before the exit code arrived: {e}"))
        except Exception as e:
            LOGGER.exception("Unexpected failure reading server frames")
            self.exit.fail(e)

    def begin(self):
        """Start consuming server frames on a background thread."""
        self._reader_thread = threading.Thread(
            target=self._read_loop, name="plain protocol reader", daemon=True)
        self._reader_thread.start()

    def wait_for_exit(self, timeout: Optional[float] = None) -> int:
        return self.exit.wait(timeout)
