"""Tests for the ping thread, the stream pump and the resource set."""

import io
import threading

import pytest

from jenkinscli.keepalive import PingThread, StreamPump
from jenkinscli.resources import Closables


class CountingChannel:
    def __init__(self, fail=False):
        self.fail = fail
        self.pings = 0
        self.pinged = threading.Event()

    def ping(self, timeout):
        self.pings += 1
        self.pinged.set()
        if self.fail:
            raise TimeoutError(f"no pong within {timeout}s")


class TestPingThread:

    def test_pings_until_stopped(self):
        channel = CountingChannel()
        thread = PingThread(channel, timeout=0.5, interval=0.01)
        thread.start()
        assert channel.pinged.wait(5)
        thread.stop()
        thread.join(5)
        assert not thread.is_alive()
        assert channel.pings >= 1

    def test_dead_channel_is_reported_and_pinging_continues(self):
        channel = CountingChannel(fail=True)
        errors = []
        two = threading.Event()

        def on_dead(error):
            errors.append(error)
            if len(errors) >= 2:
                two.set()

        thread = PingThread(channel, timeout=0.5, interval=0.01, on_dead=on_dead)
        thread.start()
        assert two.wait(5)
        thread.stop()
        thread.join(5)
        assert all(isinstance(e, TimeoutError) for e in errors)


class TestStreamPump:

    def test_copies_until_eof_then_ends_once(self):
        sink = io.BytesIO()
        ends = []
        pump = StreamPump(io.BytesIO(b"x" * 20000), sink, on_end=lambda: ends.append(1))
        pump.start()
        pump.join(5)
        pump.end()
        assert sink.getvalue() == b"x" * 20000
        assert ends == [1]
        assert pump.error is None

    def test_recv_style_source(self):
        chunks = [b"from ", b"ssh", b""]
        sink = io.BytesIO()
        pump = StreamPump(lambda size: chunks.pop(0), sink)
        pump.start()
        pump.join(5)
        assert sink.getvalue() == b"from ssh"

    def test_write_failure_still_ends(self):
        class BrokenSink:
            def write(self, data):
                raise BrokenPipeError("gone")

        ends = []
        pump = StreamPump(io.BytesIO(b"data"), BrokenSink(), on_end=lambda: ends.append(1))
        pump.start()
        pump.join(5)
        assert ends == [1]
        assert isinstance(pump.error, BrokenPipeError)


class TestClosables:

    def test_reverse_order_and_exactly_once(self):
        order = []
        closables = Closables()
        closables.add(lambda: order.append("socket"), "socket")
        closables.add(lambda: order.append("pool"), "pool")
        assert closables.close() == []
        assert closables.close() == []
        assert order == ["pool", "socket"]

    def test_failures_are_collected(self):
        order = []
        failure = OSError("already closed")

        def broken():
            raise failure

        closables = Closables()
        closables.add(lambda: order.append("first"))
        closables.add(broken, "broken")
        closables.add(lambda: order.append("last"))
        assert closables.close() == [failure]
        assert order == ["last", "first"]

    def test_objects_with_close(self):
        stream = io.BytesIO()
        with Closables() as closables:
            closables.add(stream)
        assert stream.closed

    def test_add_after_close(self):
        closables = Closables()
        closables.close()
        with pytest.raises(RuntimeError):
            closables.add(io.BytesIO())
