"""Tests for the transport fallback chain."""

import logging

import pytest

from jenkinscli.errors import ConnectFailure, NoPortAdvertised, TransportExhausted
from jenkinscli.selector import State, TransportSelector


def failing(error):
    def opener():
        raise error
    return opener


def test_falls_back_to_http(caplog):
    selector = TransportSelector([
        ("CLI port", failing(NoPortAdvertised("no port"))),
        ("HTTP", lambda: "plain session"),
    ])
    with caplog.at_level(logging.WARNING):
        assert selector.select() == "plain session"
    assert selector.state is State.ESTABLISHED
    assert selector.selected == "HTTP"
    assert [f.transport for f in selector.failures] == ["CLI port"]
    assert "Falling back to HTTP" in caplog.text


def test_first_success_stops_the_chain():
    calls = []
    selector = TransportSelector([
        ("CLI port", lambda: calls.append("cli") or "remoting session"),
        ("HTTP", lambda: calls.append("http")),
    ])
    assert selector.select() == "remoting session"
    assert calls == ["cli"]
    assert selector.failures == []


def test_every_attempt_failed():
    first, last = NoPortAdvertised("no port"), ConnectFailure("refused")
    selector = TransportSelector([("CLI port", failing(first)), ("HTTP", failing(last))])
    with pytest.raises(TransportExhausted) as info:
        selector.select()
    assert info.value.primary.error is last
    assert [f.error for f in info.value.superseded] == [first]
    assert [f.transport for f in info.value.failures] == ["CLI port", "HTTP"]
    assert selector.state is State.FAILED


def test_explicit_mode_does_not_fall_back():
    error = ConnectFailure("refused")
    http_attempted = []
    selector = TransportSelector([
        ("CLI port", failing(error)),
        ("HTTP", lambda: http_attempted.append(True)),
    ], fallback=False)
    with pytest.raises(ConnectFailure) as info:
        selector.select()
    assert info.value is error
    assert http_attempted == []


def test_programming_errors_are_not_swallowed():
    selector = TransportSelector([("CLI port", failing(KeyError("bug"))), ("HTTP", lambda: "x")])
    with pytest.raises(KeyError):
        selector.select()


def test_needs_an_attempt():
    with pytest.raises(ValueError):
        TransportSelector([])
