"""Tests for the HTTPS proxy CONNECT tunnel."""

import pytest

from fakeserver import ProxyServer
from jenkinscli.errors import ConfigurationError, ProxyTunnelFailed
from jenkinscli.tunnel import open_tunnel, parse_address


@pytest.fixture
def proxy_factory():
    servers = []

    def start(**options):
        server = ProxyServer(**options).start()
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.stop()


def test_tunnel_established(proxy_factory):
    proxy = proxy_factory(banner=b"behind the proxy")
    sock = open_tunnel(f"127.0.0.1:{proxy.port}", "jenkins.example", 50000)
    try:
        assert sock.gettimeout() is None
        received = b""
        while len(received) < 16:
            received += sock.recv(16 - len(received))
        assert received == b"behind the proxy"
    finally:
        sock.close()
    assert proxy.requests == ["CONNECT jenkins.example:50000 HTTP/1.0\r\n\r\n"]


def test_refused_by_proxy(proxy_factory):
    proxy = proxy_factory(status="HTTP/1.0 403 Forbidden")
    with pytest.raises(ProxyTunnelFailed, match="403"):
        open_tunnel(f"127.0.0.1:{proxy.port}", "jenkins.example", 50000)


def test_http_1_1_answer_is_not_accepted(proxy_factory):
    proxy = proxy_factory(status="HTTP/1.1 200 Connection established")
    with pytest.raises(ProxyTunnelFailed):
        open_tunnel(f"127.0.0.1:{proxy.port}", "jenkins.example", 50000)


@pytest.mark.parametrize("address", ["proxy", ":8080", "proxy:http"])
def test_bad_proxy_address(address):
    with pytest.raises(ConfigurationError):
        parse_address(address)


def test_parse_address():
    assert parse_address("proxy.example:3128") == ("proxy.example", 3128)
