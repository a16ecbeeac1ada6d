import socket
import urllib.error
import urllib.request

import pytest

from batchpipe.core.safe_http import PrivateAddressBlocked, RedirectBlocked, SafeHttpClient


def _addrinfo(*ips):
    def fake_getaddrinfo(host, port, *args, **kwargs):
        return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", (ip, port)) for ip in ips]

    return fake_getaddrinfo


class FakeResponse:
    def __init__(self, status, headers=None):
        self.status = status
        self.headers = headers or {}
        self.reason = "OK"

    def getheader(self, name, default=None):
        return self.headers.get(name, default)

    def close(self):
        pass


def _fake_transport(monkeypatch, client, responses):
    sent = []

    class FakeConnection:
        def __init__(self):
            self._response = responses.pop(0)

        def request(self, method, path, body=None, headers=None):
            sent.append((method, path, dict(headers or {})))

        def getresponse(self):
            return self._response

        def close(self):
            pass

    monkeypatch.setattr(client, "_resolve_ips", lambda hostname, url=None: ["8.8.8.8"])
    monkeypatch.setattr(client, "_build_connection", lambda **kwargs: FakeConnection())
    return sent


def test_blocks_private_and_shared_ips(monkeypatch):
    monkeypatch.setattr(socket, "getaddrinfo", _addrinfo("10.0.0.1", "100.64.0.1", "127.0.0.1"))

    with pytest.raises(PrivateAddressBlocked):
        SafeHttpClient()._resolve_ips("example.com")


def test_allows_only_global_ips(monkeypatch):
    monkeypatch.setattr(socket, "getaddrinfo", _addrinfo("100.64.0.1", "93.184.216.34", "224.0.0.1"))

    assert SafeHttpClient()._resolve_ips("example.com") == ["93.184.216.34"]


@pytest.mark.parametrize(
    "src, dest, expected",
    [
        ("example.com", "example.com", True),
        ("example.com", "www.example.com", True),
        ("www.example.com", "example.com", True),
        ("example.com", "malicious.com", False),
        ("example.com", "example.com.attacker.net", False),
        ("a.co.uk", "b.co.uk", False),
        ("media.books.example", "cdn.books.example", True),
        ("example.com.", "example.com", True),
        ("sub.example.com", "example", False),
        ("example.com", None, False),
    ],
)
def test_redirect_allowed(src, dest, expected):
    client = SafeHttpClient(allowed_redirect_suffixes=("books.example",))
    assert client._redirect_allowed(src, dest) is expected


def test_follows_same_host_redirect(monkeypatch):
    client = SafeHttpClient()
    responses = [FakeResponse(302, {"Location": "https://example.com/next"}), FakeResponse(200)]
    sent = _fake_transport(monkeypatch, client, responses)

    resp = client.open("http://example.com/start", timeout=1)

    assert resp.status == 200
    assert resp.redirects == (("http://example.com/start", "https://example.com/next", 302),)
    assert [s[1] for s in sent] == ["/start", "/next"]


def test_cross_site_redirect_blocked(monkeypatch):
    client = SafeHttpClient()
    _fake_transport(monkeypatch, client, [FakeResponse(302, {"Location": "https://b.co.uk/next"})])

    with pytest.raises(RedirectBlocked):
        client.open("http://a.co.uk/start", timeout=1)


def test_https_to_http_downgrade_blocked(monkeypatch):
    client = SafeHttpClient()
    _fake_transport(monkeypatch, client, [FakeResponse(301, {"Location": "http://example.com/plain"})])

    with pytest.raises(RedirectBlocked, match="downgrade"):
        client.open("https://example.com/secure", timeout=1)


def test_too_many_redirects(monkeypatch):
    client = SafeHttpClient(max_redirects=1)
    loop = [FakeResponse(302, {"Location": "/again"}) for _ in range(3)]
    _fake_transport(monkeypatch, client, loop)

    with pytest.raises(RedirectBlocked, match="Too many"):
        client.open("https://example.com/start", timeout=1)


def test_credentials_dropped_on_host_change():
    headers = {"Authorization": "secret", "User-Agent": "ua"}
    assert SafeHttpClient._redirect_headers(headers, "a.example", "cdn.a.example") == {"User-Agent": "ua"}
    assert SafeHttpClient._redirect_headers(headers, "a.example", "A.example.") == headers


def test_open_with_retries_backs_off(monkeypatch):
    delays = []
    client = SafeHttpClient(sleep=delays.append)
    attempts = []

    def flaky_open(req, timeout=None):
        attempts.append(req.full_url)
        if len(attempts) < 3:
            raise urllib.error.URLError("connection reset")
        return "response"

    monkeypatch.setattr(client, "open", flaky_open)

    assert client.open_with_retries("https://example.com/f", retries=2) == "response"
    assert delays == [1.0, 2.0]
    assert len(attempts) == 3


def test_open_with_retries_gives_up(monkeypatch):
    client = SafeHttpClient(sleep=lambda s: None)

    def failing_open(req, timeout=None):
        raise TimeoutError("timed out")

    monkeypatch.setattr(client, "open", failing_open)

    with pytest.raises(TimeoutError):
        client.open_with_retries("https://example.com/f", retries=1)


def test_policy_errors_and_posts_are_not_retried(monkeypatch):
    client = SafeHttpClient(sleep=lambda s: None)
    calls = []

    def blocked_open(req, timeout=None):
        calls.append(req.get_method())
        raise PrivateAddressBlocked("nope")

    monkeypatch.setattr(client, "open", blocked_open)

    with pytest.raises(PrivateAddressBlocked):
        client.open_with_retries("https://example.com/f", retries=5)
    with pytest.raises(PrivateAddressBlocked):
        client.open_with_retries(urllib.request.Request("https://example.com/f", data=b"x"), retries=5)
    assert calls == ["GET", "POST"]
