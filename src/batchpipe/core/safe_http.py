# safe_http.py
# SPDX-License-Identifier: MIT
"""Stdlib-only HTTP client used by the downloader.

Connections are pinned to addresses resolved up front so that a URL cannot
reach private or loopback hosts through DNS tricks, and redirects are limited
to the same host family unless explicitly allowed.
"""

from __future__ import annotations

import http.client
import ipaddress
import socket
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Union

from .log import get_logger

log = get_logger(__name__)

RequestLike = Union[str, urllib.request.Request]

_SENSITIVE_HEADERS = {"authorization", "cookie", "proxy-authorization"}


class PrivateAddressBlocked(RuntimeError):
    """Raised when every resolved address for a host is disallowed."""


class RedirectBlocked(RuntimeError):
    """Raised when a redirect targets an unrelated host or a forbidden scheme."""


class _PinnedHTTPConnection(http.client.HTTPConnection):
    """HTTPConnection that connects to a pre-resolved IP address."""

    def __init__(self, host: str, *, resolved_ip: str, **kwargs):
        super().__init__(host=host, **kwargs)
        self._resolved_ip = resolved_ip

    def connect(self) -> None:
        self.sock = self._create_connection(
            (self._resolved_ip, self.port), self.timeout, self.source_address
        )


class _PinnedHTTPSConnection(http.client.HTTPSConnection):
    """HTTPSConnection that connects to a pre-resolved IP while keeping SNI."""

    def __init__(self, host: str, *, resolved_ip: str, **kwargs):
        super().__init__(host=host, **kwargs)
        self._resolved_ip = resolved_ip
        self._sni_host = host

    def connect(self) -> None:
        self.sock = self._create_connection(
            (self._resolved_ip, self.port), self.timeout, self.source_address
        )
        if self._tunnel_host:
            self._tunnel()
        self.sock = self._context.wrap_socket(self.sock, server_hostname=self._sni_host)


@dataclass(frozen=True)
class SafeHttpResponse:
    """Response wrapper that owns its connection and closes both together."""

    _response: http.client.HTTPResponse
    _connection: http.client.HTTPConnection
    url: str
    redirects: tuple[tuple[str, str, int], ...] = ()

    @property
    def status(self) -> int:
        return self._response.status

    @property
    def reason(self) -> str:
        return self._response.reason

    @property
    def headers(self) -> http.client.HTTPMessage:
        return self._response.headers

    def getheader(self, name: str, default: str | None = None) -> str | None:
        return self._response.getheader(name, default)

    def read(self, amt: int | None = None) -> bytes:
        return self._response.read(amt)

    def close(self) -> None:
        try:
            self._response.close()
        finally:
            self._connection.close()

    def __enter__(self) -> SafeHttpResponse:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _default_allow_ip(addr: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """Allow only globally routable unicast addresses."""
    if not addr.is_global:
        return False
    if addr.is_multicast or addr.is_unspecified or addr.is_loopback or addr.is_link_local:
        return False
    return True


def _normalize_host(host: str | None) -> str | None:
    if not host:
        return None
    return host.rstrip(".").lower() or None


def _host_matches_suffix(host: str | None, suffix: str) -> bool:
    return bool(host and (host == suffix or host.endswith("." + suffix)))


class SafeHttpClient:
    """HTTP client that blocks private addresses and unrelated redirects.

    Redirects are followed when the target host equals the origin host, is a
    subdomain of it (or vice versa), or both share one of
    ``allowed_redirect_suffixes`` (CDN hosts are the usual reason to set it).
    HTTPS to HTTP downgrades are refused and credentials are dropped when the
    host changes.

    Attributes:
        timeout (float): Default request timeout in seconds.
        max_redirects (int): Maximum redirects to follow per request.
    """

    _ALLOWED_SCHEMES = ("http", "https")
    _REDIRECT_CODES = {301, 302, 303, 307, 308}
    _RETRYABLE_METHODS = {"GET", "HEAD", "OPTIONS"}

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        max_redirects: int = 5,
        allowed_redirect_suffixes: Sequence[str] | None = None,
        allow_ip: Callable[[ipaddress.IPv4Address | ipaddress.IPv6Address], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.max_redirects = max_redirects
        self._trusted_suffixes = {
            s.lower().lstrip(".") for s in (allowed_redirect_suffixes or ()) if s
        }
        self._allow_ip = allow_ip or _default_allow_ip
        self._sleep = sleep

    # helpers
    def _resolve_ips(self, hostname: str, *, url: str | None = None) -> list[str]:
        """Resolve a hostname, keeping only addresses the policy allows."""
        try:
            infos = socket.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
        except socket.gaierror as exc:
            raise urllib.error.URLError(f"DNS resolution failed for {hostname}: {exc}") from exc
        ips: list[str] = []
        for _family, _stype, _proto, _canon, sockaddr in infos:
            ip = sockaddr[0]
            if ip in ips:
                continue
            if self._allow_ip(ipaddress.ip_address(ip)):
                ips.append(ip)
        if not ips:
            target = f" for {url}" if url else ""
            raise PrivateAddressBlocked(f"All resolved addresses for {hostname} are disallowed{target}")
        return ips

    def _redirect_allowed(self, origin: str | None, target: str | None) -> bool:
        origin_n = _normalize_host(origin)
        target_n = _normalize_host(target)
        if not origin_n or not target_n:
            return False
        if target_n == origin_n or target_n.endswith("." + origin_n):
            return True
        if origin_n.endswith("." + target_n) and "." in target_n:
            return True
        return any(
            _host_matches_suffix(origin_n, s) and _host_matches_suffix(target_n, s)
            for s in self._trusted_suffixes
        )

    @staticmethod
    def _redirect_headers(
        headers: Mapping[str, str] | None, old_host: str | None, new_host: str | None
    ) -> dict[str, str] | None:
        if headers is None:
            return None
        if _normalize_host(old_host) == _normalize_host(new_host):
            return dict(headers)
        return {k: v for k, v in headers.items() if k.lower() not in _SENSITIVE_HEADERS}

    @staticmethod
    def _build_connection(
        *, scheme: str, host: str, ip: str, port: int, timeout: float
    ) -> http.client.HTTPConnection:
        if scheme == "https":
            return _PinnedHTTPSConnection(
                host,
                resolved_ip=ip,
                port=port,
                context=ssl.create_default_context(),
                timeout=timeout,
            )
        return _PinnedHTTPConnection(host, resolved_ip=ip, port=port, timeout=timeout)

    @staticmethod
    def _request_headers(headers: Mapping[str, str] | None, host: str, port: int, scheme: str) -> dict[str, str]:
        default_port = (scheme == "http" and port == 80) or (scheme == "https" and port == 443)
        out: dict[str, str] = {"Host": host if default_port else f"{host}:{port}"}
        for k, v in (headers or {}).items():
            if k.lower() != "host":
                out[k] = v
        return out

    # public
    def open(
        self,
        request: RequestLike,
        *,
        timeout: float | None = None,
    ) -> SafeHttpResponse:
        """Open a request with address pinning and redirect checks.

        Args:
            request (RequestLike): URL string or prebuilt Request object.
            timeout (float | None): Request timeout; defaults to the client
                default.

        Returns:
            SafeHttpResponse: Response wrapper owning the connection.
        """
        req = urllib.request.Request(request) if isinstance(request, str) else request
        url = req.full_url
        return self._request(
            url=url,
            method=req.get_method(),
            headers=dict(req.header_items()),
            body=req.data,  # type: ignore[arg-type]
            timeout=timeout or self.timeout,
            redirects_remaining=self.max_redirects,
            origin_host=urllib.parse.urlsplit(url).hostname,
            redirect_log=[],
        )

    def open_with_retries(
        self,
        request: RequestLike,
        *,
        timeout: float | None = None,
        retries: int = 0,
        backoff_base: float = 1.0,
        backoff_factor: float = 2.0,
    ) -> SafeHttpResponse:
        """Retry :meth:`open` on connection-level failures with exponential backoff.

        Only idempotent methods are retried. Policy failures
        (:class:`PrivateAddressBlocked`, :class:`RedirectBlocked`) are never
        retried.

        Args:
            request (RequestLike): URL or Request to execute.
            timeout (float | None): Request timeout.
            retries (int): Number of retry attempts after the first.
            backoff_base (float): Delay before the first retry.
            backoff_factor (float): Multiplier applied on each retry.

        Returns:
            SafeHttpResponse: Response wrapper if an attempt succeeds.

        Raises:
            urllib.error.URLError | OSError: The last error once attempts run out.
        """
        req = urllib.request.Request(request) if isinstance(request, str) else request
        if (req.get_method() or "GET").upper() not in self._RETRYABLE_METHODS:
            return self.open(req, timeout=timeout)

        attempts = max(0, int(retries)) + 1
        for attempt in range(attempts):
            try:
                return self.open(req, timeout=timeout)
            except (PrivateAddressBlocked, RedirectBlocked):
                raise
            except (urllib.error.URLError, TimeoutError, OSError) as exc:
                if attempt >= attempts - 1:
                    raise
                delay = backoff_base * (backoff_factor ** attempt)
                log.debug(
                    "Retrying %s after %s (attempt %d/%d, sleeping %.2fs)",
                    req.full_url, exc, attempt + 1, attempts, delay,
                )
                if delay > 0:
                    self._sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover

    # core
    def _request(
        self,
        *,
        url: str,
        method: str,
        headers: Mapping[str, str] | None,
        body: bytes | None,
        timeout: float,
        redirects_remaining: int,
        origin_host: str | None,
        redirect_log: list[tuple[str, str, int]],
    ) -> SafeHttpResponse:
        parsed = urllib.parse.urlsplit(url)
        scheme = (parsed.scheme or "http").lower()
        if scheme not in self._ALLOWED_SCHEMES:
            raise urllib.error.URLError(f"Unsupported URL scheme: {scheme}")
        host = parsed.hostname
        if not host:
            raise urllib.error.URLError("URL missing host")
        port = parsed.port or (443 if scheme == "https" else 80)
        path = (parsed.path or "/") + (f"?{parsed.query}" if parsed.query else "")

        last_error: Exception | None = None
        for ip in self._resolve_ips(host, url=url):
            conn = self._build_connection(scheme=scheme, host=host, ip=ip, port=port, timeout=timeout)
            try:
                conn.request(
                    method.upper(),
                    path,
                    body=body,
                    headers=self._request_headers(headers, host, port, scheme),
                )
                response = conn.getresponse()
            except OSError as exc:
                last_error = exc
                conn.close()
                continue

            if response.status not in self._REDIRECT_CODES:
                log.debug("HTTP %s %s status=%s", method.upper(), url, response.status)
                return SafeHttpResponse(response, conn, url=url, redirects=tuple(redirect_log))

            location = response.getheader("Location")
            response.close()
            conn.close()
            if redirects_remaining <= 0:
                raise RedirectBlocked("Too many redirects")
            if not location:
                raise RedirectBlocked("Redirect response missing Location header")
            redirect_url = urllib.parse.urljoin(url, location)
            parts = urllib.parse.urlsplit(redirect_url)
            new_scheme = (parts.scheme or "http").lower()
            if new_scheme not in self._ALLOWED_SCHEMES:
                raise RedirectBlocked(f"Redirect blocked: scheme {new_scheme!r} not permitted")
            if scheme == "https" and new_scheme == "http":
                raise RedirectBlocked("Redirect blocked: https to http downgrade")
            if not self._redirect_allowed(origin_host, parts.hostname):
                raise RedirectBlocked(
                    f"Redirect blocked: cross-host redirect from {origin_host} to {parts.hostname}"
                )
            new_method = "GET" if response.status in (301, 302, 303) else method
            redirect_log.append((url, redirect_url, response.status))
            return self._request(
                url=redirect_url,
                method=new_method,
                headers=self._redirect_headers(headers, host, parts.hostname),
                body=None if new_method == "GET" else body,
                timeout=timeout,
                redirects_remaining=redirects_remaining - 1,
                origin_host=origin_host,
                redirect_log=redirect_log,
            )

        raise urllib.error.URLError(f"All resolved addresses for {host} failed") from last_error


__all__ = [
    "SafeHttpClient",
    "SafeHttpResponse",
    "PrivateAddressBlocked",
    "RedirectBlocked",
]
