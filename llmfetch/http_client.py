import asyncio
import errno
import socket
import ssl
from dataclasses import dataclass, field
from typing import Mapping
from urllib.parse import urlparse

import aiohttp

from .errors import HostNotAllowedError
from .safeguard import HostPolicy, default_host_policy
from .settings import DEFAULT_USER_AGENT

DEFAULT_HTTP_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


@dataclass
class HttpResponse:
    status: int
    text: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)


class HttpClient:
    """
    Plain HTTP transport built on aiohttp.

    - Refuses hosts outside its HostPolicy before any socket is opened
    - One pooled ClientSession per client (opened lazily or via `async with`)
    - Hard deadline per request covering connect, headers and body
    """

    def __init__(
        self,
        policy: HostPolicy | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        max_redirects: int = 5,
        session: aiohttp.ClientSession | None = None,
    ):
        self.policy = policy if policy is not None else default_host_policy()
        self.user_agent = user_agent
        self.max_redirects = max_redirects
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={**DEFAULT_HTTP_HEADERS, "User-Agent": self.user_agent},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def get(self, url: str, timeout_ms: int) -> HttpResponse:
        """
        GET `url`, following redirects.

        Raises HostNotAllowedError, asyncio.TimeoutError or aiohttp/OS errors;
        callers classify them with `classify_transport_error`.
        """
        if not self.policy.allows(url):
            raise HostNotAllowedError(urlparse(url).hostname or url)

        session = self._ensure_session()
        timeout_s = timeout_ms / 1000

        async def _request() -> HttpResponse:
            async with session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=timeout_s),
                allow_redirects=True,
                max_redirects=self.max_redirects,
            ) as resp:
                text = await resp.text(errors="replace")
                return HttpResponse(status=resp.status, text=text, url=str(resp.url), headers=resp.headers)

        # ClientTimeout alone doesn't bound slow DNS on every resolver.
        return await asyncio.wait_for(_request(), timeout=timeout_s)


def _exception_chain(exc: BaseException):
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        os_error = getattr(exc, "os_error", None)
        if isinstance(os_error, BaseException) and id(os_error) not in seen:
            yield os_error
        exc = exc.__cause__ or exc.__context__


def _classify_type(exc: BaseException) -> str | None:
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, socket.timeout)):
        return "timeout"
    if isinstance(exc, (aiohttp.ClientSSLError, ssl.SSLError, ssl.CertificateError)):
        return "ssl_error"
    if isinstance(exc, socket.gaierror):
        return "dns_error"
    if isinstance(exc, ConnectionRefusedError):
        return "connection_refused"
    if isinstance(exc, (ConnectionResetError, aiohttp.ServerDisconnectedError)):
        return "connection_reset"
    if isinstance(exc, OSError):
        if exc.errno == errno.ECONNREFUSED:
            return "connection_refused"
        if exc.errno == errno.ECONNRESET:
            return "connection_reset"
        if exc.errno == errno.ETIMEDOUT:
            return "timeout"
    return None


def _classify_message(message: str) -> str | None:
    if "aborted" in message or "ETIMEDOUT" in message or "timeout" in message.lower():
        return "timeout"
    if "ENOTFOUND" in message or "Name or service not known" in message or "nodename nor servname" in message:
        return "dns_error"
    if "ECONNREFUSED" in message or "Connection refused" in message:
        return "connection_refused"
    if "ECONNRESET" in message or "Connection reset" in message:
        return "connection_reset"
    if "certificate" in message or "SSL" in message or "TLS" in message:
        return "ssl_error"
    return None


def classify_transport_error(exc: BaseException) -> str:
    """Map a transport exception to a network-class reason code."""
    chain = list(_exception_chain(exc))
    for e in chain:
        reason = _classify_type(e)
        if reason:
            return reason
    for e in chain:
        reason = _classify_message(str(e))
        if reason:
            return reason
    return "unknown"
