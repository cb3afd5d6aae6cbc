"""
HTTP Transport Layer

Executes single HTTP requests over one shared aiohttp session, optionally
through an http/https/socks4/socks5 proxy, and maps failures onto the
archiver's TransportError kinds. No retries happen here; that is the
scheduler's job.
"""

import asyncio
import json
import logging
import os
import ssl
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, Mapping

import aiofiles
import aiohttp
from aiohttp_socks import ProxyConnector

from reddit_archiver import __version__
from reddit_archiver.core.base import (
    BaseComponent,
    NetworkError,
    RequestTimeoutError,
    RateLimitedError,
    AuthRequiredError,
    ServerError
)
from reddit_archiver.core.config import RequestConfig

DEFAULT_USER_AGENT = f"reddit-archiver/{__version__}"


@dataclass
class Request:
    """A single outbound HTTP request"""
    url: str
    method: str = "GET"
    params: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    data: Optional[Any] = None
    auth: Optional[aiohttp.BasicAuth] = None


@dataclass
class RateLimitStats:
    """Parsed ``x-ratelimit-*`` response headers"""
    remaining: float
    reset_seconds: float
    used: float


@dataclass
class Response:
    """A fully read HTTP response"""
    url: str
    status: int
    headers: Mapping[str, str]
    body: bytes

    def text(self) -> str:
        return self.body.decode('utf-8', errors='replace')

    def json(self) -> Any:
        return json.loads(self.body)

    @property
    def rate_limit(self) -> Optional[RateLimitStats]:
        try:
            return RateLimitStats(
                remaining=float(self.headers['x-ratelimit-remaining']),
                reset_seconds=float(self.headers['x-ratelimit-reset']),
                used=float(self.headers['x-ratelimit-used'])
            )
        except (KeyError, ValueError):
            return None


def _reset_hint(headers: Mapping[str, str]) -> Optional[float]:
    """Seconds until the rate limit resets, if the server told us"""
    for name in ('x-ratelimit-reset', 'Retry-After'):
        value = headers.get(name)
        if value is None:
            continue
        try:
            return max(0.0, float(value))
        except ValueError:
            continue
    return None


def check_status(status: int, headers: Mapping[str, str], url: str) -> None:
    """Raise the TransportError matching a non-2xx status"""
    if 200 <= status < 300:
        return
    if status == 429:
        raise RateLimitedError(f"Rate limited by {url}", reset_seconds=_reset_hint(headers))
    if status in (401, 403):
        raise AuthRequiredError(f"HTTP {status} for {url}", status=status)
    if status >= 500:
        raise ServerError(f"HTTP {status} for {url}", status=status, retryable=True)
    raise ServerError(f"HTTP {status} for {url}", status=status, retryable=False)


def create_proxy_connector(proxy_url: str, reject_unauthorized_tls: bool = True) -> ProxyConnector:
    """
    Build a connector that dials every connection through the proxy

    For ``https://`` proxies the TLS session with the proxy itself uses a
    dedicated SSL context; when reject_unauthorized_tls is False only that
    hop skips certificate validation. Origin TLS is unaffected.
    """
    proxy_ssl = None
    if proxy_url.lower().startswith('https://'):
        proxy_ssl = ssl.create_default_context()
        if not reject_unauthorized_tls:
            proxy_ssl.check_hostname = False
            proxy_ssl.verify_mode = ssl.CERT_NONE
        proxy_url = 'http://' + proxy_url[len('https://'):]
    return ProxyConnector.from_url(proxy_url, proxy_ssl=proxy_ssl)


class Transport(BaseComponent):
    """
    Stateless-per-call HTTP executor

    Failures surface as NetworkError, RequestTimeoutError, RateLimitedError
    (with the server's reset hint), AuthRequiredError or ServerError.
    """

    def __init__(self, config: RequestConfig, user_agent: str = DEFAULT_USER_AGENT):
        super().__init__(config)
        self.logger = logging.getLogger(__name__)
        self.user_agent = user_agent
        self.session: Optional[aiohttp.ClientSession] = None

    async def initialize(self) -> None:
        connector = None
        if self.config.proxy.url:
            connector = create_proxy_connector(self.config.proxy.url, self.config.proxy.reject_unauthorized_tls)
            self.logger.info(f"Using proxy {connector_display(self.config.proxy.url)}")

        self.session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            headers={'User-Agent': self.user_agent}
        )
        self._initialized = True

    async def cleanup(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None
        self._initialized = False

    async def send(self, request: Request) -> Response:
        """Execute one request and return the fully read response"""
        if not self.session:
            raise NetworkError("Transport not initialized")

        self.logger.debug(f"{request.method} {request.url} {request.params or ''}")
        try:
            async with self.session.request(
                request.method, request.url,
                params=request.params, headers=request.headers,
                data=request.data, auth=request.auth
            ) as resp:
                body = await resp.read()
                response = Response(url=str(resp.url), status=resp.status, headers=resp.headers, body=body)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(f"Timed out requesting {request.url}") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Network error requesting {request.url}: {e}") from e

        check_status(response.status, response.headers, request.url)
        return response

    async def download(self, request: Request, dest: Path) -> int:
        """
        Stream a response body to dest

        Data goes to ``<dest>.part`` first and is renamed into place once
        complete, so dest never holds a truncated file.

        Returns:
            Number of bytes written
        """
        if not self.session:
            raise NetworkError("Transport not initialized")

        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + '.part')
        try:
            async with self.session.request(request.method, request.url, headers=request.headers) as resp:
                check_status(resp.status, resp.headers, request.url)
                size = 0
                async with aiofiles.open(part, 'wb') as f:
                    async for chunk in resp.content.iter_chunked(8192):
                        await f.write(chunk)
                        size += len(chunk)
            os.replace(part, dest)
            return size
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(f"Timed out downloading {request.url}") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Network error downloading {request.url}: {e}") from e
        finally:
            if part.exists():
                part.unlink()


def connector_display(proxy_url: str) -> str:
    """Proxy URL with any embedded password masked, for logging"""
    if '@' not in proxy_url:
        return proxy_url
    scheme, rest = proxy_url.split('://', 1) if '://' in proxy_url else ('', proxy_url)
    creds, host = rest.rsplit('@', 1)
    user = creds.split(':', 1)[0]
    return f"{scheme}://{user}:***@{host}" if scheme else f"{user}:***@{host}"

