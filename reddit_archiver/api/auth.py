"""
OAuth support for the remote API

Loads script-app credentials from a YAML/JSON file and keeps a password
grant access token fresh.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import aiohttp
import yaml

from reddit_archiver import __version__
from reddit_archiver.core.base import AuthRequiredError, ConfigurationError
from reddit_archiver.core.transport import Request, Transport

TOKEN_URL = 'https://www.reddit.com/api/v1/access_token'
REQUIRED_KEYS = ('client_id', 'client_secret', 'username', 'password')


@dataclass(frozen=True)
class OAuthCredentials:
    client_id: str
    client_secret: str
    username: str
    password: str


def load_credentials(path: str) -> OAuthCredentials:
    """Read credentials from a YAML or JSON file"""
    auth_file = Path(path)
    try:
        with open(auth_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read auth file {auth_file}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Auth file {auth_file} must contain a mapping")
    missing = [key for key in REQUIRED_KEYS if not data.get(key)]
    if missing:
        raise ConfigurationError(f"Auth file {auth_file} is missing: {', '.join(missing)}")
    return OAuthCredentials(*(str(data[key]) for key in REQUIRED_KEYS))


class OAuthSession:
    """Obtains and caches an access token; refreshes at 90% of its lifetime"""

    def __init__(self, credentials: OAuthCredentials, transport: Transport,
                 clock: Callable[[], float] = time.monotonic):
        self.credentials = credentials
        self.transport = transport
        self.logger = logging.getLogger(__name__)
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def user_agent(self) -> str:
        return f"reddit-archiver/{__version__} by {self.credentials.username}"

    def invalidate(self) -> None:
        self._token = None

    async def get_token(self) -> str:
        async with self._lock:
            if self._token and self._clock() < self._expires_at:
                return self._token
            await self._fetch_token()
            return self._token

    async def _fetch_token(self) -> None:
        self.logger.debug("Fetching access token...")
        response = await self.transport.send(Request(
            url=TOKEN_URL,
            method='POST',
            data={
                'grant_type': 'password',
                'username': self.credentials.username,
                'password': self.credentials.password
            },
            headers={'User-Agent': self.user_agent},
            auth=aiohttp.BasicAuth(self.credentials.client_id, self.credentials.client_secret)
        ))
        data = response.json()
        if not data.get('access_token'):
            raise AuthRequiredError(f"Access token request rejected: {data.get('error', 'no token returned')}")

        self._token = data['access_token']
        expires_in = float(data.get('expires_in') or 0)
        self._expires_at = self._clock() + expires_in * 0.9 if expires_in > 0 else float('inf')
        self.logger.debug(f"Access token updated - expires in {expires_in:.0f} seconds")
