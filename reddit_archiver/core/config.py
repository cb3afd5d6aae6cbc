"""
Configuration Manager for Reddit Archiver

Handles YAML/JSON configuration files and environment variable integration.
Settings are assembled once with explicit precedence (explicit overrides,
then environment, then file, then built-in defaults) into a typed,
immutable ArchiverConfig which is validated as a whole.
"""

import os
import json
import yaml
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from urllib.parse import urlparse

from reddit_archiver.core.base import ConfigurationError
from reddit_archiver.utils.dates import parse_date

PROXY_SCHEMES = ("http", "https", "socks4", "socks5")


@dataclass(frozen=True)
class ProxyConfig:
    """Outbound proxy settings"""
    url: Optional[str] = None
    reject_unauthorized_tls: bool = True


@dataclass(frozen=True)
class RequestConfig:
    """Request scheduling and transport settings"""
    max_retries: int = 3
    max_concurrent: int = 10
    min_time: int = 200  # ms between dispatch starts
    timeout: float = 60.0
    proxy: ProxyConfig = field(default_factory=ProxyConfig)


@dataclass(frozen=True)
class DownloadConfig:
    """What to fetch and how to treat already-archived content"""
    limit: Optional[int] = None
    after: Optional[datetime] = None
    before: Optional[datetime] = None
    fetch_comments: bool = False
    fetch_post_authors: bool = False
    overwrite: bool = False
    overwrite_deleted: bool = False
    continue_mode: bool = False
    save_target_to_db: bool = True
    download_media: bool = True
    max_parallel_jobs: int = 3


@dataclass(frozen=True)
class LoggingConfig:
    """Logging system configuration"""
    level: str = "INFO"
    file: str = "./logs/reddit-archiver.log"
    max_size: str = "10MB"
    backup_count: int = 5


@dataclass(frozen=True)
class ArchiverConfig:
    """Complete, validated run configuration"""
    request: RequestConfig = field(default_factory=RequestConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    data_dir: str = "."
    auth_file: Optional[str] = None
    ffmpeg_path: Optional[str] = None

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / "db" / "reddit-archiver.sqlite"

    @property
    def media_dir(self) -> Path:
        return Path(self.data_dir) / "media"


# environment variable -> (section, key, converter)
ENV_OVERRIDES = {
    'ARCHIVER_MAX_RETRIES': ('request', 'max_retries', int),
    'ARCHIVER_MAX_CONCURRENT': ('request', 'max_concurrent', int),
    'ARCHIVER_MIN_TIME': ('request', 'min_time', int),
    'ARCHIVER_PROXY_URL': ('proxy', 'url', str),
    'ARCHIVER_LOG_LEVEL': ('logging', 'level', str),
    'ARCHIVER_DATA_DIR': (None, 'data_dir', str),
    'ARCHIVER_AUTH_FILE': (None, 'auth', str),
    'ARCHIVER_FFMPEG_PATH': (None, 'ffmpeg_path', str),
}


def _merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """Merge updates into base; None values in updates are ignored"""
    for key, value in updates.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


class ConfigManager:
    """
    Centralized configuration manager with support for YAML/JSON files
    and environment variable integration.
    """

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        self.config_path = config_path
        self.environ = os.environ if environ is None else environ
        self._config_data: Dict[str, Any] = {}
        self.config: Optional[ArchiverConfig] = None

    def load_config(self, overrides: Optional[Dict[str, Any]] = None) -> ArchiverConfig:
        """
        Assemble and validate the run configuration

        Args:
            overrides: Nested dict of explicitly set values (e.g. from the
                command line). Keys with None values are treated as unset.

        Returns:
            Validated ArchiverConfig
        """
        data = self._get_default_config()
        _merge(data, self._load_file())
        _merge(data, self._env_overrides())
        _merge(data, overrides or {})
        self._config_data = data

        self.config = self._parse_config(data)
        self.validate_config(self.config)
        return self.config

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration dictionary"""
        return {
            'request': {
                'max_retries': 3,
                'max_concurrent': 10,
                'min_time': 200,
                'timeout': 60,
                'proxy': {
                    'url': None,
                    'reject_unauthorized_tls': True
                }
            },
            'download': {
                'limit': None,
                'after': None,
                'before': None,
                'fetch_comments': False,
                'fetch_post_authors': False,
                'overwrite': False,
                'overwrite_deleted': False,
                'continue': False,
                'save_target_to_db': True,
                'download_media': True,
                'max_parallel_jobs': 3
            },
            'logging': {
                'level': 'INFO',
                'file': './logs/reddit-archiver.log',
                'max_size': '10MB',
                'backup_count': 5
            },
            'data_dir': '.',
            'auth': None,
            'ffmpeg_path': None
        }

    def _load_file(self) -> Dict[str, Any]:
        if not self.config_path:
            return {}

        config_file = Path(self.config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Config file not found: {config_file}")

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                if config_file.suffix.lower() == '.json':
                    data = json.load(f)
                else:  # Assume YAML
                    data = yaml.safe_load(f) or {}
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load config from {config_file}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_file} must contain a mapping")
        return data

    def _env_overrides(self) -> Dict[str, Any]:
        """Collect environment variable overrides as a nested dict"""
        result: Dict[str, Any] = {}
        for env_name, (section, key, convert) in ENV_OVERRIDES.items():
            raw = self.environ.get(env_name)
            if not raw:
                continue
            try:
                value = convert(raw)
            except ValueError:
                raise ConfigurationError(f"Invalid value for {env_name}: {raw!r}")

            if section is None:
                result[key] = value
            elif section == 'proxy':
                result.setdefault('request', {}).setdefault('proxy', {})[key] = value
            else:
                result.setdefault(section, {})[key] = value
        return result

    def _parse_config(self, data: Dict[str, Any]) -> ArchiverConfig:
        """Parse configuration dict into dataclass objects"""
        request_data = data.get('request') or {}
        proxy_data = request_data.get('proxy') or {}
        download_data = data.get('download') or {}
        logging_data = data.get('logging') or {}

        try:
            after = parse_date(download_data.get('after'))
            before = parse_date(download_data.get('before'))
        except ValueError as e:
            raise ConfigurationError(str(e))

        try:
            limit = download_data.get('limit')
            return ArchiverConfig(
                request=RequestConfig(
                    max_retries=int(request_data['max_retries']),
                    max_concurrent=int(request_data['max_concurrent']),
                    min_time=int(request_data['min_time']),
                    timeout=float(request_data['timeout']),
                    proxy=ProxyConfig(
                        url=proxy_data.get('url') or None,
                        reject_unauthorized_tls=bool(proxy_data.get('reject_unauthorized_tls', True))
                    )
                ),
                download=DownloadConfig(
                    limit=int(limit) if limit is not None else None,
                    after=after,
                    before=before,
                    fetch_comments=bool(download_data['fetch_comments']),
                    fetch_post_authors=bool(download_data['fetch_post_authors']),
                    overwrite=bool(download_data['overwrite']),
                    overwrite_deleted=bool(download_data['overwrite_deleted']),
                    continue_mode=bool(download_data['continue']),
                    save_target_to_db=bool(download_data['save_target_to_db']),
                    download_media=bool(download_data['download_media']),
                    max_parallel_jobs=int(download_data['max_parallel_jobs'])
                ),
                logging=LoggingConfig(
                    level=str(logging_data['level']).upper(),
                    file=logging_data['file'],
                    max_size=str(logging_data['max_size']),
                    backup_count=int(logging_data['backup_count'])
                ),
                data_dir=str(data.get('data_dir') or '.'),
                auth_file=data.get('auth') or None,
                ffmpeg_path=data.get('ffmpeg_path') or None
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}")

    def validate_config(self, config: ArchiverConfig) -> bool:
        """Validate the assembled configuration as a whole"""
        errors = []
        request = config.request
        download = config.download

        if request.max_retries < 0:
            errors.append("request.max_retries must be >= 0")
        if request.max_concurrent < 1:
            errors.append("request.max_concurrent must be >= 1")
        if request.min_time < 0:
            errors.append("request.min_time must be >= 0")
        if request.timeout <= 0:
            errors.append("request.timeout must be > 0")

        if request.proxy.url:
            parsed = urlparse(request.proxy.url)
            if parsed.scheme not in PROXY_SCHEMES or not parsed.hostname:
                errors.append(
                    f"request.proxy.url must be a {'/'.join(PROXY_SCHEMES)} URL, got {request.proxy.url!r}"
                )

        if download.limit is not None and download.limit < 1:
            errors.append("download.limit must be >= 1")
        if download.max_parallel_jobs < 1:
            errors.append("download.max_parallel_jobs must be >= 1")
        if download.after and download.before and download.after >= download.before:
            errors.append("download.after must be earlier than download.before")

        if config.logging.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"Invalid log level: {config.logging.level}")

        if config.auth_file and not Path(config.auth_file).is_file():
            errors.append(f"Auth file not found: {config.auth_file}")
        if config.ffmpeg_path and not Path(config.ffmpeg_path).exists():
            errors.append(f"ffmpeg path not found: {config.ffmpeg_path}")

        if errors:
            raise ConfigurationError("; ".join(errors))
        return True
