"""
Core components for Reddit Archiver

This package contains the core components including:
- Base data models, component base class and exceptions
- Configuration management
- Logging system
- Transport, scheduler, target resolver, dedup and crawl engine
- Orchestrator implementation
"""

from reddit_archiver.core.base import (
    TargetType,
    ItemKind,
    Decision,
    TargetStatus,
    ErrorKind,
    Target,
    TraversalJob,
    RemoteItem,
    StoredItem,
    JobResult,
    BaseComponent,
    ArchiverError,
    ConfigurationError,
    InvalidTargetError,
    TransportError,
    NetworkError,
    RequestTimeoutError,
    RateLimitedError,
    AuthRequiredError,
    ServerError,
    SchedulerClosedError,
    StoreUnavailableError,
    MigrationFailedError,
    ToolNotFoundError,
    VersionUnparseableError
)

from reddit_archiver.core.config import (
    ConfigManager,
    ArchiverConfig,
    RequestConfig,
    ProxyConfig,
    DownloadConfig,
    LoggingConfig
)

from reddit_archiver.core.logging import (
    LoggingManager,
    get_logger,
    setup_logging
)

__all__ = [
    'TargetType',
    'ItemKind',
    'Decision',
    'TargetStatus',
    'ErrorKind',
    'Target',
    'TraversalJob',
    'RemoteItem',
    'StoredItem',
    'JobResult',
    'BaseComponent',
    'ArchiverError',
    'ConfigurationError',
    'InvalidTargetError',
    'TransportError',
    'NetworkError',
    'RequestTimeoutError',
    'RateLimitedError',
    'AuthRequiredError',
    'ServerError',
    'SchedulerClosedError',
    'StoreUnavailableError',
    'MigrationFailedError',
    'ToolNotFoundError',
    'VersionUnparseableError',
    'ConfigManager',
    'ArchiverConfig',
    'RequestConfig',
    'ProxyConfig',
    'DownloadConfig',
    'LoggingConfig',
    'LoggingManager',
    'get_logger',
    'setup_logging'
]
