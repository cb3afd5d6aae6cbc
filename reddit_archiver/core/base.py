"""
Base Classes and Data Models for Reddit Archiver

Defines the shared data models, the component base class and the
exception hierarchy used by every part of the archiver.
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TargetType(Enum):
    """Kinds of crawlable targets"""
    COMMUNITY = "community"
    USER = "user"
    POST = "post"

    @property
    def prefix(self) -> str:
        return {"community": "r", "user": "u", "post": "p"}[self.value]


class ItemKind(Enum):
    """Kinds of persisted items"""
    POST = "post"
    COMMENT = "comment"


class Decision(Enum):
    """Outcome of the dedup/resume decision for one candidate item"""
    FETCH = "fetch"
    SKIP = "skip"
    REPLACE = "replace"
    HALT = "halt"


class TargetStatus(Enum):
    """Final classification of a target in the run summary"""
    COMPLETE = "complete"
    PARTIAL = "partial"
    SKIPPED = "skipped"


class ErrorKind(Enum):
    """Error kinds surfaced by the archiver"""
    INVALID_TARGET = "InvalidTarget"
    NETWORK = "Network"
    TIMEOUT = "Timeout"
    RATE_LIMITED = "RateLimited"
    AUTH_REQUIRED = "AuthRequired"
    SERVER_ERROR = "ServerError"
    STORE_UNAVAILABLE = "StoreUnavailable"
    MIGRATION_FAILED = "MigrationFailed"
    TOOL_NOT_FOUND = "ToolNotFound"
    VERSION_UNPARSEABLE = "VersionUnparseable"


@dataclass(frozen=True)
class Target:
    """A crawlable unit: community, user or single post"""
    type: TargetType
    name: str

    @property
    def raw_identifier(self) -> str:
        """Canonical raw form, e.g. ``r/python``"""
        return f"{self.type.prefix}/{self.name}"

    def __str__(self) -> str:
        return self.raw_identifier


@dataclass
class TraversalJob:
    """One unit of crawl work produced by the target resolver"""
    target: Target
    source: str


@dataclass
class RemoteItem:
    """A post or comment as returned by the remote API"""
    remote_id: str
    kind: ItemKind
    created_at: datetime
    data: Dict[str, Any]
    author: Optional[str] = None
    parent_id: Optional[str] = None
    deleted: bool = False


@dataclass
class StoredItem:
    """The locally persisted state of an item"""
    target_scope: str
    remote_id: str
    kind: str
    created_at: datetime
    content_fingerprint: str
    fetched_at: datetime
    deleted_at: Optional[datetime] = None
    parent_id: Optional[str] = None
    author: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class JobResult:
    """Outcome of processing one traversal job"""
    target: str
    status: TargetStatus = TargetStatus.COMPLETE
    items_seen: int = 0
    items_written: int = 0
    items_skipped: int = 0
    halted: bool = False
    warnings: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    processing_time: float = 0.0


class BaseComponent(ABC):
    """Base class for all archiver components"""

    def __init__(self, config: Any = None):
        self.config = config
        self._initialized = False

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the component"""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Clean up resources"""
        pass

    def is_initialized(self) -> bool:
        """Check if component is initialized"""
        return self._initialized


class ArchiverError(Exception):
    """Base exception for archiver errors"""
    kind: Optional[ErrorKind] = None


class ConfigurationError(ArchiverError):
    """Configuration-related errors"""
    pass


class InvalidTargetError(ArchiverError):
    """Raw target string could not be classified"""
    kind = ErrorKind.INVALID_TARGET


class TransportError(ArchiverError):
    """Base class for failures of a single HTTP request"""
    retryable = True

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NetworkError(TransportError):
    kind = ErrorKind.NETWORK


class RequestTimeoutError(TransportError):
    kind = ErrorKind.TIMEOUT


class RateLimitedError(TransportError):
    """Remote rate limit hit; carries the reset hint in seconds if known"""
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, reset_seconds: Optional[float] = None):
        super().__init__(message, status=429)
        self.reset_seconds = reset_seconds


class AuthRequiredError(TransportError):
    kind = ErrorKind.AUTH_REQUIRED
    retryable = False


class ServerError(TransportError):
    kind = ErrorKind.SERVER_ERROR

    def __init__(self, message: str, status: Optional[int] = None, retryable: bool = True):
        super().__init__(message, status=status)
        self.retryable = retryable


class SchedulerClosedError(ArchiverError):
    """Raised when work is submitted to a closed scheduler"""
    pass


class StoreUnavailableError(ArchiverError):
    kind = ErrorKind.STORE_UNAVAILABLE


class MigrationFailedError(ArchiverError):
    """A schema migration failed; carries the version it was applying"""
    kind = ErrorKind.MIGRATION_FAILED

    def __init__(self, message: str, target_version: Optional[str] = None):
        super().__init__(message)
        self.target_version = target_version


class ToolNotFoundError(ArchiverError):
    kind = ErrorKind.TOOL_NOT_FOUND


class VersionUnparseableError(ArchiverError):
    kind = ErrorKind.VERSION_UNPARSEABLE
