"""
Dedup and Resume Decisions

Decides, per candidate item, whether to fetch it, keep the local copy,
replace the local copy or stop the current listing walk. The decision
depends only on the stored record and the run's overwrite/continue flags.
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from reddit_archiver.core.base import Decision, RemoteItem, StoredItem
from reddit_archiver.core.config import DownloadConfig


@dataclass(frozen=True)
class DedupPolicy:
    """Run flags that govern already-archived items"""
    overwrite: bool = False
    overwrite_deleted: bool = False
    continue_mode: bool = False

    @classmethod
    def from_config(cls, config: DownloadConfig) -> 'DedupPolicy':
        return cls(
            overwrite=config.overwrite,
            overwrite_deleted=config.overwrite_deleted,
            continue_mode=config.continue_mode
        )


def content_fingerprint(data: Dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of an item's remote data"""
    canonical = json.dumps(data, sort_keys=True, separators=(',', ':'), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


def decide(existing: Optional[StoredItem], candidate: RemoteItem, policy: DedupPolicy) -> Decision:
    """
    Decide what to do with candidate given the stored record

    - unknown item: FETCH
    - deleted upstream (now or when stored): REPLACE only with
      overwrite_deleted, otherwise SKIP so the local copy survives
    - known item with overwrite: REPLACE
    - known item in continue mode: HALT the walk
    - otherwise: SKIP
    """
    if existing is None:
        return Decision.FETCH

    if candidate.deleted or existing.deleted_at is not None:
        return Decision.REPLACE if policy.overwrite_deleted else Decision.SKIP

    if policy.overwrite:
        return Decision.REPLACE
    if policy.continue_mode:
        return Decision.HALT
    return Decision.SKIP
