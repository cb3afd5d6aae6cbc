"""
Media Handling

MediaCapability probes the external media tool (ffmpeg) once per run and
gates every step that would need it. MediaDownloader records the media
referenced by archived posts and downloads the directly fetchable files
through the shared scheduler.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from reddit_archiver.core.base import (
    ArchiverError,
    RemoteItem,
    ToolNotFoundError,
    TransportError,
    VersionUnparseableError
)
from reddit_archiver.core.scheduler import Scheduler
from reddit_archiver.core.transport import Request, Transport
from reddit_archiver.utils.url import generate_filename, media_type_for_url

VERSION_RE = re.compile(r'version\s+n?(\d+(?:\.\d+)*)', re.IGNORECASE)
DEFAULT_MIN_VERSION = "4.0"


def _version_tuple(version: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in version.split('.'))


class MediaCapability:
    """
    Explicit handle on the external media tool

    Created once by the orchestrator and passed to whoever needs it. The
    probe result (version or error) is cached on this instance.
    """

    def __init__(self, tool_path: Optional[str] = None, min_version: str = DEFAULT_MIN_VERSION):
        self.tool_path = tool_path or 'ffmpeg'
        self.min_version = min_version
        self.logger = logging.getLogger(__name__)
        self._probed = False
        self._version: Optional[str] = None
        self._error: Optional[ArchiverError] = None
        self._probe_lock = asyncio.Lock()

    async def query_version(self) -> str:
        """
        Run ``<tool> -version`` and parse the version number

        Raises:
            ToolNotFoundError: the tool cannot be executed
            VersionUnparseableError: the output has no recognizable version
        """
        async with self._probe_lock:
            if not self._probed:
                try:
                    self._version = await self._probe()
                except (ToolNotFoundError, VersionUnparseableError) as e:
                    self._error = e
                self._probed = True

        if self._error:
            raise self._error
        return self._version

    async def _probe(self) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.tool_path, '-version',
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise ToolNotFoundError(f"Cannot run {self.tool_path}: {e}") from e

        stdout, _ = await proc.communicate()
        if proc.returncode != 0:
            raise ToolNotFoundError(f"{self.tool_path} -version exited with {proc.returncode}")

        match = VERSION_RE.search(stdout.decode('utf-8', errors='replace'))
        if not match:
            raise VersionUnparseableError(f"Could not parse version from {self.tool_path} output")
        return match.group(1)

    def supports(self, version: str) -> bool:
        return _version_tuple(version) >= _version_tuple(self.min_version)

    async def is_available(self) -> bool:
        """True only for a successful probe at or above min_version"""
        try:
            version = await self.query_version()
        except (ToolNotFoundError, VersionUnparseableError):
            return False
        return self.supports(version)


@dataclass
class MediaRef:
    url: str
    media_type: str


@dataclass
class MediaResult:
    downloaded: int = 0
    recorded: int = 0
    warnings: List[str] = field(default_factory=list)


def extract_media(data: Dict[str, Any]) -> List[MediaRef]:
    """Media referenced by a post's remote data"""
    refs: List[MediaRef] = []
    seen = set()

    def add(url: Optional[str], media_type: Optional[str]) -> None:
        if url and media_type and url not in seen:
            seen.add(url)
            refs.append(MediaRef(url, media_type))

    for key in ('secure_media', 'media'):
        video = (data.get(key) or {}).get('reddit_video')
        if video:
            add(video.get('hls_url') or video.get('dash_url'), 'stream')
            break

    for item in (data.get('media_metadata') or {}).values():
        source = item.get('s') or {}
        if item.get('status') == 'valid':
            add(source.get('u') or source.get('gif'), 'image')

    url = data.get('url_overridden_by_dest') or data.get('url')
    if url and not data.get('is_self'):
        add(url, media_type_for_url(url))

    return refs


class MediaDownloader:
    """Records and downloads media for archived posts"""

    def __init__(self, transport: Transport, scheduler: Scheduler, store,
                 media_dir: Path, capability: MediaCapability):
        self.transport = transport
        self.scheduler = scheduler
        self.store = store
        self.media_dir = Path(media_dir)
        self.capability = capability
        self.logger = logging.getLogger(__name__)
        self.stats = {'downloaded': 0, 'skipped_streams': 0, 'failed': 0}

    async def process_post(self, target_scope: str, item: RemoteItem) -> MediaResult:
        result = MediaResult()
        for ref in extract_media(item.data):
            if ref.media_type == 'stream':
                await self._record_stream(target_scope, item.remote_id, ref, result)
                continue

            dest = self.media_dir / target_scope / generate_filename(ref.url, prefix=item.remote_id)
            try:
                if not dest.exists():
                    await self.scheduler.schedule(
                        lambda: self.transport.download(Request(url=ref.url), dest),
                        description=f"media {ref.url}"
                    )
                    result.downloaded += 1
                    self.stats['downloaded'] += 1
                await self.store.save_media(target_scope, item.remote_id, ref.url, ref.media_type,
                                            'downloaded', str(dest))
            except TransportError as e:
                self.stats['failed'] += 1
                result.warnings.append(f"{target_scope}/{item.remote_id}: media {ref.url} failed: {e}")
                await self.store.save_media(target_scope, item.remote_id, ref.url, ref.media_type, 'failed')
            result.recorded += 1
        return result

    async def _record_stream(self, target_scope: str, remote_id: str, ref: MediaRef, result: MediaResult) -> None:
        if await self.capability.is_available():
            status = 'pending_tool'
        else:
            status = 'unsupported'
            self.stats['skipped_streams'] += 1
            message = f"{target_scope}/{remote_id}: stream {ref.url} skipped, {self.capability.tool_path} unavailable"
            self.logger.warning(message)
            result.warnings.append(message)
        await self.store.save_media(target_scope, remote_id, ref.url, ref.media_type, status)
        result.recorded += 1
