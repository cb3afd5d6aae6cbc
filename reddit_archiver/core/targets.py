"""
Target Resolver

Expands raw target strings (or files of them) into traversal jobs.

Recognized forms::

    r/<name>                        community
    u/<name>                        user
    p/<id>                          single post
    https://www.reddit.com/r/<name>/comments/<id>/...   post permalink
    previous/<letters>              saved targets; letters from r, u, p
"""

import logging
import re
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Set, Tuple

from reddit_archiver.core.base import InvalidTargetError, Target, TargetType, TraversalJob

COMMUNITY_RE = re.compile(r'^r/([A-Za-z0-9_]+)/?$')
USER_RE = re.compile(r'^u/([A-Za-z0-9_-]+)/?$')
POST_RE = re.compile(r'^p/([A-Za-z0-9]+)/?$')
PREVIOUS_RE = re.compile(r'^previous/([rup]+)/?$')
PERMALINK_RE = re.compile(
    r'^(?:https?://(?:www\.|old\.|new\.|np\.)?reddit\.com)?'
    r'/(?:r|u|user)/[A-Za-z0-9_-]+/comments/([A-Za-z0-9]+)(?:/[^?#]*)?(?:[?#].*)?$',
    re.IGNORECASE
)

PREVIOUS_LETTERS = {'r': TargetType.COMMUNITY, 'u': TargetType.USER, 'p': TargetType.POST}


class TargetForm(Enum):
    """Classification of a raw target string"""
    COMMUNITY = "community"
    USER = "user"
    POST = "post"
    PREVIOUS = "previous"


def classify(raw: str) -> TargetForm:
    """
    Classify a raw target string

    Raises:
        InvalidTargetError: raw matches none of the recognized forms
    """
    text = raw.strip()
    if PERMALINK_RE.match(text) or POST_RE.match(text):
        return TargetForm.POST
    if COMMUNITY_RE.match(text):
        return TargetForm.COMMUNITY
    if USER_RE.match(text):
        return TargetForm.USER
    if PREVIOUS_RE.match(text):
        return TargetForm.PREVIOUS
    raise InvalidTargetError(f"Unrecognized target: {raw!r}")


def parse_target(raw: str) -> Target:
    """Parse a community, user or post form into its canonical Target"""
    text = raw.strip()
    for pattern, target_type in (
        (PERMALINK_RE, TargetType.POST),
        (POST_RE, TargetType.POST),
        (COMMUNITY_RE, TargetType.COMMUNITY),
        (USER_RE, TargetType.USER),
    ):
        match = pattern.match(text)
        if match:
            return Target(target_type, match.group(1).lower())
    raise InvalidTargetError(f"Unrecognized target: {raw!r}")


def parse_previous(raw: str) -> List[TargetType]:
    """Target types selected by a ``previous/<letters>`` alias, in letter order"""
    match = PREVIOUS_RE.match(raw.strip())
    if not match:
        raise InvalidTargetError(f"Unrecognized target: {raw!r}")
    types: List[TargetType] = []
    for letter in match.group(1):
        if PREVIOUS_LETTERS[letter] not in types:
            types.append(PREVIOUS_LETTERS[letter])
    return types


def read_raw_targets(value: str) -> List[str]:
    """
    Expand a command-line value into raw target strings

    A path to an existing file yields its non-blank lines, skipping
    lines that start with '#'. Anything else is a single raw target.
    """
    path = Path(value)
    if path.is_file():
        with open(path, 'r', encoding='utf-8') as f:
            lines = [line.strip() for line in f]
        return [line for line in lines if line and not line.startswith('#')]
    return [value]


class TargetResolver:
    """Turns raw target strings into deduplicated traversal jobs"""

    def __init__(self, store=None):
        self.store = store
        self.logger = logging.getLogger(__name__)

    async def resolve(self, raw: str) -> List[TraversalJob]:
        """Resolve one raw target string; previous/ aliases query the store"""
        form = classify(raw)
        if form != TargetForm.PREVIOUS:
            return [TraversalJob(parse_target(raw), source=raw)]

        types = parse_previous(raw)
        if self.store is None:
            return []
        targets = await self.store.get_saved_targets(types)
        if not targets:
            self.logger.info(f"No previously saved targets match '{raw}'")
        return [TraversalJob(target, source=raw) for target in targets]

    async def resolve_all(self, values: Iterable[str]
                          ) -> Tuple[List[TraversalJob], List[Tuple[str, InvalidTargetError]]]:
        """
        Resolve every value (raw strings or target files)

        Returns:
            (jobs, invalid) where invalid pairs each rejected raw string
            with its error. One invalid entry never prevents the others
            from resolving.
        """
        jobs: List[TraversalJob] = []
        invalid: List[Tuple[str, InvalidTargetError]] = []
        seen: Set[str] = set()

        for value in values:
            for raw in read_raw_targets(value):
                try:
                    resolved = await self.resolve(raw)
                except InvalidTargetError as e:
                    self.logger.warning(str(e))
                    invalid.append((raw, e))
                    continue
                for job in resolved:
                    key = job.target.raw_identifier
                    if key in seen:
                        self.logger.debug(f"Duplicate target {key} ignored")
                        continue
                    seen.add(key)
                    jobs.append(job)

        return jobs, invalid
