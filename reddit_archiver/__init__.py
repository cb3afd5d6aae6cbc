"""
Reddit Archiver

Archives Reddit communities, user profiles, posts and comment threads into
a local, schema-versioned SQLite database, with incremental re-runs.

Features:
- Rate-limited, retrying, proxy-aware request scheduling
- Community, user, post and previous-target resolution
- Resume and overwrite policies for already archived content
- Ordered schema migrations applied when the store is opened
- Media download gated on the external media tool's version
- Configurable via YAML/JSON, environment variables and the command line
"""

__version__ = "0.1.0"
