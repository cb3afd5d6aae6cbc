"""
Command Line Argument Parsing for Reddit Archiver

Handles target arguments and configuration overrides. Command line flags
are turned into a nested overrides dict for ConfigManager; flags that are
phrased negatively on the command line are inverted here and nowhere else.
"""

import argparse
from typing import Any, Dict, List, Optional

from reddit_archiver import __version__


class CLIManager:
    """
    Command line interface manager for the archiver

    Handles target arguments and configuration overrides. Provides
    validation and help documentation.
    """

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """
        Create argument parser with all options

        Returns:
            Configured argument parser
        """
        parser = argparse.ArgumentParser(
            prog="reddit-archiver",
            description="Archive Reddit communities, users and posts into a local database",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=self._get_epilog()
        )

        parser.add_argument(
            "targets",
            nargs="*",
            help="r/<name>, u/<name>, p/<id>, a post URL, previous/<r|u|p>, or a file of targets"
        )

        # Configuration options
        config_group = parser.add_argument_group("Configuration")
        config_group.add_argument("--config", help="Path to YAML/JSON configuration file")
        config_group.add_argument("--data-dir", help="Directory holding the database and media (default: .)")
        config_group.add_argument("--auth", help="OAuth credentials file (YAML/JSON)")
        config_group.add_argument(
            "--log-level",
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Logging level"
        )

        # Download options
        download_group = parser.add_argument_group("Download Options")
        download_group.add_argument("--limit", type=int, help="Maximum number of posts per target")
        download_group.add_argument("--after", help="Only posts created at or after 'YYYY-MM-DD[ HH:MM]'")
        download_group.add_argument("--before", help="Only posts created before 'YYYY-MM-DD[ HH:MM]'")
        download_group.add_argument("--comments", action="store_true", default=None,
                                    help="Also archive comments of each post")
        download_group.add_argument("--post-authors", action="store_true", default=None,
                                    help="Also archive profiles of post authors")
        download_group.add_argument("--overwrite", action="store_true", default=None,
                                    help="Re-fetch and replace items already archived")
        download_group.add_argument("--overwrite-deleted", action="store_true", default=None,
                                    help="Replace archived items even if deleted upstream")
        download_group.add_argument("--continue", dest="continue_mode", action="store_true", default=None,
                                    help="Stop each listing at the first already archived post")
        download_group.add_argument("--no-save-target", action="store_true",
                                    help="Do not record targets for later previous/ runs")
        download_group.add_argument("--no-media", action="store_true",
                                    help="Do not download images and videos")
        download_group.add_argument("--jobs", type=int, help="Number of targets processed in parallel")

        # Request options
        request_group = parser.add_argument_group("Request Options")
        request_group.add_argument("--max-retries", type=int, help="Retries per failed request")
        request_group.add_argument("--max-concurrent", type=int, help="Maximum requests in flight")
        request_group.add_argument("--min-time", type=int, help="Minimum milliseconds between request starts")
        request_group.add_argument("--timeout", type=float, help="Request timeout in seconds")
        request_group.add_argument("--proxy", help="Proxy URL (http, https, socks4 or socks5)")
        request_group.add_argument("--proxy-insecure", action="store_true",
                                   help="Do not verify the TLS certificate of an https proxy")
        request_group.add_argument("--ffmpeg", help="Path to ffmpeg")

        parser.add_argument(
            "--version",
            action="version",
            version=f"reddit-archiver v{__version__}"
        )
        parser.add_argument(
            "--examples",
            action="store_true",
            help="Show usage examples and exit"
        )

        return parser

    def _get_epilog(self) -> str:
        return """
Examples:
  # Archive the newest 100 posts of a community
  python -m reddit_archiver r/python --limit 100

  # Archive a user with comments, stopping at already archived posts
  python -m reddit_archiver u/spez --comments --continue

  # Archive a single post by URL
  python -m reddit_archiver https://www.reddit.com/r/python/comments/abc123/title/

  # Refresh every community and user saved by earlier runs
  python -m reddit_archiver previous/ru --continue

  # Targets from a file, through a SOCKS proxy
  python -m reddit_archiver targets.txt --proxy socks5://127.0.0.1:1080
"""

    def parse_arguments(self, args: Optional[List[str]] = None) -> argparse.Namespace:
        """
        Parse command line arguments

        Args:
            args: Command line arguments (uses sys.argv if None)

        Returns:
            Parsed arguments namespace
        """
        parsed_args = self.parser.parse_args(args)
        self.validate_arguments(parsed_args)
        return parsed_args

    def validate_arguments(self, args: argparse.Namespace) -> bool:
        """
        Validate parsed arguments for consistency

        Range and date checks on values that also come from files are left
        to ConfigManager, which validates the assembled configuration.
        """
        if not args.targets and not args.examples:
            self.parser.error("at least one target is required")

        if args.proxy_insecure and not args.proxy:
            self.parser.error("--proxy-insecure requires --proxy")

        return True

    def build_overrides(self, args: argparse.Namespace) -> Dict[str, Any]:
        """
        Convert explicitly given flags into a nested config overrides dict

        Unset flags map to None so lower-precedence sources still apply.
        """
        return {
            'request': {
                'max_retries': args.max_retries,
                'max_concurrent': args.max_concurrent,
                'min_time': args.min_time,
                'timeout': args.timeout,
                'proxy': {
                    'url': args.proxy,
                    'reject_unauthorized_tls': False if args.proxy_insecure else None
                }
            },
            'download': {
                'limit': args.limit,
                'after': args.after,
                'before': args.before,
                'fetch_comments': args.comments,
                'fetch_post_authors': args.post_authors,
                'overwrite': args.overwrite,
                'overwrite_deleted': args.overwrite_deleted,
                'continue': args.continue_mode,
                'save_target_to_db': False if args.no_save_target else None,
                'download_media': False if args.no_media else None,
                'max_parallel_jobs': args.jobs
            },
            'logging': {
                'level': args.log_level
            },
            'data_dir': args.data_dir,
            'auth': args.auth,
            'ffmpeg_path': args.ffmpeg
        }

    def print_help(self) -> None:
        """Print help message"""
        self.parser.print_help()

    def get_usage_examples(self) -> str:
        return self._get_epilog()
