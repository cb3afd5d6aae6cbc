#!/usr/bin/env python3
"""
Reddit Archiver - Main Entry Point

Parses the command line, assembles the configuration, sets up logging
and runs the archive orchestrator.
"""

import asyncio
import sys
from typing import List, Optional

from reddit_archiver.cli.arguments import CLIManager
from reddit_archiver.core.base import ArchiverError, ConfigurationError
from reddit_archiver.core.config import ConfigManager
from reddit_archiver.core.logging import get_logger, logging_manager, setup_logging
from reddit_archiver.core.orchestrator import ArchiveOrchestrator


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the archiver"""
    cli_manager = CLIManager()
    args = cli_manager.parse_arguments(argv)

    if args.examples:
        print("\nReddit Archiver - Usage Examples\n")
        print(cli_manager.get_usage_examples())
        return 0

    try:
        config = ConfigManager(args.config).load_config(cli_manager.build_overrides(args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        max_size=config.logging.max_size,
        backup_count=config.logging.backup_count
    )
    logger = get_logger()

    orchestrator = ArchiveOrchestrator(config)
    try:
        await orchestrator.initialize()
        report = await orchestrator.run(args.targets)
    except ArchiverError as e:
        logger.error(f"Archiver failed: {e}")
        return 1
    finally:
        await orchestrator.cleanup()

    logging_manager.generate_summary_report(report.to_summary())
    return 0 if report.success else 1


def run() -> None:
    try:
        exit_code = asyncio.run(main())
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nArchiver interrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    run()
