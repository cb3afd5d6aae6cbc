"""
Logging System for Reddit Archiver

Provides logging with file rotation and console output, plus the
end-of-run summary report.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Dict, Any, List

LOGGER_NAME = 'reddit_archiver'


class LoggingManager:
    """
    Centralized logging manager with file rotation
    """

    def __init__(self):
        self.logger: Optional[logging.Logger] = None
        self.file_handler: Optional[logging.handlers.RotatingFileHandler] = None
        self.console_handler: Optional[logging.StreamHandler] = None

    def setup_logging(self, level: str = "INFO", log_file: Optional[str] = "./logs/reddit-archiver.log",
                      max_size: str = "10MB", backup_count: int = 5) -> None:
        """
        Set up logging system with file rotation and console output

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_file: Path to log file, or None for console only
            max_size: Maximum size before rotation (e.g., "10MB")
            backup_count: Number of backup files to keep
        """
        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(logging.DEBUG)
        self.close()
        self.logger.handlers.clear()
        self.logger.propagate = False

        detailed_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            self.file_handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=self._parse_size(max_size), backupCount=backup_count, encoding='utf-8'
            )
            self.file_handler.setLevel(logging.DEBUG)
            self.file_handler.setFormatter(detailed_formatter)
            self.logger.addHandler(self.file_handler)

        self.console_handler = logging.StreamHandler(sys.stdout)
        self.console_handler.setLevel(getattr(logging, level.upper()))
        self.console_handler.setFormatter(console_formatter)
        self.logger.addHandler(self.console_handler)

        self.logger.debug("Logging system initialized")

    def _parse_size(self, size_str: str) -> int:
        """Parse size string like '10MB' to bytes"""
        size_str = size_str.upper().strip()

        if size_str.endswith('KB'):
            return int(size_str[:-2]) * 1024
        elif size_str.endswith('MB'):
            return int(size_str[:-2]) * 1024 * 1024
        elif size_str.endswith('GB'):
            return int(size_str[:-2]) * 1024 * 1024 * 1024
        else:
            # Assume bytes
            return int(size_str)

    def get_logger(self) -> logging.Logger:
        """Get the archiver logger (unconfigured until setup_logging() runs)"""
        return self.logger or logging.getLogger(LOGGER_NAME)

    def generate_summary_report(self, stats: Dict[str, Any]) -> str:
        """Generate and log the end-of-run summary report"""
        targets: List[Dict[str, Any]] = stats.get('targets', [])
        warnings: List[str] = stats.get('warnings', [])

        report_lines = [
            "=" * 60,
            "ARCHIVE RUN SUMMARY",
            "=" * 60,
            f"Start Time: {stats.get('start_time', 'Unknown')}",
            f"End Time: {stats.get('end_time', 'Unknown')}",
            f"Total Duration: {stats.get('duration', 'Unknown')}",
            "",
            "TARGETS:",
            f"  Total: {len(targets)}",
            f"  Complete: {sum(1 for t in targets if t['status'] == 'complete')}",
            f"  Partial: {sum(1 for t in targets if t['status'] == 'partial')}",
            f"  Skipped: {sum(1 for t in targets if t['status'] == 'skipped')}",
        ]
        for target in targets:
            line = (f"  - {target['target']}: {target['status']} "
                    f"({target.get('items_written', 0)} written, {target.get('items_skipped', 0)} skipped)")
            if target.get('error'):
                line += f" - {target['error']}"
            report_lines.append(line)

        report_lines.extend([
            "",
            "REQUESTS:",
            f"  Dispatched: {stats.get('requests', 0)}",
            f"  Retries: {stats.get('retries', 0)}",
            f"  Rate Limit Hits: {stats.get('rate_limit_hits', 0)}",
            f"  Media Downloaded: {stats.get('media_downloaded', 0)}",
        ])

        if warnings:
            report_lines.extend([
                "",
                "WARNINGS:",
            ])
            for warning in warnings[:10]:  # Show first 10 warnings
                report_lines.append(f"  - {warning}")

            if len(warnings) > 10:
                report_lines.append(f"  ... and {len(warnings) - 10} more warnings")

        report_lines.append("=" * 60)

        report = "\n".join(report_lines)
        self.get_logger().info(f"Run Summary:\n{report}")

        return report

    def close(self) -> None:
        """Close logging handlers"""
        for handler in (self.file_handler, self.console_handler):
            if handler:
                if self.logger:
                    self.logger.removeHandler(handler)
                handler.close()
        self.file_handler = None
        self.console_handler = None


# Global logging manager instance
logging_manager = LoggingManager()


def get_logger() -> logging.Logger:
    """Get the global archiver logger"""
    return logging_manager.get_logger()


def setup_logging(level: str = "INFO", log_file: Optional[str] = "./logs/reddit-archiver.log",
                  max_size: str = "10MB", backup_count: int = 5) -> None:
    """Set up global logging system"""
    logging_manager.setup_logging(level, log_file, max_size, backup_count)
