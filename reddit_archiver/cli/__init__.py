"""
Command Line Interface for Reddit Archiver

This package provides command line argument parsing and validation.
It handles target arguments and configuration overrides.

Classes:
    CLIManager: Command line interface manager for the archiver
"""

from reddit_archiver.cli.arguments import CLIManager

__all__ = ['CLIManager']
