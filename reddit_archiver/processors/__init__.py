"""
Media processing components for Reddit Archiver
"""

from reddit_archiver.processors.media import MediaCapability, MediaDownloader, extract_media

__all__ = ['MediaCapability', 'MediaDownloader', 'extract_media']
