"""
URL Utilities

Helpers for classifying media URLs referenced by posts and turning them
into safe local file names.
"""

import hashlib
import os
import re
from typing import Optional
from urllib.parse import urlparse, unquote

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp', '.bmp'}
VIDEO_EXTENSIONS = {'.mp4', '.webm', '.mov'}
STREAM_EXTENSIONS = {'.m3u8', '.mpd'}


def url_extension(url: str) -> str:
    """Lower-cased file extension of the URL path, or ''"""
    path = unquote(urlparse(url).path)
    return os.path.splitext(path)[1].lower()


def media_type_for_url(url: str) -> Optional[str]:
    """'image', 'video' or 'stream' for a direct media URL, else None"""
    ext = url_extension(url)
    if ext in IMAGE_EXTENSIONS:
        return 'image'
    if ext in VIDEO_EXTENSIONS:
        return 'video'
    if ext in STREAM_EXTENSIONS:
        return 'stream'
    return None


def generate_filename(url: str, prefix: str = "") -> str:
    """
    Generate a safe filename from URL

    Args:
        url: File URL
        prefix: Optional prefix, e.g. the owning post id

    Returns:
        Safe filename
    """
    path = unquote(urlparse(url).path)
    filename = os.path.basename(path)

    # If no usable name, derive one from the URL hash
    if not filename or '.' not in filename:
        url_hash = hashlib.md5(url.encode()).hexdigest()[:8]
        ext = os.path.splitext(path)[1] or '.bin'
        filename = f"file_{url_hash}{ext}"

    if prefix:
        filename = f"{prefix}_{filename}"

    filename = re.sub(r'[<>:"/\\|?*]', '_', filename)
    return filename[:255]
