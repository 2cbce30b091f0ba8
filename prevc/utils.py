"""
Reusable Utilities

Common helpers for file handling, slugs and markdown frontmatter.
"""

import logging
import math
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

_FRONTMATTER_PATTERN = re.compile(r'\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)', re.DOTALL)


def slugify(text: str, max_length: int = 50) -> str:
    """
    Convert text to a URL/filename-safe slug.

    Args:
        text: Input text to slugify
        max_length: Maximum length of output (default: 50)

    Returns:
        Lowercase string with only alphanumeric chars and hyphens
    """
    slug = text.lower().strip()
    slug = re.sub(r'[\s_]+', '-', slug)
    slug = re.sub(r'[^a-z0-9-]', '', slug)
    slug = re.sub(r'-+', '-', slug)
    slug = slug.strip('-')
    if len(slug) > max_length:
        slug = slug[:max_length].rstrip('-')
    return slug or 'untitled'


def archive_timestamp(now: Optional[datetime] = None) -> str:
    """Filesystem-safe timestamp used to name archive directories."""
    now = now or datetime.now()
    return now.strftime('%Y%m%d-%H%M%S-%f')


def percent_complete(done: int, total: int) -> int:
    """Whole-number percentage with halves rounded up (1 of 8 is 13)."""
    if not total:
        return 0
    return math.floor(100 * done / total + 0.5)


def atomic_write_text(path: Path, content: str) -> None:
    """Write a file through a temp file and an atomic rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_name(path.name + '.tmp')
    with open(temp_file, 'w', encoding='utf-8') as f:
        f.write(content)
        f.flush()
    temp_file.replace(path)


def split_frontmatter(content: str) -> tuple[Optional[str], str]:
    """Split a markdown document into (raw frontmatter, body).

    Returns (None, content) when the document has no leading --- block.
    """
    match = _FRONTMATTER_PATTERN.match(content)
    if not match:
        return None, content
    return match.group(1), content[match.end():]


def parse_frontmatter(content: str) -> Optional[dict]:
    """Parse the YAML frontmatter block of a markdown document.

    Returns None when there is no block, it is not valid YAML, or it
    is not a mapping.
    """
    raw, _ = split_frontmatter(content)
    if raw is None:
        return None
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring unparsable frontmatter: {e}")
        return None
    return data if isinstance(data, dict) else None
