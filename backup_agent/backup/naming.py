"""
Artifact naming.

Artifacts are named ``backup_YYYY-MM-DD_HH-MM-SS.<ext>``. The name sorts
lexicographically in creation order and carries the creation time at second
precision, so the artifact directory itself is the only index we need.
"""

import os
import re
from datetime import datetime
from typing import Tuple

from backup_agent.errors import MalformedName
from backup_agent.models import Artifact


ARCHIVE_PREFIX = 'backup_'
TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'

# Longest first so 'tar.gz' wins over 'tar'
KNOWN_EXTENSIONS = ('tar.bz2', 'tar.gz', 'tar.xz', 'tar', 'zip', '7z')

_NAME_RE = re.compile(
    r'^' + re.escape(ARCHIVE_PREFIX)
    + r'(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})\.('
    + '|'.join(re.escape(ext) for ext in KNOWN_EXTENSIONS)
    + r')$'
)


def format_name(timestamp: datetime, extension: str = 'tar.gz') -> str:
    """
    Build the artifact name for a timestamp.

    Args:
        timestamp: Creation time (sub-second precision is dropped)
        extension: Archive extension without the leading dot

    Returns:
        Artifact filename
    """
    if extension not in KNOWN_EXTENSIONS:
        raise ValueError(
            f"Invalid archive extension: {extension}. "
            f"Valid options: {list(KNOWN_EXTENSIONS)}"
        )
    return f"{ARCHIVE_PREFIX}{timestamp.strftime(TIMESTAMP_FORMAT)}.{extension}"


def parse_name(name: str) -> datetime:
    """
    Recover the creation timestamp from an artifact name.

    Args:
        name: Filename, with or without a directory part

    Returns:
        Naive datetime at second precision

    Raises:
        MalformedName: If the name is not an artifact name
    """
    match = _NAME_RE.match(os.path.basename(name))
    if not match:
        raise MalformedName(f"Not a backup artifact name: {name}")

    try:
        return datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
    except ValueError as e:
        raise MalformedName(f"Invalid timestamp in artifact name {name}: {e}")


def week_key(timestamp: datetime) -> Tuple[int, int]:
    """ISO-8601 (year, week) of a timestamp; weeks run Monday to Sunday."""
    iso = timestamp.isocalendar()
    return iso[0], iso[1]


def month_key(timestamp: datetime) -> Tuple[int, int]:
    return timestamp.year, timestamp.month


def artifact_from_path(path: str) -> Artifact:
    """
    Build an Artifact for an existing file.

    Raises:
        MalformedName: If the filename is not an artifact name
        OSError: If the file cannot be stat'ed
    """
    name = os.path.basename(path)
    timestamp = parse_name(name)
    size = os.path.getsize(path)
    return Artifact(name=name, path=str(path), timestamp=timestamp, size=size)
