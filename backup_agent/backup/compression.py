"""
Archive creation for backups.

Supports multiple formats:
- tar.gz: Gzip compressed tar (default)
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- none: No compression (tar only)
- zip: Standard zip compression

Outcome is three-tier, like a command line archiver's exit status:
SUCCESS when everything was stored, WARNING when some inputs were skipped
(missing source, unreadable file), FATAL when the archive itself could not
be written. A FATAL run never leaves a file at the destination.
"""

import logging
import os
import tarfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from backup_agent.models import ArchiveOutcome
from .sources import LocalSource, archive_name_for


logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = '.partial'

# Map format to tarfile mode (None = zip)
FORMAT_MODES = {
    'tar.gz': 'w:gz',
    'tar.bz2': 'w:bz2',
    'tar.xz': 'w:xz',
    'none': 'w',
    'zip': None,
}


@dataclass
class ArchiveResult:
    """Result of one archive creation attempt"""
    outcome: ArchiveOutcome
    path: Optional[str] = None
    size: int = 0
    entry_count: int = 0
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None


class _TarWriter:

    def __init__(self, path: str, mode: str):
        self._tar = tarfile.open(path, mode)

    def add(self, path: Path, arcname: str):
        self._tar.add(str(path), arcname=arcname, recursive=False)

    def close(self):
        self._tar.close()


class _ZipWriter:

    def __init__(self, path: str):
        self._zip = zipfile.ZipFile(path, 'w', zipfile.ZIP_DEFLATED)

    def add(self, path: Path, arcname: str):
        self._zip.write(str(path), arcname)

    def close(self):
        self._zip.close()


def _open_writer(path: str, compression_format: str):
    mode = FORMAT_MODES[compression_format]
    if mode is None:
        return _ZipWriter(path)
    return _TarWriter(path, mode)


def create_archive(
    source_paths: Sequence[str],
    destination: str,
    exclude_patterns: Sequence[str] = (),
    compression_format: str = 'tar.gz'
) -> ArchiveResult:
    """
    Create a compressed archive from source paths.

    Args:
        source_paths: List of file/directory paths to include in archive
        destination: Final path of the archive file
        exclude_patterns: Glob patterns to leave out
        compression_format: One of FORMAT_MODES

    Returns:
        ArchiveResult describing the outcome

    Raises:
        NoSources: If source_paths is empty
        ValueError: If compression_format is invalid
    """
    if compression_format not in FORMAT_MODES:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(FORMAT_MODES.keys())}"
        )

    source = LocalSource(source_paths, exclude_patterns)
    warnings = []

    for missing in source.missing_paths():
        warnings.append(f"Source path does not exist: {missing}")
        logger.warning(f"Source path does not exist: {missing}")

    def unreadable_directory(error: OSError):
        warnings.append(f"Skipped {error.filename}: {error}")
        logger.warning(f"Skipped unreadable directory {error.filename}: {error}")

    partial_path = destination + PARTIAL_SUFFIX
    entry_count = 0

    try:
        writer = _open_writer(partial_path, compression_format)
        try:
            for path, is_dir in source.walk(onerror=unreadable_directory):
                if str(path) == os.path.abspath(partial_path):
                    continue
                try:
                    writer.add(path, archive_name_for(path))
                except (PermissionError, FileNotFoundError) as e:
                    warnings.append(f"Skipped {path}: {e}")
                    logger.warning(f"Skipped unreadable entry {path}: {e}")
                    continue
                if not is_dir:
                    entry_count += 1
        finally:
            writer.close()

        os.replace(partial_path, destination)
        size = get_archive_size(destination)

    except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
        # Clean up partial archive on failure
        _remove_quietly(partial_path)
        _remove_quietly(destination)
        logger.error(f"Failed to create archive {destination}: {e}")
        return ArchiveResult(
            outcome=ArchiveOutcome.FATAL,
            warnings=warnings,
            error=f"Failed to create archive: {e}"
        )
    except BaseException:
        _remove_quietly(partial_path)
        raise

    outcome = ArchiveOutcome.WARNING if warnings else ArchiveOutcome.SUCCESS
    return ArchiveResult(
        outcome=outcome,
        path=destination,
        size=size,
        entry_count=entry_count,
        warnings=warnings
    )


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        OSError: If the file doesn't exist or cannot be accessed
    """
    return os.path.getsize(archive_path)


def _remove_quietly(path: str):
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning(f"Failed to remove partial archive {path}: {e}")
