"""
Source path handling for backup operations.

Walks the configured source paths, applying exclusion globs, and yields the
files and directories that belong in the archive.
"""

import os
from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from backup_agent.errors import NoSources


class LocalSource:
    """
    Handler for local filesystem sources.

    Missing paths are reported, not raised: a source that disappeared is a
    warning for the run, not a reason to lose the rest of the backup.
    """

    def __init__(self, paths: Sequence[str], exclude_patterns: Sequence[str] = None):
        """
        Initialize local source handler.

        Args:
            paths: List of file/directory paths to backup
            exclude_patterns: List of glob patterns to exclude (e.g., *.pyc, **/node_modules)

        Raises:
            NoSources: If no paths are given
        """
        if not paths:
            raise NoSources("No backup sources configured")

        self.paths = list(paths)
        self.exclude_patterns = list(exclude_patterns or [])

    def should_exclude(self, path: Path) -> bool:
        """
        Check if a path should be excluded based on exclude patterns.

        Args:
            path: Path to check

        Returns:
            True if path matches any exclude pattern, False otherwise
        """
        if not self.exclude_patterns:
            return False

        path_str = str(path)
        path_name = path.name

        for pattern in self.exclude_patterns:
            # Match against full path or just the name
            if fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
                return True
            # Also match against relative path patterns
            if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
                return True

        return False

    def missing_paths(self) -> List[str]:
        return [path for path in self.paths if not Path(path).expanduser().exists()]

    def walk(self, onerror: Optional[Callable[[OSError], None]] = None) -> Iterator[Tuple[Path, bool]]:
        """
        Yield (path, is_dir) for every entry to archive.

        Directories are yielded before their contents. Excluded directories
        are not descended into. Symlinks are yielded as entries, not followed.
        A directory that cannot be listed is passed to onerror and skipped.
        """
        for raw_path in self.paths:
            source = Path(raw_path).expanduser().absolute()

            if not source.exists() and not source.is_symlink():
                continue
            if self.should_exclude(source):
                continue

            if source.is_file() or source.is_symlink():
                yield source, False
                continue

            yield source, True
            for directory, dirnames, filenames in os.walk(source, onerror=onerror):
                base = Path(directory)
                dirnames[:] = sorted(d for d in dirnames if not self.should_exclude(base / d))
                for dirname in dirnames:
                    yield base / dirname, True
                for filename in sorted(filenames):
                    file_path = base / filename
                    if not self.should_exclude(file_path):
                        yield file_path, False


def archive_name_for(path: Path) -> str:
    """Member name for a path: the absolute path without its leading slash."""
    return str(path.absolute()).lstrip(os.sep)
