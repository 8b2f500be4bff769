"""
Retention policy enforcement for backups.

Tiered pruning over the artifact directory. An artifact survives if it is
inside the daily window, or if it is the latest artifact of its ISO week and
inside the weekly window, or the latest of its calendar month and inside the
monthly window. Months are approximated as 30 days.

Representatives are chosen over the full set before anything is deleted, so
classification is a pure function of the directory contents and re-running it
on the pruned set keeps everything.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from backup_agent.errors import CleanupError, MalformedName
from backup_agent.models import Artifact
from backup_agent.settings import RetentionPolicy
from .naming import artifact_from_path, month_key, week_key
from .storage import LocalStorage


logger = logging.getLogger(__name__)


def retention_cutoffs(policy: RetentionPolicy, now: datetime) -> Tuple[datetime, datetime, datetime]:
    """Daily, weekly and monthly cutoff instants for a policy."""
    return (
        now - timedelta(days=policy.keep_daily),
        now - timedelta(days=policy.keep_weekly * 7),
        now - timedelta(days=policy.keep_monthly * 30),
    )


def select_representatives(
    artifacts: Iterable[Artifact],
    key: Callable[[datetime], Hashable]
) -> Dict[Hashable, Artifact]:
    """
    Pick the latest artifact of each partition.

    Ties on timestamp go to the lexicographically greatest name.
    """
    representatives = {}
    for artifact in artifacts:
        bucket = key(artifact.timestamp)
        current = representatives.get(bucket)
        if current is None or artifact.sort_key > current.sort_key:
            representatives[bucket] = artifact
    return representatives


def classify(artifacts: Iterable[Artifact], policy: RetentionPolicy, now: datetime) -> frozenset:
    """
    Compute the keep-set for a collection of artifacts.

    Args:
        artifacts: All existing artifacts
        policy: Retention windows
        now: Reference instant

    Returns:
        frozenset of artifacts to keep; everything else may be deleted
    """
    artifacts = list(artifacts)
    daily_cutoff, weekly_cutoff, monthly_cutoff = retention_cutoffs(policy, now)

    weekly = set(select_representatives(artifacts, week_key).values())
    monthly = set(select_representatives(artifacts, month_key).values())

    keep = set()
    for artifact in artifacts:
        if artifact.timestamp >= daily_cutoff:
            keep.add(artifact)
        elif artifact in weekly and artifact.timestamp >= weekly_cutoff:
            keep.add(artifact)
        elif artifact in monthly and artifact.timestamp >= monthly_cutoff:
            keep.add(artifact)

    return frozenset(keep)


@dataclass
class PruneResult:
    """Summary of a prune pass"""
    kept: List[Artifact] = field(default_factory=list)
    deleted: List[Artifact] = field(default_factory=list)
    failed: List[Artifact] = field(default_factory=list)
    ignored: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class RetentionManager:
    """
    Applies a RetentionPolicy to the local artifact directory.
    """

    def __init__(self, storage: LocalStorage, policy: RetentionPolicy):
        self.storage = storage
        self.policy = policy

    def scan(self) -> Tuple[List[Artifact], List[str]]:
        """
        Read the artifact directory.

        Returns:
            (artifacts, ignored filenames). Files whose names do not parse
            are ignored and therefore never deleted.
        """
        artifacts = []
        ignored = []

        for path in self.storage.list_files():
            try:
                artifacts.append(artifact_from_path(str(path)))
            except MalformedName:
                logger.info(f"Ignoring unrecognised file in backup directory: {path.name}")
                ignored.append(path.name)
            except OSError as e:
                # Vanished between listing and stat
                logger.warning(f"Could not stat {path.name}, skipping: {e}")
                ignored.append(path.name)

        artifacts.sort(key=lambda a: a.sort_key)
        return artifacts, ignored

    def prune(self, now: Optional[datetime] = None, dry_run: bool = False) -> PruneResult:
        """
        Delete artifacts outside the keep-set.

        Deletion failures are logged and collected, never raised.

        Args:
            now: Reference instant (defaults to the current local time)
            dry_run: Classify and report without deleting

        Returns:
            PruneResult
        """
        now = now or datetime.now()
        artifacts, ignored = self.scan()
        keep = classify(artifacts, self.policy, now)

        result = PruneResult(ignored=ignored)

        for artifact in artifacts:
            if artifact in keep:
                result.kept.append(artifact)
                continue

            if dry_run:
                result.deleted.append(artifact)
                continue

            try:
                logger.info(f"Deleting old backup: {artifact.name}")
                self.storage.delete(artifact.path)
                result.deleted.append(artifact)
            except CleanupError as e:
                logger.error(f"Failed to delete {artifact.name}: {e}")
                result.failed.append(artifact)
                result.errors.append(str(e))

        logger.info(
            f"Pruning complete: deleted {len(result.deleted)} backup(s), "
            f"keeping {len(result.kept)} backup(s)"
            + (f", {len(result.failed)} deletion(s) failed" if result.failed else "")
            + (" (dry run)" if dry_run else "")
        )
        return result
