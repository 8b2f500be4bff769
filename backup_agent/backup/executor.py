"""
Backup executor - orchestrates one backup run.

Workflow:
1. Create the archive (fatal outcome ends the run; nothing is pruned)
2. Prune old archives (failures are logged only)
3. Mirror the artifact directory to the remote bucket
4. Send the outcome notification

The RunState is created at start and handed from stage to stage; each stage
returns the updated state. The settings snapshot is taken once when the
executor is built.
"""

import logging
import os
from datetime import datetime
from typing import Callable, Optional

from backup_agent.errors import ArchiveFailure, ConfigError, SourceError, StorageError, ToolFailure
from backup_agent.models import ArchiveOutcome, RunState, RunStatus, RUN_TRANSITIONS
from backup_agent.settings import Settings
from backup_agent.utils.formatting import human_size
from .compression import create_archive
from .naming import format_name
from .notifications import DiscordNotifier, STATUS_FAILURE, STATUS_SUCCESS
from .replication import replicate
from .retention import RetentionManager
from .storage import LocalStorage


logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Runs the create -> prune -> replicate -> notify pipeline once.
    """

    def __init__(
        self,
        settings: Settings,
        archiver: Callable = create_archive,
        replicator: Callable = replicate,
        notifier: Optional[DiscordNotifier] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize backup executor.

        Args:
            settings: Settings snapshot for this run
            archiver: Archive producer (create_archive signature)
            replicator: Remote replicator (replicate signature)
            notifier: Notification sender
            clock: Source of the current local time
        """
        self.settings = settings
        self.archiver = archiver
        self.replicator = replicator
        self.notifier = notifier or DiscordNotifier(settings.discord)
        self.clock = clock or datetime.now

    def execute(self) -> RunState:
        """
        Execute the backup run.

        Never raises for run failures; the returned state carries the final
        status and exit_code.
        """
        started_at = self.clock().replace(microsecond=0)
        archive_name = format_name(started_at, self.settings.archive_extension)
        state = RunState(
            started_at=started_at,
            archive_name=archive_name,
            archive_path=os.path.join(self.settings.backup_dir, archive_name)
        )

        self._checkpoint = state
        logger.info("=== Backup started ===")

        try:
            return self._run(state)
        except Exception as e:
            logger.exception("Backup crashed unexpectedly")
            return self._fail(self._checkpoint, f"Backup crashed unexpectedly: {e}", force=True)

    def _run(self, state: RunState) -> RunState:
        state = self._transition(state, RunStatus.ARCHIVING)
        try:
            state = self._create_backup(state)
        except (SourceError, ToolFailure) as e:
            logger.error(f"Failed to create backup archive: {e}")
            return self._fail(state, f"Failed to create backup archive: {e}")

        state = self._transition(state, RunStatus.PRUNING)
        state = self._prune(state)

        state = self._transition(state, RunStatus.REPLICATING)
        try:
            state = self._replicate(state)
        except (ConfigError, ToolFailure) as e:
            logger.error(f"Failed to sync to remote: {e}")
            return self._fail(state, f"Failed to sync to remote: {e}")

        state = self._transition(state, RunStatus.NOTIFYING, finished_at=self.clock())
        duration = state.duration_seconds()
        logger.info(f"=== Backup complete ({duration}s) ===")
        self.notifier.notify(STATUS_SUCCESS, state)

        return self._transition(state, RunStatus.DONE)

    def _create_backup(self, state: RunState) -> RunState:
        """
        Produce the archive for this run.

        Raises:
            SourceError: If no sources are configured
            ArchiveFailure: If the archive could not be written
        """
        logger.info(f"Creating backup: {state.archive_name}")
        logger.info(
            f"Backing up {len(self.settings.sources)} source(s) "
            f"with {len(self.settings.excludes)} exclusion(s)"
        )
        logger.debug(f"Sources: {' '.join(self.settings.sources)}")
        logger.debug(f"Excludes: {' '.join(self.settings.excludes)}")

        os.makedirs(self.settings.backup_dir, exist_ok=True)

        result = self.archiver(
            list(self.settings.sources),
            state.archive_path,
            list(self.settings.excludes),
            self.settings.archive_format
        )

        if result.outcome is ArchiveOutcome.FATAL:
            raise ArchiveFailure(result.error or "archive tool reported a fatal error")

        size = human_size(result.size)
        if result.outcome is ArchiveOutcome.WARNING:
            logger.warning(
                f"Backup created with warnings: {state.archive_path} ({size}, "
                f"{len(result.warnings)} warning(s))"
            )
        else:
            logger.info(f"Backup created: {state.archive_path} ({size})")

        return state.update(
            backup_success=True,
            archive_outcome=result.outcome,
            size_bytes=result.size,
            entry_count=result.entry_count
        )

    def _prune(self, state: RunState) -> RunState:
        logger.info("Pruning old backups...")
        try:
            manager = RetentionManager(LocalStorage(self.settings.backup_dir), self.settings.retention)
            result = manager.prune(now=self.clock())
        except StorageError as e:
            logger.error(f"Pruning skipped: {e}")
            return state

        return state.update(pruned=len(result.deleted))

    def _replicate(self, state: RunState) -> RunState:
        """
        Raises:
            ConfigError: If remote settings are incomplete
            ToolFailure: If the sync fails
        """
        self.replicator(self.settings.backup_dir, self.settings.remote)
        return state.update(sync_success=True)

    def _fail(self, state: RunState, message: str, force: bool = False) -> RunState:
        state = self._transition(state, RunStatus.FAILED, force=force, error=message, finished_at=self.clock())
        if not force:
            self.notifier.notify(STATUS_FAILURE, state)
            return state

        try:
            self.notifier.notify(STATUS_FAILURE, state)
        except Exception as e:
            logger.error(f"Failure notification could not be sent: {e}")
        return state

    def _transition(self, state: RunState, target: RunStatus, force: bool = False, **changes) -> RunState:
        if not force and target not in RUN_TRANSITIONS[state.status]:
            raise RuntimeError(f"Illegal run transition {state.status.value} -> {target.value}")
        logger.debug(f"Run state: {state.status.value} -> {target.value}")
        self._checkpoint = state.update(status=target, **changes)
        return self._checkpoint


def execute_backup(settings: Settings) -> RunState:
    """
    Run one backup with the given settings snapshot.

    Returns:
        Final RunState
    """
    executor = BackupExecutor(settings)
    return executor.execute()
