from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class ArchiveOutcome(Enum):
    """Three-tier result of archive creation"""
    SUCCESS = 'success'
    WARNING = 'warning'
    FATAL = 'fatal'


class RunStatus(Enum):
    """Backup run lifecycle states"""
    CREATED = 'created'
    ARCHIVING = 'archiving'
    PRUNING = 'pruning'
    REPLICATING = 'replicating'
    NOTIFYING = 'notifying'
    DONE = 'done'
    FAILED = 'failed'


# Legal forward transitions. FAILED is additionally reachable from any
# non-terminal state through the crash guard.
RUN_TRANSITIONS = {
    RunStatus.CREATED: {RunStatus.ARCHIVING},
    RunStatus.ARCHIVING: {RunStatus.PRUNING, RunStatus.FAILED},
    RunStatus.PRUNING: {RunStatus.REPLICATING},
    RunStatus.REPLICATING: {RunStatus.NOTIFYING, RunStatus.FAILED},
    RunStatus.NOTIFYING: {RunStatus.DONE},
    RunStatus.DONE: set(),
    RunStatus.FAILED: set(),
}


@dataclass(frozen=True)
class Artifact:
    """One produced backup archive"""
    name: str
    path: str
    timestamp: datetime
    size: int = field(default=0, compare=False)

    @property
    def sort_key(self):
        return self.timestamp, self.name

    def __repr__(self):
        return f'<Artifact {self.name}>'


@dataclass(frozen=True)
class RunState:
    """State of a single backup run, never persisted"""
    started_at: datetime
    archive_name: str
    archive_path: str
    status: RunStatus = RunStatus.CREATED
    backup_success: bool = False
    sync_success: bool = False
    archive_outcome: Optional[ArchiveOutcome] = None
    size_bytes: int = 0
    entry_count: int = 0
    pruned: int = 0
    error: Optional[str] = None
    finished_at: Optional[datetime] = None

    def update(self, **changes) -> 'RunState':
        return replace(self, **changes)

    def duration_seconds(self, now: Optional[datetime] = None) -> int:
        end = now or self.finished_at or datetime.now()
        return max(int((end - self.started_at).total_seconds()), 0)

    @property
    def exit_code(self) -> int:
        return 0 if self.status is RunStatus.DONE else 1

    def summary(self) -> dict:
        return {
            'archive': self.archive_name,
            'status': self.status.value,
            'backup_success': self.backup_success,
            'sync_success': self.sync_success,
            'archive_outcome': self.archive_outcome.value if self.archive_outcome else None,
            'size_bytes': self.size_bytes,
            'entry_count': self.entry_count,
            'pruned': self.pruned,
            'error': self.error,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_seconds': self.duration_seconds(),
        }

    def __repr__(self):
        return f'<RunState {self.archive_name} status={self.status.value}>'
