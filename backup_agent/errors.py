"""
Exception hierarchy for the backup agent.

Only SourceError and ToolFailure abort a run at the archive stage. Everything
else degrades gracefully and is reported through logs and, for run-level
failures, the failure notification.
"""


class BackupAgentError(Exception):
    """Base class for all backup agent errors."""
    pass


class ConfigError(BackupAgentError):
    """Raised when required settings are missing or invalid."""
    pass


class MissingBucket(ConfigError):
    """Raised when remote sync is enabled but no bucket is configured."""
    pass


class MissingCredentials(ConfigError):
    """Raised when remote sync is enabled but credentials are incomplete."""
    pass


class SourceError(BackupAgentError):
    """Raised when backup sources cannot be used."""
    pass


class NoSources(SourceError):
    """Raised when no backup sources are configured."""
    pass


class MalformedName(BackupAgentError, ValueError):
    """Raised when a filename is not a recognised artifact name."""
    pass


class ToolFailure(BackupAgentError):
    """Raised when archive creation or remote sync fails hard."""
    pass


class ArchiveFailure(ToolFailure):
    """Raised when the archive could not be produced."""
    pass


class TransportFailure(ToolFailure):
    """Raised when the object store rejects a sync operation."""
    pass


class StorageError(BackupAgentError):
    """Raised when an object store operation fails."""
    pass


class CleanupError(BackupAgentError):
    """Raised when a stale artifact cannot be deleted."""
    pass


class NotifyError(BackupAgentError):
    """Raised when a notification cannot be delivered."""
    pass


class RunInterrupted(BackupAgentError):
    """Raised inside a run when the process is asked to terminate."""
    pass
