"""
Backup module for the backup agent.

This module handles the core backup functionality including:
- Artifact naming
- Compression
- Retention policy enforcement
- Remote replication
- Notifications
- Run orchestration
"""

from .executor import BackupExecutor, execute_backup
from .compression import create_archive
from .retention import RetentionManager, classify
from .replication import replicate
from .notifications import DiscordNotifier

__all__ = [
    'BackupExecutor',
    'execute_backup',
    'create_archive',
    'RetentionManager',
    'classify',
    'replicate',
    'DiscordNotifier'
]
