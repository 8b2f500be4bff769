"""
Remote replication of the artifact directory.

Mirrors the local directory, after pruning, to the configured bucket so the
remote copy follows the same retention policy as the local one.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from backup_agent.errors import MissingBucket, MissingCredentials, StorageError, TransportFailure
from backup_agent.settings import RemoteSettings
from .storage import S3Storage, SyncResult


logger = logging.getLogger(__name__)


@dataclass
class ReplicationResult:
    """Outcome of a replication step"""
    skipped: bool = False
    target: Optional[str] = None
    sync: SyncResult = field(default_factory=SyncResult)


def build_storage(remote: RemoteSettings) -> S3Storage:
    """
    Create the bucket handler for the remote settings.

    Raises:
        MissingBucket: If no bucket is configured
        MissingCredentials: If the key ID or application key is missing
    """
    if not remote.bucket:
        raise MissingBucket("Remote bucket not configured")
    if not remote.account_id or not remote.application_key:
        raise MissingCredentials("Remote credentials not configured (account_id/application_key)")

    return S3Storage(
        access_key=remote.account_id,
        secret_key=remote.application_key,
        bucket_name=remote.bucket,
        region=remote.region,
        endpoint_url=remote.resolved_endpoint
    )


def replicate(local_dir: str, remote: RemoteSettings, storage: Optional[S3Storage] = None) -> ReplicationResult:
    """
    Mirror local_dir to the remote bucket.

    Args:
        local_dir: Artifact directory
        remote: Remote settings snapshot
        storage: Pre-built bucket handler (built from settings when omitted)

    Returns:
        ReplicationResult (skipped=True when remote sync is disabled)

    Raises:
        MissingBucket, MissingCredentials: If configuration is incomplete
        TransportFailure: If the object store reports an error
    """
    if not remote.enabled:
        logger.info("Remote sync disabled, skipping")
        return ReplicationResult(skipped=True)

    try:
        if storage is None:
            storage = build_storage(remote)

        target = storage.bucket_name
        logger.info(f"Syncing {local_dir} to bucket {target}")

        sync = storage.sync_directory(local_dir)
    except StorageError as e:
        raise TransportFailure(f"Sync to remote failed: {e}")

    logger.info(
        f"Sync complete: {len(sync.uploaded)} uploaded, "
        f"{len(sync.deleted)} deleted, {len(sync.unchanged)} unchanged"
    )
    return ReplicationResult(target=target, sync=sync)
