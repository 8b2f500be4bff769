"""
Status routes - agent state, artifact listing and manual triggers.
"""

from flask import Blueprint, current_app, jsonify

from backup_agent.backup.retention import RetentionManager
from backup_agent.backup.storage import LocalStorage
from backup_agent.errors import StorageError
from backup_agent.scheduler import (
    get_last_run,
    get_scheduled_jobs,
    is_backup_running,
    is_scheduler_running,
    trigger_backup_now
)
from backup_agent.utils.formatting import human_size


bp = Blueprint('status', __name__, url_prefix='/api')


def _current_settings():
    return current_app.extensions['settings_store'].current()


@bp.route('/status', methods=['GET'])
def status():
    """
    Get agent status.

    Returns:
        JSON with scheduler state, scheduled jobs and the last run summary
    """
    settings = _current_settings()

    return jsonify({
        'scheduler_running': is_scheduler_running(),
        'backup_running': is_backup_running(),
        'schedule': settings.schedule,
        'backup_dir': settings.backup_dir,
        'remote_enabled': settings.remote.enabled,
        'jobs': get_scheduled_jobs(),
        'last_run': get_last_run()
    })


@bp.route('/backups', methods=['GET'])
def list_backups():
    """
    List artifacts with the current retention decision for each.

    Nothing is deleted; 'keep' shows what the next prune would do.

    Returns:
        JSON with artifacts (newest first) and ignored filenames
    """
    settings = _current_settings()

    try:
        manager = RetentionManager(LocalStorage(settings.backup_dir), settings.retention)
        preview = manager.prune(dry_run=True)
    except StorageError as e:
        return jsonify({'error': str(e)}), 500

    kept = set(preview.kept)
    artifacts = sorted(preview.kept + preview.deleted, key=lambda a: a.sort_key, reverse=True)

    return jsonify({
        'backups': [
            {
                'name': artifact.name,
                'timestamp': artifact.timestamp.isoformat(),
                'size_bytes': artifact.size,
                'size': human_size(artifact.size),
                'keep': artifact in kept
            }
            for artifact in artifacts
        ],
        'ignored': preview.ignored,
        'retention': {
            'keep_daily': settings.retention.keep_daily,
            'keep_weekly': settings.retention.keep_weekly,
            'keep_monthly': settings.retention.keep_monthly
        }
    })


@bp.route('/backups/run', methods=['POST'])
def run_backup():
    """
    Trigger a backup run now.

    Returns:
        202 with the scheduler job ID, or 409/503 if a run cannot be queued
    """
    if is_backup_running():
        return jsonify({'error': 'A backup run is already in progress'}), 409

    try:
        job_id = trigger_backup_now()
    except RuntimeError as e:
        return jsonify({'error': str(e)}), 503

    return jsonify({'message': 'Backup triggered', 'job_id': job_id}), 202
