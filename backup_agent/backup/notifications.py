"""
Discord webhook notifications for backup runs.

Notification is best-effort: delivery problems are logged and never change
the outcome of the run.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from backup_agent.errors import NotifyError
from backup_agent.models import RunState
from backup_agent.settings import DiscordSettings
from backup_agent.utils.formatting import human_size


logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'success'
STATUS_FAILURE = 'failure'

COLOR_SUCCESS = 3066993  # Green
COLOR_FAILURE = 15158332  # Red

REQUEST_TIMEOUT = 10


def _flag(value: bool) -> str:
    return 'true' if value else 'false'


def build_payload(status: str, state: RunState, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Build the Discord embed payload for a run.

    Args:
        status: STATUS_SUCCESS or STATUS_FAILURE
        state: Run state at the time of notification
        now: Notification time (defaults to now)

    Returns:
        JSON-serialisable webhook payload
    """
    now = now or datetime.now()

    if status == STATUS_SUCCESS:
        title, color = 'Backup Successful', COLOR_SUCCESS
    else:
        title, color = 'Backup Failed', COLOR_FAILURE

    fields = [
        {'name': 'Archive', 'value': state.archive_name, 'inline': True},
        {'name': 'Size', 'value': human_size(state.size_bytes), 'inline': True},
        {'name': 'Duration', 'value': f"{state.duration_seconds()}s", 'inline': True},
        {'name': 'Backup', 'value': _flag(state.backup_success), 'inline': True},
        {'name': 'Sync', 'value': _flag(state.sync_success), 'inline': True},
    ]

    if state.error:
        fields.append({'name': 'Error', 'value': state.error, 'inline': False})

    return {
        'embeds': [{
            'title': title,
            'color': color,
            'fields': fields,
            'timestamp': now.astimezone(timezone.utc).isoformat(),
        }]
    }


class DiscordNotifier:
    """
    Sends run summaries to a Discord webhook.
    """

    def __init__(self, settings: DiscordSettings):
        self.settings = settings

    def should_send(self, status: str) -> bool:
        if not self.settings.enabled:
            logger.debug("Discord notifications disabled")
            return False

        if not self.settings.webhook_url:
            logger.warning("Discord webhook URL not configured")
            return False

        if status == STATUS_SUCCESS and not self.settings.on_success:
            logger.debug("Skipping success notification (on_success=false)")
            return False

        if status == STATUS_FAILURE and not self.settings.on_failure:
            logger.debug("Skipping failure notification (on_failure=false)")
            return False

        return True

    def notify(self, status: str, state: RunState) -> bool:
        """
        Send a notification for a run if settings allow it.

        Returns:
            True if a notification was delivered
        """
        if not self.should_send(status):
            return False

        payload = build_payload(status, state)

        try:
            logger.debug("Sending Discord notification...")
            self._deliver(payload)
        except NotifyError as e:
            logger.warning(f"Failed to send Discord notification: {e}")
            return False

        logger.info("Discord notification sent")
        return True

    def _deliver(self, payload: Dict[str, Any]):
        try:
            response = requests.post(
                self.settings.webhook_url,
                json=payload,
                timeout=REQUEST_TIMEOUT
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotifyError(str(e))
