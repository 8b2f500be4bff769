"""
Backup settings loaded from the YAML configuration file.

A Settings object is an immutable snapshot. The SettingsStore holds exactly
one committed snapshot; the config watcher replaces it, and every backup run
reads it once at start, so edits never affect a run that is already going.
"""

import logging
import os
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from apscheduler.triggers.cron import CronTrigger

from backup_agent.errors import ConfigError


logger = logging.getLogger(__name__)

EXAMPLE_CONFIG = Path(__file__).parent / 'config.example.yaml'

ARCHIVE_FORMATS = ('tar.gz', 'tar.bz2', 'tar.xz', 'none', 'zip')
LOG_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}

B2_ENDPOINT_TEMPLATE = 'https://s3.{region}.backblazeb2.com'


@dataclass(frozen=True)
class RetentionPolicy:
    """Look-back windows: days, weeks (x7 days) and months (x30 days)"""
    keep_daily: int = 7
    keep_weekly: int = 4
    keep_monthly: int = 6


@dataclass(frozen=True)
class RemoteSettings:
    enabled: bool = True
    bucket: str = ''
    account_id: str = ''
    application_key: str = ''
    region: str = 'us-west-004'
    endpoint_url: Optional[str] = None

    @property
    def resolved_endpoint(self) -> str:
        return self.endpoint_url or B2_ENDPOINT_TEMPLATE.format(region=self.region)


@dataclass(frozen=True)
class DiscordSettings:
    enabled: bool = False
    webhook_url: str = ''
    on_success: bool = False
    on_failure: bool = True


@dataclass(frozen=True)
class LogSettings:
    level: str = 'info'
    file: str = '/config/backup.log'

    @property
    def level_number(self) -> int:
        return LOG_LEVELS[self.level]


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of the backup configuration"""
    sources: Tuple[str, ...] = ()
    excludes: Tuple[str, ...] = ()
    schedule: str = '0 4 * * *'
    archive_format: str = 'tar.gz'
    backup_dir: str = '/backups'
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    remote: RemoteSettings = field(default_factory=RemoteSettings)
    discord: DiscordSettings = field(default_factory=DiscordSettings)
    logging: LogSettings = field(default_factory=LogSettings)

    @property
    def archive_extension(self) -> str:
        return 'tar' if self.archive_format == 'none' else self.archive_format


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return value


def _string_list(data: Dict[str, Any], key: str) -> Tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list")
    # yq-style: skip empty and null entries
    return tuple(str(item) for item in value if item not in (None, ''))


def _non_negative_int(data: Dict[str, Any], key: str, default: int) -> int:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"retention.{key} must be a non-negative integer, got {value!r}")
    return value


def _flag(data: Dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('true', 'false'):
        return value.lower() == 'true'
    raise ConfigError(f"'{key}' must be true or false, got {value!r}")


def _text(data: Dict[str, Any], key: str, default: str = '') -> str:
    value = data.get(key)
    if value is None:
        return default
    return str(value).strip()


def parse_settings(data: Optional[Dict[str, Any]], backup_dir: Optional[str] = None) -> Settings:
    """
    Build a Settings snapshot from a parsed YAML document.

    Args:
        data: Parsed YAML mapping (None is treated as an empty document)
        backup_dir: Artifact directory override (BACKUP_DIR environment)

    Returns:
        Settings snapshot

    Raises:
        ConfigError: If any value has the wrong type or is out of range
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration document must be a mapping")

    retention_data = _section(data, 'retention')
    retention = RetentionPolicy(
        keep_daily=_non_negative_int(retention_data, 'keep_daily', 7),
        keep_weekly=_non_negative_int(retention_data, 'keep_weekly', 4),
        keep_monthly=_non_negative_int(retention_data, 'keep_monthly', 6),
    )

    remote_data = _section(data, 'remote')
    remote = RemoteSettings(
        enabled=_flag(remote_data, 'enabled', True),
        bucket=_text(remote_data, 'bucket'),
        account_id=_text(remote_data, 'account_id'),
        application_key=_text(remote_data, 'application_key'),
        region=_text(remote_data, 'region', 'us-west-004'),
        endpoint_url=_text(remote_data, 'endpoint_url') or None,
    )

    discord_data = _section(_section(data, 'notifications'), 'discord')
    discord = DiscordSettings(
        enabled=_flag(discord_data, 'enabled', False),
        webhook_url=_text(discord_data, 'webhook_url'),
        on_success=_flag(discord_data, 'on_success', False),
        on_failure=_flag(discord_data, 'on_failure', True),
    )

    logging_data = _section(data, 'logging')
    level = _text(logging_data, 'level', 'info').lower()
    if level not in LOG_LEVELS:
        raise ConfigError(f"Invalid logging.level: {level}. Valid options: {list(LOG_LEVELS)}")
    log_settings = LogSettings(
        level=level,
        file=_text(logging_data, 'file', '/config/backup.log'),
    )

    archive_format = _text(_section(data, 'archive'), 'format', 'tar.gz')
    if archive_format not in ARCHIVE_FORMATS:
        raise ConfigError(
            f"Invalid archive.format: {archive_format}. Valid options: {list(ARCHIVE_FORMATS)}"
        )

    schedule = _text(data, 'schedule', '0 4 * * *')
    try:
        CronTrigger.from_crontab(schedule)
    except ValueError as e:
        raise ConfigError(f"Invalid schedule {schedule!r}: {e}")

    return Settings(
        sources=_string_list(data, 'sources'),
        excludes=_string_list(data, 'excludes'),
        schedule=schedule,
        archive_format=archive_format,
        backup_dir=backup_dir or _text(data, 'backup_dir', '/backups'),
        retention=retention,
        remote=remote,
        discord=discord,
        logging=log_settings,
    )


def load_settings(path: str, backup_dir: Optional[str] = None) -> Settings:
    """
    Read and parse the YAML configuration file.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read {path}: {e}")

    return parse_settings(data, backup_dir=backup_dir)


def ensure_config_file(path: str) -> bool:
    """
    Copy the example configuration into place if no config file exists.

    Returns:
        True if a default config was created
    """
    if os.path.exists(path):
        return False

    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    shutil.copyfile(EXAMPLE_CONFIG, path)
    logger.warning(f"Config file not found, created default at {path} - please edit with your settings")
    return True


class SettingsStore:
    """
    Single-slot holder for the current Settings snapshot.

    Readers take the committed snapshot with current(). The watcher calls
    reload_if_changed(); a file that fails to parse is logged and the previous
    snapshot stays in place.
    """

    def __init__(self, path: str, backup_dir: Optional[str] = None):
        self.path = path
        self.backup_dir = backup_dir
        self._lock = threading.Lock()
        self._current: Optional[Settings] = None
        self._mtime: Optional[float] = None

    def load(self) -> Settings:
        """
        Load the file and commit it as the current snapshot.

        Raises:
            ConfigError: If the file cannot be loaded
        """
        mtime = self._stat_mtime()
        settings = load_settings(self.path, backup_dir=self.backup_dir)
        self._commit(settings, mtime)
        return settings

    def current(self) -> Settings:
        with self._lock:
            if self._current is None:
                raise ConfigError("Settings have not been loaded")
            return self._current

    def reload_if_changed(self) -> Optional[Settings]:
        """
        Reload the configuration if the file changed since the last load.

        Returns:
            The new snapshot, or None if nothing was committed
        """
        mtime = self._stat_mtime()
        with self._lock:
            if mtime == self._mtime:
                return None

        logger.info("Config file changed, reloading...")
        try:
            settings = load_settings(self.path, backup_dir=self.backup_dir)
        except ConfigError as e:
            logger.error(f"Config reload failed, keeping previous settings: {e}")
            with self._lock:
                # Remember the broken version so it is not re-reported every poll
                self._mtime = mtime
            return None

        self._commit(settings, mtime)
        logger.info("Configuration reloaded")
        return settings

    def _commit(self, settings: Settings, mtime: Optional[float]):
        with self._lock:
            self._current = settings
            self._mtime = mtime

    def _stat_mtime(self) -> Optional[float]:
        try:
            return os.stat(self.path).st_mtime
        except OSError:
            return None
