"""
Shared pytest fixtures for backup agent tests.

This module provides fixtures for:
- YAML configuration files and Settings snapshots
- Flask app and test client
- Artifact directories populated with timestamped archives
- Mock fixtures for external services (S3, Discord)
- Temporary file fixtures
"""

import logging
from datetime import datetime
from unittest.mock import MagicMock

import boto3
import pytest
import yaml
from moto import mock_aws

import backup_agent
from backup_agent import create_app
from backup_agent.backup.naming import format_name
from backup_agent.settings import load_settings


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - source/test_file1.txt
    - source/test_file2.log
    - source/nested/test_file3.txt
    - source/test_file.pyc (should be excluded in tests)
    """
    source = tmp_path / 'source'
    source.mkdir()
    (source / 'test_file1.txt').write_text('Test content 1')
    (source / 'test_file2.log').write_text('Test log content')

    nested_dir = source / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    (source / 'test_file.pyc').write_bytes(b'compiled python')

    return source


@pytest.fixture
def backup_dir(tmp_path):
    path = tmp_path / 'backups'
    path.mkdir()
    return path


@pytest.fixture
def config_data(tmp_path, temp_files, backup_dir):
    """Configuration document with remote sync and notifications off."""
    return {
        'sources': [str(temp_files)],
        'excludes': ['*.pyc'],
        'schedule': '0 4 * * *',
        'backup_dir': str(backup_dir),
        'retention': {'keep_daily': 7, 'keep_weekly': 4, 'keep_monthly': 6},
        'remote': {'enabled': False},
        'notifications': {'discord': {'enabled': False}},
        'logging': {'level': 'debug', 'file': str(tmp_path / 'logs' / 'backup.log')},
    }


@pytest.fixture
def config_file(tmp_path, config_data):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(config_data))
    return path


@pytest.fixture
def settings(config_file):
    return load_settings(str(config_file))


@pytest.fixture
def app(config_file, backup_dir):
    """Flask app with the scheduler disabled."""
    app = create_app('testing', overrides={
        'CONFIG_FILE': str(config_file),
        'BACKUP_DIR': str(backup_dir),
    })
    yield app


@pytest.fixture
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def make_artifact(backup_dir):
    """
    Factory creating an artifact file in the backup directory.

    Usage: make_artifact(datetime(2024, 1, 15, 4, 0), size=1024)
    """
    def _make(timestamp: datetime, size: int = 16, extension: str = 'tar.gz'):
        path = backup_dir / format_name(timestamp, extension)
        path.write_bytes(b'x' * size)
        return path

    return _make


@pytest.fixture
def mock_s3():
    """
    Mock S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def mock_notifier():
    """Notifier double recording notify() calls."""
    notifier = MagicMock()
    notifier.notify.return_value = True
    return notifier


@pytest.fixture(autouse=True)
def reset_logging():
    """Detach handlers installed by configure_logging after each test."""
    yield
    root = logging.getLogger()
    for handler in backup_agent._log_handlers:
        root.removeHandler(handler)
        handler.close()
    backup_agent._log_handlers = []
