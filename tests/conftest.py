"""
Shared pytest fixtures for xbackup tests.

This module provides fixtures for:
- Settings dicts built from the testing configuration
- Backup directories with user data
- Plain archives and random payloads
- Mock fixtures for external services (S3)
"""

import os
import tarfile
from unittest.mock import MagicMock

import pytest
import boto3
from moto import mock_aws

from xbackup.config import load_config
from xbackup.backup.storage import LocalStorage


@pytest.fixture(scope='function')
def config(tmp_path):
    """
    Settings for the testing profile, isolated in tmp_path.

    Uses a local remote, gzip + aes and a small cipher chunk size.
    """
    backup_dir = tmp_path / 'backup'
    backup_dir.mkdir()

    return load_config(
        'testing',
        environ={},
        BACKUP_DIRS=[str(backup_dir)],
        TMP_DIR=str(tmp_path / 'tmp'),
        BACKUP_COMPRESSION='gzip',
        BACKUP_ENCRYPTION='aes',
        ENCRYPTION_PASSWORD='test-password',
        CHUNK_SIZE=1024,
        LOCAL_ROOT=str(tmp_path / 'remote'),
        REMOTES=[{'driver': 'local', 'root': str(tmp_path / 'remote')}],
        ROTATION_KEEP_LATEST=3,
    )


@pytest.fixture
def local_storage(tmp_path):
    """LocalStorage rooted at tmp_path/remote."""
    return LocalStorage(str(tmp_path / 'remote'))


@pytest.fixture
def storages(local_storage):
    """Storage list in the shape create_storages() returns."""
    return [{'driver': 'local', 'storage': local_storage}]


@pytest.fixture
def user_dirs(config):
    """
    Create two users in the backup directory.

    Creates:
    - alice/notes.txt, alice/docs/report.txt
    - alice/cache.tmp (excluded in some tests)
    - bob/data.bin
    """
    base = config['BACKUP_DIRS'][0]

    alice = os.path.join(base, 'alice')
    os.makedirs(os.path.join(alice, 'docs'))
    with open(os.path.join(alice, 'notes.txt'), 'w') as f:
        f.write('alice notes')
    with open(os.path.join(alice, 'docs', 'report.txt'), 'w') as f:
        f.write('quarterly report\n' * 50)
    with open(os.path.join(alice, 'cache.tmp'), 'w') as f:
        f.write('scratch')

    bob = os.path.join(base, 'bob')
    os.makedirs(bob)
    with open(os.path.join(bob, 'data.bin'), 'wb') as f:
        f.write(os.urandom(4096))

    return {'alice': alice, 'bob': bob}


@pytest.fixture
def payload(tmp_path):
    """Factory writing a file of random bytes and returning its path."""
    def _make(size, name='payload.bin'):
        path = tmp_path / name
        path.write_bytes(os.urandom(size))
        return str(path)
    return _make


@pytest.fixture
def sample_archive(tmp_path):
    """
    Create a plain tar archive named like a real backup.
    """
    test_dir = tmp_path / 'alice'
    test_dir.mkdir()
    (test_dir / 'file1.txt').write_text('Content 1\n' * 100)
    (test_dir / 'file2.txt').write_text('Content 2\n' * 100)

    archive_path = tmp_path / 'alice.2025-01-01_12-00-00.tar'
    with tarfile.open(archive_path, 'w') as tar:
        tar.add(test_dir, arcname='alice')

    return str(archive_path)


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def mock_storage():
    """MagicMock storage with an empty listing."""
    storage = MagicMock()
    storage.list_files.return_value = []
    storage.file_exists.return_value = False
    return storage
