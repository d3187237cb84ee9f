"""
Unit tests for encryption handlers (xbackup/backup/encryption.py).
"""

from unittest.mock import patch

import pytest

from xbackup.backup.compression import SevenZipArchiver, ZipArchiver
from xbackup.backup.encryption import (
    AesEncryptor,
    GpgEncryptor,
    get_archiver,
    get_encryptor,
)
from xbackup.errors import CipherError, InputUnreadableError


class TestAesEncryptor:
    """Test the built-in stream cipher encryptor."""

    def test_decrypt_restores_input(self, sample_archive, tmp_path):
        """Test decrypt(encrypt(x)) == x."""
        encryptor = AesEncryptor('secret', chunk_size=1024)
        encrypted = str(tmp_path / 'a.aes')
        restored = tmp_path / 'a.out'

        encryptor.encrypt(sample_archive, encrypted)
        encryptor.decrypt(encrypted, str(restored))

        with open(sample_archive, 'rb') as f:
            assert restored.read_bytes() == f.read()

    def test_wrong_password(self, sample_archive, tmp_path):
        """Test another password cannot decrypt."""
        encrypted = str(tmp_path / 'a.aes')
        AesEncryptor('secret', chunk_size=16).encrypt(sample_archive, encrypted)

        with pytest.raises(CipherError):
            AesEncryptor('other', chunk_size=16).decrypt(encrypted, str(tmp_path / 'a.out'))

    def test_missing_source(self, tmp_path):
        """Test a missing source is reported before anything is written."""
        with pytest.raises(InputUnreadableError):
            AesEncryptor('secret').encrypt(str(tmp_path / 'missing'), str(tmp_path / 'a.aes'))

        assert not (tmp_path / 'a.aes').exists()


class TestGpgEncryptor:
    """Test the gpg encryptor argument vectors."""

    @patch('xbackup.backup.encryption.run_tool')
    def test_encrypt_arguments(self, mock_run, sample_archive):
        """Test symmetric AES256 with the passphrase on stdin."""
        GpgEncryptor('pw').encrypt(sample_archive, 'out.gpg')

        args = mock_run.call_args[0][0]
        assert args == [
            'gpg', '--batch', '--yes', '--pinentry-mode', 'loopback',
            '--symmetric', '--cipher-algo', 'AES256', '--passphrase-fd', '0',
            '-o', 'out.gpg', sample_archive,
        ]
        assert 'pw' not in args
        assert mock_run.call_args[1]['password'] == 'pw'

    @patch('xbackup.backup.encryption.run_tool')
    def test_decrypt_arguments(self, mock_run, sample_archive):
        """Test decryption reads the passphrase from stdin."""
        GpgEncryptor('pw').decrypt(sample_archive, 'out.tar')

        args = mock_run.call_args[0][0]
        assert '--decrypt' in args
        assert args[-3:] == ['-o', 'out.tar', sample_archive]
        assert mock_run.call_args[1]['password'] == 'pw'

    def test_requires_password(self):
        """Test gpg without a password is rejected."""
        with pytest.raises(ValueError):
            GpgEncryptor('')


class TestFactories:
    """Test get_encryptor and get_archiver."""

    def test_get_encryptor(self):
        """Test stand-alone encryption methods."""
        assert get_encryptor('none', None) is None
        assert isinstance(get_encryptor('openssl', 'pw'), AesEncryptor)
        assert isinstance(get_encryptor('gpg', 'pw'), GpgEncryptor)

    @pytest.mark.parametrize("method", ['zip', '7z'])
    def test_get_encryptor_rejects_combined(self, method):
        """Test combined methods are not stand-alone encryptors."""
        with pytest.raises(ValueError, match="get_archiver"):
            get_encryptor(method, 'pw')

    def test_get_archiver(self, tmp_path):
        """Test combined archivers."""
        assert isinstance(get_archiver('7z', str(tmp_path)), SevenZipArchiver)
        assert isinstance(get_archiver('zip', str(tmp_path)), ZipArchiver)

        with pytest.raises(ValueError):
            get_archiver('aes')
