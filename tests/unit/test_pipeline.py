"""
Unit tests for the artifact pipeline (xbackup/backup/pipeline.py).
"""

import logging
import os
import shutil
from unittest.mock import MagicMock, patch

import pytest

from xbackup.backup.pipeline import ArtifactPipeline
from xbackup.errors import CipherError


def _read(path):
    with open(path, 'rb') as f:
        return f.read()


class TestArtifactPipelineInit:
    """Test pipeline validation."""

    def test_encryption_requires_password(self):
        """Test encrypting without a password is rejected."""
        with pytest.raises(ValueError, match="requires a password"):
            ArtifactPipeline('gzip', 'aes')

    def test_invalid_pair(self):
        """Test 7z encryption with gzip compression is rejected."""
        with pytest.raises(ValueError):
            ArtifactPipeline('gzip', '7z', password='pw')

    def test_invalid_backend(self):
        """Test an unknown codec backend is rejected before any processing."""
        with pytest.raises(ValueError, match="backend"):
            ArtifactPipeline('gzip', 'none', backend='gpu')

    def test_artifact_name(self):
        """Test the artifact name follows the configured methods."""
        pipeline = ArtifactPipeline('zstd', 'aes', password='pw')

        assert pipeline.artifact_name('a.tar') == 'a.tar.xbk.zst.aes'
        assert pipeline.combined is False
        assert ArtifactPipeline('7z', '7z', password='pw').combined is True


class TestArtifactPipelineProcess:
    """Test process() and restore() with native codecs."""

    @pytest.mark.parametrize("compression,encryption", [
        ('gzip', 'aes'),
        ('bzip2', 'aes'),
        ('xz', 'none'),
        ('zstd', 'aes'),
        ('none', 'aes'),
        ('none', 'none'),
    ])
    def test_restore_reverses_process(self, sample_archive, tmp_path, compression, encryption):
        """Test the restored archive equals the original."""
        pipeline = ArtifactPipeline(compression, encryption, password='pw', chunk_size=1024)
        out_dir = tmp_path / 'artifacts'
        restore_dir = tmp_path / 'restored'
        out_dir.mkdir()
        restore_dir.mkdir()

        artifact = pipeline.process(sample_archive, str(out_dir))

        assert os.path.basename(artifact) == pipeline.artifact_name(os.path.basename(sample_archive))
        # Only the artifact is left behind
        assert os.listdir(out_dir) == [os.path.basename(artifact)]
        # Plain archive is left in place
        assert os.path.exists(sample_archive)

        restored = pipeline.restore(artifact, str(restore_dir))

        assert os.path.basename(restored) == os.path.basename(sample_archive)
        assert _read(restored) == _read(sample_archive)
        assert os.listdir(restore_dir) == [os.path.basename(sample_archive)]

    def test_restore_reads_methods_from_name(self, sample_archive, tmp_path):
        """Test restore ignores the pipeline's own configuration."""
        writer = ArtifactPipeline('xz', 'aes', password='pw')
        reader = ArtifactPipeline('gzip', 'none', password='pw')
        restore_dir = tmp_path / 'restored'
        restore_dir.mkdir()

        artifact = writer.process(sample_archive, str(tmp_path))
        restored = reader.restore(artifact, str(restore_dir))

        assert _read(restored) == _read(sample_archive)

    def test_restore_legacy_name_passthrough(self, sample_archive):
        """Test a file without the marker is returned unchanged."""
        pipeline = ArtifactPipeline()

        assert pipeline.restore(sample_archive) == sample_archive

    def test_restore_wrong_password(self, sample_archive, tmp_path):
        """Test a wrong password fails and leaves no intermediate files."""
        artifact = ArtifactPipeline('gzip', 'aes', password='pw', chunk_size=16).process(
            sample_archive, str(tmp_path)
        )
        restore_dir = tmp_path / 'restored'
        restore_dir.mkdir()

        with pytest.raises(CipherError):
            ArtifactPipeline(password='other', chunk_size=16).restore(artifact, str(restore_dir))

        assert os.listdir(restore_dir) == []

    def test_restore_encrypted_without_password(self, sample_archive, tmp_path):
        """Test an encrypted artifact needs a password."""
        artifact = ArtifactPipeline('none', 'aes', password='pw').process(sample_archive, str(tmp_path))

        with pytest.raises(ValueError, match="no password"):
            ArtifactPipeline().restore(artifact)

    def test_encryption_failure_removes_stage_file(self, sample_archive, tmp_path):
        """Test the compressed stage file does not outlive a failed encryption."""
        out_dir = tmp_path / 'artifacts'
        out_dir.mkdir()
        pipeline = ArtifactPipeline('gzip', 'gpg', password='pw')
        encryptor = MagicMock()
        encryptor.encrypt.side_effect = CipherError("boom")

        with patch('xbackup.backup.pipeline.get_encryptor', return_value=encryptor):
            with pytest.raises(CipherError):
                pipeline.process(sample_archive, str(out_dir))

        assert os.listdir(out_dir) == []

    @patch('xbackup.backup.pipeline.get_archiver')
    def test_combined_step_uses_archiver(self, mock_get_archiver, sample_archive, tmp_path):
        """Test 7z+7z runs one compress_encrypt call."""
        archiver = MagicMock()

        def fake_compress_encrypt(src, dest, password, level):
            shutil.copyfile(src, dest)
            return dest

        archiver.compress_encrypt.side_effect = fake_compress_encrypt
        mock_get_archiver.return_value = archiver

        pipeline = ArtifactPipeline('7z', '7z', password='pw', level=9)
        artifact = pipeline.process(sample_archive, str(tmp_path))

        assert artifact.endswith('.tar.xbk.7z.7z')
        archiver.compress_encrypt.assert_called_once_with(sample_archive, artifact, 'pw', 9)

    def test_small_output_warning(self, tmp_path, caplog):
        """Test a suspiciously small artifact is logged."""
        plain = tmp_path / 'tiny.2025-01-01_00-00-00.tar'
        plain.write_bytes(b'')

        with caplog.at_level(logging.WARNING):
            ArtifactPipeline('none', 'aes', password='pw').process(str(plain), str(tmp_path))

        assert "suspiciously small" in caplog.text
