"""
Unit tests for artifact naming (xbackup/backup/naming.py).

Tests encoding and decoding of artifact filenames.
"""

from datetime import datetime

import pytest

from xbackup.backup.naming import (
    ArtifactName,
    add_marker,
    create_archive_name,
    decode_artifact_name,
    encode_artifact_name,
    get_original_filename,
    normalize_compression,
    normalize_encryption,
    remove_marker,
    validate_methods,
)

ORIGINAL = 'alice.2025-01-01_12-00-00.tar'

VALID_PAIRS = [
    (c, e)
    for c in ('none', 'gzip', 'bzip2', 'xz', 'zstd', 'zip', '7z')
    for e in ('none', 'aes', 'gpg')
] + [('zip', 'zip'), ('7z', '7z')]


class TestEncodeArtifactName:
    """Test encode_artifact_name."""

    @pytest.mark.parametrize("compression,encryption,expected", [
        ('gzip', 'aes', f'{ORIGINAL}.xbk.gz.aes'),
        ('zstd', 'gpg', f'{ORIGINAL}.xbk.zst.gpg'),
        ('none', 'aes', f'{ORIGINAL}.xbk.aes'),
        ('xz', 'none', f'{ORIGINAL}.xbk.xz'),
        ('none', 'none', f'{ORIGINAL}.xbk'),
        ('7z', '7z', f'{ORIGINAL}.xbk.7z.7z'),
        ('zip', 'zip', f'{ORIGINAL}.xbk.zip.zip'),
        ('7z', 'none', f'{ORIGINAL}.xbk.7z'),
    ])
    def test_encode(self, compression, encryption, expected):
        """Test the extensions follow the order the methods were applied."""
        assert encode_artifact_name(ORIGINAL, compression, encryption) == expected

    def test_encode_accepts_aliases(self):
        """Test method aliases map to canonical extensions."""
        assert encode_artifact_name(ORIGINAL, 'gz', 'openssl') == f'{ORIGINAL}.xbk.gz.aes'


class TestDecodeArtifactName:
    """Test decode_artifact_name."""

    @pytest.mark.parametrize("compression,encryption", VALID_PAIRS)
    def test_decode_reverses_encode(self, compression, encryption):
        """Test every valid method pair decodes back to itself."""
        name = decode_artifact_name(encode_artifact_name(ORIGINAL, compression, encryption))

        assert name.original == ORIGINAL
        assert name.compression == compression
        assert name.encryption == encryption
        assert name.has_marker is True

    @pytest.mark.parametrize("legacy", [
        'alice.2025-01-01_12-00-00.tar.gz',
        'alice.2025-01-01_12-00-00.tar',
        'dump.sql.zst',
    ])
    def test_legacy_names_pass_through(self, legacy):
        """Test names without the marker are returned unchanged."""
        name = decode_artifact_name(legacy)

        assert name == ArtifactName(original=legacy)
        assert name.has_marker is False
        assert name.compression == 'none'
        assert name.encryption == 'none'

    def test_lone_7z_is_compression_only(self):
        """Test a single 7z extension never means encryption."""
        name = decode_artifact_name(f'{ORIGINAL}.xbk.7z')

        assert name.compression == '7z'
        assert name.encryption == 'none'
        assert name.is_combined is False

    def test_doubled_extension_is_combined(self):
        """Test x.xbk.zip.zip decodes as the combined step."""
        name = decode_artifact_name(f'{ORIGINAL}.xbk.zip.zip')

        assert name.is_combined is True

    def test_bare_marker(self):
        """Test a bare marker means no processing at all."""
        name = decode_artifact_name(f'{ORIGINAL}.xbk')

        assert name.has_marker is True
        assert name.original == ORIGINAL
        assert (name.compression, name.encryption) == ('none', 'none')

    def test_get_original_filename(self):
        """Test original filename lookup."""
        assert get_original_filename(f'{ORIGINAL}.xbk.bz2.gpg') == ORIGINAL


class TestMethodValidation:
    """Test method normalization and pair validation."""

    def test_normalize_aliases(self):
        """Test aliases and case are normalized."""
        assert normalize_compression('ZST') == 'zstd'
        assert normalize_compression(None) == 'none'
        assert normalize_encryption('GnuPG') == 'gpg'

    @pytest.mark.parametrize("normalize,value", [
        (normalize_compression, 'rar'),
        (normalize_encryption, 'rot13'),
    ])
    def test_unknown_method_raises(self, normalize, value):
        """Test unknown methods are rejected."""
        with pytest.raises(ValueError, match="Invalid"):
            normalize(value)

    @pytest.mark.parametrize("compression,encryption", [
        ('gzip', '7z'),
        ('none', 'zip'),
        ('zip', '7z'),
    ])
    def test_combined_encryption_requires_same_compression(self, compression, encryption):
        """Test zip/7z encryption is only valid with the same compression."""
        with pytest.raises(ValueError, match="requires compression"):
            validate_methods(compression, encryption)

    def test_validate_returns_canonical_pair(self):
        """Test a valid pair comes back canonical."""
        assert validate_methods('7zip', 'sevenzip') == ('7z', '7z')


class TestMarkerHelpers:
    """Test marker and archive name helpers."""

    def test_add_marker_is_idempotent(self):
        """Test the marker is appended once."""
        assert add_marker('a.tar') == 'a.tar.xbk'
        assert add_marker('a.tar.xbk') == 'a.tar.xbk'

    def test_remove_marker(self):
        """Test removing a trailing marker."""
        assert remove_marker('a.tar.xbk') == 'a.tar'
        assert remove_marker('a.tar') == 'a.tar'

    def test_create_archive_name(self):
        """Test archive name format."""
        name = create_archive_name('alice', 'tar', now=datetime(2025, 6, 28, 10, 30, 5))

        assert name == 'alice.2025-06-28_10-30-05.tar'
