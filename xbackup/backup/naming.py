"""
Artifact filename codec.

An artifact name records which compression and encryption methods were
applied to a plain archive, in order:

    {original}.xbk[.{compression_ext}][.{encryption_ext}]

Examples:
    user.2025-01-01_12-00-00.tar.xbk.gz.aes   gzip, then AES stream cipher
    user.2025-01-01_12-00-00.tar.xbk.7z.7z    7-Zip compress+encrypt in one step
    user.2025-01-01_12-00-00.tar.xbk.7z       7-Zip compression only
    user.2025-01-01_12-00-00.tar.gz           legacy name, no marker

A lone zip/7z extension always decodes as compression-only. Only the
doubled form denotes the combined compress+encrypt step.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

MARKER = 'xbk'

COMPRESSION_METHODS = ('none', 'gzip', 'bzip2', 'xz', 'zstd', 'zip', '7z')
ENCRYPTION_METHODS = ('none', 'aes', 'gpg', 'zip', '7z')

# Tools that compress and encrypt in a single invocation
COMBINED_METHODS = ('zip', '7z')

COMPRESSION_EXTENSIONS = {
    'gzip': 'gz',
    'bzip2': 'bz2',
    'xz': 'xz',
    'zstd': 'zst',
    'zip': 'zip',
    '7z': '7z',
}

ENCRYPTION_EXTENSIONS = {
    'aes': 'aes',
    'gpg': 'gpg',
}

_COMPRESSION_BY_EXTENSION = {ext: method for method, ext in COMPRESSION_EXTENSIONS.items()}
_ENCRYPTION_BY_EXTENSION = {ext: method for method, ext in ENCRYPTION_EXTENSIONS.items()}

_COMPRESSION_ALIASES = {
    'gz': 'gzip',
    'bz2': 'bzip2',
    'zst': 'zstd',
    '7zip': '7z',
    'sevenzip': '7z',
}

_ENCRYPTION_ALIASES = {
    'openssl': 'aes',
    'gpg2': 'gpg',
    'gnupg': 'gpg',
    '7zip': '7z',
    'sevenzip': '7z',
}

_MARKED_NAME = re.compile(r'^(?P<original>.+)\.' + MARKER + r'(?:\.(?P<tail>[^/\\]*))?$')


@dataclass(frozen=True)
class ArtifactName:
    """Decoded artifact filename."""
    original: str
    compression: str = 'none'
    encryption: str = 'none'
    has_marker: bool = False

    @property
    def is_combined(self) -> bool:
        return is_combined(self.compression, self.encryption)


def normalize_compression(method: Optional[str]) -> str:
    """
    Normalize a compression method name to its canonical form.

    Raises:
        ValueError: If the method is unknown
    """
    name = (method or 'none').strip().lower()
    name = _COMPRESSION_ALIASES.get(name, name)
    if name not in COMPRESSION_METHODS:
        raise ValueError(
            f"Invalid compression method: {method}. "
            f"Valid options: {list(COMPRESSION_METHODS)}"
        )
    return name


def normalize_encryption(method: Optional[str]) -> str:
    """
    Normalize an encryption method name to its canonical form.

    Raises:
        ValueError: If the method is unknown
    """
    name = (method or 'none').strip().lower()
    name = _ENCRYPTION_ALIASES.get(name, name)
    if name not in ENCRYPTION_METHODS:
        raise ValueError(
            f"Invalid encryption method: {method}. "
            f"Valid options: {list(ENCRYPTION_METHODS)}"
        )
    return name


def is_combined(compression: str, encryption: str) -> bool:
    """True when one tool performs both compression and encryption."""
    return compression == encryption and compression in COMBINED_METHODS


def validate_methods(compression: str, encryption: str):
    """
    Normalize and validate a compression/encryption pair.

    zip and 7z are only usable as encryption together with the same
    compression method.

    Returns:
        Tuple of canonical (compression, encryption)

    Raises:
        ValueError: If either method is unknown or the pair is unsupported
    """
    compression = normalize_compression(compression)
    encryption = normalize_encryption(encryption)

    if encryption in COMBINED_METHODS and not is_combined(compression, encryption):
        raise ValueError(
            f"Encryption '{encryption}' requires compression '{encryption}' "
            f"(got '{compression}')"
        )

    return compression, encryption


def encode_artifact_name(original: str, compression: str = 'none', encryption: str = 'none') -> str:
    """
    Build the artifact filename for a plain archive.

    Args:
        original: Base filename (or path) of the plain archive
        compression: Compression method applied to it
        encryption: Encryption method applied after compression

    Returns:
        Filename carrying the marker and method extensions
    """
    compression = normalize_compression(compression)
    encryption = normalize_encryption(encryption)

    name = f"{original}.{MARKER}"

    if is_combined(compression, encryption):
        ext = COMPRESSION_EXTENSIONS[compression]
        return f"{name}.{ext}.{ext}"

    if compression != 'none':
        name = f"{name}.{COMPRESSION_EXTENSIONS[compression]}"

    if encryption != 'none' and encryption not in COMBINED_METHODS:
        name = f"{name}.{ENCRYPTION_EXTENSIONS[encryption]}"

    return name


def decode_artifact_name(name: str) -> ArtifactName:
    """
    Parse an artifact filename back into its parts.

    Names without the marker are legacy files and pass through unchanged
    with both methods 'none'.
    """
    match = _MARKED_NAME.match(name)
    if not match:
        return ArtifactName(original=name)

    original = match.group('original')
    tail = match.group('tail')
    tokens = [token for token in tail.split('.') if token] if tail else []

    compression = 'none'
    encryption = 'none'

    if len(tokens) == 2 and tokens[0] == tokens[1] and tokens[0] in COMBINED_METHODS:
        compression = encryption = tokens[0]
    elif len(tokens) == 1:
        token = tokens[0]
        if token in _COMPRESSION_BY_EXTENSION:
            compression = _COMPRESSION_BY_EXTENSION[token]
        elif token in _ENCRYPTION_BY_EXTENSION:
            encryption = _ENCRYPTION_BY_EXTENSION[token]
    else:
        for token in tokens:
            if token in _COMPRESSION_BY_EXTENSION:
                compression = _COMPRESSION_BY_EXTENSION[token]
            elif token in _ENCRYPTION_BY_EXTENSION:
                encryption = _ENCRYPTION_BY_EXTENSION[token]

    return ArtifactName(
        original=original,
        compression=compression,
        encryption=encryption,
        has_marker=True,
    )


def get_original_filename(name: str) -> str:
    """Return the plain archive name an artifact was produced from."""
    return decode_artifact_name(name).original


def add_marker(filename: str) -> str:
    """Append the bare marker to a filename (idempotent)."""
    if filename.endswith(f".{MARKER}"):
        return filename
    return f"{filename}.{MARKER}"


def remove_marker(filename: str) -> str:
    """Strip a trailing bare marker from a filename, if present."""
    suffix = f".{MARKER}"
    if filename.endswith(suffix):
        return filename[:-len(suffix)]
    return filename


def create_archive_name(owner: str, suffix: str = 'tar', now: Optional[datetime] = None) -> str:
    """
    Generate a plain archive filename.

    Format: {owner}.{YYYY-MM-DD_HH-MM-SS}.{suffix}
    """
    now = now or datetime.now()
    return f"{owner}.{now.strftime('%Y-%m-%d_%H-%M-%S')}.{suffix}"
