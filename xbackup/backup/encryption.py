"""
Encryption handlers for backup artifacts.

Supports:
- AesEncryptor: built-in chunked AES stream cipher (no external binary)
- GpgEncryptor: gpg symmetric encryption, passphrase on stdin
- get_archiver: 7z and zip, which compress and encrypt in one invocation
"""

import logging
from typing import Optional, Protocol

from xbackup.utils.crypto import DEFAULT_CHUNK_SIZE, ChunkedStreamCipher
from .compression import SevenZipArchiver, ZipArchiver
from .naming import COMBINED_METHODS, normalize_encryption
from .tools import ensure_readable, run_tool

logger = logging.getLogger(__name__)


class Encryptor(Protocol):
    """Anything that can encrypt one file into another and back."""

    def encrypt(self, source_path: str, dest_path: str) -> str:
        ...

    def decrypt(self, source_path: str, dest_path: str) -> str:
        ...


class CombinedArchiver(Protocol):
    """A tool that compresses and encrypts in a single step."""

    def compress_encrypt(self, source_path: str, dest_path: str, password: str,
                         level: Optional[int] = None) -> str:
        ...

    def decompress_decrypt(self, source_path: str, dest_path: str, password: str) -> str:
        ...


class AesEncryptor:
    """Encryptor backed by the chunked stream cipher."""

    def __init__(self, password: str, chunk_size: int = DEFAULT_CHUNK_SIZE,
                 log: Optional[logging.Logger] = None):
        self.cipher = ChunkedStreamCipher(password, chunk_size)
        self.log = log or logger

    def encrypt(self, source_path: str, dest_path: str) -> str:
        ensure_readable(source_path)
        self.cipher.encrypt_file(source_path, dest_path)
        self.log.debug(f"Encrypted {source_path} -> {dest_path} (aes)")
        return dest_path

    def decrypt(self, source_path: str, dest_path: str) -> str:
        ensure_readable(source_path)
        return self.cipher.decrypt_file(source_path, dest_path)


class GpgEncryptor:
    """
    Encryptor backed by the gpg executable.

    The passphrase is written to gpg's stdin (--passphrase-fd 0) and never
    appears on the command line. Loopback pinentry lets GnuPG 2.1+ accept it
    without a running agent prompt.
    """

    BASE_ARGS = ['gpg', '--batch', '--yes', '--pinentry-mode', 'loopback']

    def __init__(self, password: str, log: Optional[logging.Logger] = None):
        if not password:
            raise ValueError("gpg encryption requires a password")
        self.password = password
        self.log = log or logger

    def encrypt(self, source_path: str, dest_path: str) -> str:
        ensure_readable(source_path)
        args = self.BASE_ARGS + [
            '--symmetric',
            '--cipher-algo', 'AES256',
            '--passphrase-fd', '0',
            '-o', dest_path,
            source_path,
        ]
        return run_tool(args, dest_path, password=self.password, log=self.log)

    def decrypt(self, source_path: str, dest_path: str) -> str:
        ensure_readable(source_path)
        args = self.BASE_ARGS + [
            '--decrypt',
            '--passphrase-fd', '0',
            '-o', dest_path,
            source_path,
        ]
        return run_tool(args, dest_path, password=self.password, log=self.log)


def get_encryptor(method: str, password: Optional[str], chunk_size: int = DEFAULT_CHUNK_SIZE,
                  log: Optional[logging.Logger] = None):
    """
    Return the encryptor for a stand-alone encryption method.

    Args:
        method: 'none', 'aes' or 'gpg' (aliases accepted)
        password: Encryption password
        chunk_size: Chunk size for the AES stream cipher

    Returns:
        Encryptor, or None for method 'none'

    Raises:
        ValueError: If the method is unknown, is a combined method,
                    or the password is missing
    """
    method = normalize_encryption(method)

    if method == 'none':
        return None
    if method == 'aes':
        return AesEncryptor(password, chunk_size, log)
    if method == 'gpg':
        return GpgEncryptor(password, log)

    raise ValueError(
        f"Encryption '{method}' is performed together with compression; use get_archiver()"
    )


def get_archiver(method: str, tmp_dir: Optional[str] = None, log: Optional[logging.Logger] = None):
    """
    Return the combined compress+encrypt archiver for zip or 7z.

    Raises:
        ValueError: If the method has no combined mode
    """
    method = normalize_encryption(method)

    if method not in COMBINED_METHODS:
        raise ValueError(f"No combined archiver for method: {method}")
    if method == '7z':
        return SevenZipArchiver(tmp_dir, log)
    return ZipArchiver(tmp_dir, log)
