"""
Chunked stream cipher for backup artifacts.

File format:
    [IV: 16 bytes][ciphertext chunk 1][ciphertext chunk 2]...

Each plaintext chunk of CHUNK_SIZE bytes (the last one may be shorter) is
encrypted independently with AES-256-CBC and PKCS7 padding, using the same
IV for every chunk. A full plaintext chunk therefore becomes exactly
chunk_size + 16 bytes of ciphertext, which is how the reader frames chunks.

The key is a single SHA-256 pass over the UTF-8 passphrase. This matches the
legacy on-disk format; it is not a password-hardening KDF and the shared IV
leaks which chunks start with identical plaintext blocks.

The format has no length trailer. A file cut inside a chunk fails the block
alignment or padding check, but a file cut exactly on a chunk boundary
decrypts cleanly to a shorter plaintext and cannot be detected here.
"""

import logging
import os

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from xbackup.errors import CipherError, InputUnreadableError

logger = logging.getLogger(__name__)

IV_LENGTH = 16
BLOCK_SIZE = 16
KEY_LENGTH = 32
DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024  # 4 MiB


def derive_key(passphrase: str) -> bytes:
    """
    Derive the 256-bit cipher key from a passphrase.

    Args:
        passphrase: Encryption password

    Returns:
        32-byte SHA-256 digest of the UTF-8 passphrase
    """
    digest = hashes.Hash(hashes.SHA256())
    digest.update(passphrase.encode('utf-8'))
    return digest.finalize()


class ChunkedStreamCipher:
    """Encrypts and decrypts files in fixed-size chunks with bounded memory."""

    def __init__(self, passphrase: str, chunk_size: int = DEFAULT_CHUNK_SIZE):
        """
        Initialize the cipher.

        Args:
            passphrase: Encryption password (must not be empty)
            chunk_size: Plaintext bytes per chunk, a positive multiple of 16

        Raises:
            ValueError: If the passphrase is empty or chunk_size is invalid
        """
        if not passphrase:
            raise ValueError("Encryption passphrase must not be empty")
        if chunk_size <= 0 or chunk_size % BLOCK_SIZE:
            raise ValueError(
                f"Chunk size must be a positive multiple of {BLOCK_SIZE}, got {chunk_size}"
            )

        self._key = derive_key(passphrase)
        self.chunk_size = chunk_size

    def encrypt_file(self, source_path: str, dest_path: str) -> str:
        """
        Encrypt source_path into dest_path.

        Returns:
            dest_path

        Raises:
            InputUnreadableError: If the source cannot be opened
            CipherError: If reading, encrypting or writing fails
        """
        src = _open_source(source_path)
        iv = os.urandom(IV_LENGTH)

        try:
            with src, open(dest_path, 'wb') as dst:
                dst.write(iv)
                while True:
                    chunk = src.read(self.chunk_size)
                    if not chunk:
                        break
                    dst.write(self._encrypt_chunk(chunk, iv))
        except OSError as e:
            _discard(dest_path)
            raise CipherError(f"Failed to encrypt {source_path}: {e}")

        return dest_path

    def decrypt_file(self, source_path: str, dest_path: str) -> str:
        """
        Decrypt a file written by encrypt_file().

        Returns:
            dest_path

        Raises:
            InputUnreadableError: If the source cannot be opened
            CipherError: On truncated input, wrong passphrase or corrupted data
        """
        src = _open_source(source_path)

        try:
            with src, open(dest_path, 'wb') as dst:
                iv = src.read(IV_LENGTH)
                if len(iv) != IV_LENGTH:
                    raise CipherError(f"Encrypted file is truncated (no IV header): {source_path}")

                while True:
                    chunk = src.read(self.chunk_size + BLOCK_SIZE)
                    if not chunk:
                        break
                    dst.write(self._decrypt_chunk(chunk, iv))
        except CipherError:
            _discard(dest_path)
            raise
        except OSError as e:
            _discard(dest_path)
            raise CipherError(f"Failed to decrypt {source_path}: {e}")

        return dest_path

    def _encrypt_chunk(self, chunk: bytes, iv: bytes) -> bytes:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(chunk) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def _decrypt_chunk(self, chunk: bytes, iv: bytes) -> bytes:
        if len(chunk) % BLOCK_SIZE:
            raise CipherError(
                f"Ciphertext chunk of {len(chunk)} bytes is not block aligned (truncated or corrupted)"
            )

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(chunk) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            raise CipherError("Invalid padding: wrong passphrase or corrupted data")


def encrypt_file(source_path: str, dest_path: str, passphrase: str,
                 chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Encrypt a file with the chunked stream cipher."""
    return ChunkedStreamCipher(passphrase, chunk_size).encrypt_file(source_path, dest_path)


def decrypt_file(source_path: str, dest_path: str, passphrase: str,
                 chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Decrypt a file written by encrypt_file()."""
    return ChunkedStreamCipher(passphrase, chunk_size).decrypt_file(source_path, dest_path)


def _open_source(source_path: str):
    try:
        return open(source_path, 'rb')
    except OSError as e:
        raise InputUnreadableError(f"Cannot read source file {source_path}: {e}")


def _discard(path: str):
    """Remove a partially written output file."""
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning(f"Failed to remove partial output {path}: {e}")
