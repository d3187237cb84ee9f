"""
Backup artifact pipeline.

Turns a plain archive into the final artifact (compress, then encrypt, or a
single combined zip/7z step) and back again. The artifact filename records
the methods used, so restore() needs nothing but the file and the password.
"""

import logging
import os
import shutil
from typing import Optional

from xbackup.utils.crypto import DEFAULT_CHUNK_SIZE
from .compression import CODEC_BACKENDS, get_compressor
from .encryption import get_archiver, get_encryptor
from .naming import decode_artifact_name, encode_artifact_name, is_combined, validate_methods
from .tools import discard_file, ensure_readable

SMALL_OUTPUT_THRESHOLD = 64


class ArtifactPipeline:
    """
    Applies one compression/encryption configuration to plain archives.

    Example:
        pipeline = ArtifactPipeline('gzip', 'aes', password='secret')
        artifact = pipeline.process('/tmp/alice.2025-01-01_12-00-00.tar')
        # /tmp/alice.2025-01-01_12-00-00.tar.xbk.gz.aes
        plain = pipeline.restore(artifact, output_dir='/restore')
    """

    def __init__(
        self,
        compression: str = 'none',
        encryption: str = 'none',
        password: Optional[str] = None,
        level: Optional[int] = None,
        backend: str = 'native',
        tmp_dir: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the pipeline.

        Args:
            compression: Compression method (aliases accepted)
            encryption: Encryption method (aliases accepted)
            password: Required when encryption is not 'none'
            level: Compression level, clamped to the method's range
            backend: 'native' or 'tool' codecs for gzip/bzip2/xz/zstd
            tmp_dir: Working directory for zip/7z private copies
            chunk_size: Chunk size for the AES stream cipher
            logger: Logger to use instead of the module logger

        Raises:
            ValueError: On unknown methods or backend, unsupported pairs or a missing password
        """
        self.compression, self.encryption = validate_methods(compression, encryption)

        if self.encryption != 'none' and not password:
            raise ValueError(f"Encryption '{self.encryption}' requires a password")

        if backend not in CODEC_BACKENDS:
            raise ValueError(f"Invalid codec backend: {backend}. Valid options: {list(CODEC_BACKENDS)}")

        self.password = password
        self.level = level
        self.backend = backend
        self.tmp_dir = tmp_dir
        self.chunk_size = chunk_size
        self.log = logger or logging.getLogger(__name__)

    @property
    def combined(self) -> bool:
        return is_combined(self.compression, self.encryption)

    def artifact_name(self, original: str) -> str:
        """Filename the artifact of original will carry."""
        return encode_artifact_name(original, self.compression, self.encryption)

    def process(self, plain_path: str, output_dir: Optional[str] = None) -> str:
        """
        Transform a plain archive into its artifact.

        Args:
            plain_path: Plain archive to transform (left in place)
            output_dir: Directory for the artifact (default: next to plain_path)

        Returns:
            Path of the artifact

        Raises:
            InputUnreadableError, ToolError, CipherError, CompressionError
        """
        ensure_readable(plain_path)

        original = os.path.basename(plain_path)
        output_dir = output_dir or os.path.dirname(os.path.abspath(plain_path))
        final_path = os.path.join(output_dir, self.artifact_name(original))

        if self.combined:
            archiver = get_archiver(self.encryption, self.tmp_dir, self.log)
            archiver.compress_encrypt(plain_path, final_path, self.password, self.level)
            self.log.info(
                f"Compressed and encrypted {original} with {self.compression} in one step"
            )
            self._check_output(final_path)
            return final_path

        # Step 1: compression (or a marker copy when compression is off)
        stage_path = os.path.join(output_dir, encode_artifact_name(original, self.compression))
        compressor = get_compressor(self.compression, self.backend, self.tmp_dir, self.log)

        if compressor is None:
            try:
                shutil.copyfile(plain_path, stage_path)
            except OSError:
                discard_file(stage_path, self.log)
                raise
        else:
            compressor.compress(plain_path, stage_path, self.level)
            self.log.info(f"Compressed {original} using {self.compression}")

        if self.encryption == 'none':
            return stage_path

        # Step 2: encryption
        encryptor = get_encryptor(self.encryption, self.password, self.chunk_size, self.log)
        try:
            encryptor.encrypt(stage_path, final_path)
        finally:
            discard_file(stage_path, self.log)

        self.log.info(f"Encrypted {os.path.basename(stage_path)} using {self.encryption}")
        self._check_output(final_path)
        return final_path

    def restore(self, artifact_path: str, output_dir: Optional[str] = None) -> str:
        """
        Reverse process(): decrypt and decompress an artifact.

        The methods are read from the artifact's filename, not from this
        pipeline's configuration. Legacy names without the marker are
        returned unchanged.

        Returns:
            Path of the restored plain archive
        """
        ensure_readable(artifact_path)

        name = decode_artifact_name(os.path.basename(artifact_path))
        if not name.has_marker:
            self.log.info(f"{artifact_path} has no processing marker, nothing to restore")
            return artifact_path

        if name.encryption != 'none' and not self.password:
            raise ValueError(f"Artifact is encrypted with '{name.encryption}' but no password was given")

        output_dir = output_dir or os.path.dirname(os.path.abspath(artifact_path))
        restored_path = os.path.join(output_dir, name.original)

        if name.is_combined:
            archiver = get_archiver(name.encryption, self.tmp_dir, self.log)
            archiver.decompress_decrypt(artifact_path, restored_path, self.password)
            return restored_path

        current = artifact_path
        intermediate = None

        try:
            if name.encryption != 'none':
                intermediate = os.path.join(
                    output_dir, encode_artifact_name(name.original, name.compression)
                )
                encryptor = get_encryptor(name.encryption, self.password, self.chunk_size, self.log)
                encryptor.decrypt(current, intermediate)
                current = intermediate

            compressor = get_compressor(name.compression, self.backend, self.tmp_dir, self.log)
            if compressor is None:
                shutil.copyfile(current, restored_path)
            else:
                compressor.decompress(current, restored_path)
        finally:
            if intermediate:
                discard_file(intermediate, self.log)

        self.log.info(f"Restored {os.path.basename(artifact_path)} to {restored_path}")
        return restored_path

    def _check_output(self, path: str):
        size = os.path.getsize(path)
        if size == 0:
            self.log.warning(f"Output file is empty after encryption: {path}")
        elif size < SMALL_OUTPUT_THRESHOLD:
            self.log.warning(f"Output file is suspiciously small: {path}, size={size}")
