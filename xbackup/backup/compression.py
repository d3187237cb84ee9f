"""
Compression handlers for backup archives.

Supports:
- create_archive: plain tar of a user directory (no compression)
- NativeCompressor: gzip, bzip2, xz from the standard library, zstd via zstandard
- ToolCompressor: gzip, bzip2, xz, zstd through their command line tools
- ZipArchiver / SevenZipArchiver: zip and 7z through their command line
  tools, with optional password (combined compress+encrypt step)

All compressors stream file to file and never hold a whole archive in memory.
"""

import bz2
import gzip
import logging
import lzma
import os
import shutil
import tarfile
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol

import zstandard

from xbackup.errors import CompressionError
from .naming import normalize_compression
from .sources import should_exclude
from .tools import discard_file, ensure_readable, run_tool

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 1024 * 1024

# method: (default, min, max)
LEVEL_RANGES = {
    'gzip': (1, 1, 9),
    'bzip2': (1, 1, 9),
    'xz': (6, 0, 9),
    'zip': (6, 0, 9),
    '7z': (5, 1, 9),
    'zstd': (19, 1, 22),
}

ZSTD_ULTRA_THRESHOLD = 19

CODEC_BACKENDS = ('native', 'tool')


class Compressor(Protocol):
    """Anything that can compress one file into another and back."""

    def compress(self, source_path: str, dest_path: str, level: Optional[int] = None) -> str:
        ...

    def decompress(self, source_path: str, dest_path: str) -> str:
        ...


def normalize_compression_level(method: str, level) -> Optional[int]:
    """
    Clamp a compression level into the valid range of a method.

    Args:
        method: Compression method name (aliases accepted)
        level: Requested level (int, numeric string or None)

    Returns:
        Level within the method's range, the method default when level is
        missing or not numeric, or None for 'none' and unknown methods
    """
    try:
        method = normalize_compression(method)
    except ValueError:
        return None

    if method not in LEVEL_RANGES:
        return None

    default, minimum, maximum = LEVEL_RANGES[method]

    try:
        level = int(str(level).strip())
    except (TypeError, ValueError):
        return default

    return max(minimum, min(maximum, level))


def create_archive(source_dir: str, output_path: str, exclude: Optional[List[str]] = None) -> str:
    """
    Create a plain tar archive of a directory.

    Args:
        source_dir: Directory to archive (stored under its basename)
        output_path: Path of the tar file to create
        exclude: Glob patterns matched against names and paths to skip

    Returns:
        output_path

    Raises:
        CompressionError: If archive creation fails
    """
    source = Path(source_dir)
    if not source.exists():
        raise CompressionError(f"Path does not exist: {source_dir}")

    patterns = exclude or []

    def _filter(member: tarfile.TarInfo):
        if patterns and should_exclude(Path(member.name), patterns):
            return None
        return member

    try:
        with tarfile.open(output_path, 'w') as tar:
            tar.add(str(source), arcname=source.name, recursive=True, filter=_filter)
        return output_path
    except (OSError, tarfile.TarError) as e:
        # Clean up partial archive on failure
        discard_file(output_path)
        raise CompressionError(f"Failed to create archive: {e}")


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")


class NativeCompressor:
    """In-process streaming codecs for gzip, bzip2, xz and zstd."""

    METHODS = ('gzip', 'bzip2', 'xz', 'zstd')

    def __init__(self, method: str, log: Optional[logging.Logger] = None):
        method = normalize_compression(method)
        if method not in self.METHODS:
            raise ValueError(f"No native codec for compression method: {method}")
        self.method = method
        self.log = log or logger

    def compress(self, source_path: str, dest_path: str, level: Optional[int] = None) -> str:
        ensure_readable(source_path)
        level = normalize_compression_level(self.method, level)

        try:
            with open(source_path, 'rb') as src:
                if self.method == 'zstd':
                    with open(dest_path, 'wb') as dst:
                        zstandard.ZstdCompressor(level=level).copy_stream(src, dst)
                else:
                    with self._open(dest_path, 'wb', level) as dst:
                        shutil.copyfileobj(src, dst, COPY_BUFFER_SIZE)
        except (OSError, EOFError, lzma.LZMAError, zstandard.ZstdError) as e:
            discard_file(dest_path, self.log)
            raise CompressionError(f"{self.method} compression of {source_path} failed: {e}")

        self.log.debug(f"Compressed {source_path} -> {dest_path} ({self.method}, level {level})")
        return dest_path

    def decompress(self, source_path: str, dest_path: str) -> str:
        ensure_readable(source_path)

        try:
            with open(dest_path, 'wb') as dst:
                if self.method == 'zstd':
                    with open(source_path, 'rb') as src:
                        self._zstd_decompress(src, dst, source_path)
                else:
                    with self._open(source_path, 'rb') as src:
                        shutil.copyfileobj(src, dst, COPY_BUFFER_SIZE)
        except (OSError, EOFError, lzma.LZMAError, zstandard.ZstdError) as e:
            discard_file(dest_path, self.log)
            raise CompressionError(f"{self.method} decompression of {source_path} failed: {e}")

        return dest_path

    @staticmethod
    def _zstd_decompress(src, dst, source_path: str):
        # copy_stream() accepts an incomplete frame silently
        dobj = zstandard.ZstdDecompressor().decompressobj()
        while True:
            chunk = src.read(COPY_BUFFER_SIZE)
            if not chunk:
                break
            dst.write(dobj.decompress(chunk))

        if not dobj.eof:
            raise EOFError(f"Compressed file ended before the end of the zstd frame: {source_path}")

    def _open(self, path: str, mode: str, level: Optional[int] = None):
        if self.method == 'gzip':
            return gzip.open(path, mode, compresslevel=level) if level else gzip.open(path, mode)
        if self.method == 'bzip2':
            return bz2.open(path, mode, compresslevel=level) if level else bz2.open(path, mode)
        return lzma.open(path, mode, preset=level) if level is not None else lzma.open(path, mode)


class ToolCompressor:
    """gzip, bzip2, xz and zstd through their command line tools."""

    METHODS = ('gzip', 'bzip2', 'xz', 'zstd')

    def __init__(self, method: str, log: Optional[logging.Logger] = None):
        method = normalize_compression(method)
        if method not in self.METHODS:
            raise ValueError(f"No command line codec for compression method: {method}")
        self.method = method
        self.log = log or logger

    def compress(self, source_path: str, dest_path: str, level: Optional[int] = None) -> str:
        ensure_readable(source_path)
        level = normalize_compression_level(self.method, level)

        if self.method == 'zstd':
            args = ['zstd', '-q', '-c', f'-{level}']
            if level > ZSTD_ULTRA_THRESHOLD:
                args.append('--ultra')
            args.append(source_path)
        else:
            args = [self.method, '-c', f'-{level}', source_path]

        return run_tool(args, dest_path, stream_stdout=True, log=self.log)

    def decompress(self, source_path: str, dest_path: str) -> str:
        ensure_readable(source_path)

        if self.method == 'zstd':
            args = ['zstd', '-q', '-d', '-c', source_path]
        else:
            args = [self.method, '-d', '-c', source_path]

        return run_tool(args, dest_path, stream_stdout=True, log=self.log)


class _PrivateCopyArchiver:
    """
    Shared flow for tools that add files to an archive (zip, 7z).

    The source is copied into a private temporary directory first so the
    archive entry has a clean basename and concurrent runs never share
    working files. A stale destination is removed because both tools append
    to an existing archive.
    """

    method = None

    def __init__(self, tmp_dir: Optional[str] = None, log: Optional[logging.Logger] = None):
        self.tmp_dir = tmp_dir
        self.log = log or logger

    def compress(self, source_path: str, dest_path: str, level: Optional[int] = None) -> str:
        return self._add(source_path, dest_path, level, None)

    def compress_encrypt(self, source_path: str, dest_path: str, password: str,
                         level: Optional[int] = None) -> str:
        if not password:
            raise ValueError(f"{self.method} encryption requires a password")
        return self._add(source_path, dest_path, level, password)

    def _add(self, source_path: str, dest_path: str, level, password: Optional[str]) -> str:
        ensure_readable(source_path)
        level = normalize_compression_level(self.method, level)
        dest_path = os.path.abspath(dest_path)

        if self.tmp_dir:
            os.makedirs(self.tmp_dir, exist_ok=True)
        work_dir = tempfile.mkdtemp(prefix=f'xbackup_{self.method}_', dir=self.tmp_dir)

        try:
            work_input = os.path.join(work_dir, os.path.basename(source_path))
            shutil.copyfile(source_path, work_input)
            discard_file(dest_path, self.log)

            args = self._add_args(dest_path, work_input, level, password)
            return run_tool(args, dest_path, secrets=[password] if password else (), log=self.log)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    def _add_args(self, dest_path, input_path, level, password) -> List[str]:
        raise NotImplementedError


class SevenZipArchiver(_PrivateCopyArchiver):
    """7-Zip: compression, or compression+AES-256 with encrypted headers."""

    method = '7z'

    def decompress(self, source_path: str, dest_path: str) -> str:
        ensure_readable(source_path)
        return run_tool(['7z', 'e', '-so', source_path], dest_path, stream_stdout=True, log=self.log)

    def decompress_decrypt(self, source_path: str, dest_path: str, password: str) -> str:
        ensure_readable(source_path)
        args = ['7z', 'e', '-so', f'-p{password}', source_path]
        return run_tool(args, dest_path, stream_stdout=True, secrets=[password], log=self.log)

    def _add_args(self, dest_path, input_path, level, password) -> List[str]:
        args = ['7z', 'a', '-t7z', f'-mx={level}']
        if password:
            args += [f'-p{password}', '-mhe=on']
        return args + [dest_path, input_path]


class ZipArchiver(_PrivateCopyArchiver):
    """zip: compression, or compression+legacy ZipCrypto password protection."""

    method = 'zip'

    def decompress(self, source_path: str, dest_path: str) -> str:
        ensure_readable(source_path)
        return run_tool(['unzip', '-p', source_path], dest_path, stream_stdout=True, log=self.log)

    def decompress_decrypt(self, source_path: str, dest_path: str, password: str) -> str:
        ensure_readable(source_path)
        args = ['unzip', '-P', password, '-p', source_path]
        return run_tool(args, dest_path, stream_stdout=True, secrets=[password], log=self.log)

    def _add_args(self, dest_path, input_path, level, password) -> List[str]:
        args = ['zip', '-j', '-q', f'-{level}']
        if password:
            args += ['-e', '-P', password]
        return args + [dest_path, input_path]


def get_compressor(method: str, backend: str = 'native', tmp_dir: Optional[str] = None,
                   log: Optional[logging.Logger] = None):
    """
    Return the compressor for a method.

    Args:
        method: Compression method (aliases accepted)
        backend: 'native' for in-process codecs, 'tool' for command line tools.
                 zip and 7z always use their tools.
        tmp_dir: Working directory for zip/7z private copies

    Returns:
        Compressor, or None for method 'none'

    Raises:
        ValueError: If method or backend is invalid
    """
    method = normalize_compression(method)

    if method == 'none':
        return None
    if method == 'zip':
        return ZipArchiver(tmp_dir, log)
    if method == '7z':
        return SevenZipArchiver(tmp_dir, log)
    if backend == 'native':
        return NativeCompressor(method, log)
    if backend == 'tool':
        return ToolCompressor(method, log)

    raise ValueError(f"Invalid codec backend: {backend}. Valid options: {list(CODEC_BACKENDS)}")
