"""
External tool runner.

All compression and encryption executables (gzip, bzip2, xz, zstd, zip,
unzip, 7z, gpg) are started through run_tool():

- the command is an argument vector, never a shell string
- a passphrase, when the tool accepts one on stdin, is written to the
  child's stdin; otherwise stdin is /dev/null so nothing can block on a
  password prompt
- when the tool writes its result to stdout, stdout is the destination file
  handle itself, so data streams to disk without passing through Python
- success means exit status 0 and an existing destination file
"""

import logging
import os
import subprocess
from typing import Iterable, List, Optional, Sequence

from xbackup.errors import (
    InputUnreadableError,
    OutputMissingError,
    ToolExitError,
    ToolSpawnError,
)

logger = logging.getLogger(__name__)

MASK = '******'
STDERR_TAIL = 500


def ensure_readable(path: str):
    """
    Check that path is a readable regular file.

    Raises:
        InputUnreadableError: If the file is missing or unreadable
    """
    if not os.path.isfile(path):
        raise InputUnreadableError(f"Source file not found: {path}")
    if not os.access(path, os.R_OK):
        raise InputUnreadableError(f"Source file is not readable: {path}")


def discard_file(path: str, log: Optional[logging.Logger] = None):
    """Remove a partially written or stale file, logging on failure."""
    try:
        if os.path.isfile(path):
            os.remove(path)
    except OSError as e:
        (log or logger).warning(f"Failed to remove {path}: {e}")


def mask_args(args: Sequence[str], secrets: Iterable[str] = ()) -> List[str]:
    """Return a copy of args with every secret replaced by a mask."""
    masked = []
    secrets = [s for s in secrets if s]
    for arg in args:
        for secret in secrets:
            if secret in arg:
                arg = arg.replace(secret, MASK)
        masked.append(arg)
    return masked


def run_tool(
    args: Sequence[str],
    output_path: str,
    stream_stdout: bool = False,
    password: Optional[str] = None,
    secrets: Iterable[str] = (),
    log: Optional[logging.Logger] = None
) -> str:
    """
    Run an external tool and verify its output.

    Args:
        args: Argument vector, args[0] is the executable
        output_path: File the tool produces
        stream_stdout: If True, the child's stdout is written to output_path
        password: Written to the child's stdin followed by a newline
        secrets: Strings to mask when the command is logged
        log: Logger to use instead of the module logger

    Returns:
        output_path

    Raises:
        ToolSpawnError: If the executable cannot be started
        ToolExitError: If the tool exits with a non-zero status
        OutputMissingError: If the tool succeeded but output_path is absent
    """
    log = log or logger
    secrets = list(secrets)
    if password:
        secrets.append(password)
    display = ' '.join(mask_args(args, secrets))

    log.debug(f"Running: {display}")

    stdin_data = None if password is None else (password + '\n').encode('utf-8')
    out = None

    try:
        if stream_stdout:
            out = open(output_path, 'wb')

        try:
            process = subprocess.Popen(
                list(args),
                stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
                stdout=out if out is not None else subprocess.DEVNULL,
                stderr=subprocess.PIPE
            )
        except OSError as e:
            raise ToolSpawnError(
                f"Failed to start {args[0]}: {e}",
                context={'command': display}
            )

        _, stderr = process.communicate(input=stdin_data)

    except ToolSpawnError:
        if out is not None:
            out.close()
        discard_file(output_path, log)
        raise
    except OSError as e:
        if out is not None:
            out.close()
        discard_file(output_path, log)
        raise ToolSpawnError(
            f"Failed to run {args[0]}: {e}",
            context={'command': display}
        )

    if out is not None:
        out.close()

    if process.returncode != 0:
        message = stderr.decode('utf-8', errors='replace').strip()[-STDERR_TAIL:]
        discard_file(output_path, log)
        raise ToolExitError(
            f"{args[0]} exited with status {process.returncode}: {message}",
            returncode=process.returncode,
            stderr=message,
            context={'command': display}
        )

    if not os.path.isfile(output_path):
        raise OutputMissingError(
            f"{args[0]} exited successfully but produced no output: {output_path}",
            context={'command': display}
        )

    return output_path
