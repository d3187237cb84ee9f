"""
Unit tests for the external tool runner (xbackup/backup/tools.py).

Subprocess calls are mocked; no real executables are required.
"""

import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from xbackup.backup.tools import (
    MASK,
    discard_file,
    ensure_readable,
    mask_args,
    run_tool,
)
from xbackup.errors import (
    InputUnreadableError,
    OutputMissingError,
    ToolExitError,
    ToolSpawnError,
)


def _process(returncode=0, stderr=b''):
    process = MagicMock()
    process.returncode = returncode
    process.communicate.return_value = (None, stderr)
    return process


class TestRunTool:
    """Test run_tool."""

    @patch('xbackup.backup.tools.subprocess.Popen')
    def test_success_returns_output_path(self, mock_popen, tmp_path):
        """Test a zero exit status with an existing output succeeds."""
        output = tmp_path / 'out.7z'
        output.write_bytes(b'data')
        mock_popen.return_value = _process()

        result = run_tool(['7z', 'a', str(output), 'in'], str(output))

        assert result == str(output)
        args, kwargs = mock_popen.call_args
        assert args[0] == ['7z', 'a', str(output), 'in']
        assert kwargs['stdin'] == subprocess.DEVNULL

    @patch('xbackup.backup.tools.subprocess.Popen')
    def test_password_goes_to_stdin(self, mock_popen, tmp_path):
        """Test a password is written to stdin and kept off the argument vector."""
        output = tmp_path / 'out.gpg'
        output.write_bytes(b'data')
        process = _process()
        mock_popen.return_value = process

        run_tool(['gpg', '--passphrase-fd', '0', '-o', str(output), 'in'], str(output),
                 password='s3cret')

        args, kwargs = mock_popen.call_args
        assert 's3cret' not in ' '.join(args[0])
        assert kwargs['stdin'] == subprocess.PIPE
        process.communicate.assert_called_once_with(input=b's3cret\n')

    @patch('xbackup.backup.tools.subprocess.Popen')
    def test_stream_stdout_writes_to_output(self, mock_popen, tmp_path):
        """Test stdout is redirected to the output file handle."""
        output = tmp_path / 'out.gz'
        mock_popen.return_value = _process()

        run_tool(['gzip', '-c', 'in'], str(output), stream_stdout=True)

        _, kwargs = mock_popen.call_args
        assert kwargs['stdout'].name == str(output)
        assert kwargs['stdout'].closed
        assert output.exists()

    @patch('xbackup.backup.tools.subprocess.Popen')
    def test_nonzero_exit_raises_and_removes_output(self, mock_popen, tmp_path):
        """Test a failing tool raises ToolExitError and leaves no partial output."""
        output = tmp_path / 'out.gz'
        mock_popen.return_value = _process(returncode=2, stderr=b'gzip: in: No such file')

        with pytest.raises(ToolExitError) as exc_info:
            run_tool(['gzip', '-c', 'in'], str(output), stream_stdout=True)

        assert exc_info.value.returncode == 2
        assert 'No such file' in exc_info.value.stderr
        assert not output.exists()

    @patch('xbackup.backup.tools.subprocess.Popen')
    def test_spawn_failure_raises(self, mock_popen, tmp_path):
        """Test a missing executable raises ToolSpawnError."""
        output = tmp_path / 'out.zst'
        mock_popen.side_effect = FileNotFoundError("No such file or directory: 'zstd'")

        with pytest.raises(ToolSpawnError):
            run_tool(['zstd', '-c', 'in'], str(output), stream_stdout=True)

        assert not output.exists()

    @patch('xbackup.backup.tools.subprocess.Popen')
    def test_missing_output_raises(self, mock_popen, tmp_path):
        """Test a clean exit without an output file raises OutputMissingError."""
        mock_popen.return_value = _process()

        with pytest.raises(OutputMissingError):
            run_tool(['zip', 'out.zip', 'in'], str(tmp_path / 'out.zip'))

    @patch('xbackup.backup.tools.subprocess.Popen')
    def test_logged_command_masks_secrets(self, mock_popen, tmp_path):
        """Test secrets never reach the log."""
        output = tmp_path / 'out.7z'
        output.write_bytes(b'data')
        mock_popen.return_value = _process()
        log = MagicMock()

        run_tool(['7z', 'a', '-ps3cret', str(output), 'in'], str(output),
                 secrets=['s3cret'], log=log)

        logged = ' '.join(str(call) for call in log.debug.call_args_list)
        assert 's3cret' not in logged
        assert MASK in logged


class TestHelpers:
    """Test tool helpers."""

    def test_mask_args(self):
        """Test secrets inside arguments are replaced."""
        assert mask_args(['7z', '-ppw', 'x'], ['pw']) == ['7z', f'-p{MASK}', 'x']
        assert mask_args(['zip', 'x'], ['']) == ['zip', 'x']

    def test_ensure_readable_missing(self, tmp_path):
        """Test a missing file raises InputUnreadableError."""
        with pytest.raises(InputUnreadableError):
            ensure_readable(str(tmp_path / 'missing'))

    def test_ensure_readable_directory(self, tmp_path):
        """Test a directory is not a readable source file."""
        with pytest.raises(InputUnreadableError):
            ensure_readable(str(tmp_path))

    def test_discard_file(self, tmp_path):
        """Test discarding existing and missing files."""
        path = tmp_path / 'partial'
        path.write_bytes(b'x')

        discard_file(str(path))
        discard_file(str(path))

        assert not os.path.exists(path)
