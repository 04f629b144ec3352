"""
Unit tests for homelab.utils module
"""
import unittest
import tempfile
import os
from collections import namedtuple
from pathlib import Path
from unittest.mock import patch

from homelab.utils import (
    run_command,
    format_duration,
    sanitize_name,
    expand_path,
    is_executable,
    disk_free_gb
)

DiskUsage = namedtuple('DiskUsage', 'total used free')


class TestRunCommand(unittest.TestCase):
    """Test the run_command utility function"""

    def test_run_command_output(self):
        """Test exit code and captured output"""
        code, output = run_command("echo 'test'")
        self.assertEqual(code, 0)
        self.assertEqual(output.strip(), "test")

    def test_run_command_argument_list(self):
        """Test running an argument list without a shell"""
        code, output = run_command(["echo", "$HOME"])
        self.assertEqual(code, 0)
        self.assertEqual(output.strip(), "$HOME")

    def test_run_command_stderr_combined(self):
        """Test stderr is merged into the output"""
        code, output = run_command("echo oops >&2; exit 5")
        self.assertEqual(code, 5)
        self.assertIn("oops", output)

    def test_run_command_with_cwd(self):
        """Test run_command with different working directory"""
        with tempfile.TemporaryDirectory() as temp_dir:
            code, output = run_command("pwd", cwd=temp_dir)
            self.assertEqual(os.path.realpath(output.strip()), os.path.realpath(temp_dir))

    def test_run_command_input(self):
        """Test feeding stdin"""
        code, output = run_command(["cat"], input_text="hello")
        self.assertEqual(output, "hello")

    def test_run_command_timeout(self):
        """Test that a timeout yields exit code 124"""
        code, _ = run_command("exec sleep 5", timeout=1)
        self.assertEqual(code, 124)

    def test_run_command_timeout_keeps_output(self):
        """Test output written before the kill is returned"""
        code, output = run_command("echo started; exec sleep 5", timeout=1)
        self.assertEqual(code, 124)
        self.assertIsInstance(output, str)
        self.assertIn("started", output)

    def test_run_command_missing_binary(self):
        """Test that a launch failure yields exit code 126"""
        code, output = run_command(["/nonexistent/homelab-binary"])
        self.assertEqual(code, 126)
        self.assertTrue(output)


class TestFormatting(unittest.TestCase):
    """Test formatting helpers"""

    def test_format_duration(self):
        self.assertEqual(format_duration(0), "0s")
        self.assertEqual(format_duration(45), "45s")
        self.assertEqual(format_duration(135), "2m 15s")
        self.assertEqual(format_duration(3900), "1h 5m")
        self.assertEqual(format_duration(59.9), "59s")

    def test_sanitize_name(self):
        self.assertEqual(sanitize_name("SSH Key Audit"), "SSH_Key_Audit")
        self.assertEqual(sanitize_name("disk/cleanup-v2"), "disk_cleanup-v2")


class TestPaths(unittest.TestCase):
    """Test path helpers"""

    @patch.dict(os.environ, {'HOME': '/home/ops', 'HOMELAB_TEST_DIR': 'scripts'})
    def test_expand_path(self):
        self.assertEqual(expand_path('~/bin'), Path('/home/ops/bin'))
        self.assertEqual(expand_path('/opt/$HOMELAB_TEST_DIR'), Path('/opt/scripts'))

    def test_is_executable(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            script = Path(temp_dir) / 'check.sh'
            script.write_text("#!/bin/sh\nexit 0\n")
            self.assertFalse(is_executable(script))
            script.chmod(0o755)
            self.assertTrue(is_executable(script))
            self.assertFalse(is_executable(temp_dir))


class TestDiskFree(unittest.TestCase):
    """Test the disk space probe"""

    @patch('homelab.utils.shutil.disk_usage')
    def test_fractional_gigabytes(self, mock_usage):
        mock_usage.return_value = DiskUsage(100 * 1024 ** 3, 0, int(12.7 * 1024 ** 3))
        self.assertAlmostEqual(disk_free_gb('/'), 12.7, places=2)

    @patch('homelab.utils.shutil.disk_usage', side_effect=FileNotFoundError('gone'))
    def test_unreadable_path(self, mock_usage):
        self.assertIsNone(disk_free_gb('/does/not/exist'))


if __name__ == '__main__':
    unittest.main()
