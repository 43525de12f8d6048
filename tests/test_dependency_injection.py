"""Unit tests for dependency injection container."""
from __future__ import annotations

import subprocess
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from maintsentry.core.injection import (
    DependencyContainer,
    MockOSInterface,
    RealOSInterface,
)
from maintsentry.core.interfaces import CommandResult


class TestMockOSInterface(unittest.TestCase):
    """Test MockOSInterface for testing scenarios."""

    def setUp(self) -> None:
        """Set up test fixtures."""
        self.mock_os = MockOSInterface()

    def test_mock_command_response(self) -> None:
        """Should return mocked command responses."""
        expected = CommandResult(stdout="enabled", stderr="", returncode=0)
        self.mock_os.mock_command_response(["systemctl", "is-enabled", "ssh"], expected)

        result = self.mock_os.run_command(["systemctl", "is-enabled", "ssh"])

        self.assertEqual(result.stdout, "enabled")
        self.assertTrue(result.ok)

    def test_prefix_matching(self) -> None:
        """A mocked prefix answers longer commands."""
        self.mock_os.mock_command_response(
            ["dpkg-query"], CommandResult(stdout="vim", stderr="", returncode=0)
        )

        result = self.mock_os.run_command(["dpkg-query", "-W", "vim"])

        self.assertEqual(result.stdout, "vim")

    def test_unmocked_command_returns_error(self) -> None:
        """Unmocked commands should return error response."""
        result = self.mock_os.run_command(["unmocked", "command"])

        self.assertEqual(result.returncode, 1)
        self.assertIn("not mocked", result.stderr)
        self.assertFalse(result.ok)

    def test_commands_are_recorded(self) -> None:
        self.mock_os.run_command(["a", "b"])
        self.mock_os.run_command(["c"])

        self.assertEqual(self.mock_os.commands_run, [("a", "b"), ("c",)])

    def test_which(self) -> None:
        self.mock_os.mock_executable("rpm")

        self.assertEqual(self.mock_os.which("rpm"), "/usr/bin/rpm")
        self.assertIsNone(self.mock_os.which("brew"))

    def test_mock_file_content(self) -> None:
        """Should return mocked file content."""
        test_path = Path("/test/file.txt")
        self.mock_os.mock_file_content(test_path, "test content")

        self.assertEqual(self.mock_os.read_file(test_path), "test content")
        self.assertTrue(self.mock_os.file_exists(test_path))
        self.assertIsNone(self.mock_os.read_file(Path("/unmocked/file.txt")))

    def test_mock_file_listing_and_mtime(self) -> None:
        path = Path("/tmp/x/old.log")
        self.mock_os.mock_file(path, 1234567890.0)

        self.assertEqual(self.mock_os.list_directory(Path("/tmp/x")), [path])
        self.assertEqual(self.mock_os.get_file_mtime(path), 1234567890.0)
        self.assertTrue(self.mock_os.is_file(path))

    def test_mock_directory(self) -> None:
        directory = Path("/tmp/x/tmpabc123")
        self.mock_os.mock_directory(directory, 0.0)

        self.assertEqual(self.mock_os.list_directory(Path("/tmp/x")), [directory])
        self.assertEqual(self.mock_os.get_file_mtime(directory), 0.0)
        self.assertFalse(self.mock_os.is_file(directory))

    def test_remove_file(self) -> None:
        path = Path("/tmp/x/old.log")
        self.mock_os.mock_file(path, 0.0)

        self.mock_os.remove_file(path)

        self.assertFalse(self.mock_os.file_exists(path))
        self.assertEqual(self.mock_os.list_directory(Path("/tmp/x")), [])
        self.assertEqual(self.mock_os.removed, [path])

    def test_remove_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            self.mock_os.remove_file(Path("/nope"))

    def test_unremovable(self) -> None:
        path = Path("/tmp/x/locked")
        self.mock_os.mock_file(path, 0.0)
        self.mock_os.mock_unremovable(path)

        with self.assertRaises(PermissionError):
            self.mock_os.remove_file(path)

    def test_temp_directory(self) -> None:
        self.mock_os.mock_temp_directory(Path("/scratch"))
        self.assertEqual(self.mock_os.get_temp_directory(), Path("/scratch"))


class TestRealOSInterface(unittest.TestCase):
    """Test RealOSInterface error handling."""

    def setUp(self) -> None:
        self.os = RealOSInterface()

    @patch("maintsentry.core.injection.subprocess.run")
    def test_successful_command(self, mock_run: MagicMock) -> None:
        mock_run.return_value = MagicMock(stdout="ok", stderr="", returncode=0)

        result = self.os.run_command(["echo", "ok"])

        self.assertEqual(result.stdout, "ok")
        self.assertEqual(mock_run.call_args.args[0], ["echo", "ok"])
        self.assertFalse(mock_run.call_args.kwargs.get("shell", False))

    @patch("maintsentry.core.injection.subprocess.run")
    def test_timeout(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(cmd=["sleep"], timeout=1, output=b"partial")

        result = self.os.run_command(["sleep", "10"], timeout=1)

        self.assertTrue(result.timed_out)
        self.assertEqual(result.returncode, -1)
        self.assertEqual(result.stdout, "partial")

    @patch("maintsentry.core.injection.subprocess.run")
    def test_command_not_found(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = FileNotFoundError()

        result = self.os.run_command(["no-such-binary"])

        self.assertEqual(result.returncode, -1)
        self.assertIn("Command not found", result.stderr)

    def test_file_helpers(self) -> None:
        import tempfile

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "a.txt"
            path.write_text("data", encoding="utf-8")

            self.assertEqual(self.os.read_file(path), "data")
            self.assertTrue(self.os.is_file(path))
            self.assertFalse(self.os.is_file(Path(tmp)))
            self.assertIsNotNone(self.os.get_file_mtime(path))
            self.assertEqual(self.os.list_directory(Path(tmp)), [path])
            self.os.remove_file(path)
            self.assertFalse(self.os.file_exists(path))
            self.assertIsNone(self.os.read_file(path))
            self.assertIsNone(self.os.get_file_mtime(path))

    def test_list_missing_directory(self) -> None:
        self.assertEqual(self.os.list_directory(Path("/definitely/not/here")), [])


class TestDependencyContainer(unittest.TestCase):
    def test_default_uses_real_os(self) -> None:
        container = DependencyContainer.default()
        self.assertIsInstance(container.os, RealOSInterface)

    def test_injected_interface(self) -> None:
        mock_os = MockOSInterface()
        container = DependencyContainer(os_interface=mock_os)
        self.assertIs(container.os, mock_os)


if __name__ == "__main__":
    unittest.main()
