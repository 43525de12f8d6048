"""Host access for maintenance tasks, real or simulated.

Built-in tasks never call subprocess or touch the filesystem directly; they
go through ``ctx.os``, which is the OSInterface held by the session's
DependencyContainer. Production sessions get RealOSInterface, tests swap in
MockOSInterface with canned command output and an in-memory file tree.

Usage:
    container = DependencyContainer.default()
    result = container.os.run_command(["dpkg-query", "-W"])

    mock_os = MockOSInterface()
    ctx = SessionContext.create(config, container=DependencyContainer(os_interface=mock_os))
"""
from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

from .interfaces import CommandResult, OSInterface

logger = logging.getLogger(__name__)


class RealOSInterface:
    """OSInterface backed by subprocess and the local filesystem.

    Command failures come back as a CommandResult rather than an exception.
    """

    def run_command(
        self,
        args: Sequence[str],
        timeout: float = 30.0,
    ) -> CommandResult:
        """Execute a command without a shell."""
        try:
            result = subprocess.run(
                list(args),
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
            if result.returncode != 0:
                logger.debug(
                    "Command %s exited with code %d: %s",
                    args[0],
                    result.returncode,
                    result.stderr.strip(),
                )
            return CommandResult(
                stdout=result.stdout,
                stderr=result.stderr,
                returncode=result.returncode,
            )
        except subprocess.TimeoutExpired as exc:
            logger.error("Command timed out: %s", args[0])
            return CommandResult(
                stdout=_decode(exc.stdout),
                stderr=_decode(exc.stderr),
                returncode=-1,
                timed_out=True,
            )
        except FileNotFoundError:
            logger.error("Command not found: %s", args[0])
            return CommandResult(
                stdout="",
                stderr=f"Command not found: {args[0]}",
                returncode=-1,
            )
        except OSError as exc:
            logger.error("OS error running %s: %s", args[0], exc)
            return CommandResult(stdout="", stderr=str(exc), returncode=-1)

    def which(self, executable: str) -> Optional[str]:
        return shutil.which(executable)

    def read_file(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("Cannot read file %s: %s", path, exc)
            return None

    def file_exists(self, path: Path) -> bool:
        return path.exists()

    def is_file(self, path: Path) -> bool:
        return path.is_file()

    def get_file_mtime(self, path: Path) -> Optional[float]:
        try:
            return path.stat().st_mtime
        except OSError:
            return None

    def list_directory(self, path: Path) -> List[Path]:
        try:
            return sorted(path.iterdir())
        except OSError:
            return []

    def remove_file(self, path: Path) -> None:
        path.unlink()

    def get_temp_directory(self) -> Path:
        return Path(tempfile.gettempdir())


def _decode(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class MockOSInterface:
    """In-memory OSInterface for tests.

    Commands answer from registered responses (exact match first, then the
    first registered prefix); files live in a dict keyed by Path. Every command
    run and every removed path is recorded for assertions.

    Example:
        mock = MockOSInterface()
        mock.mock_command_response(
            ["dpkg-query", "-W"],
            CommandResult(stdout="vim\\t9.0\\n", stderr="", returncode=0)
        )
        container = DependencyContainer(os_interface=mock)
    """

    def __init__(self) -> None:
        self._command_responses: Dict[tuple, CommandResult] = {}
        self._executables: Dict[str, str] = {}
        self._file_contents: Dict[Path, str] = {}
        self._file_mtimes: Dict[Path, float] = {}
        self._directories: Dict[Path, List[Path]] = {}
        self._unremovable: Set[Path] = set()
        self._temp_dir: Path = Path("/tmp")
        self._default_command_response = CommandResult(
            stdout="", stderr="Command not mocked", returncode=1
        )
        self.commands_run: List[tuple] = []
        self.removed: List[Path] = []

    def mock_command_response(self, args: Sequence[str], response: CommandResult) -> None:
        """Answer ``args`` (or any longer command starting with it) with ``response``."""
        self._command_responses[tuple(args)] = response

    def mock_executable(self, name: str, path: Optional[str] = None) -> None:
        """Make an executable discoverable through which()."""
        self._executables[name] = path or f"/usr/bin/{name}"

    def mock_file_content(self, path: Path, content: str) -> None:
        self._file_contents[path] = content

    def mock_file(self, path: Path, mtime: float, content: str = "") -> None:
        """Create a mock file inside its parent directory listing."""
        self._file_contents[path] = content
        self._file_mtimes[path] = mtime
        listing = self._directories.setdefault(path.parent, [])
        if path not in listing:
            listing.append(path)

    def mock_directory(self, path: Path, mtime: float) -> None:
        """Create a mock subdirectory inside its parent directory listing."""
        self._file_mtimes[path] = mtime
        self._directories.setdefault(path, [])
        listing = self._directories.setdefault(path.parent, [])
        if path not in listing:
            listing.append(path)

    def mock_unremovable(self, path: Path) -> None:
        """Make remove_file() fail for a path."""
        self._unremovable.add(path)

    def mock_temp_directory(self, path: Path) -> None:
        self._temp_dir = path

    def run_command(
        self,
        args: Sequence[str],
        timeout: float = 30.0,
    ) -> CommandResult:
        key = tuple(args)
        self.commands_run.append(key)
        if key in self._command_responses:
            return self._command_responses[key]
        # Fall back to the first registered prefix
        for cmd_key, response in self._command_responses.items():
            if tuple(args[: len(cmd_key)]) == cmd_key:
                return response
        return self._default_command_response

    def which(self, executable: str) -> Optional[str]:
        return self._executables.get(executable)

    def read_file(self, path: Path) -> Optional[str]:
        return self._file_contents.get(path)

    def file_exists(self, path: Path) -> bool:
        return path in self._file_contents

    def is_file(self, path: Path) -> bool:
        return path in self._file_contents

    def get_file_mtime(self, path: Path) -> Optional[float]:
        return self._file_mtimes.get(path)

    def list_directory(self, path: Path) -> List[Path]:
        return list(self._directories.get(path, []))

    def remove_file(self, path: Path) -> None:
        if path in self._unremovable:
            raise PermissionError(f"Permission denied: '{path}'")
        if path not in self._file_contents:
            raise FileNotFoundError(f"No such file: '{path}'")
        del self._file_contents[path]
        self._file_mtimes.pop(path, None)
        listing = self._directories.get(path.parent, [])
        if path in listing:
            listing.remove(path)
        self.removed.append(path)

    def get_temp_directory(self) -> Path:
        return self._temp_dir


@dataclass
class DependencyContainer:
    """Holds the OSInterface a session uses.

    All code that needs OS access gets it through the container carried by
    the SessionContext; there is no process-wide instance.

    Attributes:
        os_interface: Implementation of OSInterface to use
    """

    os_interface: OSInterface

    @property
    def os(self) -> OSInterface:
        return self.os_interface

    @classmethod
    def default(cls) -> "DependencyContainer":
        """Container wired to the real operating system."""
        return cls(os_interface=RealOSInterface())
