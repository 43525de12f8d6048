"""maintsentry - terminal output helpers."""
from __future__ import annotations

import itertools
import os
import shutil
import sys
import threading
import time
from typing import Callable, Iterable, List, Optional

from .tasks.base import TaskSpec
from .tasks.types import STATUS_DISPLAY_NAMES, TaskKind, TaskResult, TaskStatus

# ═══════════════════════════════════════════════════════════════════════════════
# ANSI Color & Style Codes
# ═══════════════════════════════════════════════════════════════════════════════

class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"

    @staticmethod
    def rgb(r: int, g: int, b: int) -> str:
        """24-bit RGB foreground color."""
        return f"\033[38;2;{r};{g};{b}m"


# ═══════════════════════════════════════════════════════════════════════════════
# Theme Colors
# ═══════════════════════════════════════════════════════════════════════════════

class Theme:
    """Theme colors for maintsentry."""

    ACCENT = Colors.rgb(78, 140, 130)    # Teal
    SUCCESS = Colors.rgb(107, 158, 120)  # Muted green
    WARNING = Colors.rgb(201, 168, 87)   # Muted gold
    ERROR = Colors.rgb(184, 90, 90)      # Muted red

    TEXT = Colors.rgb(242, 242, 242)
    TEXT_DIM = Colors.rgb(129, 139, 140)
    TEXT_MUTED = Colors.rgb(90, 99, 102)

    BORDER = Colors.rgb(71, 84, 89)

    @staticmethod
    def status_color(status: Optional[TaskStatus]) -> str:
        """Get color for a task status (None means no result was recorded)."""
        return {
            TaskStatus.SUCCESS: Theme.SUCCESS,
            TaskStatus.PARTIAL_FAILURE: Theme.WARNING,
            TaskStatus.FAILED: Theme.ERROR,
            TaskStatus.SKIPPED: Theme.TEXT_MUTED,
        }.get(status, Theme.ERROR)

    @staticmethod
    def score_color(score: float) -> str:
        if score >= 80:
            return Theme.SUCCESS
        if score >= 60:
            return Theme.WARNING
        return Theme.ERROR


# ═══════════════════════════════════════════════════════════════════════════════
# Terminal Utilities
# ═══════════════════════════════════════════════════════════════════════════════

def supports_color() -> bool:
    """Check if terminal supports color output."""
    if os.getenv("NO_COLOR"):
        return False
    if os.getenv("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def get_terminal_width() -> int:
    """Get terminal width, default 80."""
    try:
        return shutil.get_terminal_size().columns
    except (OSError, ValueError):
        return 80


def clear_line() -> None:
    sys.stdout.write("\033[2K\r")
    sys.stdout.flush()


def hide_cursor() -> None:
    sys.stdout.write("\033[?25l")
    sys.stdout.flush()


def show_cursor() -> None:
    sys.stdout.write("\033[?25h")
    sys.stdout.flush()


# ═══════════════════════════════════════════════════════════════════════════════
# Icons & Symbols
# ═══════════════════════════════════════════════════════════════════════════════

class Icons:
    """Unicode icons for CLI output."""

    PASS = "✓"
    FAIL = "✗"
    WARNING = "⚠"
    SKIP = "○"
    MISSING = "?"

    SPINNER_DOTS = ["⣾", "⣽", "⣻", "⢿", "⡿", "⣟", "⣯", "⣷"]
    PROGRESS_FULL = "█"
    PROGRESS_EMPTY = "░"

    ARROW = "→"
    BULLET = "•"
    DIAMOND = "◆"

    BOX_TL = "╭"
    BOX_TR = "╮"
    BOX_BL = "╰"
    BOX_BR = "╯"
    BOX_H = "─"
    BOX_V = "│"

    @staticmethod
    def status_icon(status: Optional[TaskStatus]) -> str:
        return {
            TaskStatus.SUCCESS: Icons.PASS,
            TaskStatus.PARTIAL_FAILURE: Icons.WARNING,
            TaskStatus.FAILED: Icons.FAIL,
            TaskStatus.SKIPPED: Icons.SKIP,
        }.get(status, Icons.MISSING)


BANNER = """
   ╭──────────────────────────────────────────────────────────╮
   │  maintsentry  ·  host maintenance sessions               │
   ╰──────────────────────────────────────────────────────────╯
"""


# ═══════════════════════════════════════════════════════════════════════════════
# Spinner
# ═══════════════════════════════════════════════════════════════════════════════

class Spinner:
    """Animated spinner shown while a blocking step runs."""

    def __init__(
        self,
        message: str,
        frames: Optional[List[str]] = None,
        color: str = Theme.ACCENT,
        use_color: Optional[bool] = None,
    ):
        self.message = message
        self.frames = frames or Icons.SPINNER_DOTS
        self.color = color
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._use_color = supports_color() if use_color is None else use_color

    def _animate(self) -> None:
        frame_iter = itertools.cycle(self.frames)
        while self._running:
            frame = next(frame_iter)
            if self._use_color:
                line = f"\r  {self.color}{frame}{Colors.RESET} {self.message}"
            else:
                line = f"\r  {frame} {self.message}"
            sys.stdout.write(line)
            sys.stdout.flush()
            time.sleep(0.08)

    def start(self) -> "Spinner":
        if self._use_color:
            hide_cursor()
        self._running = True
        self._thread = threading.Thread(target=self._animate, daemon=True)
        self._thread.start()
        return self

    def stop(self, final_message: str = "", icon: str = Icons.PASS, color: str = Theme.SUCCESS) -> None:
        """Stop the spinner, optionally replacing it with a final message."""
        if not self._running:
            return
        self._running = False
        if self._thread:
            self._thread.join(timeout=0.2)
        clear_line()
        if final_message:
            if self._use_color:
                print(f"  {color}{icon}{Colors.RESET} {final_message}")
            else:
                print(f"  {icon} {final_message}")
        if self._use_color:
            show_cursor()

    def __enter__(self) -> "Spinner":
        return self.start()

    def __exit__(self, *args) -> None:
        self.stop()


# ═══════════════════════════════════════════════════════════════════════════════
# Console Output
# ═══════════════════════════════════════════════════════════════════════════════

class Console:
    """Pretty console output."""

    def __init__(self, color: bool | None = None):
        self.use_color = color if color is not None else supports_color()
        self.width = get_terminal_width()

    def _c(self, text: str, color: str) -> str:
        """Colorize text if colors enabled."""
        if self.use_color:
            return f"{color}{text}{Colors.RESET}"
        return text

    def banner(self) -> None:
        if not self.use_color:
            print(BANNER)
            return
        for line in BANNER.split("\n"):
            colored = line
            for char in "╭╮╰╯│─":
                colored = colored.replace(char, f"{Theme.BORDER}{char}{Colors.RESET}")
            colored = colored.replace("maintsentry", self._c("maintsentry", Theme.ACCENT))
            print(colored)

    def header(self, text: str) -> None:
        """Print a section header."""
        width = min(70, self.width - 4)
        line = Icons.BOX_H * width
        print()
        print(f"  {self._c(Icons.BOX_TL + line + Icons.BOX_TR, Theme.BORDER)}")
        print(
            f"  {self._c(Icons.BOX_V, Theme.BORDER)} "
            f"{self._c(text.center(width - 2), Theme.ACCENT + Colors.BOLD)} "
            f"{self._c(Icons.BOX_V, Theme.BORDER)}"
        )
        print(f"  {self._c(Icons.BOX_BL + line + Icons.BOX_BR, Theme.BORDER)}")

    def subheader(self, text: str) -> None:
        print()
        print(f"  {self._c(Icons.DIAMOND, Theme.ACCENT)} {self._c(text, Theme.TEXT + Colors.BOLD)}")
        print(f"  {self._c(Icons.BOX_H * (len(text) + 2), Theme.TEXT_MUTED)}")

    def info(self, key: str, value: str) -> None:
        """Print key-value info."""
        print(f"    {self._c(key + ':', Theme.TEXT_DIM)} {self._c(str(value), Theme.TEXT)}")

    def success(self, message: str) -> None:
        print(f"  {self._c(Icons.PASS, Theme.SUCCESS)} {message}")

    def error(self, message: str) -> None:
        print(f"  {self._c(Icons.FAIL, Theme.ERROR)} {message}", file=sys.stderr)

    def warning(self, message: str) -> None:
        print(f"  {self._c(Icons.WARNING, Theme.WARNING)} {message}")

    def dim(self, message: str) -> None:
        print(f"  {self._c(message, Theme.TEXT_MUTED)}")

    def blank(self) -> None:
        print()

    def separator(self) -> None:
        width = min(70, self.width - 4)
        print(f"  {self._c(Icons.BOX_H * width, Theme.TEXT_MUTED)}")

    def task_result(self, result: TaskResult, show_details: bool = False) -> None:
        """Print one task result line, plus counts and errors when requested."""
        icon = self._c(Icons.status_icon(result.status), Theme.status_color(result.status))
        label = STATUS_DISPLAY_NAMES[result.status]
        reason = f" ({result.reason})" if result.reason else ""
        print(f"  {icon} {self._c(result.task_name, Theme.TEXT)} {self._c(label + reason, Theme.TEXT_DIM)}")
        if result.error:
            print(f"     {self._c(Icons.ARROW + ' ' + result.error, Theme.ERROR)}")
        if show_details:
            print(
                "     "
                + self._c(
                    f"detected {result.items_detected}, processed {result.items_processed}, "
                    f"failed {result.items_failed} in {result.duration_ms} ms",
                    Theme.TEXT_MUTED,
                )
            )

    def missing_task(self, task_name: str) -> None:
        icon = self._c(Icons.MISSING, Theme.ERROR)
        print(f"  {icon} {self._c(task_name, Theme.TEXT)} {self._c('No data', Theme.TEXT_DIM)}")

    def task_table(self, specs: Iterable[TaskSpec], enabled: Optional[Callable[[str], bool]] = None) -> None:
        """Print the registration table grouped by kind."""
        specs = list(specs)
        for kind, title in ((TaskKind.AUDIT, "Audit tasks"), (TaskKind.ACTION, "Action tasks")):
            group = [s for s in specs if s.kind is kind]
            self.subheader(f"{title} ({len(group)})")
            if not group:
                self.dim("none registered")
                continue
            for spec in group:
                flags = []
                if spec.depends_on:
                    flags.append(f"after {spec.depends_on}")
                if getattr(spec.task, "always_run", False):
                    flags.append("always runs")
                if enabled is not None and not enabled(spec.name):
                    flags.append("disabled")
                suffix = f" [{', '.join(flags)}]" if flags else ""
                print(f"    {self._c(Icons.BULLET, Theme.ACCENT)} {spec.name}{self._c(suffix, Theme.TEXT_MUTED)}")
                if spec.task.description:
                    print(f"      {self._c(spec.task.description, Theme.TEXT_DIM)}")

    def summary_box(
        self,
        *,
        total: int,
        successful: int,
        partial: int,
        failed: int,
        skipped: int,
        missing: int,
        health_score: float,
    ) -> None:
        """Print a session summary box."""
        width = 50
        border = self._c(Icons.BOX_V, Theme.BORDER)
        rows = [
            ("Total Tasks", total, Theme.TEXT),
            (f"{Icons.PASS} Succeeded", successful, Theme.SUCCESS),
            (f"{Icons.WARNING} Partial", partial, Theme.WARNING),
            (f"{Icons.FAIL} Failed", failed, Theme.ERROR),
            (f"{Icons.SKIP} Skipped", skipped, Theme.TEXT_MUTED),
        ]
        if missing:
            rows.append((f"{Icons.MISSING} No data", missing, Theme.ERROR))

        print()
        print(f"  {self._c(Icons.BOX_TL + Icons.BOX_H * width + Icons.BOX_TR, Theme.BORDER)}")
        print(f"  {border} {self._c('SESSION SUMMARY'.center(width - 2), Theme.ACCENT + Colors.BOLD)} {border}")
        print(f"  {self._c('├' + Icons.BOX_H * width + '┤', Theme.BORDER)}")
        for label, value, color in rows:
            text = f"  {label + ':':<16}{value:>5}"
            print(f"  {border}{self._c(text.ljust(width), color)}{border}")
        print(f"  {self._c('├' + Icons.BOX_H * width + '┤', Theme.BORDER)}")

        bar_width = 30
        filled = int(bar_width * max(0.0, min(health_score, 100.0)) / 100)
        bar = self._c(Icons.PROGRESS_FULL * filled, Theme.score_color(health_score)) + self._c(
            Icons.PROGRESS_EMPTY * (bar_width - filled), Theme.TEXT_MUTED
        )
        score = self._c(f"{health_score:>5.1f}", Theme.score_color(health_score))
        padding = width - (10 + bar_width + 1 + 5)
        print(f"  {border}  Health: {bar} {score}{' ' * padding}{border}")
        print(f"  {self._c(Icons.BOX_BL + Icons.BOX_H * width + Icons.BOX_BR, Theme.BORDER)}")
