"""Unit tests for resilience patterns."""
from __future__ import annotations

import threading
import time
import unittest
from unittest.mock import patch

from maintsentry.core.errors import TaskTimeoutError
from maintsentry.core.resilience import (
    CancellationToken,
    call_with_timeout,
    with_graceful_degradation,
)
from maintsentry.core.injection import MockOSInterface
from maintsentry.utils.system_info import collect_host_info


class TestGracefulDegradation(unittest.TestCase):
    """Test graceful degradation decorator."""

    def test_returns_value_on_success(self) -> None:
        """Should return function result on success."""

        @with_graceful_degradation(default_return="default")
        def success_func() -> str:
            return "success"

        self.assertEqual(success_func(), "success")

    def test_returns_default_on_error(self) -> None:
        """Should return default value on exception."""

        @with_graceful_degradation(default_return="default", log_errors=False)
        def failing_func() -> str:
            raise ValueError("Test error")

        self.assertEqual(failing_func(), "default")

    def test_logs_errors(self) -> None:
        """Should log errors when enabled."""

        @with_graceful_degradation(default_return=None, error_message="Lookup failed")
        def failing_func() -> None:
            raise RuntimeError("boom")

        with self.assertLogs("maintsentry.core.resilience", level="ERROR") as logs:
            failing_func()

        self.assertIn("Lookup failed: RuntimeError - boom", logs.output[0])

    def test_host_info_never_raises(self) -> None:
        """Host facts degrade to a placeholder instead of failing the report."""
        with patch("maintsentry.utils.system_info.socket.gethostname", side_effect=OSError("no")):
            info = collect_host_info(MockOSInterface())

        self.assertEqual(info, {"hostname": "unknown"})


class TestCallWithTimeout(unittest.TestCase):
    """Per-task time budgets."""

    def test_returns_result(self) -> None:
        self.assertEqual(call_with_timeout(lambda x: x * 2, 1.0, 21), 42)

    def test_passes_kwargs(self) -> None:
        def func(a, b=0):
            return a + b

        self.assertEqual(call_with_timeout(func, 1.0, 1, b=2, name="adder"), 3)

    def test_timeout_raises(self) -> None:
        start = time.perf_counter()

        with self.assertRaises(TaskTimeoutError) as ctx:
            call_with_timeout(time.sleep, 0.05, 1.0, name="sleeper")

        self.assertLess(time.perf_counter() - start, 0.9)
        self.assertEqual(ctx.exception.task_name, "sleeper")
        self.assertIn("timed out after 0.05s", str(ctx.exception))

    def test_exceptions_propagate(self) -> None:
        def boom():
            raise KeyError("missing")

        with self.assertRaises(KeyError):
            call_with_timeout(boom, 1.0)

    def test_no_budget_runs_inline(self) -> None:
        caller = threading.current_thread()
        seen = []

        call_with_timeout(lambda: seen.append(threading.current_thread()), 0)

        self.assertIs(seen[0], caller)

    def test_budget_runs_in_worker(self) -> None:
        seen = []

        call_with_timeout(lambda: seen.append(threading.current_thread()), 1.0, name="worker")

        self.assertEqual(seen[0].name, "task-worker")
        self.assertTrue(seen[0].daemon)

    def test_timeout_sets_stop_event(self) -> None:
        stop = threading.Event()
        finished = threading.Event()

        def cooperative():
            stop.wait(1.0)
            finished.set()

        with self.assertRaises(TaskTimeoutError):
            call_with_timeout(cooperative, 0.05, name="cooperative", stop=stop)

        self.assertTrue(stop.is_set())
        self.assertTrue(finished.wait(0.5))

    def test_stop_event_untouched_on_success(self) -> None:
        stop = threading.Event()

        call_with_timeout(lambda: None, 1.0, stop=stop)

        self.assertFalse(stop.is_set())


class TestCancellationToken(unittest.TestCase):
    def test_initial_state(self) -> None:
        token = CancellationToken()

        self.assertFalse(token.is_cancelled)
        self.assertIsNone(token.reason)

    def test_cancel(self) -> None:
        token = CancellationToken()

        token.cancel("interrupted")

        self.assertTrue(token.is_cancelled)
        self.assertEqual(token.reason, "interrupted")

    def test_cancel_from_other_thread(self) -> None:
        token = CancellationToken()
        worker = threading.Thread(target=token.cancel)

        worker.start()
        worker.join()

        self.assertTrue(token.is_cancelled)
        self.assertEqual(token.reason, "cancelled")


if __name__ == "__main__":
    unittest.main()
