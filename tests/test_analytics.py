"""Unit tests for session metrics and the session summary."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from maintsentry.core.config import HealthWeights
from maintsentry.core.errors import ConfigurationError
from maintsentry.reporting.analytics import (
    AnalyticsAggregator,
    SessionSummary,
    TaskMetric,
    collect_errors,
    task_score,
)
from maintsentry.reporting.normalizer import EntryKind, LogEntry
from maintsentry.tasks.types import LogLevel, TaskKind, TaskResult, TaskStatus

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _result(name, status=TaskStatus.SUCCESS, kind=TaskKind.AUDIT, detected=2, processed=2, failed=0, **kw):
    return TaskResult(
        task_name=name,
        kind=kind,
        status=status,
        items_detected=detected,
        items_processed=processed,
        items_failed=failed,
        duration_ms=25,
        dry_run=False,
        correlation_id=f"corr-{name}",
        started_at=T0,
        ended_at=T0 + timedelta(seconds=1),
        **kw,
    )


def _entry(level=LogLevel.INFO, unparsed=False, line_number=1, component="task_a"):
    return LogEntry(
        timestamp=T0,
        level=LogLevel.UNKNOWN if unparsed else level,
        component=component,
        raw_message="raw text",
        message="" if unparsed else "message",
        kind=EntryKind.RAW_UNPARSED if unparsed else EntryKind.STRUCTURED,
        normalization_error="bad line" if unparsed else None,
        source=f"logs/{component}.log",
        line_number=line_number,
    )


class TestTaskScore:
    @pytest.mark.parametrize(
        "status,expected",
        [
            (TaskStatus.SUCCESS, 100.0),
            (TaskStatus.FAILED, 0.0),
            (TaskStatus.SKIPPED, None),
        ],
    )
    def test_status_scores(self, status, expected):
        assert task_score(_result("t", status=status)) == expected

    def test_partial_failure_is_ratio(self):
        result = _result("t", TaskStatus.PARTIAL_FAILURE, detected=4, processed=3, failed=1)
        assert task_score(result) == 75.0

    def test_missing_metric_scores_zero(self):
        metric = TaskMetric.missing("gone")
        assert metric.score == 0.0
        assert metric.has_data is False


class TestHealthWeights:
    def test_weights_must_sum_to_one(self):
        with pytest.raises(ConfigurationError):
            HealthWeights(success_rate=0.5, security=0.5, error_density=0.5)

    def test_negative_weight_rejected(self):
        with pytest.raises(ConfigurationError):
            HealthWeights(success_rate=1.2, security=-0.2, error_density=0.0)


class TestAggregate:
    """Session metrics from results and log entries."""

    def test_all_successful(self):
        metrics = AnalyticsAggregator().aggregate(
            [_result("a"), _result("b")], [_entry(), _entry()], ["a", "b"]
        )

        assert metrics.total_tasks == 2
        assert metrics.success_rate == 100.0
        assert metrics.health_score == 100.0
        assert metrics.data_completeness == 100.0
        assert metrics.missing_tasks == ()

    def test_missing_task_counts_against_success_rate(self):
        metrics = AnalyticsAggregator().aggregate([_result("a")], [], ["a", "b"])

        assert metrics.total_tasks == 2
        assert metrics.success_rate == 50.0
        assert metrics.missing_tasks == ("b",)
        assert metrics.data_completeness == 50.0
        by_name = {m.task_name: m for m in metrics.task_metrics}
        assert by_name["b"].score == 0.0
        assert by_name["b"].has_data is False

    def test_partial_failure_counts_as_success(self):
        results = [
            _result("a", TaskStatus.PARTIAL_FAILURE, detected=2, processed=1, failed=1),
            _result("b", TaskStatus.FAILED, processed=0),
        ]

        metrics = AnalyticsAggregator().aggregate(results, [])

        assert metrics.successful_tasks == 0
        assert metrics.partial_tasks == 1
        assert metrics.failed_tasks == 1
        assert metrics.success_rate == 50.0

    def test_skipped_in_denominator(self):
        results = [_result("a"), _result("b", TaskStatus.SKIPPED, detected=0, processed=0)]

        metrics = AnalyticsAggregator().aggregate(results, [])

        assert metrics.skipped_tasks == 1
        assert metrics.success_rate == 50.0

    def test_error_density(self):
        entries = [_entry(), _entry(LogLevel.ERROR), _entry(LogLevel.CRITICAL), _entry()]

        metrics = AnalyticsAggregator().aggregate([_result("a")], entries)

        assert metrics.error_count == 2
        assert metrics.error_density_score == 50.0

    def test_unparsed_and_warning_counts(self):
        entries = [_entry(LogLevel.WARNING), _entry(unparsed=True)]

        metrics = AnalyticsAggregator().aggregate([], entries)

        assert metrics.warning_count == 1
        assert metrics.unparsed_count == 1

    def test_security_score(self):
        aggregator = AnalyticsAggregator(security_tasks=("sec_a", "sec_b", "not_run"))
        results = [
            _result("sec_a"),
            _result("sec_b", TaskStatus.PARTIAL_FAILURE, detected=2, processed=1, failed=1),
        ]

        metrics = aggregator.aggregate(results, [], ["sec_a", "sec_b"])

        assert metrics.security_score == 75.0

    def test_missing_security_task_scores_zero(self):
        aggregator = AnalyticsAggregator(security_tasks=("sec_a",))

        metrics = aggregator.aggregate([], [], ["sec_a"])

        assert metrics.security_score == 0.0

    def test_weighted_health(self):
        weights = HealthWeights(success_rate=0.6, security=0.2, error_density=0.2)
        entries = [_entry(), _entry(LogLevel.ERROR)]

        metrics = AnalyticsAggregator(weights).aggregate(
            [_result("a"), _result("b", TaskStatus.FAILED, processed=0)], entries
        )

        # 0.6 * 50 + 0.2 * 100 + 0.2 * 50
        assert metrics.health_score == 60.0

    def test_empty_session(self):
        metrics = AnalyticsAggregator().aggregate([], [], [])

        assert metrics.total_tasks == 0
        assert metrics.success_rate == 0.0
        assert metrics.data_completeness == 100.0
        assert 0.0 <= metrics.health_score <= 100.0

    @pytest.mark.parametrize("failed", [0, 1, 3, 5])
    def test_scores_stay_in_bounds(self, failed):
        results = [_result(f"ok{i}") for i in range(5 - failed)]
        results += [_result(f"bad{i}", TaskStatus.FAILED, processed=0) for i in range(failed)]
        entries = [_entry(LogLevel.ERROR)] * failed + [_entry(unparsed=True)]

        metrics = AnalyticsAggregator().aggregate(results, entries, [r.task_name for r in results] + ["x"])

        for value in (
            metrics.success_rate,
            metrics.security_score,
            metrics.error_density_score,
            metrics.health_score,
            metrics.data_completeness,
        ):
            assert 0.0 <= value <= 100.0

    def test_task_metrics_follow_expected_order(self):
        metrics = AnalyticsAggregator().aggregate([_result("b"), _result("a")], [], ["a", "c", "b"])
        assert [m.task_name for m in metrics.task_metrics] == ["a", "c", "b"]


class TestCollectErrors:
    def test_sources_of_errors(self):
        results = [
            _result("ok"),
            _result("bad", TaskStatus.FAILED, processed=0, reason="DetectionError", error="no dpkg"),
        ]
        entries = [
            _entry(LogLevel.ERROR, component="bad"),
            _entry(unparsed=True),
            _entry(LogLevel.ERROR, line_number=None),
        ]

        errors = collect_errors(results, entries, ["gone"])

        categories = [e.category for e in errors]
        assert categories == ["missing_result", "DetectionError", "error", "normalization"]
        assert errors[1].message == "no dpkg"
        assert "bad line" in errors[3].message


class TestSessionSummary:
    def test_summary_round_trip(self):
        aggregator = AnalyticsAggregator(security_tasks=("a",))
        summary = aggregator.build_summary(
            session_id="s-1",
            start_time=T0,
            end_time=T0 + timedelta(seconds=90),
            dry_run=True,
            task_results=[_result("a"), _result("b", TaskStatus.FAILED, processed=0, error="x")],
            log_entries=[_entry(), _entry(LogLevel.ERROR)],
            expected_tasks=["a", "b", "c"],
            host={"hostname": "box"},
        )

        restored = SessionSummary.from_dict(summary.to_dict())

        assert restored == summary
        assert restored.duration_seconds == 90.0
        assert restored.data_completeness == summary.aggregate_metrics.data_completeness
