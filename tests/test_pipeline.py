"""End-to-end tests of a maintenance session over fake tasks."""
from __future__ import annotations

import json
import logging
import time

import pytest

from maintsentry.core.errors import ConfigurationError, DetectionError
from maintsentry.engine.decision import REASON_TIMED_OUT
from maintsentry.engine.pipeline import (
    REASON_DETECTION_ERROR,
    REASON_UNEXPECTED_ERROR,
    SessionPipeline,
)
from maintsentry.engine.recorder import ResultRecorder
from maintsentry.reporting.fallbacks import FALLBACK_MARKER
from maintsentry.reporting.normalizer import parse_log_line
from maintsentry.tasks.base import TaskTable
from maintsentry.tasks.types import ReportFormat, Source, TaskKind, TaskStatus

from fakes import FakeAction, FakeAudit, make_records


def _results(outcome):
    return {r.task_name: r for r in outcome.summary.task_results}


class CancellingAudit(FakeAudit):
    """Requests cancellation while it runs."""

    def detect(self, ctx):
        ctx.cancellation.cancel("operator interrupt")
        return super().detect(ctx)


class SnapshotLosingAction(FakeAction):
    """Deletes its audit's result snapshot, as a crashed writer would."""

    def apply(self, item, ctx):
        (ctx.session_dir / "results" / f"{self.depends_on}.json").unlink(missing_ok=True)
        return super().apply(item, ctx)


class BrokenExecutor:
    def execute(self, *args, **kwargs):
        raise RuntimeError("executor exploded")


class TestScenarios:
    """Allow-list gating from detection to report."""

    def test_only_allow_listed_detections_are_acted_on(self, make_config, run_session):
        audit = FakeAudit(records=make_records("A", "B", "C"))
        action = FakeAction()
        config = make_config(allow_lists={"fake_action": ["A", "C"]})

        outcome, ctx = run_session(config, [audit, action])

        assert action.applied == ["A", "C"]
        diff = ResultRecorder.for_context(ctx).load_diff("fake_action")
        assert [item.name for item in diff] == ["A", "C"]
        result = _results(outcome)["fake_action"]
        assert result.status is TaskStatus.SUCCESS
        assert (result.items_detected, result.items_processed) == (2, 2)

    def test_empty_allow_list_skips_action(self, make_config, run_session):
        action = FakeAction()
        config = make_config()

        outcome, _ = run_session(config, [FakeAudit(records=make_records("X")), action])

        result = _results(outcome)["fake_action"]
        assert result.status is TaskStatus.SKIPPED
        assert result.reason == "nothing to do"
        assert action.applied == []
        assert action.validated == []

    def test_partial_failure(self, make_config, run_session):
        names = ["p1", "p2", "p3", "p4", "p5"]
        config = make_config(allow_lists={"fake_action": names})

        outcome, _ = run_session(
            config,
            [FakeAudit(records=make_records(*names)), FakeAction(fail=["p2", "p4"])],
        )

        result = _results(outcome)["fake_action"]
        assert result.status is TaskStatus.PARTIAL_FAILURE
        assert result.items_processed == 3
        assert result.items_failed == 2
        assert outcome.has_failures
        assert any(e.task_name == "fake_action" for e in outcome.summary.errors)

    def test_missing_template_falls_back(self, make_config, run_session, tmp_path, caplog):
        config = make_config(settings={"template_dir": str(tmp_path / "missing-templates")})

        with caplog.at_level(logging.WARNING, logger="maintsentry.reporting.templates"):
            outcome, _ = run_session(config, [FakeAudit(records=make_records("A"))])

        html = next(d for d in outcome.documents if d.format is ReportFormat.HTML)
        assert FALLBACK_MARKER in html.content
        assert html.content.rstrip().endswith("</html>")
        assert "built-in fallback" in caplog.text

    def test_lost_audit_snapshot_reduces_completeness(self, make_config, run_session):
        config = make_config(allow_lists={"fake_action": ["A"]})

        outcome, _ = run_session(
            config, [FakeAudit(records=make_records("A")), SnapshotLosingAction()]
        )

        metrics = outcome.summary.aggregate_metrics
        assert metrics.data_completeness < 100.0
        assert metrics.missing_tasks == ("fake_audit",)
        by_name = {m.task_name: m for m in metrics.task_metrics}
        assert by_name["fake_audit"].score == 0.0
        assert outcome.has_failures
        assert all(path.exists() for path in outcome.report_paths)


class TestSessionArtifacts:
    def test_every_selected_task_has_result(self, make_config, run_session):
        config = make_config(allow_lists={"fake_action": ["A"]})
        tasks = [FakeAudit(records=make_records("A")), FakeAction(), FakeAction("idle", priority=1)]

        outcome, ctx = run_session(config, tasks)

        recorder = ResultRecorder.for_context(ctx)
        for name in ("fake_audit", "fake_action", "idle"):
            assert recorder.load_result(name) is not None
        assert outcome.summary.aggregate_metrics.data_completeness == 100.0

    def test_reports_and_summary_written(self, make_config, run_session):
        outcome, ctx = run_session(make_config(), [FakeAudit()])

        assert sorted(p.name for p in outcome.report_paths) == [
            "maintenance_report.html",
            "maintenance_report.json",
            "maintenance_report.txt",
        ]
        summary = json.loads((ctx.session_dir / "session_summary.json").read_text())
        assert summary["session_id"] == ctx.session_id
        assert summary["host"] == {"hostname": "test-host"}
        assert outcome.session_dir == ctx.session_dir

    def test_report_formats_from_settings(self, make_config, run_session):
        config = make_config(settings={"report_formats": ["json"]})

        outcome, _ = run_session(config, [FakeAudit()])

        assert [p.name for p in outcome.report_paths] == ["maintenance_report.json"]

    def test_action_linked_to_audit(self, make_config, run_session):
        config = make_config(allow_lists={"fake_action": ["A"]})

        outcome, ctx = run_session(config, [FakeAudit(records=make_records("A")), FakeAction()])

        results = _results(outcome)
        assert results["fake_action"].parent_correlation_id == results["fake_audit"].correlation_id
        assert results["fake_audit"].correlation_id == ctx.correlation_id("fake_audit")
        assert results["fake_action"].correlation_id != results["fake_audit"].correlation_id

    def test_execution_logs_normalized(self, make_config, run_session):
        config = make_config(allow_lists={"fake_action": ["A"]})

        outcome, ctx = run_session(config, [FakeAudit(records=make_records("A")), FakeAction()])

        assert (ctx.session_dir / "logs" / "fake_audit.log").exists()
        metrics = outcome.summary.aggregate_metrics
        assert metrics.log_entry_count > 0
        assert metrics.unparsed_count == 0

    def test_audit_log_names_record_source(self, make_config, run_session):
        audit = FakeAudit(records=make_records("vim", source=Source.APT))

        _, ctx = run_session(make_config(), [audit, FakeAudit("empty_audit")])

        def detect_metadata(name):
            lines = (ctx.session_dir / "logs" / f"{name}.log").read_text(encoding="utf-8").splitlines()
            fields = [parse_log_line(line) for line in lines]
            return next(f["metadata"] for f in fields if f["result"] == TaskStatus.SUCCESS.value)

        assert detect_metadata("fake_audit")["source"] == "apt"
        assert detect_metadata("empty_audit")["source"] == Source.OTHER.value

    def test_dry_run_never_applies(self, make_config, run_session):
        config = make_config(allow_lists={"fake_action": ["A", "B"]}, settings={"dry_run": True})
        action = FakeAction(absent=["B"])

        outcome, _ = run_session(config, [FakeAudit(records=make_records("A", "B")), action])

        result = _results(outcome)["fake_action"]
        assert action.applied == []
        assert result.dry_run is True
        assert result.status is TaskStatus.SUCCESS
        assert outcome.summary.dry_run is True

    def test_always_run_action_with_empty_diff(self, make_config, run_session):
        action = FakeAction(always_run=True)

        outcome, _ = run_session(make_config(), [FakeAudit(records=make_records("A")), action])

        result = _results(outcome)["fake_action"]
        assert result.status is TaskStatus.SUCCESS
        assert result.items_detected == 0

    def test_always_run_action_after_failed_audit(self, make_config, run_session):
        config = make_config(settings={"security_tasks": ["fake_audit", "fake_action"]})
        action = FakeAction(always_run=True)

        outcome, ctx = run_session(
            config, [FakeAudit(error=DetectionError("sysctl unreadable")), action]
        )

        results = _results(outcome)
        assert results["fake_audit"].status is TaskStatus.FAILED
        assert results["fake_action"].status is TaskStatus.SUCCESS
        log = (ctx.session_dir / "logs" / "fake_action.log").read_text(encoding="utf-8")
        assert "Dependency fake_audit failed" in log
        metrics = outcome.summary.aggregate_metrics
        assert metrics.warning_count >= 1
        assert metrics.security_score == 50.0

    def test_disabled_task_not_selected(self, make_config, run_session):
        config = make_config(tasks={"fake_action": {"enabled": False}})

        outcome, _ = run_session(config, [FakeAudit(), FakeAction()])

        assert "fake_action" not in _results(outcome)

    def test_explicit_selection(self, make_config, run_session):
        audit = FakeAudit()
        other = FakeAudit("other_audit")

        outcome, _ = run_session(make_config(), [audit, other], names=["other_audit"])

        assert list(_results(outcome)) == ["other_audit"]
        assert audit.calls == 0


class TestTaskFailures:
    """A failing task never stops the session."""

    def test_detection_error(self, make_config, run_session):
        config = make_config(allow_lists={"fake_action": ["A"]})
        tasks = [
            FakeAudit(error=DetectionError("no package manager")),
            FakeAudit("healthy", records=make_records("A")),
            FakeAction(),
        ]

        outcome, ctx = run_session(config, tasks)

        results = _results(outcome)
        failed = results["fake_audit"]
        assert failed.status is TaskStatus.FAILED
        assert failed.reason == REASON_DETECTION_ERROR
        assert "no package manager" in failed.error
        assert results["healthy"].status is TaskStatus.SUCCESS
        assert results["fake_action"].reason == "nothing to do"
        assert ResultRecorder.for_context(ctx).load_detections("fake_audit") == []

    def test_unexpected_audit_error(self, make_config, run_session):
        outcome, _ = run_session(make_config(), [FakeAudit(error=KeyError("boom"))])

        result = _results(outcome)["fake_audit"]
        assert result.status is TaskStatus.FAILED
        assert result.reason == REASON_UNEXPECTED_ERROR
        assert result.error.startswith("KeyError")

    def test_audit_timeout(self, make_config, run_session):
        config = make_config(tasks={"fake_audit": {"timeout": 0.05}})

        outcome, _ = run_session(config, [FakeAudit(delay=1.0), FakeAudit("next_audit")])

        results = _results(outcome)
        assert results["fake_audit"].status is TaskStatus.FAILED
        assert results["fake_audit"].reason == REASON_TIMED_OUT
        assert results["next_audit"].status is TaskStatus.SUCCESS

    def test_action_timeout(self, make_config, run_session):
        config = make_config(
            allow_lists={"fake_action": ["A"]},
            tasks={"fake_action": {"timeout": 0.05}},
        )

        outcome, _ = run_session(
            config, [FakeAudit(records=make_records("A")), FakeAction(delay=1.0)]
        )

        result = _results(outcome)["fake_action"]
        assert result.status is TaskStatus.FAILED
        assert result.reason == REASON_TIMED_OUT
        assert result.items_detected == 1

    def test_action_timeout_stops_remaining_items(self, make_config, run_session):
        config = make_config(
            allow_lists={"fake_action": ["a", "b", "c", "d"]},
            tasks={"fake_action": {"timeout": 0.1}},
        )
        action = FakeAction(delay=0.3)

        outcome, _ = run_session(
            config, [FakeAudit(records=make_records("a", "b", "c", "d")), action]
        )
        time.sleep(1.0)

        result = _results(outcome)["fake_action"]
        assert result.reason == REASON_TIMED_OUT
        assert result.items_processed == 0
        # Only the item in flight when the budget ran out may complete
        assert action.applied in ([], ["a"])

    def test_executor_crash(self, make_config, run_session):
        config = make_config(allow_lists={"fake_action": ["A"]})

        outcome, _ = run_session(
            config,
            [FakeAudit(records=make_records("A")), FakeAction()],
            executor=BrokenExecutor(),
        )

        result = _results(outcome)["fake_action"]
        assert result.status is TaskStatus.FAILED
        assert result.reason == REASON_UNEXPECTED_ERROR
        assert "executor exploded" in result.error


class TestCancellation:
    def test_remaining_tasks_skipped(self, make_config, run_session):
        config = make_config(allow_lists={"fake_action": ["A"]})
        later = FakeAudit("later_audit")
        action = FakeAction()

        outcome, ctx = run_session(
            config, [CancellingAudit(records=make_records("A")), later, action]
        )

        results = _results(outcome)
        assert ctx.cancellation.is_cancelled
        assert results["fake_audit"].status is TaskStatus.SUCCESS
        assert results["later_audit"].status is TaskStatus.SKIPPED
        assert results["later_audit"].reason == "cancelled"
        assert results["fake_action"].reason == "cancelled"
        assert later.calls == 0
        assert action.applied == []
        assert outcome.report_paths


class TestConfigurationErrors:
    """Configuration problems abort before any task runs."""

    def test_action_depends_on_unknown_task(self, make_config, make_context):
        config = make_config()
        pipeline = SessionPipeline(config, TaskTable([FakeAction()]), host_info=lambda ctx: {})
        ctx = make_context(config)

        with pytest.raises(ConfigurationError, match="fake_audit"):
            pipeline.run(pipeline.select(), ctx)

        assert not ctx.session_dir.exists()

    def test_action_depends_on_action(self, make_config):
        table = TaskTable([FakeAction("first", depends_on=None), FakeAction(depends_on="first")])
        with pytest.raises(ConfigurationError, match="not an audit"):
            table.validate()

    def test_unknown_task_selected(self, make_config):
        pipeline = SessionPipeline(make_config(), TaskTable([FakeAudit()]))
        with pytest.raises(ConfigurationError):
            pipeline.select(["missing"])

    def test_invalid_allow_list_entry(self, make_config):
        with pytest.raises(ConfigurationError):
            make_config(allow_lists={"fake_action": [{"no_pattern": True}]})

    def test_allow_list_for_unknown_task_warns(self, make_config, run_session, caplog):
        config = make_config(allow_lists={"ghost": ["x"]})

        with caplog.at_level(logging.WARNING, logger="maintsentry.engine.pipeline"):
            run_session(config, [FakeAudit()])

        assert "unknown task ghost" in caplog.text


class TestSummaryKinds:
    def test_kinds_recorded(self, make_config, run_session):
        outcome, _ = run_session(make_config(), [FakeAudit(), FakeAction()])

        results = _results(outcome)
        assert results["fake_audit"].kind is TaskKind.AUDIT
        assert results["fake_action"].kind is TaskKind.ACTION
