"""systemd service inventory and allow-listed service disabling."""
from __future__ import annotations

from typing import List, Optional

from ..core.errors import ActionItemError, CommandExecutionError, DetectionError
from .base import ActionTask, AuditTask
from .types import DetectionRecord, MatchMode, Source, WorkItem
from ..utils.commands import run_checked
from ..utils.parsers import parse_tabular_output

_LIST_UNITS = (
    "systemctl",
    "list-unit-files",
    "--type=service",
    "--no-legend",
    "--no-pager",
)


def _service_name(unit: str) -> str:
    return unit[: -len(".service")] if unit.endswith(".service") else unit


class EnabledServicesAudit(AuditTask):
    """List services enabled at boot."""

    name = "enabled_services"
    description = "Lists enabled systemd services."
    category = "services"
    source = Source.SERVICE_LIST

    def detect(self, ctx) -> List[DetectionRecord]:
        if not ctx.os.which("systemctl"):
            raise DetectionError("systemctl not available on this host")
        try:
            result = run_checked(ctx.os, _LIST_UNITS)
        except CommandExecutionError as exc:
            raise DetectionError(f"Service inventory failed: {exc.short_reason or exc}") from exc

        rows = parse_tabular_output(result.stdout, ("unit", "state", "preset"), delimiter=None)
        return [
            self.record(_service_name(row["unit"]), row["unit"], unit=row["unit"], state=row["state"])
            for row in rows
            if row["state"] == "enabled"
        ]


class ServiceDisableAction(ActionTask):
    """Disable and stop allow-listed services."""

    name = "service_disable"
    description = "Disables allow-listed systemd services."
    category = "services"
    depends_on = "enabled_services"
    priority = 60
    match_field = "name"
    match_mode = MatchMode.EXACT

    def validate(self, item: WorkItem, ctx) -> Optional[str]:
        unit = item.record.metadata.get("unit", item.record.match_key)
        state = ctx.os.run_command(["systemctl", "is-enabled", unit]).stdout.strip()
        if state != "enabled":
            return f"already {state or 'absent'}"
        return None

    def apply(self, item: WorkItem, ctx) -> Optional[str]:
        unit = item.record.metadata.get("unit", item.record.match_key)
        try:
            run_checked(ctx.os, ["systemctl", "disable", "--now", unit])
        except CommandExecutionError as exc:
            raise ActionItemError(item, exc.short_reason or str(exc)) from exc
        return "disabled"


TASKS = (EnabledServicesAudit, ServiceDisableAction)
