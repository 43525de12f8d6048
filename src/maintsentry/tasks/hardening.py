"""Kernel security baseline audit and enforcement."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from ..core.errors import ActionItemError, CommandExecutionError, DetectionError
from .base import ActionTask, AuditTask
from .types import DetectionRecord, MatchMode, Source, WorkItem
from ..utils.commands import run_checked

PROC_SYS = Path("/proc/sys")

BASELINE: Dict[str, str] = {
    "kernel.kptr_restrict": "1",
    "kernel.dmesg_restrict": "1",
    "kernel.randomize_va_space": "2",
    "fs.protected_hardlinks": "1",
    "fs.protected_symlinks": "1",
    "net.ipv4.tcp_syncookies": "1",
    "net.ipv4.conf.all.accept_redirects": "0",
    "net.ipv4.conf.all.send_redirects": "0",
}


def sysctl_path(key: str) -> Path:
    return PROC_SYS.joinpath(*key.split("."))


def read_sysctl(ctx, key: str) -> Optional[str]:
    content = ctx.os.read_file(sysctl_path(key))
    return None if content is None else " ".join(content.split())


class KernelBaselineAudit(AuditTask):
    """Report kernel parameters that deviate from the security baseline.

    The ``baseline`` task option overrides or extends the built-in table.
    """

    name = "kernel_baseline"
    description = "Compares kernel parameters against a security baseline."
    category = "security"
    source = Source.SYSCTL

    def detect(self, ctx) -> List[DetectionRecord]:
        baseline = dict(BASELINE)
        baseline.update({str(k): str(v) for k, v in ctx.task_options(self.name).get("baseline", {}).items()})

        deviations: List[DetectionRecord] = []
        readable = 0
        for key, expected in baseline.items():
            current = read_sysctl(ctx, key)
            if current is None:
                continue
            readable += 1
            if current != expected:
                deviations.append(self.record(key, key, current=current, expected=expected))
        if readable == 0:
            raise DetectionError(f"No kernel parameters readable under {PROC_SYS}")
        return deviations


class SecurityHardeningAction(ActionTask):
    """Apply baseline values for allow-listed kernel parameters.

    Runs on every session, even when the baseline is already met.
    """

    name = "security_hardening"
    description = "Enforces the kernel security baseline via sysctl."
    category = "security"
    depends_on = "kernel_baseline"
    always_run = True
    priority = 10
    match_field = "name"
    match_mode = MatchMode.GLOB

    def validate(self, item: WorkItem, ctx) -> Optional[str]:
        expected = str(item.record.metadata.get("expected", ""))
        if read_sysctl(ctx, item.name) == expected:
            return "already compliant"
        return None

    def apply(self, item: WorkItem, ctx) -> Optional[str]:
        expected = str(item.record.metadata.get("expected", ""))
        if not expected:
            raise ActionItemError(item, "no baseline value recorded")
        try:
            run_checked(ctx.os, ["sysctl", "-w", f"{item.name}={expected}"])
        except CommandExecutionError as exc:
            raise ActionItemError(item, exc.short_reason or str(exc)) from exc
        return f"{item.record.metadata.get('current')} -> {expected}"


TASKS = (KernelBaselineAudit, SecurityHardeningAction)
