"""Installed package inventory and allow-listed package removal."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from ..core.errors import ActionItemError, CommandExecutionError, DetectionError
from .base import ActionTask, AuditTask
from .types import DetectionRecord, MatchMode, Source, WorkItem
from ..utils.commands import run_checked
from ..utils.parsers import parse_tabular_output
from ..utils.system_info import detect_package_manager

logger = logging.getLogger(__name__)

_LIST_COMMANDS: Dict[Source, Sequence[str]] = {
    Source.APT: ("dpkg-query", "-W", "-f=${Package}\t${Version}\t${Status}\n"),
    Source.RPM: ("rpm", "-qa", "--queryformat", "%{NAME}\t%{VERSION}-%{RELEASE}\n"),
    Source.HOMEBREW: ("brew", "list", "--versions"),
}

_REMOVE_COMMANDS: Dict[Source, Sequence[str]] = {
    Source.APT: ("apt-get", "remove", "-y"),
    Source.RPM: ("dnf", "remove", "-y"),
    Source.HOMEBREW: ("brew", "uninstall"),
}


def _parse_inventory(source: Source, output: str) -> List[Dict[str, str]]:
    if source is Source.APT:
        rows = parse_tabular_output(output, ("name", "version", "status"))
        # dpkg keeps removed-but-configured packages around as "deinstall ok config-files"
        return [r for r in rows if r["status"].endswith(" installed")]
    if source is Source.RPM:
        return parse_tabular_output(output, ("name", "version"))
    return parse_tabular_output(output, ("name", "version"), delimiter=None)


def is_installed(ctx, source: Source, package: str) -> bool:
    if source is Source.APT:
        result = ctx.os.run_command(["dpkg-query", "-W", "-f=${Status}", package])
        return result.ok and result.stdout.strip().endswith(" installed")
    if source is Source.RPM:
        return ctx.os.run_command(["rpm", "-q", package]).ok
    result = ctx.os.run_command(["brew", "list", "--versions", package])
    return result.ok and bool(result.stdout.strip())


class InstalledPackagesAudit(AuditTask):
    """Inventory packages known to the system package manager."""

    name = "installed_packages"
    description = "Lists installed packages via dpkg, rpm or Homebrew."
    category = "packages"
    timeout = 120.0

    def detect(self, ctx) -> List[DetectionRecord]:
        source = detect_package_manager(ctx.os)
        if source is None:
            raise DetectionError("No supported package manager found (dpkg-query, rpm, brew)")
        command = _LIST_COMMANDS[source]
        try:
            result = run_checked(ctx.os, command, timeout=60.0)
        except CommandExecutionError as exc:
            raise DetectionError(f"Package inventory failed: {exc.short_reason or exc}") from exc

        records = [
            DetectionRecord(
                name=row["name"],
                source=source,
                match_key=row["name"],
                metadata={"version": row["version"]},
            )
            for row in _parse_inventory(source, result.stdout)
            if row["name"]
        ]
        logger.debug("Found %d installed package(s) via %s", len(records), source.value)
        return records


class PackageRemovalAction(ActionTask):
    """Remove installed packages matched by the allow-list (bloatware, leftovers)."""

    name = "package_removal"
    description = "Uninstalls allow-listed packages."
    category = "packages"
    depends_on = "installed_packages"
    priority = 50
    match_field = "name"
    match_mode = MatchMode.GLOB

    def validate(self, item: WorkItem, ctx) -> Optional[str]:
        if item.record.source not in _REMOVE_COMMANDS:
            return f"unsupported source {item.record.source.value}"
        if not is_installed(ctx, item.record.source, item.name):
            return "not installed"
        return None

    def apply(self, item: WorkItem, ctx) -> Optional[str]:
        command = [*_REMOVE_COMMANDS[item.record.source], item.name]
        try:
            run_checked(ctx.os, command)
        except CommandExecutionError as exc:
            raise ActionItemError(item, exc.short_reason or str(exc)) from exc
        return f"removed {item.record.metadata.get('version', '')}".strip()


TASKS = (InstalledPackagesAudit, PackageRemovalAction)
