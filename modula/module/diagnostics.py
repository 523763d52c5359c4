"""
Offline Diagnostics.

Builds a report of a manifest set without activating anything: cycles,
foundation-tier modules, unresolved references, blocked modules and
manifests that failed to load.
"""

from dataclasses import dataclass, field
from typing import Any

from modula.module.catalog import ManifestCatalog
from modula.module.errors import ConfigurationError
from modula.module.resolver import DependencyResolver


@dataclass
class DiagnosticReport:
    """Diagnostics of a manifest set."""

    modules: int = 0
    order: list[str] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    foundation: list[str] = field(default_factory=list)
    unresolved: dict[str, list[str]] = field(default_factory=dict)
    blocked: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)

    @property
    def has_problems(self) -> bool:
        return bool(self.cycles or self.unresolved or self.blocked or self.invalid)

    def to_dict(self) -> dict[str, Any]:
        return {
            "modules": self.modules,
            "order": self.order,
            "cycles": self.cycles,
            "foundation": self.foundation,
            "unresolved": self.unresolved,
            "blocked": self.blocked,
            "invalid": self.invalid,
        }


def build_report(
    catalog: ManifestCatalog, errors: list[ConfigurationError] | None = None
) -> DiagnosticReport:
    """
    Diagnose a catalog.

    Args:
        catalog: Manifests that loaded
        errors: Manifests that were rejected while loading

    Returns:
        DiagnosticReport
    """
    result = DependencyResolver(catalog).resolve()
    return DiagnosticReport(
        modules=len(catalog),
        order=result.order,
        cycles=result.cycles,
        foundation=result.foundation,
        unresolved=result.unresolved,
        blocked=result.blocked,
        invalid=[str(e) for e in errors or ()],
    )


def format_report(report: DiagnosticReport) -> str:
    """Render a report as text."""
    lines = [f"Modules: {report.modules}"]

    lines.append(f"Foundation tier ({len(report.foundation)}):")
    lines.extend(f"  {module_id}" for module_id in report.foundation)

    if report.cycles:
        lines.append(f"Cycles ({len(report.cycles)}):")
        lines.extend(f"  {' -> '.join(cycle)}" for cycle in report.cycles)

    if report.unresolved:
        lines.append(f"Unresolved dependencies ({len(report.unresolved)}):")
        for module_id, missing in sorted(report.unresolved.items()):
            lines.append(f"  {module_id}: {', '.join(missing)}")

    if report.blocked:
        lines.append(f"Blocked by cycles ({len(report.blocked)}):")
        lines.extend(f"  {module_id}" for module_id in report.blocked)

    if report.invalid:
        lines.append(f"Invalid manifests ({len(report.invalid)}):")
        lines.extend(f"  {message}" for message in report.invalid)

    lines.append("No problems found" if not report.has_problems else "Problems found")
    return "\n".join(lines)
