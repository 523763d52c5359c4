"""
modctl diagnose command (-D).

Report cycles, foundation-tier modules, unresolved references, blocked modules
and invalid manifests of a catalog.
"""

import json
from typing import Any

from modctl.commands import single_target
from modula.module.catalog import load_catalog
from modula.module.diagnostics import build_report, format_report


def diagnose_command(args: Any) -> int:
    """
    Execute diagnose command.

    Args:
        args: Parsed command-line arguments

    Returns:
        0 when the catalog is clean, 1 when problems were found
    """
    path = single_target(args, "modctl -D <catalog>")
    catalog, errors = load_catalog(path)
    report = build_report(catalog, errors)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(format_report(report))

    return 1 if report.has_problems else 0
