"""
modctl plan command (-P).

Show the activation order of a catalog and which modules would become active
for a given feature set, without running any module code.
"""

import json
from pathlib import Path
from typing import Any

from modctl.cli import parse_features
from modctl.commands import single_target
from modula.config import load_config
from modula.module.catalog import ManifestCatalog, load_catalog
from modula.module.gate import enhancements, is_eligible
from modula.module.resolver import DependencyResolver


def build_plan(catalog: ManifestCatalog, features: frozenset[str]) -> list[dict[str, Any]]:
    """
    Simulate an activation pass.

    Returns:
        One entry per ordered module: id, status and, when relevant, reason
    """
    result = DependencyResolver(catalog).resolve()
    active: set[str] = set()
    plan = []

    for module_id in result.order:
        manifest = catalog.get(module_id)
        entry: dict[str, Any] = {"id": module_id}
        missing = result.unresolved.get(module_id)
        inactive = [dep for dep in manifest.depends_on if dep not in active]

        if missing:
            entry.update(status="blocked", reason=f"unresolved: {', '.join(missing)}")
        elif not is_eligible(manifest, features):
            entry.update(status="disabled", reason="feature not enabled")
        elif inactive:
            entry.update(status="waiting", reason=f"inactive: {', '.join(inactive)}")
        else:
            active.add(module_id)
            entry["status"] = "active"
            enhanced = sorted(enhancements(manifest, features))
            if enhanced:
                entry["enhancements"] = enhanced
        plan.append(entry)

    for module_id in sorted(result.in_cycle):
        plan.append({"id": module_id, "status": "blocked", "reason": "dependency cycle"})
    for module_id in result.blocked:
        plan.append({"id": module_id, "status": "blocked", "reason": "depends on a cycle"})
    return plan


def plan_command(args: Any) -> int:
    """
    Execute plan command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    path = single_target(args, "modctl -P <catalog> [--features a,b]")
    catalog, errors = load_catalog(path)

    features = parse_features(args.features)
    if features is None:
        config = load_config(Path(args.config) if args.config else None)
        features = sorted(config.enabled_features)

    plan = build_plan(catalog, frozenset(features))

    if args.json:
        print(json.dumps({"features": features, "plan": plan}, indent=2))
        return 0

    print(f"Features: {', '.join(features) or '(none)'}")
    for position, entry in enumerate(plan, 1):
        line = f"{position:3d}. {entry['id']} [{entry['status']}]"
        if "reason" in entry:
            line += f" ({entry['reason']})"
        if "enhancements" in entry:
            line += f" +{','.join(entry['enhancements'])}"
        print(line)
    if errors:
        print(f"Skipped {len(errors)} invalid manifest(s); run modctl -D for details")
    return 0
