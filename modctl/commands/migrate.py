"""
modctl migrate command (-M).

Rewrite legacy activation fields (requiredFeatures / optionalFeatures) into
the current shape (activatedBy / enhancedBy). Manifests already in the current
shape pass through unchanged.
"""

import json
import sys
from pathlib import Path
from typing import Any

from modctl.commands import single_target
from modula.module.catalog import read_manifest_data
from modula.module.errors import ConfigurationError
from modula.module.manifest import migrate_manifest_data


def _read_directory(path: Path) -> list[dict[str, Any]]:
    manifests = []
    for module_dir in sorted(path.iterdir()):
        manifest_path = module_dir / "manifest.json"
        if not manifest_path.is_file():
            continue
        try:
            manifests.append(json.loads(manifest_path.read_text(encoding="utf-8")))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {manifest_path}: {e}") from e
    return manifests


def migrate_command(args: Any) -> int:
    """
    Execute migrate command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    path = single_target(args, "modctl -M <catalog> [-o <file>]")
    raw = _read_directory(path) if path.is_dir() else read_manifest_data(path)

    migrated = []
    changed = 0
    for data in raw:
        if not isinstance(data, dict):
            raise ConfigurationError(f"Manifest must be an object, got {type(data).__name__}")
        result = migrate_manifest_data(data)
        if result != data:
            changed += 1
        migrated.append(result)

    text = json.dumps(migrated, indent=2, ensure_ascii=False)
    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text + "\n", encoding="utf-8")
    else:
        print(text)

    if args.verbose or args.output:
        print(f"Migrated: {changed}, Unchanged: {len(migrated) - changed}", file=sys.stderr)
    return 0
