"""
modctl init-config command (-I).

Write a commented default configuration file.
"""

import sys
from pathlib import Path
from typing import Any

from modctl.cli import ModctlError, parse_features
from modula.config import DEFAULT_CONFIG_FILE, SECTION, default_config_text, load_config
from modula.config.toml_handler import write_toml


def init_config_command(args: Any) -> int:
    """
    Execute init-config command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if len(args.targets) > 1:
        raise ModctlError("Usage: modctl -I [config] [--features a,b]")
    path = Path(args.targets[0]) if args.targets else DEFAULT_CONFIG_FILE

    if path.exists() and not args.force:
        print(f"Error: {path} already exists (use --force to overwrite)", file=sys.stderr)
        return 1

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(default_config_text(), encoding="utf-8")

    features = parse_features(args.features)
    if features:
        write_toml(path, {SECTION: {"enabled_features": features}})

    # Round-trip so a broken file is reported now rather than at boot
    load_config(path)
    print(f"Wrote {path}")
    return 0
