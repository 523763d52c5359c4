"""
modctl commands, imported lazily by the CLI.
"""

from pathlib import Path
from typing import Any

from modctl.cli import ModctlError


def single_target(args: Any, usage: str) -> Path:
    """
    The one path argument a command takes.

    Raises:
        ModctlError: If there is not exactly one target
    """
    if len(args.targets) != 1:
        raise ModctlError(f"Expected exactly one target. Usage: {usage}")
    return Path(args.targets[0])
