"""
modctl CLI - Modula module catalog tool.

Pacman-style interface for checking and maintaining module manifests.

Usage:
    modctl -D <catalog>                    Diagnose a manifest set
    modctl -M <catalog> [-o <file>]        Migrate legacy activation fields
    modctl -P <catalog> [--features a,b]   Show the activation plan
    modctl -I [config] [--features a,b]    Write a default config file
"""

import argparse
import sys

from modula.config import ConfigError
from modula.config.toml_handler import TOMLError
from modula.log import configure_logging
from modula.module.errors import ModuleError


class ModctlError(Exception):
    """Base exception for modctl errors."""

    pass


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser with pacman-style flags."""
    parser = argparse.ArgumentParser(
        prog="modctl",
        description="Modula module catalog tool",
        add_help=False,
    )

    # Operation flags (mutually exclusive)
    ops = parser.add_mutually_exclusive_group()
    ops.add_argument("-D", "--diagnose", action="store_true", help="Diagnose catalog")
    ops.add_argument("-M", "--migrate", action="store_true", help="Migrate manifests")
    ops.add_argument("-P", "--plan", action="store_true", help="Show activation plan")
    ops.add_argument("-I", "--init-config", action="store_true", help="Write config")
    ops.add_argument("-h", "--help", action="store_true", help="Show help")

    # Common options
    parser.add_argument("-o", "--output", help="Output file (-M)")
    parser.add_argument(
        "--features", default=None, help="Comma-separated enabled features (-P, -I)"
    )
    parser.add_argument("-c", "--config", default=None, help="Config file (-P)")
    parser.add_argument("--json", action="store_true", help="JSON output (-D, -P)")
    parser.add_argument("--force", action="store_true", help="Overwrite on -I")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    # Positional arguments
    parser.add_argument("targets", nargs="*", help="Catalog file/directory or config path")

    return parser


def print_help():
    """Print help message."""
    help_text = """
modctl - Modula module catalog tool

Usage:
    modctl -D <catalog>                    Diagnose a manifest set
    modctl -M <catalog> [-o <file>]        Migrate legacy activation fields
    modctl -P <catalog> [--features a,b]   Show the activation plan
    modctl -I [config] [--features a,b]    Write a default config file

A catalog is a JSON file (a list of manifests, or {"modules": [...]}) or a
directory whose sub-directories each hold a manifest.json.

Options:
    -o, --output <file>          Write migrated manifests to a file
    --features <a,b>             Enabled features
    -c, --config <file>          Read enabled features from a config file
    --json                       JSON output
    --force                      Overwrite an existing config file
    -v, --verbose                Verbose output
    -h, --help                   Show this help
"""
    print(help_text.strip())


def parse_features(value: str | None) -> list[str] | None:
    """Split a comma-separated feature list (None when not given)."""
    if value is None:
        return None
    return [feature.strip() for feature in value.split(",") if feature.strip()]


def main(argv: list[str] | None = None) -> int:
    """Main entry point for modctl CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "WARNING")

    try:
        # Show help
        if args.help or not (
            args.diagnose or args.migrate or args.plan or args.init_config
        ):
            print_help()
            return 0

        # Route to appropriate command
        if args.diagnose:
            # -D: Diagnose
            from modctl.commands.diagnose import diagnose_command

            return diagnose_command(args)

        elif args.migrate:
            # -M: Migrate
            from modctl.commands.migrate import migrate_command

            return migrate_command(args)

        elif args.plan:
            # -P: Plan
            from modctl.commands.plan import plan_command

            return plan_command(args)

        elif args.init_config:
            # -I: Init config
            from modctl.commands.init_config import init_config_command

            return init_config_command(args)

    except (ModctlError, ModuleError, ConfigError, TOMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
