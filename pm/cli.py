"""
pm CLI - binplug Package Manager.

Pacman-style interface for installing and running executable plugins.

Usage:
    pm -S <plugin>[@version]     Install plugin
    pm -Sy [plugin...]           Refresh the manifest (then install targets)
    pm -Si <plugin>              Show plugin info
    pm -Q [plugin]               List installed versions
    pm -X <plugin> [args...]     Run a plugin command
    pm --config KEY=VALUE        Persist a configuration option
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from binplug.errors import PluginError

EXEC_FLAGS = ("-X", "--exec")


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser with pacman-style flags."""
    parser = argparse.ArgumentParser(
        prog="pm",
        description="binplug Package Manager - Pacman-style plugin manager",
        add_help=False,
    )

    # Operation flags (mutually exclusive)
    ops = parser.add_mutually_exclusive_group()
    ops.add_argument("-S", "--sync", action="store_true", help="Install plugin")
    ops.add_argument("-Q", "--query", action="store_true", help="Query installed")
    ops.add_argument("-X", "--exec", action="store_true", help="Run plugin")
    ops.add_argument("--config", metavar="KEY=VALUE", help="Set config option")
    ops.add_argument("-h", "--help", action="store_true", help="Show help")

    # Sync sub-flags
    parser.add_argument("-y", "--refresh", action="store_true", help="Refresh (-Sy)")
    parser.add_argument("-i", "--info", action="store_true", help="Show info (-Si)")

    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    # Positional arguments
    parser.add_argument("targets", nargs="*", help="Plugin names")

    return parser


def split_exec_args(argv: Sequence[str]) -> tuple[list[str], list[str]]:
    """
    Separate pm's own arguments from those passed through to a plugin.

    Everything after `-X <plugin>` belongs to the plugin, including flags
    such as --help.

    Args:
        argv: Raw command-line arguments (without program name)

    Returns:
        (pm arguments, plugin arguments)
    """
    argv = list(argv)
    for index, arg in enumerate(argv):
        if arg == "--":
            break
        if arg in EXEC_FLAGS:
            cut = index + 2
            return argv[:cut], argv[cut:]
    return argv, []


def configure_logging(verbose: bool) -> None:
    """Send log records to stderr; DEBUG when verbose, WARNING otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def print_help():
    """Print help message."""
    help_text = """
pm - binplug Package Manager

Usage:
    pm -S <plugin>[@version]     Install plugin
    pm -Sy [plugin...]           Refresh the manifest (then install targets)
    pm -Si <plugin>              Show plugin info
    pm -Q [plugin]               List installed versions
    pm -X <plugin> [args...]     Run a plugin command
    pm --config KEY=VALUE        Persist a configuration option

Options:
    -v, --verbose                Verbose output
    -h, --help                   Show this help

Environment:
    PLUGINS_PATH                 Run development builds from this directory
    XDG_CONFIG_HOME              Relocate the configuration root
    BINPLUG_API_BASE             Plugin API base URL
    BINPLUG_API_KEY              Plugin API key
"""
    print(help_text.strip())


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for pm CLI."""
    if argv is None:
        argv = sys.argv[1:]
    pm_argv, passthrough = split_exec_args(argv)

    parser = create_parser()
    args = parser.parse_args(pm_argv)
    args.passthrough = passthrough
    configure_logging(args.verbose)

    try:
        if args.help or (
            not args.sync and not args.query and not args.exec and args.config is None
        ):
            print_help()
            return 0

        from binplug.config import load_settings

        if args.config is not None:
            from pm.commands.config import config_command

            return config_command(args)

        settings = load_settings()

        # Route to appropriate command
        if args.sync and args.info:
            # -Si: Info
            from pm.commands.query import info_command

            return info_command(args, settings)

        elif args.sync:
            # -S / -Sy: Install
            from pm.commands.install import install_command

            return install_command(args, settings)

        elif args.query:
            # -Q: Query
            from pm.commands.query import query_command

            return query_command(args, settings)

        elif args.exec:
            # -X: Run
            from pm.commands.run import run_command

            return run_command(args, settings)

    except PluginError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except asyncio.CancelledError:
        print("\nTerminated", file=sys.stderr)
        return 143
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
