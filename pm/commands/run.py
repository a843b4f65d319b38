"""
pm run command (-X).

Run a command inside a plugin, installing the plugin first when needed.
"""

import json
import sys
from typing import Any

from binplug.config import Settings
from binplug.plugin.manager import PluginManager
from pm.commands.common import run_async


def run_command(args: Any, settings: Settings) -> int:
    """
    Execute run command.

    Args:
        args: Parsed command-line arguments (args.passthrough holds plugin argv)
        settings: Resolved settings

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if len(args.targets) != 1:
        print("Error: Exactly one plugin must be named", file=sys.stderr)
        print("Usage: pm -X <plugin> [args...]", file=sys.stderr)
        return 1

    result = run_async(lambda: run_async_plugin(args.targets[0], args.passthrough, settings))
    print_result(result)
    return 0


async def run_async_plugin(name: str, argv: list[str], settings: Settings) -> Any:
    async with PluginManager(settings) as manager:
        return await manager.run(name, argv)


def print_result(result: Any) -> None:
    """Print a plugin's return value; None and empty strings print nothing."""
    if result is None or result == "":
        return
    if isinstance(result, str):
        print(result)
    else:
        print(json.dumps(result))
