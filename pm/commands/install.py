"""
pm install command (-S, -Sy).

Install plugins from the manifest, optionally refreshing it first.
"""

import sys
from typing import Any

from binplug.config import Settings
from binplug.errors import PluginError
from binplug.plugin.manager import PluginManager
from pm.commands.common import run_async


def install_command(args: Any, settings: Settings) -> int:
    """
    Execute install command.

    Args:
        args: Parsed command-line arguments
        settings: Resolved settings

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if not args.targets and not args.refresh:
        print("Error: No targets specified", file=sys.stderr)
        print("Usage: pm -S <plugin>[@version]", file=sys.stderr)
        return 1

    return run_async(lambda: install_async(args, settings))


async def install_async(args: Any, settings: Settings) -> int:
    """Async install implementation."""
    success_count = 0
    fail_count = 0

    async with PluginManager(settings) as manager:
        if args.refresh:
            await manager.refresh()
            print(":: Plugin manifest refreshed")

        for target in args.targets:
            try:
                await install_plugin(manager, target, args)
                success_count += 1
            except PluginError as e:
                print(f"Failed to install {target}: {e}", file=sys.stderr)
                fail_count += 1

    # Summary
    if args.verbose and args.targets:
        print(f"\nInstalled: {success_count}, Failed: {fail_count}")

    return 0 if fail_count == 0 else 1


def parse_target(target: str) -> tuple[str, str | None]:
    """
    Parse plugin target.

    Args:
        target: Plugin name or name@version

    Returns:
        Tuple of (name, version)
    """
    if "@" in target:
        name, version = target.split("@", 1)
        return name, version
    return target, None


async def install_plugin(manager: PluginManager, target: str, args: Any) -> None:
    """
    Install a single plugin.

    Args:
        manager: Plugin manager for this invocation
        target: Plugin name or name@version
        args: Command arguments
    """
    name, version = parse_target(target)

    if args.verbose:
        print(f"Installing {name}" + (f"@{version}" if version else ""))

    installed_version, path = await manager.install(name, version)
    print(f"installed {name} {installed_version} -> {path}")
