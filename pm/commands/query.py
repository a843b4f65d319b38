"""
pm query commands (-Q, -Si).
"""

import sys
from typing import Any

from binplug.config import Settings
from binplug.plugin.manager import PluginManager
from binplug.plugin.resolver import installed_versions, resolve
from pm.commands.common import run_async


def query_command(args: Any, settings: Settings) -> int:
    """
    List installed plugin versions.

    Returns:
        Exit code
    """
    return run_async(lambda: query_async(args, settings))


async def query_async(args: Any, settings: Settings) -> int:
    async with PluginManager(settings) as manager:
        manifest = await manager.manifest()
        if args.targets:
            plugins = [manifest.lookup(name) for name in args.targets]
        else:
            plugins = list(manifest.plugins)

        for plugin in plugins:
            versions = installed_versions(settings, plugin)
            if versions:
                print(f"{plugin.shortname} {' '.join(versions)}")
            elif args.targets:
                print(f"{plugin.shortname} (not installed)")

    return 0


def info_command(args: Any, settings: Settings) -> int:
    """
    Show manifest information about plugins.

    Returns:
        Exit code
    """
    if not args.targets:
        print("Error: No targets specified", file=sys.stderr)
        print("Usage: pm -Si <plugin>", file=sys.stderr)
        return 1

    return run_async(lambda: info_async(args, settings))


async def info_async(args: Any, settings: Settings) -> int:
    async with PluginManager(settings) as manager:
        os_name, arch = manager.installer.os_name, manager.installer.arch
        for name in args.targets:
            plugin = await manager.lookup(name)
            releases = [
                r.version for r in plugin.releases if r.os == os_name and r.arch == arch
            ]
            installed = installed_versions(settings, plugin)

            print(f"Name            : {plugin.shortname}")
            print(f"Binary          : {plugin.binary_name}")
            print(f"Platform        : {os_name}/{arch}")
            print(f"Releases        : {' '.join(releases) or 'None'}")
            print(f"Latest          : {resolve(plugin, os_name, arch) or 'None'}")
            print(f"Installed       : {' '.join(installed) or 'None'}")
            print()

    return 0
