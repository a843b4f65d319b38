"""
Plugin Manager.

This module provides plugin lifecycle orchestration.

Key features:
- Run state machine: install on demand, launch, dispatch, terminate
- Development override (PLUGINS_PATH) that pins a fixed version
- One on-demand install + relaunch when an installed binary has gone missing
- PluginManager facade owning the HTTP client for one invocation
"""

import logging
from collections.abc import Callable, Sequence
from enum import Enum
from pathlib import Path
from types import TracebackType
from typing import Any, TextIO

import httpx

from binplug.config import DEV_VERSION, Settings
from binplug.errors import ChecksumError
from binplug.plugin.installer import Installer, binary_path
from binplug.plugin.manifest import Manifest, ManifestStore, Plugin
from binplug.plugin.remote import PluginDataClient, create_http_client
from binplug.plugin.resolver import installed_versions, resolve
from binplug.rpc.launcher import BinaryNotFoundError, Launcher
from binplug.rpc.protocol import MAIN_INTERFACE

logger = logging.getLogger(__name__)


class RunState(Enum):
    """Run state enumeration."""

    NOT_INSTALLED = "not_installed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    LAUNCHING = "launching"
    READY = "ready"
    DISPATCHING = "dispatching"
    TERMINATED_SUCCESS = "terminated_success"
    TERMINATED_ERROR = "terminated_error"


LauncherFactory = Callable[[Settings, Plugin, Path, bytes | None], Launcher]


class PluginRunner:
    """
    Drives one plugin invocation through the run state machine.

    Attributes:
        state: Current state
        history: Every state entered during the last run(), in order
    """

    def __init__(
        self,
        settings: Settings,
        installer: Installer,
        launcher_factory: LauncherFactory | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ):
        """
        Initialize PluginRunner.

        Args:
            settings: Resolved settings
            installer: Installer for the local platform
            launcher_factory: Builds the Launcher for a binary (tests substitute it)
            stdout: Stream receiving plugin stdout
            stderr: Stream receiving plugin stderr
        """
        self.settings = settings
        self.installer = installer
        self.launcher_factory = launcher_factory or self._default_launcher
        self.stdout = stdout
        self.stderr = stderr
        self.state = RunState.NOT_INSTALLED
        self.history: list[RunState] = []

    def _default_launcher(
        self, settings: Settings, plugin: Plugin, path: Path, checksum: bytes | None
    ) -> Launcher:
        return Launcher(
            settings,
            plugin.shortname,
            plugin.shared_secret,
            path,
            checksum,
            stdout=self.stdout,
            stderr=self.stderr,
        )

    def _enter(self, state: RunState) -> None:
        logger.debug("Run state: %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def select_version(self, plugin: Plugin) -> tuple[str, bool]:
        """
        Decide which version to run and whether it must be installed first.

        Returns:
            (version, needs_install)

        Raises:
            ChecksumError: If no release exists for this platform
        """
        if self.settings.dev_mode:
            return DEV_VERSION, False

        installed = installed_versions(self.settings, plugin)
        if installed:
            return installed[0], False

        version = resolve(plugin, self.installer.os_name, self.installer.arch)
        if not version:
            raise ChecksumError(
                f"Plugin {plugin.shortname} has no release for "
                f"{self.installer.os_name}/{self.installer.arch}"
            )
        return version, True

    async def _install(self, plugin: Plugin, version: str) -> None:
        self._enter(RunState.INSTALLING)
        await self.installer.install(plugin, version)
        self._enter(RunState.INSTALLED)

    async def _launch_and_dispatch(
        self, plugin: Plugin, version: str, args: Sequence[str]
    ) -> Any:
        checksum = None
        if not self.settings.dev_mode:
            checksum = plugin.get_checksum(
                self.installer.os_name, self.installer.arch, version
            )

        path = binary_path(self.settings, plugin, version)
        launcher = self.launcher_factory(self.settings, plugin, path, checksum)

        self._enter(RunState.LAUNCHING)
        async with launcher.launch() as client:
            self._enter(RunState.READY)
            dispatcher = client.dispense(MAIN_INTERFACE)
            self._enter(RunState.DISPATCHING)
            return await dispatcher.run_command(args)

    async def run(self, plugin: Plugin, args: Sequence[str]) -> Any:
        """
        Run a command inside a plugin, installing it first when needed.

        Args:
            plugin: Plugin from the manifest
            args: Arguments forwarded to the plugin

        Returns:
            The plugin's result value

        Raises:
            PluginError: Any failure along the way; the child process is
                always terminated before this propagates
        """
        self.history = []
        self.state = RunState.NOT_INSTALLED
        try:
            version, needs_install = self.select_version(plugin)
            if needs_install:
                self._enter(RunState.NOT_INSTALLED)
                await self._install(plugin, version)
            else:
                self._enter(RunState.INSTALLED)

            try:
                result = await self._launch_and_dispatch(plugin, version, args)
            except BinaryNotFoundError:
                if self.settings.dev_mode:
                    raise
                logger.info(
                    "Binary for %s %s is missing, reinstalling", plugin.shortname, version
                )
                await self._install(plugin, version)
                result = await self._launch_and_dispatch(plugin, version, args)
        except BaseException:
            self._enter(RunState.TERMINATED_ERROR)
            raise

        self._enter(RunState.TERMINATED_SUCCESS)
        return result


class PluginManager:
    """
    Entry point for plugin operations within one invocation.

    Owns the HTTP client; use as an async context manager.

    Example:
        async with PluginManager(settings) as manager:
            await manager.run("foo", ["--help"])
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        platform: tuple[str, str] | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ):
        """
        Initialize PluginManager.

        Args:
            settings: Resolved settings
            transport: HTTP transport override
            platform: (os, arch) override
            stdout: Stream receiving plugin stdout
            stderr: Stream receiving plugin stderr
        """
        self.settings = settings
        self.http = create_http_client(settings, transport)
        self.data_client = PluginDataClient(settings, self.http)
        self.store = ManifestStore(settings, self.data_client)
        self.installer = Installer(settings, self.data_client, platform)
        self.runner = PluginRunner(settings, self.installer, stdout=stdout, stderr=stderr)

    async def __aenter__(self) -> "PluginManager":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.http.aclose()

    async def refresh(self) -> None:
        await self.store.refresh()

    async def manifest(self) -> Manifest:
        return await self.store.load()

    async def lookup(self, name: str) -> Plugin:
        return await self.store.lookup(name)

    async def install(self, name: str, version: str | None = None) -> tuple[str, Path]:
        """
        Install a plugin, defaulting to its latest release for this platform.

        Returns:
            (installed version, binary path)

        Raises:
            NotFoundError: If the plugin is unknown
            ChecksumError: If the platform has no release or the version is unknown
        """
        plugin = await self.lookup(name)
        if version is None:
            version = resolve(plugin, self.installer.os_name, self.installer.arch)
        path = await self.installer.install(plugin, version)
        return version, path

    async def installed(self, name: str) -> list[str]:
        plugin = await self.lookup(name)
        return installed_versions(self.settings, plugin)

    async def run(self, name: str, args: Sequence[str]) -> Any:
        plugin = await self.lookup(name)
        return await self.runner.run(plugin, args)
