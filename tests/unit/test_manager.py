"""
Tests for run orchestration.

This test suite covers:
1. First run: resolve, install, launch, dispatch
2. Already-installed versions skip installation
3. Development override pins the fixed version and never installs
4. Missing binary triggers exactly one reinstall
5. Error paths end in the terminated-error state
"""

import hashlib
import io
from dataclasses import replace

import pytest

from binplug.config import DEV_VERSION
from binplug.errors import (
    ChecksumError,
    FilesystemError,
    IntegrityError,
    NotFoundError,
    ProtocolError,
    UpstreamCommandError,
)
from binplug.plugin.manager import PluginManager, RunState
from conftest import manifest_toml, stub_plugin_source

PLATFORM = ("linux", "amd64")
STUB = stub_plugin_source("echo", "s3cret")
DOWNLOAD_PATH = "/echo/1.0.0/linux/amd64/echo-bin"

FULL_RUN = [
    RunState.NOT_INSTALLED,
    RunState.INSTALLING,
    RunState.INSTALLED,
    RunState.LAUNCHING,
    RunState.READY,
    RunState.DISPATCHING,
    RunState.TERMINATED_SUCCESS,
]


def echo_manifest(checksum_hex: str | None = None, os_name: str = "linux") -> str:
    return manifest_toml(
        "echo",
        "echo-bin",
        "s3cret",
        [
            {
                "os": os_name,
                "arch": "amd64",
                "version": "1.0.0",
                "sum": checksum_hex or hashlib.sha256(STUB).hexdigest(),
            }
        ],
    )


def make_manager(settings, host):
    return PluginManager(
        settings,
        transport=host.transport,
        platform=PLATFORM,
        stdout=io.StringIO(),
        stderr=io.StringIO(),
    )


@pytest.fixture
def published(settings, host):
    """Serve the echo plugin and write its manifest to the local cache."""
    host.files[DOWNLOAD_PATH] = STUB
    settings.manifest_path.parent.mkdir(parents=True, exist_ok=True)
    settings.manifest_path.write_text(echo_manifest())
    return host


class TestRun:
    """Test the run state machine."""

    @pytest.mark.asyncio
    async def test_first_run_installs_latest(self, settings, published):
        async with make_manager(settings, published) as manager:
            result = await manager.run("echo", ["--help"])

            assert result == ["--help"]
            assert manager.runner.history == FULL_RUN
            assert manager.runner.state is RunState.TERMINATED_SUCCESS

        assert published.downloads() == [f"https://plugins.test{DOWNLOAD_PATH}"]
        installed = settings.install_root / "echo" / "1.0.0" / "echo-bin"
        assert hashlib.sha256(installed.read_bytes()).digest() == hashlib.sha256(STUB).digest()

    @pytest.mark.asyncio
    async def test_installed_version_skips_install(self, settings, published, write_plugin):
        write_plugin(settings.install_root / "echo" / "1.0.0" / "echo-bin")

        async with make_manager(settings, published) as manager:
            result = await manager.run("ECHO", ["a", "b"])

            assert result == ["a", "b"]
            assert manager.runner.history[0] is RunState.INSTALLED
            assert RunState.INSTALLING not in manager.runner.history

        assert published.requests == []

    @pytest.mark.asyncio
    async def test_missing_binary_reinstalls_once(self, settings, published):
        (settings.install_root / "echo" / "1.0.0").mkdir(parents=True)

        async with make_manager(settings, published) as manager:
            result = await manager.run("echo", ["x"])

            assert result == ["x"]
            assert manager.runner.history.count(RunState.INSTALLING) == 1
            assert manager.runner.history.count(RunState.LAUNCHING) == 2

        assert len(published.downloads()) == 1

    @pytest.mark.asyncio
    async def test_tampered_install_refused(self, settings, published):
        """An installed binary that no longer matches its checksum is not launched."""
        target = settings.install_root / "echo" / "1.0.0" / "echo-bin"
        target.parent.mkdir(parents=True)
        target.write_bytes(STUB + b"\n# tampered\n")
        target.chmod(0o755)

        async with make_manager(settings, published) as manager:
            with pytest.raises(ProtocolError, match="Checksums did not match"):
                await manager.run("echo", ["x"])

            assert manager.runner.state is RunState.TERMINATED_ERROR

    @pytest.mark.asyncio
    async def test_upstream_error(self, settings, published):
        async with make_manager(settings, published) as manager:
            with pytest.raises(UpstreamCommandError, match="boom: it"):
                await manager.run("echo", ["fail", "it"])

            assert manager.runner.history[-2] is RunState.DISPATCHING
            assert manager.runner.state is RunState.TERMINATED_ERROR

    @pytest.mark.asyncio
    async def test_unsupported_platform(self, settings, host):
        settings.manifest_path.parent.mkdir(parents=True)
        settings.manifest_path.write_text(echo_manifest(os_name="darwin"))

        async with make_manager(settings, host) as manager:
            with pytest.raises(ChecksumError, match="no release for linux/amd64"):
                await manager.run("echo", [])

            assert manager.runner.state is RunState.TERMINATED_ERROR

        assert host.requests == []

    @pytest.mark.asyncio
    async def test_integrity_failure(self, settings, published):
        settings.manifest_path.write_text(echo_manifest(checksum_hex="00" * 32))

        async with make_manager(settings, published) as manager:
            with pytest.raises(IntegrityError):
                await manager.run("echo", [])

            assert manager.runner.history[-1] is RunState.TERMINATED_ERROR
            assert RunState.LAUNCHING not in manager.runner.history

        assert not (settings.install_root / "echo" / "1.0.0" / "echo-bin").exists()

    @pytest.mark.asyncio
    async def test_unknown_plugin(self, settings, published):
        async with make_manager(settings, published) as manager:
            with pytest.raises(NotFoundError):
                await manager.run("nope", [])


class TestDevelopmentOverride:
    """Test PLUGINS_PATH development mode."""

    @pytest.mark.asyncio
    async def test_dev_mode_pins_fixed_version(self, settings, published, tmp_path, write_plugin):
        dev = replace(settings, plugins_path=tmp_path / "dev")
        write_plugin(tmp_path / "dev" / "echo" / DEV_VERSION / "echo-bin")
        # A released version next to it must be ignored
        (tmp_path / "dev" / "echo" / "1.0.0").mkdir(parents=True)

        async with make_manager(dev, published) as manager:
            result = await manager.run("echo", ["--help"])

            assert result == ["--help"]
            assert RunState.INSTALLING not in manager.runner.history

        assert published.requests == []

    @pytest.mark.asyncio
    async def test_dev_mode_missing_binary(self, settings, published, tmp_path):
        dev = replace(settings, plugins_path=tmp_path / "dev")

        async with make_manager(dev, published) as manager:
            with pytest.raises(FilesystemError, match="not found"):
                await manager.run("echo", [])

            assert RunState.INSTALLING not in manager.runner.history

        assert published.requests == []


class TestInstallFacade:
    """Test PluginManager.install / installed."""

    @pytest.mark.asyncio
    async def test_install_latest(self, settings, published):
        async with make_manager(settings, published) as manager:
            version, path = await manager.install("echo")
            assert version == "1.0.0"
            assert path.exists()
            assert await manager.installed("echo") == ["1.0.0"]

    @pytest.mark.asyncio
    async def test_install_unknown_version(self, settings, published):
        async with make_manager(settings, published) as manager:
            with pytest.raises(ChecksumError):
                await manager.install("echo", "2.0.0")

        assert published.requests == []
