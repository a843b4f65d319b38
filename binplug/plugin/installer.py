"""
Plugin Installer.

Downloads a release binary, verifies its SHA-256 digest, and persists it to
<installRoot>/<shortname>/<version>/<binary>.

The digest is checked before anything touches the filesystem: a binary that
fails verification never reaches disk.
"""

import hashlib
import hmac
import logging
from pathlib import Path

from binplug.config import Settings
from binplug.errors import ChecksumError, FilesystemError, IntegrityError
from binplug.plugin.fs import atomic_write, install_lock, sha256_file
from binplug.plugin.manifest import Plugin
from binplug.plugin.remote import PluginDataClient, fetch_remote_resource
from binplug.plugin.resolver import current_platform

logger = logging.getLogger(__name__)

BINARY_MODE = 0o755


def install_dir(settings: Settings, plugin: Plugin, version: str) -> Path:
    """Directory holding one installed version of a plugin."""
    return settings.install_root / plugin.shortname / version


def binary_path(settings: Settings, plugin: Plugin, version: str) -> Path:
    """Deterministic path of an installed plugin binary."""
    return install_dir(settings, plugin, version) / plugin.binary_name


class Installer:
    """
    Installs plugin releases for one platform.
    """

    def __init__(
        self,
        settings: Settings,
        data_client: PluginDataClient,
        platform: tuple[str, str] | None = None,
    ):
        """
        Initialize Installer.

        Args:
            settings: Resolved settings
            data_client: Metadata client that names the artifact base URL
            platform: (os, arch) override; defaults to this machine
        """
        self.settings = settings
        self.data_client = data_client
        self.os_name, self.arch = platform or current_platform()

    def download_url(self, base_url: str, plugin: Plugin, version: str) -> str:
        return "/".join(
            [
                base_url.rstrip("/"),
                plugin.shortname,
                version,
                self.os_name,
                self.arch,
                plugin.binary_name,
            ]
        )

    async def install(self, plugin: Plugin, version: str) -> Path:
        """
        Install one release of a plugin.

        Args:
            plugin: Plugin from the manifest
            version: Release version to install

        Returns:
            Path of the installed binary

        Raises:
            ChecksumError: If the version is empty or has no usable checksum
            RemoteError: If the download fails
            IntegrityError: If the downloaded bytes fail verification
            FilesystemError: If the binary cannot be written
        """
        if not version:
            raise ChecksumError(
                f"No version of {plugin.shortname} to install for "
                f"{self.os_name}/{self.arch}"
            )

        expected = plugin.get_checksum(self.os_name, self.arch, version)

        plugin_data = await self.data_client.get_plugin_data()
        url = self.download_url(plugin_data.plugin_base_url, plugin, version)
        logger.info("Downloading %s %s from %s", plugin.shortname, version, url)
        binary = await fetch_remote_resource(self.data_client.http, url)

        actual = hashlib.sha256(binary).digest()
        if not hmac.compare_digest(actual, expected):
            logger.warning(
                "Checksum mismatch for %s %s: expected %s, got %s",
                plugin.shortname,
                version,
                expected.hex(),
                actual.hex(),
            )
            raise IntegrityError(
                f"Installed plugin {plugin.shortname} could not be verified, "
                f"aborting installation"
            )

        target_dir = install_dir(self.settings, plugin, version)
        target = target_dir / plugin.binary_name
        with install_lock(target_dir.parent, version):
            try:
                target_dir.mkdir(parents=True, exist_ok=True, mode=0o755)
            except OSError as e:
                raise FilesystemError(
                    f"Failed to create install directory {target_dir}: {e}"
                ) from e
            atomic_write(target, binary, mode=BINARY_MODE)

        logger.info("Installed %s %s to %s", plugin.shortname, version, target)
        return target

    def verify_installed(self, plugin: Plugin, version: str) -> bool:
        """
        Re-hash an installed binary against the manifest checksum.

        Returns:
            True if the on-disk binary matches, False if it differs or is missing

        Raises:
            ChecksumError: If the manifest has no usable checksum for the version
        """
        expected = plugin.get_checksum(self.os_name, self.arch, version)
        try:
            actual = sha256_file(binary_path(self.settings, plugin, version))
        except FileNotFoundError:
            return False
        return hmac.compare_digest(actual, expected)
