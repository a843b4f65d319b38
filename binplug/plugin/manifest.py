"""
Plugin Manifest Store.

This module loads and refreshes the local catalog of approved plugins.

Key features:
- Typed, immutable Plugin/Release views over plugins.toml
- Implicit download when the cache file is absent
- Atomic replacement of the cache on refresh
- Case-insensitive plugin lookup
"""

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from binplug.config import Settings
from binplug.errors import (
    ChecksumError,
    FilesystemError,
    ManifestError,
    NotFoundError,
)
from binplug.plugin.fs import atomic_write
from binplug.plugin.remote import PluginDataClient, fetch_remote_resource

logger = logging.getLogger(__name__)

DIGEST_SIZE = 32


@dataclass(frozen=True)
class Release:
    """
    One installable build of a plugin.

    Attributes:
        os: Operating system (linux, darwin, windows)
        arch: Architecture (amd64, arm64, ...)
        version: Release version string
        checksum_hex: Hex-encoded SHA-256 of the release binary
    """

    os: str
    arch: str
    version: str
    checksum_hex: str

    def digest(self) -> bytes:
        """
        Decode the expected SHA-256 digest.

        Raises:
            ChecksumError: If the checksum is not 32 hex-encoded bytes
        """
        try:
            decoded = bytes.fromhex(self.checksum_hex)
        except ValueError as e:
            raise ChecksumError(
                f"Could not decode checksum for version {self.version}"
            ) from e
        if len(decoded) != DIGEST_SIZE:
            raise ChecksumError(
                f"Checksum for version {self.version} is {len(decoded)} bytes, "
                f"expected {DIGEST_SIZE}"
            )
        return decoded


@dataclass(frozen=True)
class Plugin:
    """
    An approved plugin and its releases.

    Attributes:
        shortname: Unique lookup key (case-insensitive)
        binary_name: File name of the executable inside a version directory
        releases: Releases in manifest order
        shared_secret: Magic cookie value expected by the plugin binary
    """

    shortname: str
    binary_name: str
    releases: tuple[Release, ...]
    shared_secret: str

    def find_release(self, os_name: str, arch: str, version: str) -> Release | None:
        for release in self.releases:
            if (
                release.os == os_name
                and release.arch == arch
                and release.version == version
            ):
                return release
        return None

    def get_checksum(self, os_name: str, arch: str, version: str) -> bytes:
        """
        Return the expected digest for one release.

        Args:
            os_name: Operating system
            arch: Architecture
            version: Release version

        Returns:
            32-byte SHA-256 digest

        Raises:
            ChecksumError: If no release matches or its checksum is malformed
        """
        release = self.find_release(os_name, arch, version) if version else None
        if release is None:
            raise ChecksumError(
                f"Could not locate a valid checksum for {self.shortname} "
                f"version {version or '<none>'} on {os_name}/{arch}"
            )
        return release.digest()


@dataclass(frozen=True)
class Manifest:
    """
    Ordered collection of approved plugins.

    Attributes:
        plugins: Plugins in manifest order
    """

    plugins: tuple[Plugin, ...]

    def lookup(self, name: str) -> Plugin:
        """
        Find a plugin by shortname, ignoring case.

        Raises:
            NotFoundError: If no plugin has that shortname
        """
        wanted = name.lower()
        for plugin in self.plugins:
            if plugin.shortname.lower() == wanted:
                return plugin
        raise NotFoundError(f"Could not find a plugin named {name}")


def _lower_keys(table: dict[str, Any]) -> dict[str, Any]:
    return {key.lower(): value for key, value in table.items()}


def _require_str(table: dict[str, Any], key: str, where: str) -> str:
    value = table.get(key.lower())
    if not isinstance(value, str) or not value:
        raise ManifestError(f"{where}: missing or invalid '{key}'")
    return value


def _parse_release(data: Any, where: str) -> Release:
    if not isinstance(data, dict):
        raise ManifestError(f"{where}: release must be a table")
    table = _lower_keys(data)
    return Release(
        os=_require_str(table, "os", where),
        arch=_require_str(table, "arch", where),
        version=_require_str(table, "version", where),
        checksum_hex=_require_str(table, "sum", where),
    )


def _parse_plugin(data: Any, index: int) -> Plugin:
    if not isinstance(data, dict):
        raise ManifestError(f"plugin #{index}: must be a table")
    table = _lower_keys(data)
    shortname = _require_str(table, "shortname", f"plugin #{index}")
    where = f"plugin '{shortname}'"

    raw_releases = table.get("release", [])
    if not isinstance(raw_releases, list):
        raise ManifestError(f"{where}: 'release' must be an array of tables")

    releases = []
    seen: set[tuple[str, str, str]] = set()
    for i, raw in enumerate(raw_releases):
        release = _parse_release(raw, f"{where} release #{i}")
        key = (release.os, release.arch, release.version)
        if key in seen:
            raise ManifestError(
                f"{where}: duplicate release for {release.os}/{release.arch} "
                f"version {release.version}"
            )
        seen.add(key)
        releases.append(release)

    return Plugin(
        shortname=shortname,
        binary_name=_require_str(table, "binary", where),
        releases=tuple(releases),
        shared_secret=_require_str(table, "magicCookieValue", where),
    )


def parse_manifest(text: str) -> Manifest:
    """
    Parse a plugins.toml body.

    Args:
        text: TOML document

    Returns:
        Manifest object

    Raises:
        ManifestError: If the document cannot be parsed or is invalid
    """
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ManifestError(f"Failed to parse plugin manifest: {e}") from e

    top = _lower_keys(data)
    raw_plugins = top.get("plugin", top.get("plugins", []))
    if not isinstance(raw_plugins, list):
        raise ManifestError("'plugin' must be an array of tables")

    plugins = [_parse_plugin(raw, i) for i, raw in enumerate(raw_plugins)]

    names = [p.shortname.lower() for p in plugins]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ManifestError(f"Duplicate plugin shortnames: {', '.join(duplicates)}")

    return Manifest(plugins=tuple(plugins))


def _decode_manifest(body: bytes, source: str) -> str:
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ManifestError(f"Plugin manifest from {source} is not UTF-8: {e}") from e


class ManifestStore:
    """
    Local cache of the plugin manifest.

    The manifest is reloaded from disk on every load(); nothing is cached
    in memory across calls.
    """

    def __init__(self, settings: Settings, data_client: PluginDataClient):
        """
        Initialize ManifestStore.

        Args:
            settings: Resolved settings
            data_client: Metadata client used to locate the remote manifest
        """
        self.settings = settings
        self.data_client = data_client

    @property
    def path(self) -> Path:
        return self.settings.manifest_path

    def _read(self) -> str:
        with open(self.path, "rb") as f:
            return _decode_manifest(f.read(), str(self.path))

    async def load(self) -> Manifest:
        """
        Load the manifest, downloading it once if the cache is absent.

        Returns:
            Parsed Manifest

        Raises:
            RemoteError: If the implicit refresh fails
            FilesystemError: If the cache cannot be read
            ManifestError: If the cache cannot be parsed
        """
        try:
            text = self._read()
        except FileNotFoundError:
            logger.info("Plugin manifest %s does not exist, downloading", self.path)
            await self.refresh()
            try:
                text = self._read()
            except OSError as e:
                raise FilesystemError(
                    f"Failed to read plugin manifest {self.path}: {e}"
                ) from e
        except OSError as e:
            raise FilesystemError(
                f"Failed to read plugin manifest {self.path}: {e}"
            ) from e

        return parse_manifest(text)

    async def refresh(self) -> None:
        """
        Download the manifest and atomically replace the local cache.

        The body is parsed before it is written, so a broken remote manifest
        never replaces a working cache.

        Raises:
            RemoteError: If the download fails
            ManifestError: If the downloaded body does not parse
            FilesystemError: If the cache cannot be written
        """
        plugin_data = await self.data_client.get_plugin_data()
        url = f"{plugin_data.plugin_base_url}/plugins.toml"
        body = await fetch_remote_resource(self.data_client.http, url)

        manifest = parse_manifest(_decode_manifest(body, url))

        atomic_write(self.path, body)
        logger.info(
            "Refreshed plugin manifest (%d plugins) at %s",
            len(manifest.plugins),
            self.path,
        )

    async def lookup(self, name: str) -> Plugin:
        """
        Load the manifest and return the named plugin.

        Raises:
            NotFoundError: If the plugin is not in the manifest
        """
        manifest = await self.load()
        return manifest.lookup(name)


__all__ = [
    "Manifest",
    "ManifestStore",
    "Plugin",
    "Release",
    "parse_manifest",
]
