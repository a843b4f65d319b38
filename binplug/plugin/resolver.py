"""
Version Resolver.

Picks which release of a plugin to install or run on this machine.

Key features:
- Semantic version parsing with pre-release ordering
- Latest-version selection independent of manifest order
- Local OS/architecture detection in manifest naming
- Discovery of already-installed versions
"""

import logging
import platform
import re
import sys
from pathlib import Path

from binplug.config import Settings
from binplug.plugin.manifest import Plugin

logger = logging.getLogger(__name__)

_SEMVER_RE = re.compile(
    r"^v?(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)

_OS_NAMES = {
    "linux": "linux",
    "darwin": "darwin",
    "win32": "windows",
    "cygwin": "windows",
    "freebsd": "freebsd",
}

_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
}

VersionKey = tuple[int, int, int, tuple]


def _prerelease_key(prerelease: str | None) -> tuple:
    # A release without a pre-release tag sorts after all of its pre-releases
    if not prerelease:
        return (1,)
    identifiers = []
    for part in prerelease.split("."):
        if part.isdigit():
            identifiers.append((0, int(part), ""))
        else:
            identifiers.append((1, 0, part))
    return (0, tuple(identifiers))


def parse_version(version: str) -> VersionKey | None:
    """
    Parse a semantic version string into a sortable key.

    Args:
        version: Version string (e.g., "1.2.3", "v1.2.3", "1.2.0-rc.1")

    Returns:
        Comparable key, or None if the string is not a semantic version
    """
    match = _SEMVER_RE.match(version.strip())
    if not match:
        return None
    major, minor, patch, prerelease = match.groups()
    return (int(major), int(minor), int(patch), _prerelease_key(prerelease))


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two version strings.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2

    Raises:
        ValueError: If either string is not a semantic version
    """
    k1, k2 = parse_version(v1), parse_version(v2)
    if k1 is None or k2 is None:
        raise ValueError(f"Cannot compare non-semantic versions {v1!r} and {v2!r}")
    return (k1 > k2) - (k1 < k2)


def current_platform() -> tuple[str, str]:
    """
    Return this machine's (os, arch) in manifest naming.

    Returns:
        Tuple like ("linux", "amd64")
    """
    os_name = sys.platform
    for prefix, name in _OS_NAMES.items():
        if os_name.startswith(prefix):
            os_name = name
            break

    machine = platform.machine().lower()
    return os_name, _ARCH_NAMES.get(machine, machine)


def resolve(plugin: Plugin, os_name: str, arch: str) -> str:
    """
    Pick the latest release version for a platform.

    Args:
        plugin: Plugin from the manifest
        os_name: Target operating system
        arch: Target architecture

    Returns:
        Latest matching version, or "" when the platform is unsupported
    """
    best_version = ""
    best_key: VersionKey | None = None

    for release in plugin.releases:
        if release.os != os_name or release.arch != arch:
            continue
        key = parse_version(release.version)
        if key is None:
            logger.debug(
                "Ignoring non-semantic version %r of %s", release.version, plugin.shortname
            )
            continue
        if best_key is None or key > best_key:
            best_key = key
            best_version = release.version

    return best_version


def installed_versions(settings: Settings, plugin: Plugin) -> list[str]:
    """
    List versions of a plugin already present under the install root.

    Args:
        settings: Resolved settings
        plugin: Plugin from the manifest

    Returns:
        Installed version directory names, newest first
    """
    plugin_dir: Path = settings.install_root / plugin.shortname
    found = []
    for candidate in plugin_dir.glob("*.*.*"):
        if not candidate.is_dir():
            continue
        key = parse_version(candidate.name)
        if key is None:
            continue
        found.append((key, candidate.name))

    found.sort(reverse=True)
    return [name for _, name in found]
