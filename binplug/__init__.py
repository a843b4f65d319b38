"""
binplug - Lifecycle manager for externally distributed executable plugins.

Resolves which release of a plugin binary to run, downloads and verifies it,
installs it into a stable local layout, and launches it as a child process
behind a handshake-negotiated RPC channel.
"""

__version__ = "0.1.0"

from binplug.config import Settings, load_settings
from binplug.errors import (
    ChecksumError,
    ConfigError,
    FilesystemError,
    IntegrityError,
    ManifestError,
    NotFoundError,
    PluginError,
    ProtocolError,
    RemoteError,
    UpstreamCommandError,
)

__all__ = [
    "__version__",
    "Settings",
    "load_settings",
    "PluginError",
    "ConfigError",
    "NotFoundError",
    "ManifestError",
    "ChecksumError",
    "IntegrityError",
    "FilesystemError",
    "ProtocolError",
    "RemoteError",
    "UpstreamCommandError",
]
