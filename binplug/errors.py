"""
Error taxonomy for plugin lifecycle operations.

Every failure surfaced by binplug is a subclass of PluginError, so the CLI
can report it and exit non-zero with a single except clause.
"""


class PluginError(Exception):
    """Base exception for plugin-related errors."""

    pass


class ConfigError(PluginError):
    """Raised when settings cannot be loaded or fail validation."""

    pass


class NotFoundError(PluginError):
    """Raised when a plugin name is absent from the manifest."""

    pass


class ManifestError(PluginError):
    """Raised when the plugin catalog is unreadable or unparseable."""

    pass


class ChecksumError(PluginError):
    """Raised when the expected digest for a release is missing or undecodable."""

    pass


class IntegrityError(PluginError):
    """Raised when downloaded bytes do not match the expected digest."""

    pass


class FilesystemError(PluginError):
    """Raised on directory/file create, write or permission failures."""

    pass


class ProtocolError(PluginError):
    """Raised on handshake or RPC channel failures."""

    pass


class RemoteError(PluginError):
    """Raised when a network fetch fails."""

    pass


class UpstreamCommandError(PluginError):
    """
    Error returned by the plugin's own command execution.

    The message is the plugin's message, passed through verbatim.
    """

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code
