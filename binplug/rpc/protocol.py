"""
Plugin wire protocol.

Handshake:
    The parent exports `plugin_<shortname>=<magic cookie>` and
    PLUGIN_PROTOCOL_VERSIONS to the child. The child refuses to serve unless
    the cookie matches, then prints one line on stdout:

        CORE_VERSION|APP_VERSION|NETWORK|ADDRESS|PROTOCOL

    e.g. `1|1|tcp|127.0.0.1:51234|jsonrpc`. The parent connects to ADDRESS.

Channel:
    Newline-delimited JSON-RPC 2.0 envelopes over the connected socket.
"""

from dataclasses import dataclass
from typing import Any

from binplug.errors import ProtocolError

CORE_PROTOCOL_VERSION = 1
APP_PROTOCOL_VERSION = 1
PROTOCOL_NAME = "jsonrpc"
PROTOCOL_VERSIONS_ENV = "PLUGIN_PROTOCOL_VERSIONS"
SUPPORTED_NETWORKS = ("tcp", "unix")

MAIN_INTERFACE = "main"
RUN_COMMAND_METHOD = "main.RunCommand"

# JSON-RPC 2.0 reserves -32768..-32000 for protocol-level errors
RESERVED_ERROR_MIN = -32768
RESERVED_ERROR_MAX = -32000


@dataclass(frozen=True)
class HandshakeConfig:
    """
    Values both sides must agree on before the channel is trusted.

    Attributes:
        protocol_version: Application protocol version
        magic_cookie_key: Environment variable carrying the cookie
        magic_cookie_value: Shared secret from the manifest
    """

    protocol_version: int
    magic_cookie_key: str
    magic_cookie_value: str

    @classmethod
    def for_plugin(cls, shortname: str, shared_secret: str) -> "HandshakeConfig":
        return cls(
            protocol_version=APP_PROTOCOL_VERSION,
            magic_cookie_key=f"plugin_{shortname}",
            magic_cookie_value=shared_secret,
        )

    def child_env(self, base: dict[str, str]) -> dict[str, str]:
        """Environment for the child: base plus cookie and protocol versions."""
        env = dict(base)
        env[self.magic_cookie_key] = self.magic_cookie_value
        env[PROTOCOL_VERSIONS_ENV] = str(self.protocol_version)
        return env


@dataclass(frozen=True)
class Handshake:
    """
    Parsed handshake line.

    Attributes:
        core_version: Core protocol version
        app_version: Application protocol version
        network: "tcp" or "unix"
        address: host:port or socket path
        protocol: Channel encoding
    """

    core_version: int
    app_version: int
    network: str
    address: str
    protocol: str


def parse_handshake(line: str, expected_app_version: int = APP_PROTOCOL_VERSION) -> Handshake:
    """
    Parse and check the child's handshake line.

    Args:
        line: First stdout line of the child
        expected_app_version: Application protocol version the parent speaks

    Returns:
        Handshake object

    Raises:
        ProtocolError: If the line is malformed or versions/protocol differ
    """
    parts = line.strip().split("|")
    if len(parts) != 5:
        raise ProtocolError(f"Unrecognized handshake line from plugin: {line.strip()!r}")

    core, app, network, address, protocol = parts
    try:
        core_version = int(core)
        app_version = int(app)
    except ValueError as e:
        raise ProtocolError(f"Invalid protocol versions in handshake: {line.strip()!r}") from e

    if core_version != CORE_PROTOCOL_VERSION:
        raise ProtocolError(
            f"Incompatible core protocol version {core_version}, "
            f"expected {CORE_PROTOCOL_VERSION}"
        )
    if app_version != expected_app_version:
        raise ProtocolError(
            f"Incompatible plugin protocol version {app_version}, "
            f"expected {expected_app_version}"
        )
    if network not in SUPPORTED_NETWORKS:
        raise ProtocolError(f"Unsupported network type in handshake: {network!r}")
    if not address:
        raise ProtocolError("Handshake carries an empty address")
    if protocol != PROTOCOL_NAME:
        raise ProtocolError(f"Unsupported channel protocol {protocol!r}")

    return Handshake(
        core_version=core_version,
        app_version=app_version,
        network=network,
        address=address,
        protocol=protocol,
    )


@dataclass
class RPCRequest:
    """
    RPC request.

    Attributes:
        id: Request ID
        method: Method name
        params: Method parameters
    """

    id: int
    method: str
    params: dict[str, Any] | None = None

    def to_jsonrpc(self) -> dict[str, Any]:
        """Convert to JSON-RPC 2.0 format."""
        request = {
            "jsonrpc": "2.0",
            "id": self.id,
            "method": self.method,
        }
        if self.params is not None:
            request["params"] = self.params
        return request


@dataclass
class RPCResponse:
    """
    RPC response.

    Attributes:
        id: Request ID
        result: Result data (if success)
        error: Error data (if error)
    """

    id: int
    result: Any | None = None
    error: dict[str, Any] | None = None

    @classmethod
    def from_jsonrpc(cls, data: Any) -> "RPCResponse":
        """
        Parse from JSON-RPC 2.0 format.

        Raises:
            ProtocolError: If the envelope is not a JSON-RPC response
        """
        if not isinstance(data, dict) or data.get("jsonrpc") != "2.0":
            raise ProtocolError(f"Malformed response envelope: {data!r}")
        if "result" not in data and "error" not in data:
            raise ProtocolError("Response envelope has neither result nor error")
        response_id = data.get("id")
        if not isinstance(response_id, int) or isinstance(response_id, bool):
            raise ProtocolError(f"Response id must be an integer, got {response_id!r}")
        error = data.get("error")
        if error is not None and not isinstance(error, dict):
            raise ProtocolError(f"Malformed error object: {error!r}")
        return cls(id=response_id, result=data.get("result"), error=error)

    def is_error(self) -> bool:
        """Check if response is an error."""
        return self.error is not None

    def is_protocol_error(self) -> bool:
        """Check if the error code lies in the JSON-RPC reserved range."""
        if self.error is None:
            return False
        code = self.error.get("code")
        return isinstance(code, int) and RESERVED_ERROR_MIN <= code <= RESERVED_ERROR_MAX
