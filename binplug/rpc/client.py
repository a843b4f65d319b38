"""
Plugin RPC Client.

JSON-RPC 2.0 over a connected stream to the plugin process.

Key features:
- Newline-delimited envelopes
- Background response reader resolving pending requests
- Error mapping: reserved JSON-RPC codes are ProtocolError, everything else
  the plugin returns is UpstreamCommandError
- No automatic retries
"""

import asyncio
import contextlib
import itertools
import json
import logging
from typing import Any

from binplug.errors import ProtocolError, UpstreamCommandError
from binplug.rpc.protocol import RPCRequest, RPCResponse

logger = logging.getLogger(__name__)

# Upper bound on one envelope line
MAX_LINE_BYTES = 16 * 1024 * 1024


class RPCClient:
    """
    RPC client bound to one connected stream.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """
        Initialize RPCClient.

        Args:
            reader: Stream from the plugin
            writer: Stream to the plugin
        """
        self._reader = reader
        self._writer = writer
        self._ids = itertools.count(1)
        self._pending_requests: dict[int, asyncio.Future] = {}
        self._reader_task: asyncio.Task | None = None
        self._running = False
        self._closed = False

    @classmethod
    async def connect(cls, network: str, address: str) -> "RPCClient":
        """
        Connect to a plugin's advertised address.

        Args:
            network: "tcp" or "unix"
            address: host:port or socket path

        Raises:
            ProtocolError: If the connection fails
        """
        try:
            if network == "unix":
                reader, writer = await asyncio.open_unix_connection(
                    address, limit=MAX_LINE_BYTES
                )
            else:
                host, _, port = address.rpartition(":")
                reader, writer = await asyncio.open_connection(
                    host.strip("[]"), int(port), limit=MAX_LINE_BYTES
                )
        except (OSError, ValueError) as e:
            raise ProtocolError(
                f"Failed to connect to plugin at {network}:{address}: {e}"
            ) from e

        client = cls(reader, writer)
        client.start()
        return client

    def start(self) -> None:
        """Begin reading responses."""
        if self._running:
            return
        self._running = True
        self._reader_task = asyncio.create_task(self._read_responses())

    async def stop(self) -> None:
        """Close the stream and fail any pending requests."""
        if not self._running:
            return

        self._running = False

        if self._reader_task:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task

        self._writer.close()
        with contextlib.suppress(OSError, ConnectionError):
            await self._writer.wait_closed()

        self._fail_pending(ProtocolError("RPC client stopped"))

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending_requests.values():
            if not future.done():
                future.set_exception(error)
        self._pending_requests.clear()

    async def _read_responses(self) -> None:
        """Read responses from the plugin."""
        try:
            while self._running:
                line = await self._reader.readline()
                if not line:
                    break

                try:
                    response = RPCResponse.from_jsonrpc(json.loads(line.decode()))
                except (json.JSONDecodeError, UnicodeDecodeError, ProtocolError) as e:
                    self._fail_pending(ProtocolError(f"Invalid response from plugin: {e}"))
                    continue

                future = self._pending_requests.pop(response.id, None)
                if future is None:
                    logger.debug("Dropping response for unknown request id %r", response.id)
                    continue
                if future.done():
                    continue

                if response.is_error():
                    future.set_exception(self._error_from_response(response))
                else:
                    future.set_result(response.result)

            self._closed = True
            self._fail_pending(ProtocolError("Plugin closed the connection"))

        except Exception as e:
            # A dead reader must never leave a request waiting forever
            logger.debug("RPC reader failed: %r", e)
            self._closed = True
            self._fail_pending(ProtocolError(f"Reader error: {e}"))

    @staticmethod
    def _error_from_response(response: RPCResponse) -> Exception:
        error = response.error or {}
        message = str(error.get("message", "unknown error"))
        code = error.get("code")
        if response.is_protocol_error():
            return ProtocolError(f"Plugin rejected request ({code}): {message}")
        return UpstreamCommandError(message, code if isinstance(code, int) else None)

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """
        Send one request and wait for its response.

        Args:
            method: Method name
            params: Method parameters

        Returns:
            Response result

        Raises:
            ProtocolError: If the channel fails or the plugin rejects the call
            UpstreamCommandError: If the plugin's method returns an error
        """
        if not self._running:
            raise ProtocolError("RPC client not running")
        if self._closed:
            raise ProtocolError("Plugin closed the connection")

        request = RPCRequest(id=next(self._ids), method=method, params=params)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_requests[request.id] = future

        try:
            payload = json.dumps(request.to_jsonrpc()) + "\n"
            self._writer.write(payload.encode())
            await self._writer.drain()
        except (OSError, ConnectionError) as e:
            self._pending_requests.pop(request.id, None)
            raise ProtocolError(f"Failed to send request to plugin: {e}") from e

        try:
            return await future
        finally:
            self._pending_requests.pop(request.id, None)
