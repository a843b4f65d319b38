"""
Dispatcher Proxy.

Parent-side stub for the plugin's `main` interface.
"""

import logging
from collections.abc import Sequence
from typing import Any

from binplug.rpc.client import RPCClient
from binplug.rpc.protocol import RUN_COMMAND_METHOD

logger = logging.getLogger(__name__)


class DispatcherProxy:
    """
    Forwards command invocations to the plugin.

    Each run_command() is exactly one RPC round trip; failures are not retried.
    """

    def __init__(self, client: RPCClient):
        self._client = client

    async def run_command(self, args: Sequence[str]) -> Any:
        """
        Run a command inside the plugin.

        Args:
            args: Command-line arguments for the plugin

        Returns:
            The plugin's result value

        Raises:
            UpstreamCommandError: If the plugin's command fails
            ProtocolError: If the channel fails
        """
        argv = [str(arg) for arg in args]
        logger.debug("Dispatching %s %r", RUN_COMMAND_METHOD, argv)
        return await self._client.request(RUN_COMMAND_METHOD, {"args": argv})
