"""
Plugin Launcher.

Spawns an installed plugin binary, negotiates the handshake and connects the
RPC channel.

The child process is owned by the launch() context: it is terminated on every
exit path, including handshake failures, caller errors and cancellation.
The child runs in its own session and is signalled as a process group, so
this module is POSIX only.
"""

import asyncio
import codecs
import contextlib
import hmac
import logging
import os
import signal
import sys
from collections.abc import AsyncIterator
from pathlib import Path
from typing import TextIO

from binplug.config import Settings
from binplug.errors import FilesystemError, ProtocolError
from binplug.plugin.fs import sha256_file
from binplug.rpc.client import RPCClient
from binplug.rpc.dispatcher import DispatcherProxy
from binplug.rpc.protocol import MAIN_INTERFACE, HandshakeConfig, parse_handshake

logger = logging.getLogger(__name__)

FORWARD_DRAIN_TIMEOUT = 2.0
FORWARD_CHUNK_SIZE = 4096


class BinaryNotFoundError(FilesystemError):
    """Raised when the binary for the requested version is not on disk."""

    pass


class PluginClient:
    """
    Handle to a launched plugin.

    Attributes:
        pid: Child process id
    """

    def __init__(self, rpc: RPCClient, pid: int):
        self._rpc = rpc
        self.pid = pid

    def dispense(self, name: str) -> DispatcherProxy:
        """
        Return the proxy for a named plugin interface.

        Raises:
            ProtocolError: If the interface is unknown
        """
        if name != MAIN_INTERFACE:
            raise ProtocolError(f"Unknown plugin interface: {name!r}")
        return DispatcherProxy(self._rpc)


class Launcher:
    """
    Launches one plugin binary.
    """

    def __init__(
        self,
        settings: Settings,
        shortname: str,
        shared_secret: str,
        path: Path,
        checksum: bytes | None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ):
        """
        Initialize Launcher.

        Args:
            settings: Resolved settings
            shortname: Plugin shortname (names the magic cookie key)
            shared_secret: Magic cookie value
            path: Binary to execute
            checksum: Expected SHA-256 of the binary, None to skip pinning
            stdout: Stream receiving the child's stdout (default sys.stdout)
            stderr: Stream receiving the child's stderr (default sys.stderr)
        """
        self.settings = settings
        self.shortname = shortname
        self.handshake = HandshakeConfig.for_plugin(shortname, shared_secret)
        self.path = path
        self.checksum = checksum
        self.stdout = stdout
        self.stderr = stderr

    def _verify_binary(self) -> None:
        if not self.path.is_file():
            raise BinaryNotFoundError(f"Plugin binary not found: {self.path}")

        if self.checksum is None:
            logger.warning(
                "Skipping checksum verification for %s (development build at %s)",
                self.shortname,
                self.path,
            )
            return

        try:
            actual = sha256_file(self.path)
        except FileNotFoundError as e:
            raise BinaryNotFoundError(f"Plugin binary not found: {self.path}") from e

        if not hmac.compare_digest(actual, self.checksum):
            logger.warning(
                "Checksum mismatch for %s at launch: expected %s, got %s",
                self.shortname,
                self.checksum.hex(),
                actual.hex(),
            )
            raise ProtocolError(
                f"Checksums did not match for plugin {self.shortname}, refusing to launch"
            )

    async def _spawn(self) -> asyncio.subprocess.Process:
        try:
            # New session so the whole process group can be signalled
            process = await asyncio.create_subprocess_exec(
                str(self.path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.handshake.child_env(dict(os.environ)),
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise BinaryNotFoundError(f"Plugin binary not found: {self.path}") from e
        except OSError as e:
            raise ProtocolError(f"Failed to start plugin {self.shortname}: {e}") from e

        logger.debug("Plugin %s spawned (PID %d)", self.shortname, process.pid)
        return process

    async def _forward(self, source: asyncio.StreamReader, target: TextIO) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await source.read(FORWARD_CHUNK_SIZE)
            text = decoder.decode(chunk, final=not chunk)
            if text:
                target.write(text)
                target.flush()
            if not chunk:
                return

    async def _read_handshake(self, process: asyncio.subprocess.Process) -> str:
        assert process.stdout is not None
        try:
            line = await asyncio.wait_for(
                process.stdout.readline(), timeout=self.settings.handshake_timeout
            )
        except TimeoutError:
            raise ProtocolError(
                f"Timed out after {self.settings.handshake_timeout}s waiting for "
                f"plugin {self.shortname} to complete the handshake"
            ) from None
        except ValueError as e:
            # readline() raises ValueError when the line overruns the stream limit
            raise ProtocolError(
                f"Plugin {self.shortname} sent an oversized handshake line: {e}"
            ) from e
        if not line:
            returncode = await process.wait()
            raise ProtocolError(
                f"Plugin {self.shortname} exited (status {returncode}) before "
                f"completing the handshake"
            )
        return line.decode(errors="replace")

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Stop the child: SIGTERM to its group, then SIGKILL after the grace period."""
        if process.returncode is not None:
            return

        self._signal(process, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), timeout=self.settings.kill_grace)
            return
        except TimeoutError:
            logger.debug("Plugin %s ignored SIGTERM, killing", self.shortname)
        except asyncio.CancelledError:
            self._signal(process, signal.SIGKILL)
            raise

        self._signal(process, signal.SIGKILL)
        await process.wait()

    async def _drain(self, forwarders: list[asyncio.Task]) -> None:
        """Let output forwarders reach EOF, then cancel any that are still running."""
        try:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    asyncio.gather(*forwarders, return_exceptions=True),
                    timeout=FORWARD_DRAIN_TIMEOUT,
                )
        finally:
            for task in forwarders:
                task.cancel()

    def _signal(self, process: asyncio.subprocess.Process, sig: int) -> None:
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()

    @contextlib.asynccontextmanager
    async def launch(self) -> AsyncIterator[PluginClient]:
        """
        Spawn the plugin and connect to it.

        Yields:
            PluginClient bound to the running child

        Raises:
            BinaryNotFoundError: If the binary is missing
            ProtocolError: On checksum mismatch, handshake failure or
                connection failure
        """
        self._verify_binary()

        process = await self._spawn()
        forwarders: list[asyncio.Task] = []
        rpc: RPCClient | None = None
        try:
            assert process.stderr is not None and process.stdout is not None
            forwarders.append(
                asyncio.create_task(self._forward(process.stderr, self.stderr or sys.stderr))
            )

            handshake = parse_handshake(await self._read_handshake(process))
            logger.debug(
                "Plugin %s handshake ok: %s %s", self.shortname, handshake.network, handshake.address
            )

            forwarders.append(
                asyncio.create_task(self._forward(process.stdout, self.stdout or sys.stdout))
            )
            rpc = await RPCClient.connect(handshake.network, handshake.address)

            yield PluginClient(rpc, process.pid)
        finally:
            try:
                if rpc is not None:
                    await rpc.stop()
            finally:
                try:
                    await self._terminate(process)
                finally:
                    await self._drain(forwarders)
            logger.debug("Plugin %s terminated", self.shortname)
