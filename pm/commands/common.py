"""
Helpers shared by pm commands.
"""

import asyncio
import contextlib
import signal
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

T = TypeVar("T")


def run_async(factory: Callable[[], Awaitable[T]]) -> T:
    """
    Run a coroutine on a fresh event loop with SIGTERM wired to cancellation.

    Ctrl+C is handled by asyncio.run itself: the main task is cancelled,
    cleanup runs, and KeyboardInterrupt is raised afterwards. SIGTERM cancels
    the main task the same way and surfaces as asyncio.CancelledError.

    Args:
        factory: Zero-argument callable returning the coroutine to run

    Returns:
        The coroutine's result
    """

    async def _main() -> Any:
        loop = asyncio.get_running_loop()
        task = asyncio.current_task()
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGTERM, task.cancel)
        try:
            return await factory()
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGTERM)

    return asyncio.run(_main())
