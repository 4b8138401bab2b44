from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import anyio

T = TypeVar("T")


def run_async(func: Callable[[], Awaitable[T]], *, timeout: float | None = None) -> T:
    """
    Run an async gateway call from a CLI command.

    Takes a zero-argument callable so nothing is awaited (or left unawaited)
    when called from inside a running loop, which is an error.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        pass
    else:
        raise RuntimeError("run_async called from async context; use await instead")

    async def _runner() -> T:
        with anyio.fail_after(timeout):
            return await func()

    return anyio.run(_runner)
