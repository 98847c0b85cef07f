"""Bridge blocking client and storage calls into the asyncio engine."""

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking function in a worker thread without stalling the loop.

    Example:
        tasks = await run_sync(client.get_tasks)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
