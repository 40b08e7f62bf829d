"""Utilities to execute coroutines on the main asyncio loop from sync contexts."""

from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, Optional, TypeVar


_loop: Optional[asyncio.AbstractEventLoop] = None
T = TypeVar("T")


def set_main_loop(loop: Optional[asyncio.AbstractEventLoop]) -> None:
    global _loop
    _loop = loop


def get_main_loop() -> asyncio.AbstractEventLoop:
    if _loop is None:
        raise RuntimeError("Asyncio loop is not initialized")
    return _loop


def run_coroutine_sync(coro: Awaitable[T], timeout: Optional[float] = None) -> T:
    """Block the calling thread until ``coro`` finishes on the main loop."""
    future = asyncio.run_coroutine_threadsafe(coro, get_main_loop())
    return future.result(timeout)


def start_background_loop() -> asyncio.AbstractEventLoop:
    """Run a fresh event loop in a daemon thread and make it the main loop.

    Used when Flask is served by its own WSGI server instead of from inside
    the aiohttp application loop.
    """
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, name="lottery-loop", daemon=True)
    thread.start()
    set_main_loop(loop)
    return loop


def stop_background_loop(loop: asyncio.AbstractEventLoop) -> None:
    loop.call_soon_threadsafe(loop.stop)
    if _loop is loop:
        set_main_loop(None)
