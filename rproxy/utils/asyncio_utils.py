import asyncio
import os
import time
from collections.abc import Coroutine
from collections.abc import Iterator
from contextlib import contextmanager


def create_task(
    coro: Coroutine,
    *,
    name: str,
    client: tuple | None = None,
) -> asyncio.Task:
    """
    Wrapper around `asyncio.create_task`.

    - Use `client` to pass the client address as additional debug info on the task.

    The event loop only keeps weak references to tasks, so the caller must hold on to the result.
    """
    t = asyncio.create_task(coro)
    set_task_debug_info(t, name=name, client=client)
    return t


def set_task_debug_info(
    task: asyncio.Task,
    *,
    name: str,
    client: tuple | None = None,
) -> None:
    """Set debug info for an externally-spawned task."""
    task.created = time.time()  # type: ignore
    if __debug__ is True and (test := os.environ.get("PYTEST_CURRENT_TEST", None)):
        name = f"{name} [created in {test}]"
    task.set_name(name)
    if client:
        task.client = client  # type: ignore


@contextmanager
def install_exception_handler(handler) -> Iterator[None]:
    loop = asyncio.get_running_loop()
    existing = loop.get_exception_handler()
    loop.set_exception_handler(handler)
    try:
        yield
    finally:
        loop.set_exception_handler(existing)
