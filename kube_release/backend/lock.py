"""Locking discipline for the shared state backend."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import logging

from kube_release.exceptions import InputException, LockContention

from .backend import LockInfo, StackId, StateBackend

_LOGGER = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 5
DEFAULT_DELAY = 1.0
DEFAULT_FACTOR = 2.0


@asynccontextmanager
async def backend_lock(
    backend: StateBackend,
    stack_id: StackId,
    operation: str = "apply",
    attempts: int = DEFAULT_ATTEMPTS,
    delay: float = DEFAULT_DELAY,
    factor: float = DEFAULT_FACTOR,
) -> AsyncGenerator[LockInfo, None]:
    """Hold the backend lock for a stack for the duration of the context.

    Contention is retried `attempts` times with exponential backoff before
    `LockContention` is raised. The lock is released on every exit path.
    """
    if attempts < 1:
        raise InputException(f"Lock attempts must be at least 1, got {attempts}")
    info = LockInfo(operation=operation)
    wait = delay
    for attempt in range(1, attempts + 1):
        try:
            await backend.acquire_lock(stack_id, info)
            break
        except LockContention as err:
            if attempt == attempts:
                _LOGGER.error(
                    "Giving up on lock for %s after %d attempts", stack_id, attempts
                )
                raise
            _LOGGER.info(
                "Lock for %s is held by %s, retrying in %0.1fs (%d/%d)",
                stack_id,
                err.holder,
                wait,
                attempt,
                attempts,
            )
            await asyncio.sleep(wait)
            wait *= factor

    _LOGGER.debug("Acquired lock for %s (%s)", stack_id, info.id)
    try:
        yield info
    finally:
        await backend.release_lock(stack_id, info)
        _LOGGER.debug("Released lock for %s (%s)", stack_id, info.id)
