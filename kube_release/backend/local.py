"""State backend storing stack state in a local directory.

Each stack is stored as `<root>/<namespace>/<stack>.yaml` and locked by the
exclusive creation of `<root>/<namespace>/<stack>.lock`. This is useful for
a single CI runner with a persistent workspace and for local development.
"""

import logging
from pathlib import Path
from typing import cast

import aiofiles
import aiofiles.os

from kube_release.exceptions import InputException, LockContention, ReleaseException
from kube_release.manifest import StackState

from .backend import LockInfo, StackId, StateBackend

_LOGGER = logging.getLogger(__name__)


class LocalBackend(StateBackend):
    """StateBackend backed by files in a local directory."""

    def __init__(self, root: Path) -> None:
        """Initialize LocalBackend."""
        self._root = root

    def state_path(self, stack_id: StackId) -> Path:
        return self._root / stack_id.namespace / f"{stack_id.stack}.yaml"

    def lock_path(self, stack_id: StackId) -> Path:
        return self._root / stack_id.namespace / f"{stack_id.stack}.lock"

    async def read_state(self, stack_id: StackId) -> StackState | None:
        """Return the persisted state of a stack."""
        path = self.state_path(stack_id)
        try:
            async with aiofiles.open(str(path)) as state_file:
                content = await state_file.read()
        except FileNotFoundError:
            _LOGGER.debug("No state found at %s", path)
            return None
        if not content:
            raise InputException(f"State file {path} is empty")
        return cast(StackState, StackState.parse_yaml(content))

    async def write_state(self, stack_id: StackId, state: StackState) -> None:
        """Persist the state of a stack, replacing the file atomically."""
        path = self.state_path(stack_id)
        await aiofiles.os.makedirs(str(path.parent), exist_ok=True)
        tmp_path = path.with_suffix(".yaml.tmp")
        async with aiofiles.open(str(tmp_path), mode="w") as state_file:
            await state_file.write(state.yaml())
        await aiofiles.os.replace(str(tmp_path), str(path))
        _LOGGER.debug("Wrote state %s serial %d to %s", stack_id, state.serial, path)

    async def acquire_lock(self, stack_id: StackId, info: LockInfo) -> LockInfo:
        """Acquire the lock by exclusively creating the lock file."""
        path = self.lock_path(stack_id)
        await aiofiles.os.makedirs(str(path.parent), exist_ok=True)
        try:
            async with aiofiles.open(str(path), mode="x") as lock_file:
                await lock_file.write(info.yaml())
        except FileExistsError:
            holder = await self._read_lock(path)
            raise LockContention(str(stack_id), str(holder) if holder else None)
        return info

    async def release_lock(self, stack_id: StackId, info: LockInfo) -> None:
        """Release the lock by removing the lock file."""
        path = self.lock_path(stack_id)
        holder = await self._read_lock(path)
        if holder is None:
            _LOGGER.warning("Lock for %s was already released", stack_id)
            return
        if holder.id != info.id:
            raise ReleaseException(
                f"Lock for {stack_id} is held by {holder}, not {info.id}"
            )
        await aiofiles.os.remove(str(path))

    async def _read_lock(self, path: Path) -> LockInfo | None:
        try:
            async with aiofiles.open(str(path)) as lock_file:
                content = await lock_file.read()
        except FileNotFoundError:
            return None
        return cast(LockInfo, LockInfo.parse_yaml(content))
