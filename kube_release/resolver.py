"""Library for reading outputs of independently managed stacks.

Another stack (for example the one that deploys a configuration service)
persists its state in the shared backend and exports named outputs. This
module reads those outputs without any direct API between the stacks:

```python
from kube_release.backend import LocalBackend, StackId
from kube_release.resolver import StackOutputs

outputs = StackOutputs(LocalBackend(Path(".state")), StackId("stacks", "rsb-config"))
base_url = await outputs.get("base_url")
```

Nothing is cached: every call reads the backend again, so upstream changes
propagate on the next run.
"""

import asyncio
from collections.abc import Mapping
import datetime
import logging
from typing import Any

from .backend import StackId, StateBackend
from .command import DEFAULT_TIMEOUT
from .config import OutputReference
from .exceptions import (
    CommandException,
    ConfigurationUnavailable,
    OutputNotFoundError,
    StackNotFoundError,
    StaleOutputError,
)
from .manifest import StackState

__all__ = [
    "StackOutputs",
    "RemoteConfigResolver",
]

_LOGGER = logging.getLogger(__name__)


class StackOutputs:
    """Read-only view of the outputs of a single stack."""

    def __init__(
        self,
        backend: StateBackend,
        stack_id: StackId,
        max_age: datetime.timedelta | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize StackOutputs."""
        self._backend = backend
        self._stack_id = stack_id
        self._max_age = max_age
        self._timeout = timeout

    async def _state(self) -> StackState:
        try:
            state = await asyncio.wait_for(
                self._backend.read_state(self._stack_id), self._timeout
            )
        except asyncio.TimeoutError as err:
            raise ConfigurationUnavailable(
                f"Timed out reading state of stack {self._stack_id}"
            ) from err
        except CommandException as err:
            raise ConfigurationUnavailable(
                f"Unable to read state of stack {self._stack_id}: {err}"
            ) from err
        if state is None:
            raise StackNotFoundError(self._stack_id.namespace, self._stack_id.stack)
        if self._max_age is not None:
            age = state.age()
            if age is None or age > self._max_age:
                raise StaleOutputError(
                    f"State of stack {self._stack_id} was last written "
                    f"{state.updated_at or 'never'}, older than {self._max_age}"
                )
        return state

    async def get(self, key: str) -> Any:
        """Return the current value of an output.

        An empty value is a valid output and is returned as-is.

        Raises:
            StackNotFoundError: If the stack has never been applied.
            OutputNotFoundError: If the stack does not export the output.
            StaleOutputError: If the stack state is older than the maximum age.
        """
        state = await self._state()
        if key not in state.outputs:
            raise OutputNotFoundError(
                self._stack_id.namespace, self._stack_id.stack, key
            )
        return state.outputs[key]


class RemoteConfigResolver:
    """Resolves configuration values from outputs of other stacks."""

    def __init__(
        self,
        backend: StateBackend,
        max_age: datetime.timedelta | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize RemoteConfigResolver."""
        self._backend = backend
        self._max_age = max_age
        self._timeout = timeout

    def outputs(self, namespace: str, stack: str) -> StackOutputs:
        """Return the outputs capability for a stack."""
        return StackOutputs(
            self._backend,
            StackId(namespace, stack),
            max_age=self._max_age,
            timeout=self._timeout,
        )

    async def resolve(self, ref: OutputReference) -> Any:
        """Return the current value of a single output."""
        value = await self.outputs(ref.namespace, ref.stack).get(ref.output)
        _LOGGER.debug("Resolved output %s", ref)
        return value

    async def resolve_all(self, refs: Mapping[str, OutputReference]) -> dict[str, Any]:
        """Resolve a mapping of local keys to stack outputs."""
        result: dict[str, Any] = {}
        for key in sorted(refs):
            result[key] = await self.resolve(refs[key])
        _LOGGER.info("Resolved %d remote outputs", len(result))
        return result
