"""Tests for the remote configuration resolver."""

import asyncio
import datetime

import pytest

from kube_release.backend import InMemoryBackend, StackId
from kube_release.config import OutputReference
from kube_release.exceptions import (
    ConfigurationUnavailable,
    KubectlException,
    OutputNotFoundError,
    StackNotFoundError,
    StaleOutputError,
)
from kube_release.manifest import StackState
from kube_release.resolver import RemoteConfigResolver, StackOutputs

from .conftest import CONFIG_STACK

BASE_URL = OutputReference(stack="rsb-config", output="base_url", namespace="stacks")


async def test_resolve(backend: InMemoryBackend, config_stack: StackState) -> None:
    """Test reading an output exported by another stack."""
    resolver = RemoteConfigResolver(backend)
    assert await resolver.resolve(BASE_URL) == "https://cfg.example/x"
    assert await resolver.resolve_all({"base_url": BASE_URL}) == {
        "base_url": "https://cfg.example/x"
    }


async def test_reads_are_not_cached(
    backend: InMemoryBackend, config_stack: StackState
) -> None:
    """Test upstream changes are visible on the next read."""
    outputs = StackOutputs(backend, CONFIG_STACK)
    assert await outputs.get("base_url") == "https://cfg.example/x"

    config_stack.outputs["base_url"] = "https://cfg.example/y"
    await backend.write_state(CONFIG_STACK, config_stack)
    assert await outputs.get("base_url") == "https://cfg.example/y"


async def test_stack_not_found(backend: InMemoryBackend) -> None:
    resolver = RemoteConfigResolver(backend)
    with pytest.raises(StackNotFoundError, match="stacks/rsb-config"):
        await resolver.resolve(BASE_URL)


async def test_output_not_found(
    backend: InMemoryBackend, config_stack: StackState
) -> None:
    resolver = RemoteConfigResolver(backend)
    with pytest.raises(OutputNotFoundError, match="no output 'api_url'"):
        await resolver.resolve(
            OutputReference(stack="rsb-config", output="api_url", namespace="stacks")
        )


async def test_empty_value_is_valid(backend: InMemoryBackend) -> None:
    """Test an output that exists with an empty value is returned as-is."""
    await backend.write_state(
        CONFIG_STACK, StackState(lineage="x", outputs={"base_url": ""})
    )
    assert await RemoteConfigResolver(backend).resolve(BASE_URL) == ""


async def test_stale_output(backend: InMemoryBackend) -> None:
    """Test state older than the maximum age is rejected."""
    await backend.write_state(
        CONFIG_STACK,
        StackState(
            lineage="x",
            updated_at=datetime.datetime.now(tz=datetime.timezone.utc)
            - datetime.timedelta(days=2),
            outputs={"base_url": "https://cfg.example/x"},
        ),
    )
    resolver = RemoteConfigResolver(backend, max_age=datetime.timedelta(days=1))
    with pytest.raises(StaleOutputError):
        await resolver.resolve(BASE_URL)

    assert await RemoteConfigResolver(backend).resolve(BASE_URL)


class UnreachableBackend(InMemoryBackend):
    """Backend whose reads fail."""

    def __init__(self, err: Exception | None = None, delay: float = 0) -> None:
        super().__init__()
        self._err = err
        self._delay = delay

    async def read_state(self, stack_id: StackId) -> StackState | None:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._err:
            raise self._err
        return await super().read_state(stack_id)


async def test_backend_failure() -> None:
    """Test backend errors surface as unavailable configuration."""
    resolver = RemoteConfigResolver(UnreachableBackend(KubectlException("refused")))
    with pytest.raises(ConfigurationUnavailable, match="refused"):
        await resolver.resolve(BASE_URL)


async def test_backend_timeout() -> None:
    resolver = RemoteConfigResolver(UnreachableBackend(delay=1), timeout=0.01)
    with pytest.raises(ConfigurationUnavailable, match="Timed out"):
        await resolver.resolve(BASE_URL)
