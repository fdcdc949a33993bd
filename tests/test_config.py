"""Tests for the release configuration."""

from pathlib import Path

import pytest

from kube_release.config import (
    DEFAULT_PLATFORMS,
    OutputReference,
    parse_config,
    read_config,
)
from kube_release.exceptions import InputException
from kube_release.manifest import Topology

RELEASE_YAML = """\
service: nordic-wellness-booker
namespace: booker
topology: scheduled-job
image:
  repository: docker.io/example/nordic_wellness_booker
  cache_from: type=gha
config_path: assets
remote_outputs:
  base_url:
    namespace: stacks
    stack: rsb-config
    output: base_url
secret_env:
  api_key: RSB_CONFIG_API_KEY
backend:
  type: kubernetes
  namespace: stacks
lock:
  attempts: 3
"""


async def test_read_config(tmp_path: Path) -> None:
    """Test reading a full configuration file."""
    path = tmp_path / "release.yaml"
    path.write_text(RELEASE_YAML)
    config = await read_config(path)

    assert config.service == "nordic-wellness-booker"
    assert config.topology == Topology.SCHEDULED_JOB
    assert config.schedule == "0 5 * * *"
    assert config.image.platforms == DEFAULT_PLATFORMS
    assert config.image.cache_from == "type=gha"
    assert config.remote_outputs == {
        "base_url": OutputReference(
            stack="rsb-config", output="base_url", namespace="stacks"
        )
    }
    assert config.secret_env == {"api_key": "RSB_CONFIG_API_KEY"}
    assert config.required_secret_keys == ["base_url", "api_key"]
    assert config.backend.type == "kubernetes"
    assert config.stack == "nordic-wellness-booker"
    assert config.lock.attempts == 3
    assert config.lock.delay == 1.0
    assert config.base_dir == tmp_path.resolve()
    assert config.resolve_path("assets") == tmp_path.resolve() / "assets"


def test_minimal_config() -> None:
    config = parse_config(
        "service: booker\nnamespace: booker\nimage:\n  repository: example/booker\n"
    )
    assert config.topology == Topology.SERVICE
    assert config.backend.type == "local"
    assert config.max_output_age is None


async def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(InputException, match="not found"):
        await read_config(tmp_path / "release.yaml")


@pytest.mark.parametrize(
    "content",
    [
        "- a\n- b\n",
        "namespace: booker\n",
        "service: booker\nnamespace: booker\nimage:\n  repository: x\ntopology: daemon\n",
        "service: [unclosed\n",
        "service: booker\nnamespace: booker\nimage:\n  repository: x\nlock:\n  attempts: 0\n",
    ],
)
def test_invalid_config(content: str) -> None:
    with pytest.raises(InputException):
        parse_config(content)
