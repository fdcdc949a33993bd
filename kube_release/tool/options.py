"""Shared command line flags and helpers for kube-release actions."""

from argparse import ArgumentParser
from collections.abc import Generator
from contextlib import contextmanager
import logging
import os
import pathlib
import sys
from typing import TextIO

from kube_release import git_repo
from kube_release.builder import ImageBuilder, OrasRegistry
from kube_release.cluster import KubectlCluster
from kube_release.config import ReleaseConfig, read_config
from kube_release.kubectl import Kubectl, kubeconfig_file
from kube_release.manifest import Topology
from kube_release.pipeline import ReleasePipeline, create_backend
from kube_release.resource_diff import (
    ReconciliationPlan,
    perform_json_diff,
    perform_object_diff,
    perform_yaml_diff,
)

_LOGGER = logging.getLogger(__name__)

KUBE_CONFIG_ENV = "KUBE_CONFIG"
REGISTRY_USERNAME_ENV = "REGISTRY_USERNAME"
REGISTRY_PASSWORD_ENV = "REGISTRY_PASSWORD"

DEFAULT_CONFIG = "release.yaml"


def add_config_flags(args: ArgumentParser) -> None:
    """Add flags selecting the release configuration."""
    args.add_argument(
        "--config",
        "-c",
        type=pathlib.Path,
        default=pathlib.Path(DEFAULT_CONFIG),
        help="Path to the release configuration file",
    )
    args.add_argument(
        "--topology",
        choices=[topology.value for topology in Topology],
        default=None,
        help="Workload shape, overrides the configuration file",
    )
    args.add_argument(
        "--tag",
        type=str,
        default=None,
        help=(
            "Commit identifier used as the image tag, defaults to "
            f"${git_repo.COMMIT_ENV} or the checked out commit"
        ),
    )


def add_cluster_flags(args: ArgumentParser) -> None:
    """Add flags selecting the target cluster."""
    args.add_argument(
        "--kubeconfig",
        type=pathlib.Path,
        default=None,
        help=f"Path to a kubeconfig file, defaults to the content of ${KUBE_CONFIG_ENV}",
    )
    args.add_argument(
        "--kube-context",
        type=str,
        default=None,
        help="Name of the kubeconfig context to use",
    )


def add_output_flags(args: ArgumentParser) -> None:
    """Add flags controlling how a plan is printed."""
    args.add_argument(
        "--output",
        "-o",
        choices=["diff", "yaml", "json"],
        default="diff",
        help="Output format of the plan",
    )
    args.add_argument(
        "--unified",
        "-u",
        type=int,
        default=3,
        help="output NUM (default 3) lines of unified context",
    )
    args.add_argument(
        "--limit-bytes",
        help="Maximum bytes for each diff output (0=unlimited)",
        type=int,
        default=0,
    )
    args.add_argument(
        "--output-file",
        type=str,
        default="/dev/stdout",
        help="Output file for the results of the command",
    )


async def load_config(config: pathlib.Path, **kwargs) -> ReleaseConfig:  # type: ignore[no-untyped-def]
    """Read the release configuration and apply command line overrides."""
    release_config = await read_config(config)
    if topology := kwargs.get("topology"):
        release_config.topology = Topology(topology)
    return release_config


def commit_tag(release_config: ReleaseConfig, tag: str | None) -> str:
    """Return the image tag for the run."""
    if tag:
        return tag
    return git_repo.source_revision(release_config.base_dir)


@contextmanager
def kubectl_session(
    release_config: ReleaseConfig,
    kubeconfig: pathlib.Path | None = None,
    kube_context: str | None = None,
) -> Generator[Kubectl, None, None]:
    """Yield a kubectl client for the duration of the context.

    Kubeconfig content supplied by the pipeline environment is written to a
    temporary file that is removed when the context exits.
    """
    content = None if kubeconfig else os.environ.get(KUBE_CONFIG_ENV)
    with kubeconfig_file(content) as temp_kubeconfig:
        yield Kubectl(
            kubeconfig=kubeconfig or temp_kubeconfig,
            context=kube_context,
            timeout=release_config.timeout,
        )


def create_pipeline(
    release_config: ReleaseConfig, kubectl: Kubectl
) -> ReleasePipeline:
    """Return the pipeline for the configuration talking to a real cluster."""
    registry = OrasRegistry(
        username=os.environ.get(REGISTRY_USERNAME_ENV),
        password=os.environ.get(REGISTRY_PASSWORD_ENV),
        timeout=release_config.timeout,
    )
    builder = ImageBuilder(
        release_config.image, release_config.base_dir, registry=registry
    )
    return ReleasePipeline(
        release_config,
        cluster=KubectlCluster(kubectl),
        backend=create_backend(release_config, kubectl),
        builder=builder,
    )


def print_plan(
    plan: ReconciliationPlan,
    output: str,
    unified: int,
    limit_bytes: int,
    file: TextIO = sys.stdout,
) -> None:
    """Print the operations of a plan in the requested format."""
    if plan.empty:
        print("No changes", file=file)
        return
    if output == "yaml":
        result = perform_yaml_diff(plan, unified, limit_bytes)
    elif output == "json":
        result = perform_json_diff(plan, unified, limit_bytes)
    else:
        result = perform_object_diff(plan, unified, limit_bytes)
    for line in result:
        print(line, file=file)
