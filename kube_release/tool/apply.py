"""kube-release apply and release actions."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import cast

from . import options

_LOGGER = logging.getLogger(__name__)


class ApplyAction:
    """kube-release apply action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "apply",
                help="Converge the cluster on an already published image",
                description="""Resolves configuration and applies the desired
                    resources for an image that was published by a previous
                    build.""",
            ),
        )
        options.add_config_flags(args)
        options.add_cluster_flags(args)
        args.set_defaults(cls=cls, skip_build=True)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config: pathlib.Path,
        tag: str | None,
        kubeconfig: pathlib.Path | None,
        kube_context: str | None,
        skip_build: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        release_config = await options.load_config(config, **kwargs)
        with options.kubectl_session(release_config, kubeconfig, kube_context) as kubectl:
            pipeline = options.create_pipeline(release_config, kubectl)
            report = await pipeline.run(
                options.commit_tag(release_config, tag), skip_build=skip_build
            )
        print(report.summary())


class ReleaseAction(ApplyAction):
    """kube-release release action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "release",
                help="Build, publish and apply the workload for a commit",
                description="""Runs the full pipeline: builds and publishes the
                    image tagged with the commit identifier, resolves
                    configuration, then plans and applies the resources.""",
            ),
        )
        options.add_config_flags(args)
        options.add_cluster_flags(args)
        args.set_defaults(cls=cls, skip_build=False)
        return args
