"""kube-release build action."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
    BooleanOptionalAction,
)
import logging
import pathlib
from typing import cast

from . import options

_LOGGER = logging.getLogger(__name__)


class BuildAction:
    """kube-release build action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "build",
                help="Build and publish the workload image",
                description="""Builds the container image for every configured
                    platform and pushes it tagged with the commit identifier. An
                    image already published under the tag is reused.""",
            ),
        )
        options.add_config_flags(args)
        args.add_argument(
            "--push",
            type=bool,
            default=True,
            action=BooleanOptionalAction,
            help="Publish the image to the registry",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config: pathlib.Path,
        tag: str | None,
        push: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        release_config = await options.load_config(config, **kwargs)
        with options.kubectl_session(release_config) as kubectl:
            pipeline = options.create_pipeline(release_config, kubectl)
            artifact = await pipeline.build(
                options.commit_tag(release_config, tag), push=push
            )
        print(artifact)
