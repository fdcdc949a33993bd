"""kube-release validate action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import cast

from kube_release.manifest import ArtifactReference

from . import options

_LOGGER = logging.getLogger(__name__)


class ValidateAction:
    """kube-release validate action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "validate",
                help="Render and validate the desired resources",
                description="""Resolves configuration and renders the desired
                    resources without reading or changing the cluster. Secret
                    values are replaced by placeholders in the output.""",
            ),
        )
        options.add_config_flags(args)
        options.add_cluster_flags(args)
        args.add_argument(
            "--output-file",
            type=str,
            default="/dev/stdout",
            help="Output file for the results of the command",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config: pathlib.Path,
        tag: str | None,
        kubeconfig: pathlib.Path | None,
        kube_context: str | None,
        output_file: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        release_config = await options.load_config(config, **kwargs)
        artifact = ArtifactReference(
            release_config.image.repository,
            options.commit_tag(release_config, tag),
        )
        with options.kubectl_session(release_config, kubeconfig, kube_context) as kubectl:
            pipeline = options.create_pipeline(release_config, kubectl)
            desired = await pipeline.render(artifact)
            pipeline.applier().validate(desired)
        with open(output_file, "w") as file:
            print(desired.yaml(redact=True), end="", file=file)
