"""kube-release plan action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import cast

from . import options

_LOGGER = logging.getLogger(__name__)


class PlanAction:
    """kube-release plan action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "plan",
                help="Print the changes an apply would make",
                description="""Resolves configuration, computes the desired
                    resources and prints the operations that would converge the
                    cluster on them. Nothing is built or changed.""",
            ),
        )
        options.add_config_flags(args)
        options.add_cluster_flags(args)
        options.add_output_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config: pathlib.Path,
        tag: str | None,
        kubeconfig: pathlib.Path | None,
        kube_context: str | None,
        output: str,
        unified: int,
        limit_bytes: int,
        output_file: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        release_config = await options.load_config(config, **kwargs)
        with options.kubectl_session(release_config, kubeconfig, kube_context) as kubectl:
            pipeline = options.create_pipeline(release_config, kubectl)
            report = await pipeline.run(
                options.commit_tag(release_config, tag), plan_only=True
            )
        if report.result is None:
            return
        with open(output_file, "w") as file:
            options.print_plan(
                report.result.plan, output, unified, limit_bytes, file=file
            )
