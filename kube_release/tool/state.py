"""kube-release state action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import cast

from kube_release.backend import StackId
from kube_release.exceptions import StackNotFoundError
from kube_release.pipeline import create_backend

from . import options

_LOGGER = logging.getLogger(__name__)


class StateAction:
    """kube-release state action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "state",
                help="Print the persisted state of a stack",
                description="""Prints the reconciliation state and outputs of
                    this stack, or of another stack in the shared backend.""",
            ),
        )
        options.add_config_flags(args)
        options.add_cluster_flags(args)
        args.add_argument(
            "--stack",
            type=str,
            default=None,
            help="Stack to read, defaults to the stack of the configuration",
        )
        args.add_argument(
            "--stack-namespace",
            type=str,
            default=None,
            help="Backend namespace of the stack to read",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        config: pathlib.Path,
        kubeconfig: pathlib.Path | None,
        kube_context: str | None,
        stack: str | None,
        stack_namespace: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        release_config = await options.load_config(config, **kwargs)
        stack_id = StackId(
            stack_namespace or release_config.backend.namespace,
            stack or release_config.stack,
        )
        with options.kubectl_session(release_config, kubeconfig, kube_context) as kubectl:
            backend = create_backend(release_config, kubectl)
            state = await backend.read_state(stack_id)
        if state is None:
            raise StackNotFoundError(stack_id.namespace, stack_id.stack)
        print(state.yaml(), end="")
