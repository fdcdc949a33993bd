"""Exceptions related to kube-release."""

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .applier import OperationResult

__all__ = [
    "ReleaseException",
    "InputException",
    "CommandException",
    "BuildFailure",
    "ConfigurationUnavailable",
    "InvalidDesiredState",
    "ApplyPartialFailure",
    "LockContention",
]


class ReleaseException(Exception):
    """Generic base exception used for this library."""


class InputException(ReleaseException):
    """Raised when the input files or values are not formatted as expected."""


class CommandException(ReleaseException):
    """Raised when there is a failure running a subcommand."""


class KubectlException(CommandException):
    """Raised when there is a failure running a kubectl command."""


class BuildFailure(ReleaseException):
    """Raised when the container image could not be built or published."""


class ConfigurationUnavailable(ReleaseException):
    """Raised when a remote stack output is missing or unreachable."""


class StackNotFoundError(ConfigurationUnavailable):
    """Raised when the referenced stack has never been applied."""

    def __init__(self, namespace: str, stack: str) -> None:
        super().__init__(f"Stack {namespace}/{stack} has no persisted state")
        self.namespace = namespace
        self.stack = stack


class OutputNotFoundError(ConfigurationUnavailable):
    """Raised when a stack exists but does not export the requested output."""

    def __init__(self, namespace: str, stack: str, output: str) -> None:
        super().__init__(f"Stack {namespace}/{stack} has no output '{output}'")
        self.namespace = namespace
        self.stack = stack
        self.output = output


class StaleOutputError(ConfigurationUnavailable):
    """Raised when a stack's state is older than the accepted maximum age."""


class InvalidDesiredState(ReleaseException):
    """Raised when a desired resource set fails validation."""

    def __init__(self, errors: Sequence[str]) -> None:
        super().__init__("Invalid desired state: " + "; ".join(errors))
        self.errors = list(errors)


class ApplyPartialFailure(ReleaseException):
    """Raised when some planned operations did not complete."""

    def __init__(self, results: Sequence["OperationResult"]) -> None:
        self.results = list(results)
        failed = [str(result) for result in self.results if result.failed]
        super().__init__(
            f"Apply failed for {len(failed)} of {len(self.results)} operations: "
            + ", ".join(failed)
        )


class LockContention(ReleaseException):
    """Raised when the backend lock is held by another run."""

    def __init__(self, scope: str, holder: str | None = None) -> None:
        super().__init__(
            f"Lock for {scope} is held by {holder or 'another run'}"
        )
        self.scope = scope
        self.holder = holder


class ObjectNotFoundError(ReleaseException):
    """Raised when an object is not found in the cluster."""


class ObjectExistsError(ReleaseException):
    """Raised when creating an object that already exists in the cluster."""
