"""Library for issuing kubectl commands against the orchestration platform.

This example reads the live objects of a kind in a namespace:
```python
from kube_release.kubectl import Kubectl

kubectl = Kubectl(kubeconfig=Path("/tmp/kubeconfig"))
for doc in await kubectl.get_objects("Deployment", namespace="booker"):
    print(doc["metadata"]["name"])
```
"""

from collections.abc import Generator
from contextlib import contextmanager
import json
import logging
from pathlib import Path
import tempfile
from typing import Any

from . import command
from .command import Command, DEFAULT_TIMEOUT
from .exceptions import KubectlException

__all__ = [
    "Kubectl",
    "kubeconfig_file",
]

_LOGGER = logging.getLogger(__name__)

KUBECTL_BIN = "kubectl"

ALREADY_EXISTS = "AlreadyExists"


class Kubectl:
    """Library for issuing a kubectl command."""

    def __init__(
        self,
        kubeconfig: Path | None = None,
        context: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        kubectl_bin: str = KUBECTL_BIN,
    ) -> None:
        """Initialize Kubectl."""
        self._kubeconfig = kubeconfig
        self._context = context
        self._timeout = timeout
        self._bin = kubectl_bin

    def command(self, args: list[str]) -> Command:
        """Return the command for the kubectl arguments."""
        cmd = [self._bin]
        if self._kubeconfig:
            cmd.extend(["--kubeconfig", str(self._kubeconfig)])
        if self._context:
            cmd.extend(["--context", self._context])
        cmd.extend(args)
        cmd.append(f"--request-timeout={int(self._timeout)}s")
        return Command(cmd, exc=KubectlException, timeout=self._timeout)

    async def run(self, args: list[str], stdin: bytes | None = None) -> str:
        """Run a kubectl command and return stdout."""
        return await command.run(self.command(args), stdin=stdin)

    async def get_objects(
        self,
        kind: str,
        namespace: str | None = None,
        label_selector: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """Return the live objects of a kind."""
        args = ["get", kind, "--output", "json"]
        if namespace:
            args.extend(["--namespace", namespace])
        if label_selector:
            args.extend(
                [
                    "--selector",
                    ",".join(f"{k}={v}" for k, v in sorted(label_selector.items())),
                ]
            )
        out = await self.run(args)
        doc = _parse_json(out)
        return list(doc.get("items") or []) if doc else []

    async def get_object(
        self, kind: str, name: str, namespace: str | None = None
    ) -> dict[str, Any] | None:
        """Return a single live object or None if it does not exist."""
        args = ["get", kind, name, "--output", "json", "--ignore-not-found"]
        if namespace:
            args.extend(["--namespace", namespace])
        out = await self.run(args)
        return _parse_json(out)

    async def create(self, doc: dict[str, Any]) -> None:
        """Create an object, failing if it already exists."""
        await self.run(["create", "--filename", "-"], stdin=_encode(doc))

    async def replace(self, doc: dict[str, Any]) -> None:
        """Replace an existing object with the document, failing if it does not exist."""
        await self.run(["replace", "--filename", "-"], stdin=_encode(doc))

    async def apply(self, doc: dict[str, Any]) -> None:
        """Create or update an object with a server side apply."""
        await self.run(
            [
                "apply",
                "--server-side",
                "--force-conflicts",
                "--field-manager=kube-release",
                "--filename",
                "-",
            ],
            stdin=_encode(doc),
        )

    async def delete(self, kind: str, name: str, namespace: str | None = None) -> None:
        """Delete an object, ignoring objects that do not exist."""
        args = ["delete", kind, name, "--ignore-not-found", "--wait=true"]
        if namespace:
            args.extend(["--namespace", namespace])
        await self.run(args)


def _encode(doc: dict[str, Any]) -> bytes:
    return json.dumps(doc, sort_keys=True).encode("utf-8")


def _parse_json(out: str) -> dict[str, Any] | None:
    if not out.strip():
        return None
    try:
        return json.loads(out)  # type: ignore[no-any-return]
    except json.JSONDecodeError as err:
        raise KubectlException(f"Unable to parse kubectl output: {err}") from err


@contextmanager
def kubeconfig_file(content: str | None) -> Generator[Path | None, None, None]:
    """Context manager for a temporary kubeconfig written from pipeline secrets.

    The file only exists for the duration of the context so cluster
    credentials are never left on the runner.
    """
    if not content:
        yield None
        return
    with tempfile.NamedTemporaryFile(
        mode="w+",
        prefix="kubeconfig-",
        suffix=".yaml",
    ) as temp_file:
        temp_file.write(content)
        temp_file.flush()
        yield Path(temp_file.name)
