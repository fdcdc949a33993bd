"""Module for computing the difference between desired and live resources.

The result is a `ReconciliationPlan`: the minimal, ordered list of create,
update and delete operations that converge the live cluster on the desired
resource set. Plans can be rendered as unified diffs or structured YAML/JSON
with secret values replaced by placeholders.
"""

from collections.abc import Callable, Generator, Mapping
import copy
from dataclasses import dataclass, field
import difflib
from enum import StrEnum
import json
import logging
from typing import Any

import yaml

from .manifest import (
    CONFIG_MAP_KIND,
    CRON_JOB_KIND,
    DEPLOYMENT_KIND,
    NAMESPACE_KIND,
    SECRET_KIND,
    AppliedResource,
    DesiredResourceSet,
    NamedResource,
    redact_secret,
    workload_references,
)

_LOGGER = logging.getLogger(__name__)

_TRUNCATE = "[Diff truncated by kube-release]"

# Fields populated by the platform that never appear in a desired object.
SERVER_METADATA = [
    "uid",
    "resourceVersion",
    "creationTimestamp",
    "generation",
    "managedFields",
    "selfLink",
]

EXACT_FIELDS = ["data", "binaryData"]

# Records the desired document of the last create or update, without payload
# maps, so fields dropped from the desired object are detected and removed.
LAST_APPLIED_ANNOTATION = "kube-release.io/last-applied"

# Deletions run dependents first so nothing is left referencing a missing object.
_DELETE_ORDER = {
    DEPLOYMENT_KIND: 0,
    CRON_JOB_KIND: 0,
    SECRET_KIND: 1,
    CONFIG_MAP_KIND: 1,
    NAMESPACE_KIND: 3,
}


class Action(StrEnum):
    """Mutation performed on a single resource."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class Operation:
    """A single planned mutation of the live cluster."""

    action: Action
    resource_id: NamedResource
    desired: dict[str, Any] | None = None
    live: dict[str, Any] | None = None

    def __str__(self) -> str:
        return f"{self.action} {self.resource_id}"


@dataclass
class ReconciliationPlan:
    """Ordered operations to converge live state on a desired resource set."""

    desired: DesiredResourceSet
    operations: list[Operation] = field(default_factory=list)
    unchanged: list[NamedResource] = field(default_factory=list)
    """Desired resources already converged."""

    namespace_owned: bool = True
    """True if the target namespace was created by this system."""

    @property
    def empty(self) -> bool:
        """True if applying the plan would not mutate the cluster."""
        return not self.operations

    def summary(self) -> dict[str, int]:
        """Return the number of operations per action."""
        counts = {action.value: 0 for action in Action}
        for op in self.operations:
            counts[op.action.value] += 1
        return counts


def contains(desired: Any, live: Any) -> bool:
    """Return True if every field of the desired value is present in the live value.

    Fields added by the platform (defaults, status, server metadata) are
    ignored. Lists must have the same length and match element-wise. An empty
    desired collection matches an omitted live field.
    """
    if isinstance(desired, dict):
        if live is None:
            return not desired
        if not isinstance(live, dict):
            return False
        return all(contains(value, live.get(key)) for key, value in desired.items())
    if isinstance(desired, list):
        if live is None:
            return not desired
        if not isinstance(live, list) or len(desired) != len(live):
            return False
        return all(contains(a, b) for a, b in zip(desired, live))
    return bool(desired == live)


def applied_fields(doc: dict[str, Any]) -> dict[str, Any]:
    """Return the parts of a desired document recorded as last applied."""
    result = {key: value for key, value in doc.items() if key not in EXACT_FIELDS}
    metadata = dict(result.get("metadata") or {})
    annotations = {
        key: value
        for key, value in (metadata.get("annotations") or {}).items()
        if key != LAST_APPLIED_ANNOTATION
    }
    if annotations:
        metadata["annotations"] = annotations
    else:
        metadata.pop("annotations", None)
    result["metadata"] = metadata
    return copy.deepcopy(result)


def with_last_applied(doc: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of the desired document annotated with its applied fields."""
    result = copy.deepcopy(doc)
    annotations = result.setdefault("metadata", {}).setdefault("annotations", {})
    annotations[LAST_APPLIED_ANNOTATION] = json.dumps(
        applied_fields(doc), sort_keys=True
    )
    return result


def last_applied(live: dict[str, Any]) -> dict[str, Any] | None:
    """Return the fields recorded on a live object by the last create or update."""
    annotations = (live.get("metadata") or {}).get("annotations") or {}
    if not (content := annotations.get(LAST_APPLIED_ANNOTATION)):
        return None
    try:
        return json.loads(content)  # type: ignore[no-any-return]
    except json.JSONDecodeError:
        _LOGGER.warning(
            "Ignoring invalid %s annotation on %s",
            LAST_APPLIED_ANNOTATION,
            (live.get("metadata") or {}).get("name"),
        )
        return None


def converged(desired: dict[str, Any], live: dict[str, Any]) -> bool:
    """Return True if the live object needs no update to match the desired object.

    The desired fields must match the fields recorded by the last apply, so a
    field dropped from the desired object (e.g. a reference to a removed
    Secret) forces an update. Objects without a record are always updated.
    Payload maps of Secrets and ConfigMaps are owned entirely by this system
    and must match exactly so that removed keys are removed from the cluster.
    """
    if last_applied(live) != applied_fields(desired):
        return False
    if not contains(desired, live):
        return False
    for key in EXACT_FIELDS:
        if (desired.get(key) or {}) != (live.get(key) or {}):
            return False
    return True


def strip_server_fields(doc: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of a live object without fields populated by the platform."""
    result = copy.deepcopy(doc)
    result.pop("status", None)
    metadata = result.get("metadata", {})
    for key in SERVER_METADATA:
        metadata.pop(key, None)
    if annotations := metadata.get("annotations"):
        annotations.pop("kubectl.kubernetes.io/last-applied-configuration", None)
        annotations.pop(LAST_APPLIED_ANNOTATION, None)
        if not annotations:
            del metadata["annotations"]
    return result


def project(live: Any, desired: Any) -> Any:
    """Return the parts of the live value that correspond to the desired value."""
    if isinstance(desired, dict) and isinstance(live, dict):
        return {key: project(live[key], desired[key]) for key in desired if key in live}
    if isinstance(desired, list) and isinstance(live, list):
        return [project(a, b) for a, b in zip(live, desired)] + live[len(desired) :]
    return live


def compute_plan(
    desired: DesiredResourceSet,
    live: Mapping[NamedResource, dict[str, Any]],
    prior: Mapping[NamedResource, AppliedResource],
    remnants: set[NamedResource] | None = None,
) -> ReconciliationPlan:
    """Compute the ordered operations that converge live state on the desired set.

    Args:
        desired: The validated desired resource set.
        live: Live objects for every desired, previously applied and remnant resource.
        prior: Resources recorded by the previous reconciliation.
        remnants: Live resources labelled as managed by this service that may be
            left over from a previous workload shape.
    """
    plan = ReconciliationPlan(desired=desired)
    desired_ids = desired.resource_ids()
    namespace_id = NamedResource(NAMESPACE_KIND, None, desired.namespace)

    if namespace_id not in live:
        plan.operations.append(
            Operation(Action.CREATE, namespace_id, desired=desired.get(namespace_id))
        )
    else:
        plan.unchanged.append(namespace_id)
        plan.namespace_owned = prior[namespace_id].owned if namespace_id in prior else False

    candidates = (set(prior) | (remnants or set())) - set(desired_ids)
    deletes: list[Operation] = []
    for resource_id in candidates:
        if (applied := prior.get(resource_id)) is not None and not applied.owned:
            _LOGGER.info("Leaving %s in place, it was not created by this release", resource_id)
            continue
        if (live_doc := live.get(resource_id)) is None:
            _LOGGER.debug("Previously applied %s no longer exists", resource_id)
            continue
        deletes.append(Operation(Action.DELETE, resource_id, live=live_doc))
    deletes.sort(key=lambda op: (_DELETE_ORDER.get(op.resource_id.kind, 2), op.resource_id))

    # Objects still referenced by a workload that is updated in place are
    # deleted after the update so the workload never points at a missing object.
    in_use: set[NamedResource] = set()
    for doc in desired.workloads:
        if (live_doc := live.get(NamedResource.from_doc(doc))) is not None:
            in_use |= workload_references(live_doc)
    plan.operations.extend(op for op in deletes if op.resource_id not in in_use)

    for resource_id in desired_ids:
        if resource_id == namespace_id:
            continue
        doc = desired.get(resource_id)
        if (live_doc := live.get(resource_id)) is None:
            plan.operations.append(Operation(Action.CREATE, resource_id, desired=doc))
        elif doc is not None and not converged(doc, live_doc):
            plan.operations.append(
                Operation(Action.UPDATE, resource_id, desired=doc, live=live_doc)
            )
        else:
            plan.unchanged.append(resource_id)

    plan.operations.extend(op for op in deletes if op.resource_id in in_use)

    _LOGGER.debug("Computed plan %s", plan.summary())
    return plan


def _before_after(op: Operation) -> tuple[list[str], list[str]]:
    def dump(doc: dict[str, Any] | None) -> list[str]:
        if doc is None:
            return []
        return yaml.dump(redact_secret(doc), sort_keys=True).splitlines()

    desired = op.desired
    live = op.live
    if live is not None and desired is not None:
        # Show fields dropped since the last apply as removed
        shape = last_applied(live) or desired
        stripped = strip_server_fields(live)
        live = project(stripped, shape)
        for key in EXACT_FIELDS:
            if key in stripped:
                live[key] = stripped[key]
    elif live is not None:
        live = strip_server_fields(live)
    return dump(live), dump(desired)


def perform_object_diff(
    plan: ReconciliationPlan, n: int = 3, limit_bytes: int = 0
) -> Generator[str, None, None]:
    """Generate unified diffs for every operation in the plan."""
    for op in plan.operations:
        before, after = _before_after(op)
        diff_text = difflib.unified_diff(
            a=before,
            b=after,
            fromfile=f"{op.resource_id} (live)",
            tofile=f"{op.resource_id} ({op.action})",
            n=n,
            lineterm="",
        )
        size = 0
        for line in diff_text:
            size += len(line)
            if limit_bytes and size > limit_bytes:
                yield _TRUNCATE
                break
            yield line


def perform_yaml_diff(
    plan: ReconciliationPlan, n: int = 3, limit_bytes: int = 0
) -> Generator[str, None, None]:
    """Generate a structured YAML description of the plan."""

    def diff_func(diffs: list[dict[str, Any]]) -> str:
        return yaml.dump(diffs, sort_keys=False, explicit_start=True, default_style=None)

    yield from _perform_function_diff(plan, n, limit_bytes, diff_func)


def perform_json_diff(
    plan: ReconciliationPlan, n: int = 3, limit_bytes: int = 0
) -> Generator[str, None, None]:
    """Generate a structured JSON description of the plan."""

    def diff_func(diffs: list[dict[str, Any]]) -> str:
        return json.dumps(diffs, sort_keys=False, indent=4)

    yield from _perform_function_diff(plan, n, limit_bytes, diff_func)


def _perform_function_diff(
    plan: ReconciliationPlan,
    n: int,
    limit_bytes: int,
    diff_func: Callable[[list[dict[str, Any]]], str],
) -> Generator[str, None, None]:
    diffs: list[dict[str, Any]] = []
    for op in plan.operations:
        before, after = _before_after(op)
        diff_content = "\n".join(
            difflib.unified_diff(a=before, b=after, n=n, lineterm="")
        )
        if limit_bytes and len(diff_content) > limit_bytes:
            diff_content = diff_content[:limit_bytes] + "\n" + _TRUNCATE
        diffs.append(
            {
                "action": op.action.value,
                "kind": op.resource_id.kind,
                "namespace": op.resource_id.namespace,
                "name": op.resource_id.name,
                "diff": diff_content,
            }
        )
    if diffs:
        yield diff_func(diffs)
