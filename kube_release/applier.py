"""Reconciling applier for the desired resource set.

The applier converges the live cluster on a desired resource set in three
steps, each of which can be used on its own:

- `validate` checks the desired set without touching the cluster.
- `plan` reads live state and computes the minimal ordered diff, including
  removal of resources applied previously that are no longer desired.
- `apply` executes a plan and records the result in the reconciliation state.

`reconcile` validates first, then plans and applies while holding the backend
lock for the stack.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
import datetime
from enum import StrEnum
import logging
from typing import Any
import uuid

from .backend import StackId, StateBackend, backend_lock
from .backend.lock import DEFAULT_ATTEMPTS, DEFAULT_DELAY, DEFAULT_FACTOR
from .cluster import Cluster
from .config import DEFAULT_REQUIRED_SECRET_KEYS
from .context import trace_context
from .exceptions import (
    ApplyPartialFailure,
    InvalidDesiredState,
    ObjectNotFoundError,
    ReleaseException,
)
from .manifest import (
    CONFIG_MAP_KIND,
    MANAGED_BY,
    MANAGED_BY_LABEL,
    NAME_LABEL,
    NAMESPACE_KIND,
    SECRET_KIND,
    WORKLOAD_KINDS,
    AppliedResource,
    DesiredResourceSet,
    NamedResource,
    StackState,
    config_refs,
    pod_spec,
    secret_refs,
)
from .resource_diff import (
    Action,
    Operation,
    ReconciliationPlan,
    compute_plan,
    with_last_applied,
)

__all__ = [
    "ReconcilingApplier",
    "ApplyResult",
    "OperationResult",
    "OperationStatus",
]

_LOGGER = logging.getLogger(__name__)


class OperationStatus(StrEnum):
    """Outcome of a single planned operation."""

    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"


@dataclass
class OperationResult:
    """Outcome of a single planned operation."""

    operation: Operation
    status: OperationStatus
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.status != OperationStatus.SUCCEEDED

    def __str__(self) -> str:
        if self.error:
            return f"{self.operation} ({self.status}: {self.error})"
        return f"{self.operation} ({self.status})"


@dataclass
class ApplyResult:
    """Outcome of applying a plan."""

    plan: ReconciliationPlan
    results: list[OperationResult] = field(default_factory=list)
    state: StackState | None = None

    @property
    def succeeded(self) -> bool:
        return not any(result.failed for result in self.results)

    def by_status(self, status: OperationStatus) -> list[OperationResult]:
        return [result for result in self.results if result.status == status]


class ReconcilingApplier:
    """Converges live cluster state on a desired resource set."""

    def __init__(
        self,
        cluster: Cluster,
        backend: StateBackend,
        stack_id: StackId,
        required_secret_keys: Sequence[str] = tuple(DEFAULT_REQUIRED_SECRET_KEYS),
        lock_attempts: int = DEFAULT_ATTEMPTS,
        lock_delay: float = DEFAULT_DELAY,
        lock_factor: float = DEFAULT_FACTOR,
    ) -> None:
        """Initialize ReconcilingApplier."""
        self._cluster = cluster
        self._backend = backend
        self._stack_id = stack_id
        self._required_secret_keys = list(required_secret_keys)
        self._lock_attempts = lock_attempts
        self._lock_delay = lock_delay
        self._lock_factor = lock_factor

    def validate(self, desired: DesiredResourceSet) -> None:
        """Check the structure of the desired set.

        Raises:
            InvalidDesiredState: Describing every problem found.
        """
        errors: list[str] = []
        if not desired.namespace:
            errors.append("namespace is empty")

        seen: set[NamedResource] = set()
        for doc in desired.objects:
            try:
                resource_id = NamedResource.from_doc(doc)
            except ReleaseException as err:
                errors.append(str(err))
                continue
            if resource_id in seen:
                errors.append(f"{resource_id} is declared more than once")
            seen.add(resource_id)
            if resource_id.kind == NAMESPACE_KIND:
                if resource_id.name != desired.namespace:
                    errors.append(f"unexpected namespace {resource_id.name}")
            elif resource_id.namespace != desired.namespace:
                errors.append(
                    f"{resource_id} is not in namespace '{desired.namespace}'"
                )
        if NamedResource(NAMESPACE_KIND, None, desired.namespace) not in seen:
            errors.append(f"namespace '{desired.namespace}' is not declared")

        workloads = desired.workloads
        if len(workloads) != 1:
            errors.append(f"expected exactly one workload, found {len(workloads)}")
        for workload in workloads:
            errors.extend(self._validate_workload(desired, workload))

        if errors:
            raise InvalidDesiredState(errors)
        _LOGGER.debug("Desired state for %s is valid", desired.namespace)

    def _validate_workload(
        self, desired: DesiredResourceSet, workload: dict[str, Any]
    ) -> list[str]:
        errors: list[str] = []
        if workload.get("kind") != desired.topology.workload_kind:
            errors.append(
                f"workload kind {workload.get('kind')} does not match "
                f"topology {desired.topology}"
            )
        pod = pod_spec(workload)
        containers = pod.get("containers") or []
        if not containers:
            errors.append("workload has no containers")
        for container in containers:
            if container.get("image") != desired.artifact.image:
                errors.append(
                    f"container image {container.get('image')} is not pinned "
                    f"to {desired.artifact.image}"
                )
        if not desired.artifact.tag:
            errors.append("image reference has no tag")

        for name in sorted(config_refs(pod)):
            if desired.get(NamedResource(CONFIG_MAP_KIND, desired.namespace, name)) is None:
                errors.append(f"workload references missing ConfigMap {name}")
        for name in sorted(secret_refs(pod)):
            secret = desired.get(NamedResource(SECRET_KIND, desired.namespace, name))
            if secret is None:
                errors.append(f"workload references missing Secret {name}")
                continue
            data = secret.get("data") or {}
            for key in self._required_secret_keys:
                if key not in data:
                    errors.append(f"Secret {name} is missing required key '{key}'")
        return errors

    async def read_live(
        self, desired: DesiredResourceSet, prior: dict[NamedResource, AppliedResource]
    ) -> tuple[dict[NamedResource, dict[str, Any]], set[NamedResource]]:
        """Read the live objects relevant to the plan.

        Returns the live objects keyed by identifier and the identifiers of
        live workloads labelled as belonging to this service.
        """
        live: dict[NamedResource, dict[str, Any]] = {}
        for resource_id in sorted(set(desired.resource_ids()) | set(prior)):
            if (doc := await self._cluster.get_object(resource_id)) is not None:
                live[resource_id] = doc

        remnants: set[NamedResource] = set()
        if desired.workloads:
            name = desired.workloads[0]["metadata"]["name"]
            selector = {NAME_LABEL: name, MANAGED_BY_LABEL: MANAGED_BY}
            namespace_id = NamedResource(NAMESPACE_KIND, None, desired.namespace)
            if namespace_id in live:
                for kind in WORKLOAD_KINDS:
                    for doc in await self._cluster.list_objects(
                        kind, namespace=desired.namespace, label_selector=selector
                    ):
                        resource_id = NamedResource.from_doc(doc)
                        remnants.add(resource_id)
                        live.setdefault(resource_id, doc)
        return live, remnants

    async def plan(
        self, desired: DesiredResourceSet, state: StackState | None
    ) -> ReconciliationPlan:
        """Compute the plan for a validated desired set against live state."""
        prior = state.resource_ids if state else {}
        live, remnants = await self.read_live(desired, prior)
        plan = compute_plan(desired, live, prior, remnants)
        _LOGGER.info(
            "Plan for %s: %s",
            self._stack_id,
            ", ".join(f"{count} to {action}" for action, count in plan.summary().items()),
        )
        return plan

    async def _execute(self, op: Operation) -> None:
        if op.action == Action.CREATE and op.desired is not None:
            await self._cluster.create(with_last_applied(op.desired))
        elif op.action == Action.UPDATE and op.desired is not None:
            await self._cluster.update(with_last_applied(op.desired))
        elif op.action == Action.DELETE:
            try:
                await self._cluster.delete(op.resource_id)
            except ObjectNotFoundError:
                _LOGGER.info("%s was already deleted", op.resource_id)
        else:
            raise ReleaseException(f"Operation {op} has no desired object")

    async def apply(
        self, plan: ReconciliationPlan, state: StackState | None
    ) -> ApplyResult:
        """Execute the plan and persist the resulting reconciliation state.

        Operations run in plan order and stop at the first failure; the rest
        are reported as skipped. Nothing is rolled back.

        Raises:
            ApplyPartialFailure: If any operation did not succeed.
        """
        result = ApplyResult(plan=plan)
        failed = False
        for op in plan.operations:
            if failed:
                result.results.append(OperationResult(op, OperationStatus.SKIPPED))
                continue
            _LOGGER.info("Applying %s", op)
            try:
                await self._execute(op)
            except ReleaseException as err:
                _LOGGER.error("Failed to %s: %s", op, err)
                result.results.append(
                    OperationResult(op, OperationStatus.FAILED, error=str(err))
                )
                failed = True
                continue
            result.results.append(OperationResult(op, OperationStatus.SUCCEEDED))

        result.state = self._next_state(plan, result.results, state)
        await self._backend.write_state(self._stack_id, result.state)
        if not result.succeeded:
            raise ApplyPartialFailure(result.results)
        _LOGGER.info(
            "Applied %d operations for %s", len(result.results), self._stack_id
        )
        return result

    async def reconcile(
        self, desired: DesiredResourceSet, dry_run: bool = False
    ) -> ApplyResult:
        """Validate, plan and apply while holding the backend lock for the stack."""
        self.validate(desired)
        async with backend_lock(
            self._backend,
            self._stack_id,
            operation="plan" if dry_run else "apply",
            attempts=self._lock_attempts,
            delay=self._lock_delay,
            factor=self._lock_factor,
        ):
            state = await self._backend.read_state(self._stack_id)
            with trace_context("plan"):
                plan = await self.plan(desired, state)
            if dry_run:
                return ApplyResult(plan=plan, state=state)
            with trace_context("apply"):
                return await self.apply(plan, state)

    def _next_state(
        self,
        plan: ReconciliationPlan,
        results: list[OperationResult],
        state: StackState | None,
    ) -> StackState:
        desired = plan.desired
        resources = dict(state.resource_ids) if state else {}
        for resource_id in plan.unchanged:
            if resource_id not in resources:
                owned = True
                if resource_id.kind == NAMESPACE_KIND:
                    owned = plan.namespace_owned
                resources[resource_id] = AppliedResource.from_resource_id(
                    resource_id, owned=owned
                )
        for op_result in results:
            resource_id = op_result.operation.resource_id
            action = op_result.operation.action
            succeeded = op_result.status == OperationStatus.SUCCEEDED
            if action == Action.DELETE:
                if succeeded:
                    resources.pop(resource_id, None)
                else:
                    resources.setdefault(
                        resource_id, AppliedResource.from_resource_id(resource_id)
                    )
            elif action == Action.UPDATE or succeeded:
                resources.setdefault(
                    resource_id, AppliedResource.from_resource_id(resource_id)
                )

        complete = all(not op_result.failed for op_result in results)
        outputs = dict(state.outputs) if state else {}
        image = state.image if state else None
        if complete:
            workload = desired.workloads[0]
            image = desired.artifact.image
            outputs = {
                "namespace": desired.namespace,
                "image": image,
                "workload_kind": workload["kind"],
                "workload_name": workload["metadata"]["name"],
            }
        return StackState(
            lineage=state.lineage if state else str(uuid.uuid4()),
            serial=(state.serial if state else 0) + 1,
            updated_at=datetime.datetime.now(tz=datetime.timezone.utc),
            outputs=outputs,
            resources=[resources[key] for key in sorted(resources)],
            image=image,
        )
