"""Reconciliation controller: converge applied environments on desired state.

Manifesto:
    Signals record intent; the controller alone turns intent into cluster
    state and is the only writer of applied records. Every tick recomputes
    the plan from scratch, so a crash, a dropped notification or a partial
    failure costs a retry, never correctness.

ARCHITECTURE
────────────
::

    notify(id) ─► KeyedWorkerPool ─► reconcile_once(id)   (one per id)
                                      │
              ┌───────────────────────┴────────────────────────┐
              │ desired open/updated        desired closed     │
              │  render template             PRUNING (durable) │
              │  compute_plan                delete, reverse   │
              │  CREATING/UPDATING           confirm exists()  │
              │  apply, phase order          ABSENT → removed  │
              │  READY → publish routes                        │
              └────────────────────────────────────────────────┘
                   failures: retry with backoff, DEGRADED at threshold
                   ValidationError / InvalidResource: block revision

Per-id state graph (see :mod:`prcanary.model.environments`)::

    ABSENT → CREATING → READY → UPDATING → READY → PRUNING → ABSENT
                 └──────────┴──► DEGRADED ◄──┘

Between operations the desired record is re-read; if it changed (a close,
a reopen, a newer revision) the rest of the plan is abandoned and the id is
reconciled again.

Tags:
    prcanary, reconciliation, controller, asyncio, state-machine, backoff
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from prcanary.applier.base import ResourceApplier
from prcanary.core.config import CanarySettings
from prcanary.core.errors import (
    CanaryError,
    InvalidResourceError,
    NotFoundError,
    ValidationError,
)
from prcanary.core.events import PLAN_APPLIED, TRANSITION, Event, EventBus
from prcanary.core.logging import LogContext, get_logger
from prcanary.execution.keyed import KeyedWorkerPool
from prcanary.execution.retry import ExponentialBackoff
from prcanary.execution.timeout import call_with_deadline
from prcanary.model.environments import (
    AppliedEnvironment,
    ControllerState,
    DesiredEnvironment,
    ResourceObject,
)
from prcanary.model.tags import CanaryID
from prcanary.model.template import EnvironmentTemplate
from prcanary.reconcile.plan import PlanAction, PlanOperation, ReconciliationPlan, compute_plan
from prcanary.registry.registry import EnvironmentRegistry
from prcanary.routing.publisher import RuleSetPublisher

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconciliation tick.

    ``retry_after`` is set when the tick should be repeated after a delay.
    """

    canary_id: str
    outcome: str
    state: ControllerState
    operations: int = 0
    retry_after: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "canary_id": self.canary_id,
            "outcome": self.outcome,
            "state": self.state.value,
            "operations": self.operations,
            "retry_after": self.retry_after,
        }


class ReconciliationController:
    """Drives every canary environment toward its desired state.

    Args:
        registry: Desired/applied map; the controller is the only writer of
            applied records
        applier: Cluster access
        publisher: Rule-set owner, republished on Ready enter/leave
        template: Renders desired resources (default template if None)
        bus: Observability hook for transition and plan events
        backoff: Retry delay policy
        call_timeout: Deadline per applier call, seconds
        degraded_after_failures: Consecutive failures before Degraded
        prune_confirm_attempts: ``exists`` sweeps per pruning tick
        prune_confirm_interval: Pause between sweeps, seconds
        max_workers: Ids reconciled in parallel
    """

    def __init__(
        self,
        registry: EnvironmentRegistry,
        applier: ResourceApplier,
        publisher: RuleSetPublisher,
        template: EnvironmentTemplate | None = None,
        bus: EventBus | None = None,
        backoff: ExponentialBackoff | None = None,
        call_timeout: float = 10.0,
        degraded_after_failures: int = 1,
        prune_confirm_attempts: int = 5,
        prune_confirm_interval: float = 1.0,
        max_workers: int = 8,
    ):
        self._registry = registry
        self._applier = applier
        self._publisher = publisher
        self._template = template or EnvironmentTemplate.default()
        self._bus = bus
        self._backoff = backoff or ExponentialBackoff()
        self._call_timeout = call_timeout
        self._degraded_after = degraded_after_failures
        self._confirm_attempts = prune_confirm_attempts
        self._confirm_interval = prune_confirm_interval
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._pool = KeyedWorkerPool(self._work, max_workers=max_workers)

    @classmethod
    def from_settings(
        cls,
        settings: CanarySettings,
        registry: EnvironmentRegistry,
        applier: ResourceApplier,
        publisher: RuleSetPublisher,
        template: EnvironmentTemplate | None = None,
        bus: EventBus | None = None,
    ) -> ReconciliationController:
        return cls(
            registry=registry,
            applier=applier,
            publisher=publisher,
            template=template,
            bus=bus,
            backoff=ExponentialBackoff.from_settings(settings),
            call_timeout=settings.call_timeout_seconds,
            degraded_after_failures=settings.degraded_after_failures,
            prune_confirm_attempts=settings.prune_confirm_attempts,
            prune_confirm_interval=settings.prune_confirm_interval_seconds,
            max_workers=settings.max_workers,
        )

    @property
    def template(self) -> EnvironmentTemplate:
        return self._template

    @property
    def pool(self) -> KeyedWorkerPool:
        return self._pool

    # ── Scheduling ───────────────────────────────────────────────

    def notify(self, canary_id: str) -> None:
        """Request reconciliation of *canary_id* (coalesced if running)."""
        self._pool.submit(canary_id)

    def resync(self) -> int:
        """Enqueue every id still in the registry."""
        ids = self._registry.list_active_ids()
        for cid in ids:
            self._pool.submit(cid)
        logger.debug("resync_enqueued", count=len(ids))
        return len(ids)

    async def drain(self) -> None:
        await self._pool.drain()

    async def close(self) -> None:
        await self._pool.close()

    async def _work(self, canary_id: str) -> float | None:
        result = await self.reconcile_once(canary_id)
        return result.retry_after

    # ── Planning ─────────────────────────────────────────────────

    def plan_for(self, canary_id: str) -> ReconciliationPlan:
        """Plan the next tick without applying anything.

        Raises:
            ValidationError: If the desired revision cannot be rendered.
        """
        desired = self._registry.get_desired(canary_id)
        applied = self._registry.get_applied(canary_id) or AppliedEnvironment.absent(CanaryID(canary_id))
        if desired is None or desired.closed:
            revision = desired.revision if desired else None
            if applied.state == ControllerState.ABSENT and not applied.resource_set:
                return compute_plan(canary_id, revision, None, ())
            return compute_plan(canary_id, revision, None, self._prune_targets(applied, desired))
        rendered = self._template.render(desired.canary_id, desired.revision)
        return compute_plan(canary_id, desired.revision, rendered, applied.resource_set)

    # ── Reconciliation ───────────────────────────────────────────

    async def reconcile_once(self, canary_id: str) -> ReconcileResult:
        """Run one reconciliation tick for *canary_id*.

        Ticks for the same id are serialized; ticks for different ids run
        concurrently.
        """
        async with self._serialized(canary_id):
            async with LogContext(canary_id=canary_id):
                return await self._reconcile(canary_id)

    @asynccontextmanager
    async def _serialized(self, canary_id: str) -> AsyncIterator[None]:
        """Hold the per-id lock; the lock is dropped once nobody waits on it."""
        lock = self._locks.setdefault(canary_id, asyncio.Lock())
        self._lock_users[canary_id] = self._lock_users.get(canary_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[canary_id] -= 1
            if not self._lock_users[canary_id]:
                del self._lock_users[canary_id]
                del self._locks[canary_id]

    async def _reconcile(self, canary_id: str) -> ReconcileResult:
        cid = CanaryID(canary_id)
        desired = self._registry.get_desired(cid)
        applied = self._registry.get_applied(cid) or AppliedEnvironment.absent(cid)

        if desired is None or desired.closed:
            if desired is None and applied.state == ControllerState.ABSENT and not applied.resource_set:
                return ReconcileResult(cid, "noop", ControllerState.ABSENT)
            return await self._prune(desired, applied)

        if applied.blocked_revision == desired.revision:
            return ReconcileResult(cid, "blocked", applied.state)

        try:
            rendered = self._template.render(desired.canary_id, desired.revision)
        except ValidationError as e:
            current = await self._begin(applied, desired)
            return await self._block(current, desired, e, operations=0)

        plan = compute_plan(cid, desired.revision, rendered, applied.resource_set)
        if plan.is_noop:
            if applied.state == ControllerState.READY and applied.last_applied_revision == desired.revision:
                logger.debug("reconcile_noop", revision=desired.revision)
                return ReconcileResult(cid, "noop", applied.state)
            if applied.state not in (ControllerState.ABSENT, ControllerState.PRUNING):
                return await self._finish(applied, desired, rendered, operations=0)

        current = await self._begin(applied, desired)
        logger.info(
            "plan_computed",
            revision=desired.revision,
            creates=len(plan.of(PlanAction.CREATE)),
            updates=len(plan.of(PlanAction.UPDATE)),
            deletes=len(plan.of(PlanAction.DELETE)),
        )

        progress = {r.key: r for r in current.resource_set}
        done = 0
        for op in plan:
            if self._preempted(desired):
                return await self._preempt(current, desired, done)
            try:
                await self._apply(op)
            except (ValidationError, InvalidResourceError) as e:
                return await self._block(current, desired, e, operations=done)
            except CanaryError as e:
                return await self._fail(current, desired, e, operations=done)
            except Exception as e:
                logger.error("apply_unexpected_error", operation=op.action.value, resource=op.resource.ref, exc_info=True)
                return await self._fail(current, desired, e, operations=done)
            if op.action == PlanAction.DELETE:
                progress.pop(op.resource.key, None)
            else:
                progress[op.resource.key] = op.resource
            done += 1
            current = current.update(resource_set=tuple(progress.values()))
            self._registry.record_applied(cid, current)

        if self._preempted(desired):
            return await self._preempt(current, desired, done)
        return await self._finish(current, desired, rendered, operations=done)

    async def _begin(self, applied: AppliedEnvironment, desired: DesiredEnvironment) -> AppliedEnvironment:
        """Move into CREATING or UPDATING before touching the cluster."""
        if applied.state in (ControllerState.CREATING, ControllerState.UPDATING):
            return applied
        if applied.state in (ControllerState.ABSENT, ControllerState.PRUNING) or applied.last_applied_revision is None:
            target = ControllerState.CREATING
        else:
            target = ControllerState.UPDATING
        return await self._record(applied, applied.transition(target), desired.revision, outcome="started")

    async def _finish(
        self,
        current: AppliedEnvironment,
        desired: DesiredEnvironment,
        rendered: Sequence[ResourceObject],
        operations: int,
    ) -> ReconcileResult:
        ready = current.transition(
            ControllerState.READY,
            last_applied_revision=desired.revision,
            resource_set=tuple(rendered),
            failures=0,
            last_error=None,
            blocked_revision=None,
        )
        await self._record(current, ready, desired.revision, outcome="applied")
        await self._emit_plan(ready.canary_id, desired.revision, operations, "applied")
        logger.info("environment_ready", revision=desired.revision, operations=operations)
        return ReconcileResult(ready.canary_id, "applied", ready.state, operations)

    async def _fail(
        self,
        current: AppliedEnvironment,
        desired: DesiredEnvironment | None,
        error: Exception,
        operations: int,
    ) -> ReconcileResult:
        failures = current.failures + 1
        target = current.state
        if target != ControllerState.PRUNING and failures >= self._degraded_after:
            target = ControllerState.DEGRADED
        revision = desired.revision if desired else current.last_applied_revision
        failed = current.transition(target, failures=failures, last_error=str(error))
        await self._record(current, failed, revision, outcome="failed")
        await self._emit_plan(failed.canary_id, revision, operations, "failed")
        delay = self._backoff.delay_for(failures - 1, error)
        logger.warning(
            "reconcile_failed",
            revision=revision,
            state=failed.state.value,
            failures=failures,
            retry_in=round(delay, 3),
            error=str(error),
        )
        return ReconcileResult(failed.canary_id, "failed", failed.state, operations, retry_after=delay)

    async def _block(
        self,
        current: AppliedEnvironment,
        desired: DesiredEnvironment,
        error: Exception,
        operations: int,
    ) -> ReconcileResult:
        blocked = current.transition(
            ControllerState.DEGRADED,
            failures=current.failures + 1,
            last_error=str(error),
            blocked_revision=desired.revision,
        )
        await self._record(current, blocked, desired.revision, outcome="blocked")
        await self._emit_plan(blocked.canary_id, desired.revision, operations, "blocked")
        logger.error("revision_blocked", revision=desired.revision, error=str(error))
        return ReconcileResult(blocked.canary_id, "blocked", blocked.state, operations)

    async def _preempt(
        self,
        current: AppliedEnvironment,
        desired: DesiredEnvironment | None,
        operations: int,
    ) -> ReconcileResult:
        revision = desired.revision if desired else None
        logger.info("plan_preempted", revision=revision, operations=operations)
        await self._emit_plan(current.canary_id, revision, operations, "preempted")
        # The newer desired state gets its own tick straight away.
        self._pool.submit(current.canary_id)
        return ReconcileResult(current.canary_id, "preempted", current.state, operations)

    def _preempted(self, desired: DesiredEnvironment | None) -> bool:
        if desired is None:
            return False
        return self._registry.get_desired(desired.canary_id) != desired

    # ── Pruning ──────────────────────────────────────────────────

    async def _prune(
        self,
        desired: DesiredEnvironment | None,
        applied: AppliedEnvironment,
    ) -> ReconcileResult:
        cid = applied.canary_id
        revision = desired.revision if desired else applied.last_applied_revision
        current = applied
        if current.state == ControllerState.ABSENT and not current.resource_set:
            self._registry.record_applied(cid, current)
            return ReconcileResult(cid, "pruned", ControllerState.ABSENT)

        if current.state != ControllerState.PRUNING:
            current = await self._record(
                applied, applied.transition(ControllerState.PRUNING), revision, outcome="started"
            )

        targets = self._prune_targets(current, desired)
        plan = compute_plan(cid, revision, None, targets)
        logger.info("prune_started", revision=revision, deletes=len(plan))
        progress = {r.key: r for r in current.resource_set}
        done = 0
        for op in plan:
            if self._preempted(desired):
                return await self._preempt(current, desired, done)
            try:
                await self._apply(op)
            except CanaryError as e:
                return await self._fail(current, desired, e, operations=done)
            except Exception as e:
                logger.error("delete_unexpected_error", resource=op.resource.ref, exc_info=True)
                return await self._fail(current, desired, e, operations=done)
            done += 1
            if progress.pop(op.resource.key, None) is not None:
                current = current.update(resource_set=tuple(progress.values()))
                self._registry.record_applied(cid, current)

        try:
            remaining = await self._confirm_absent(targets, desired)
        except CanaryError as e:
            return await self._fail(current, desired, e, operations=done)
        except Exception as e:
            logger.error("prune_confirm_unexpected_error", exc_info=True)
            return await self._fail(current, desired, e, operations=done)
        if remaining is None:
            return await self._preempt(current, desired, done)
        if remaining:
            current = current.update(resource_set=tuple(remaining))
            self._registry.record_applied(cid, current)
            error = CanaryError(f"{len(remaining)} resources still present after delete")
            return await self._fail(current, desired, error, operations=done)

        absent = current.transition(
            ControllerState.ABSENT,
            resource_set=(),
            last_applied_revision=None,
            failures=0,
            last_error=None,
            blocked_revision=None,
        )
        await self._record(current, absent, revision, outcome="pruned")
        await self._emit_plan(cid, revision, done, "pruned")
        logger.info("environment_pruned", revision=revision, operations=done)
        return ReconcileResult(cid, "pruned", ControllerState.ABSENT, done)

    def _prune_targets(
        self,
        applied: AppliedEnvironment,
        desired: DesiredEnvironment | None,
    ) -> list[ResourceObject]:
        """Recorded resources plus everything the known revisions render.

        A create can commit in the cluster and still fail for the caller, in
        which case the object never made it into the recorded set.
        """
        targets = {r.key: r for r in applied.resource_set}
        revisions = [applied.last_applied_revision]
        if desired is not None:
            revisions.insert(0, desired.revision)
        for revision in dict.fromkeys(r for r in revisions if r):
            try:
                rendered = self._template.render(applied.canary_id, revision)
            except ValidationError:
                continue
            for resource in rendered:
                targets.setdefault(resource.key, resource)
        return list(targets.values())

    async def _confirm_absent(
        self,
        resources: Sequence[ResourceObject],
        desired: DesiredEnvironment | None,
    ) -> list[ResourceObject] | None:
        """Resources still reported present after the configured sweeps.

        Returns None if the desired state changed while waiting.
        """
        remaining = list(resources)
        for attempt in range(self._confirm_attempts):
            if attempt:
                await asyncio.sleep(self._confirm_interval)
            if self._preempted(desired):
                return None
            still: list[ResourceObject] = []
            for resource in remaining:
                present = await call_with_deadline(
                    self._applier.exists(resource), self._call_timeout, operation="exists"
                )
                if present:
                    still.append(resource)
            remaining = still
            if not remaining:
                break
        return remaining

    # ── Applier calls ────────────────────────────────────────────

    async def _apply(self, op: PlanOperation) -> None:
        resource = op.resource
        try:
            if op.action == PlanAction.CREATE:
                await self._call("create", resource)
            elif op.action == PlanAction.UPDATE:
                try:
                    await self._call("update", resource)
                except NotFoundError:
                    logger.info("update_target_missing", resource=resource.ref)
                    await self._call("create", resource)
            else:
                try:
                    await self._call("delete", resource)
                except NotFoundError:
                    logger.debug("delete_already_absent", resource=resource.ref)
        except CanaryError as e:
            raise e.with_context(resource=resource.ref, operation=op.action.value)

    async def _call(self, operation: str, resource: ResourceObject) -> None:
        method = getattr(self._applier, operation)
        await call_with_deadline(method(resource), self._call_timeout, operation=operation)
        logger.debug("applier_call", operation=operation, resource=resource.ref)

    # ── Recording / events ───────────────────────────────────────

    async def _record(
        self,
        before: AppliedEnvironment,
        after: AppliedEnvironment,
        revision: str | None,
        outcome: str,
    ) -> AppliedEnvironment:
        """Persist *after*, republish on Ready enter/leave, emit the transition."""
        self._registry.record_applied(after.canary_id, after)
        if before.ready != after.ready:
            await self._publisher.publish(self._registry.applied_snapshot())
        if before.state != after.state:
            logger.info(
                "state_transition",
                from_state=before.state.value,
                to_state=after.state.value,
                revision=revision,
                outcome=outcome,
            )
            if self._bus is not None:
                await self._bus.publish(
                    Event(
                        event_type=TRANSITION,
                        source="reconcile.controller",
                        payload={
                            "canary_id": after.canary_id,
                            "from_state": before.state.value,
                            "to_state": after.state.value,
                            "revision": revision,
                            "outcome": outcome,
                        },
                        correlation_id=after.canary_id,
                    )
                )
        return after

    async def _emit_plan(self, canary_id: str, revision: str | None, operations: int, outcome: str) -> None:
        if self._bus is None:
            return
        await self._bus.publish(
            Event(
                event_type=PLAN_APPLIED,
                source="reconcile.controller",
                payload={
                    "canary_id": canary_id,
                    "revision": revision,
                    "operations": operations,
                    "outcome": outcome,
                },
                correlation_id=canary_id,
            )
        )
