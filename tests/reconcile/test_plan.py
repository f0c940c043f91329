"""Tests for plan computation."""

from __future__ import annotations

from dataclasses import replace

from prcanary.model.environments import ResourceObject, ResourcePhase
from prcanary.model.tags import CanaryID
from prcanary.model.template import EnvironmentTemplate
from prcanary.reconcile.plan import PlanAction, compute_plan


def _render(revision="a1", cid="42"):
    return EnvironmentTemplate.default().render(CanaryID(cid), revision)


class TestComputePlan:
    def test_empty_applied_creates_everything_in_phase_order(self):
        plan = compute_plan("42", "a1", _render(), ())

        assert [op.action for op in plan] == [PlanAction.CREATE] * 3
        assert [op.resource.phase for op in plan] == [
            ResourcePhase.SCOPE,
            ResourcePhase.WORKLOAD,
            ResourcePhase.ROUTING,
        ]

    def test_equal_hashes_are_noop(self):
        plan = compute_plan("42", "a1", _render(), _render())
        assert plan.is_noop
        assert len(plan) == 0

    def test_changed_hash_is_update(self):
        plan = compute_plan("42", "a2", _render("a2"), _render("a1"))
        assert [(op.action, op.resource.name) for op in plan] == [(PlanAction.UPDATE, "deploy-42")]

    def test_closed_deletes_in_reverse_phase_order(self):
        plan = compute_plan("42", "a1", None, _render())

        assert plan.pruning
        assert [(op.action, op.resource.name) for op in plan] == [
            (PlanAction.DELETE, "route-42"),
            (PlanAction.DELETE, "deploy-42"),
            (PlanAction.DELETE, "ns-42"),
        ]

    def test_removed_resource_is_deleted_after_creates(self):
        applied = _render()
        extra = ResourceObject(
            kind="ConfigMap",
            name="legacy-42",
            namespace="ns-42",
            spec_hash="abc",
            canary_id=CanaryID("42"),
        )
        desired = list(_render())
        desired[1] = replace(desired[1], name="deploy-42-v2")

        plan = compute_plan("42", "a1", desired, (*applied, extra))

        actions = [(op.action.value, op.resource.name) for op in plan]
        assert actions[0] == ("create", "deploy-42-v2")
        assert set(actions[1:]) == {("delete", "deploy-42"), ("delete", "legacy-42")}

    def test_remainder_after_partial_progress(self):
        desired = _render()
        plan = compute_plan("42", "a1", desired, desired[:1])

        assert plan.of(PlanAction.CREATE) == list(desired[1:])

    def test_to_dict(self):
        data = compute_plan("42", "a1", _render(), ()).to_dict()
        assert data["canary_id"] == "42"
        assert data["operations"][0] == {
            "action": "create",
            "resource": "Namespace/ns-42",
            "phase": "scope",
            "spec_hash": data["operations"][0]["spec_hash"],
        }
