"""Reconciliation: plan diffs and drive environments to their desired state."""

from prcanary.reconcile.controller import ReconcileResult, ReconciliationController
from prcanary.reconcile.plan import PlanAction, PlanOperation, ReconciliationPlan, compute_plan

__all__ = [
    "PlanAction",
    "PlanOperation",
    "ReconcileResult",
    "ReconciliationController",
    "ReconciliationPlan",
    "compute_plan",
]
