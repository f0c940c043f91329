"""Tests for rule sets and the decision engine."""

from __future__ import annotations

import pytest

from prcanary.core.config import StableRoute
from prcanary.core.errors import ValidationError
from prcanary.model.environments import AppliedEnvironment, ControllerState
from prcanary.model.tags import CanaryID, Protocol
from prcanary.routing.engine import DecisionEngine, resolve
from prcanary.routing.rules import RoutingRule, RuleSet, build_rule_set, render_destination

STABLE = [
    StableRoute(protocol=Protocol.HTTP, target="frontend", destination="stable"),
    StableRoute(protocol=Protocol.GRPC, target="backend", destination="stable-rpc"),
]


def env(cid: str, state: ControllerState = ControllerState.READY) -> AppliedEnvironment:
    return AppliedEnvironment(canary_id=CanaryID(cid), state=state)


class TestBuildRuleSet:
    def test_only_ready_environments_get_rules(self):
        rule_set = build_rule_set(1, STABLE, [env("42"), env("7", ControllerState.UPDATING)])

        assert rule_set.ready_ids == {"42"}
        tagged = [r for r in rule_set.rules if not r.is_fallback]
        assert {(r.protocol, r.logical_target, r.destination) for r in tagged} == {
            (Protocol.HTTP, "frontend", "ns-42"),
            (Protocol.GRPC, "backend", "ns-42"),
        }
        assert all(r.priority == 100 for r in tagged)

    def test_routed_targets_limit_canary_rules(self):
        rule_set = build_rule_set(1, STABLE, [env("42")], routed_targets=["frontend"])
        assert rule_set.tagged_for(Protocol.GRPC, "backend", "42") == ()
        assert rule_set.tagged_for(Protocol.HTTP, "frontend", "42")

    def test_destination_pattern(self):
        assert render_destination("{target}.pr-{id}.svc", "42", "frontend") == "frontend.pr-42.svc"

    def test_pairs(self):
        assert build_rule_set(1, STABLE, []).pairs() == [
            (Protocol.GRPC, "backend"),
            (Protocol.HTTP, "frontend"),
        ]


class TestRuleSetInvariants:
    def test_duplicate_fallback(self):
        fallback = RoutingRule(Protocol.HTTP, "frontend", "stable", 0)
        with pytest.raises(ValidationError):
            RuleSet(version=1, rules=(fallback, fallback))

    def test_tagged_rule_needs_ready_environment(self):
        rules = (
            RoutingRule(Protocol.HTTP, "frontend", "stable", 0),
            RoutingRule(Protocol.HTTP, "frontend", "ns-42", 100, CanaryID("42")),
        )
        with pytest.raises(ValidationError):
            RuleSet(version=1, rules=rules)

    def test_tagged_priority_must_exceed_fallback(self):
        rules = (
            RoutingRule(Protocol.HTTP, "frontend", "stable", 5),
            RoutingRule(Protocol.HTTP, "frontend", "ns-42", 5, CanaryID("42")),
        )
        with pytest.raises(ValidationError):
            RuleSet(version=1, rules=rules, ready_ids=frozenset({"42"}))

    def test_tagged_rule_needs_fallback(self):
        rules = (RoutingRule(Protocol.HTTP, "frontend", "ns-42", 100, CanaryID("42")),)
        with pytest.raises(ValidationError):
            RuleSet(version=1, rules=rules, ready_ids=frozenset({"42"}))


class TestResolve:
    @pytest.fixture
    def rule_set(self):
        return build_rule_set(3, STABLE, [env("42")])

    def test_ready_tag_routes_to_canary(self, rule_set):
        decision = resolve(rule_set, "42", Protocol.HTTP, "frontend")
        assert decision.destination == "ns-42"
        assert not decision.fallback
        assert decision.canary_id == "42"
        assert decision.rule_set_version == 3

    @pytest.mark.parametrize("tag", [None, "", "7", "042", " 42", "42 ", "4a", "1" * 19, "-1"])
    def test_everything_else_falls_back(self, rule_set, tag):
        decision = resolve(rule_set, tag, Protocol.HTTP, "frontend")
        assert decision.destination == "stable"
        assert decision.fallback
        assert decision.canary_id is None

    def test_protocol_specific_fallback(self, rule_set):
        assert resolve(rule_set, None, Protocol.GRPC, "backend").destination == "stable-rpc"

    def test_unknown_pair_routes_to_target_name(self, rule_set):
        decision = resolve(rule_set, "42", Protocol.HTTP, "payments")
        assert decision.destination == "payments"
        assert decision.rule is None

    def test_engine_reads_current_snapshot(self, rule_set):
        current = {"rules": RuleSet.empty()}
        engine = DecisionEngine(lambda: current["rules"])

        assert engine.resolve("42", "http", "frontend").destination == "frontend"
        current["rules"] = rule_set
        assert engine.resolve("42", "http", "frontend").destination == "ns-42"
        assert engine.resolve("42", Protocol.HTTP, "frontend").to_dict()["fallback"] is False

    def test_engine_unknown_protocol_falls_back_to_target(self, rule_set):
        decision = DecisionEngine(lambda: rule_set).resolve("42", "smtp", "frontend")

        assert decision.destination == "frontend"
        assert decision.fallback is True
        assert decision.canary_id is None
        assert decision.to_dict()["protocol"] == "smtp"
