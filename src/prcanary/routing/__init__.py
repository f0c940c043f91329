"""Request-time routing: rules, decisions, publication and tag propagation."""

from prcanary.routing.engine import DecisionEngine, RouteDecision, resolve
from prcanary.routing.publisher import HttpRuleSink, RuleSetPublisher
from prcanary.routing.rules import RoutingRule, RuleSet, build_rule_set

__all__ = [
    "DecisionEngine",
    "HttpRuleSink",
    "RouteDecision",
    "RoutingRule",
    "RuleSet",
    "RuleSetPublisher",
    "build_rule_set",
    "resolve",
]
