"""Routing decision engine.

Given a request's tag, protocol and logical target, pick the concrete
destination from the current rule set. The engine never raises: anything
it cannot resolve to a Ready canary goes to the stable fallback.

Example:
    >>> engine = DecisionEngine(publisher.current)
    >>> engine.resolve("42", Protocol.HTTP, "frontend").destination
    'ns-42'
    >>> engine.resolve(None, Protocol.HTTP, "frontend").destination
    'stable'
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from prcanary.core.logging import get_logger
from prcanary.model.tags import CanaryID, Protocol, parse_tag
from prcanary.routing.rules import RoutingRule, RuleSet

logger = get_logger(__name__)


@dataclass(frozen=True)
class RouteDecision:
    """Outcome of one routing decision."""

    destination: str
    protocol: Protocol | str
    logical_target: str
    canary_id: CanaryID | None
    fallback: bool
    rule: RoutingRule | None
    rule_set_version: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "destination": self.destination,
            "protocol": self.protocol.value if isinstance(self.protocol, Protocol) else self.protocol,
            "logical_target": self.logical_target,
            "canary_id": self.canary_id,
            "fallback": self.fallback,
            "rule_set_version": self.rule_set_version,
        }


def resolve(
    rule_set: RuleSet,
    tag: str | None,
    protocol: Protocol,
    logical_target: str,
    max_tag_length: int = 18,
) -> RouteDecision:
    """Pure lookup of the destination for one request.

    A tagged rule is used only when the tag is valid, equals a CanaryID
    exactly and that environment is Ready in *rule_set*. Otherwise the
    fallback for ``(protocol, logical_target)`` applies; a pair without any
    fallback routes to the logical target by name.
    """
    cid = parse_tag(tag, max_tag_length) if isinstance(tag, str) else None
    if cid is not None and cid in rule_set.ready_ids:
        candidates = rule_set.tagged_for(protocol, logical_target, cid)
        if candidates:
            rule = candidates[0]
            return RouteDecision(
                destination=rule.destination,
                protocol=protocol,
                logical_target=logical_target,
                canary_id=cid,
                fallback=False,
                rule=rule,
                rule_set_version=rule_set.version,
            )

    fallback = rule_set.fallback_for(protocol, logical_target)
    return RouteDecision(
        destination=fallback.destination if fallback else logical_target,
        protocol=protocol,
        logical_target=logical_target,
        canary_id=None,
        fallback=True,
        rule=fallback,
        rule_set_version=rule_set.version,
    )


class DecisionEngine:
    """Resolves requests against whatever rule set is current.

    Args:
        rule_source: Zero-argument callable returning the current
            :class:`RuleSet` (typically ``RuleSetPublisher.current``)
        max_tag_length: Upper bound for tag syntax validation
    """

    def __init__(self, rule_source: Callable[[], RuleSet], max_tag_length: int = 18):
        self._rule_source = rule_source
        self._max_tag_length = max_tag_length

    def resolve(
        self, tag: str | None, protocol: Protocol | str, logical_target: str
    ) -> RouteDecision:
        # one snapshot per decision
        rule_set = self._rule_source()
        try:
            proto = Protocol(protocol)
        except ValueError:
            logger.warning("route_unknown_protocol", protocol=str(protocol)[:32], target=logical_target)
            return RouteDecision(
                destination=logical_target,
                protocol=str(protocol),
                logical_target=logical_target,
                canary_id=None,
                fallback=True,
                rule=None,
                rule_set_version=rule_set.version,
            )
        return resolve(rule_set, tag, proto, logical_target, self._max_tag_length)
