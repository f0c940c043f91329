"""Routing rules and immutable, versioned rule sets.

A :class:`RuleSet` is built once, indexed once and never mutated. Readers
hold a reference to one snapshot for the whole of a decision, so a
concurrent publish can never show them half of an update.

Invariants enforced at construction:
    - exactly one fallback rule per ``(protocol, logical_target)``
    - the fallback has strictly the lowest priority of its pair
    - every tagged rule names a Ready environment (``ready_ids``)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from prcanary.core.errors import ValidationError
from prcanary.model.environments import AppliedEnvironment
from prcanary.model.tags import CanaryID, Protocol

FALLBACK_PRIORITY = 0


@dataclass(frozen=True)
class RoutingRule:
    """One routing rule. ``match_tag=None`` is the wildcard fallback."""

    protocol: Protocol
    logical_target: str
    destination: str
    priority: int
    match_tag: CanaryID | None = None

    @property
    def is_fallback(self) -> bool:
        return self.match_tag is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol.value,
            "logical_target": self.logical_target,
            "destination": self.destination,
            "priority": self.priority,
            "match_tag": self.match_tag,
        }


@dataclass(frozen=True)
class _PairIndex:
    fallback: RoutingRule
    tagged: Mapping[str, tuple[RoutingRule, ...]]


@dataclass(frozen=True)
class RuleSet:
    """Immutable snapshot of every routing rule."""

    version: int
    rules: tuple[RoutingRule, ...]
    ready_ids: frozenset[str] = frozenset()
    _index: Mapping[tuple[Protocol, str], _PairIndex] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        fallbacks: dict[tuple[Protocol, str], RoutingRule] = {}
        tagged: dict[tuple[Protocol, str], dict[str, list[RoutingRule]]] = {}
        for rule in self.rules:
            pair = (rule.protocol, rule.logical_target)
            if rule.is_fallback:
                if pair in fallbacks:
                    raise ValidationError(
                        f"duplicate fallback rule for {rule.protocol.value}/{rule.logical_target}"
                    )
                fallbacks[pair] = rule
            else:
                if rule.match_tag not in self.ready_ids:
                    raise ValidationError(
                        f"tagged rule for {rule.match_tag} has no ready environment"
                    )
                tagged.setdefault(pair, {}).setdefault(rule.match_tag, []).append(rule)

        index: dict[tuple[Protocol, str], _PairIndex] = {}
        for pair, fallback in fallbacks.items():
            by_tag = tagged.pop(pair, {})
            for rules in by_tag.values():
                if any(r.priority <= fallback.priority for r in rules):
                    raise ValidationError(
                        f"tagged rule priority must exceed fallback for {pair[0].value}/{pair[1]}"
                    )
            index[pair] = _PairIndex(
                fallback=fallback,
                tagged={
                    tag: tuple(sorted(rules, key=lambda r: r.priority, reverse=True))
                    for tag, rules in by_tag.items()
                },
            )
        if tagged:
            protocol, target = next(iter(tagged))
            raise ValidationError(f"no fallback rule for {protocol.value}/{target}")
        object.__setattr__(self, "_index", index)

    @classmethod
    def empty(cls) -> RuleSet:
        return cls(version=0, rules=())

    def fallback_for(self, protocol: Protocol, logical_target: str) -> RoutingRule | None:
        entry = self._index.get((protocol, logical_target))
        return entry.fallback if entry else None

    def tagged_for(
        self, protocol: Protocol, logical_target: str, tag: str
    ) -> tuple[RoutingRule, ...]:
        entry = self._index.get((protocol, logical_target))
        if entry is None:
            return ()
        return entry.tagged.get(tag, ())

    def pairs(self) -> list[tuple[Protocol, str]]:
        return sorted(self._index, key=lambda p: (p[0].value, p[1]))

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "ready_ids": sorted(self.ready_ids),
            "rules": [r.to_dict() for r in self.rules],
        }


def render_destination(pattern: str, canary_id: str, logical_target: str) -> str:
    """Fill ``{id}`` and ``{target}`` in a destination pattern."""
    return pattern.replace("{id}", canary_id).replace("{target}", logical_target)


def build_rule_set(
    version: int,
    stable_routes: Iterable[Any],
    applied: Iterable[AppliedEnvironment],
    destination_pattern: str = "ns-{id}",
    canary_priority: int = 100,
    routed_targets: Iterable[str] = (),
) -> RuleSet:
    """Build the rule set for the current applied environments.

    Args:
        version: Version number of the new snapshot
        stable_routes: Objects with ``protocol``, ``target`` and
            ``destination`` (see :class:`~prcanary.core.config.StableRoute`)
        applied: Applied environments; only Ready ones produce rules
        destination_pattern: Canary destination, ``{id}``/``{target}`` filled
        canary_priority: Priority of tagged rules (must exceed the fallback)
        routed_targets: Logical targets that get canary rules (empty = all)
    """
    targets = set(routed_targets)
    routes = list(stable_routes)
    rules: list[RoutingRule] = [
        RoutingRule(
            protocol=Protocol(route.protocol),
            logical_target=route.target,
            destination=route.destination,
            priority=FALLBACK_PRIORITY,
        )
        for route in routes
    ]
    ready = sorted(env.canary_id for env in applied if env.ready)
    for cid in ready:
        for route in routes:
            if targets and route.target not in targets:
                continue
            rules.append(
                RoutingRule(
                    protocol=Protocol(route.protocol),
                    logical_target=route.target,
                    destination=render_destination(destination_pattern, cid, route.target),
                    priority=canary_priority,
                    match_tag=CanaryID(cid),
                )
            )
    return RuleSet(version=version, rules=tuple(rules), ready_ids=frozenset(ready))
