"""Domain model: tags, environments, resources and templates."""

from prcanary.model.environments import (
    AppliedEnvironment,
    ControllerState,
    DesiredEnvironment,
    EnvironmentStatus,
    LifecycleState,
    ResourceObject,
    ResourcePhase,
    validate_transition,
)
from prcanary.model.tags import CanaryID, Protocol, canary_id, is_valid_tag, parse_tag
from prcanary.model.template import EnvironmentTemplate, ResourceTemplate

__all__ = [
    "AppliedEnvironment",
    "CanaryID",
    "ControllerState",
    "DesiredEnvironment",
    "EnvironmentStatus",
    "EnvironmentTemplate",
    "LifecycleState",
    "Protocol",
    "ResourceObject",
    "ResourcePhase",
    "ResourceTemplate",
    "canary_id",
    "is_valid_tag",
    "parse_tag",
    "validate_transition",
]
