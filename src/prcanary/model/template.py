"""Environment templates: what resources one canary environment consists of.

A template is a declarative list of resource stubs with ``{id}``,
``{revision}`` and ``{short_revision}`` placeholders. Rendering a template
for a ``(canary_id, revision)`` pair yields the desired resource set the
controller diffs against what is applied. The concrete manifests behind
each stub are the applier's business; the template only fixes identity,
application phase and the body whose hash drives updates.

YAML format::

    apiVersion: prcanary/v1
    kind: EnvironmentTemplate
    metadata:
      name: preview
    spec:
      resources:
        - kind: Namespace
          name: ns-{id}
        - kind: Deployment
          name: deploy-{id}
          namespace: ns-{id}
          body:
            image: registry.local/app:{revision}
        - kind: Route
          name: route-{id}
          namespace: ns-{id}

Example:
    >>> template = EnvironmentTemplate.default()
    >>> [r.name for r in template.render(CanaryID("42"), "a1")]
    ['ns-42', 'deploy-42', 'route-42']
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from prcanary.core.errors import ValidationError
from prcanary.core.hashing import spec_hash
from prcanary.model.environments import ResourceObject, ResourcePhase, phase_for_kind
from prcanary.model.tags import CanaryID

_DNS_LABEL = re.compile(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?")
_REVISION = re.compile(r"[A-Za-z0-9._-]{1,128}")
_PLACEHOLDER = re.compile(r"\{[a-z_]+\}")


class ResourceTemplate(BaseModel):
    """One resource stub in a template."""

    model_config = ConfigDict(extra="forbid")

    kind: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    namespace: str = ""
    phase: ResourcePhase | None = None
    body: dict[str, Any] = Field(default_factory=dict)

    def effective_phase(self) -> ResourcePhase:
        return self.phase if self.phase is not None else phase_for_kind(self.kind)


class TemplateMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="default", min_length=1)
    description: str = ""


class TemplateSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resources: list[ResourceTemplate] = Field(..., min_length=1)
    routed_targets: list[str] = Field(
        default_factory=list,
        description="Logical targets that get canary rules; empty means every stable route",
    )

    @field_validator("resources")
    @classmethod
    def validate_unique(cls, v: list[ResourceTemplate]) -> list[ResourceTemplate]:
        seen: set[tuple[str, str, str]] = set()
        for res in v:
            key = (res.kind, res.namespace, res.name)
            if key in seen:
                raise ValueError(f"duplicate resource {res.kind}/{res.namespace}/{res.name}")
            seen.add(key)
        return v


class EnvironmentTemplate(BaseModel):
    """Validated environment template."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    api_version: Literal["prcanary/v1"] = Field(default="prcanary/v1", alias="apiVersion")
    kind: Literal["EnvironmentTemplate"] = "EnvironmentTemplate"
    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)
    spec: TemplateSpec

    @classmethod
    def default(cls) -> EnvironmentTemplate:
        """Namespace, workload and route per environment."""
        return cls(
            spec=TemplateSpec(
                resources=[
                    ResourceTemplate(kind="Namespace", name="ns-{id}"),
                    ResourceTemplate(
                        kind="Deployment",
                        name="deploy-{id}",
                        namespace="ns-{id}",
                        body={"revision": "{revision}"},
                    ),
                    ResourceTemplate(
                        kind="Route",
                        name="route-{id}",
                        namespace="ns-{id}",
                        body={"match": {"canary_id": "{id}"}, "backend": "deploy-{id}"},
                    ),
                ]
            )
        )

    @classmethod
    def from_yaml(cls, yaml_content: str) -> EnvironmentTemplate:
        """Parse a template from YAML text.

        Raises:
            ValidationError: If the YAML is malformed or fails validation.
        """
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ValidationError(f"invalid template YAML: {e}", cause=e) from e
        if not isinstance(data, dict):
            raise ValidationError("template YAML must be a mapping")
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"invalid template: {e}", cause=e) from e

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> EnvironmentTemplate:
        return cls.from_yaml(Path(path).read_text(encoding="utf-8"))

    def render(self, canary_id: CanaryID, revision: str) -> tuple[ResourceObject, ...]:
        """Render the desired resource set for one environment revision.

        Resources are returned in template order; the planner orders them by
        phase.

        Raises:
            ValidationError: If the revision or a rendered name is malformed.
        """
        if not _REVISION.fullmatch(revision or ""):
            raise ValidationError(f"malformed revision {revision!r}").with_context(
                canary_id=canary_id, revision=revision
            )
        values = {
            "{id}": canary_id,
            "{revision}": revision,
            "{short_revision}": revision[:7],
        }
        rendered: list[ResourceObject] = []
        for res in self.spec.resources:
            name = _substitute(res.name, values)
            namespace = _substitute(res.namespace, values)
            for label in (name, namespace):
                if label and not _is_dns_label(label):
                    raise ValidationError(
                        f"rendered name {label!r} for {res.kind} is not a DNS-1123 label"
                    ).with_context(canary_id=canary_id, revision=revision)
            body = _substitute(res.body, values)
            rendered.append(
                ResourceObject(
                    kind=res.kind,
                    name=name,
                    namespace=namespace,
                    spec_hash=spec_hash(res.kind, namespace, name, body),
                    canary_id=canary_id,
                    phase=res.effective_phase(),
                    body=body,
                )
            )
        return tuple(rendered)


def _is_dns_label(value: str) -> bool:
    return len(value) <= 63 and _DNS_LABEL.fullmatch(value) is not None


def _substitute(value: Any, values: dict[str, str]) -> Any:
    """Replace known placeholders in strings, recursing into containers."""
    if isinstance(value, str):
        return _PLACEHOLDER.sub(lambda m: values.get(m.group(0), m.group(0)), value)
    if isinstance(value, dict):
        return {k: _substitute(v, values) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute(v, values) for v in value]
    return value
