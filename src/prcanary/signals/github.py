"""GitHub pull requests as a lifecycle feed.

Polling: :class:`GitHubPullRequestLister` lists open PRs (paginated,
optionally filtered by label) and reports ``number → head.sha``.

Push: :func:`parse_pull_request_event` maps a ``pull_request`` webhook
payload to a :class:`SignalEvent`; :func:`verify_signature` checks the
``X-Hub-Signature-256`` HMAC.

=================  ==============
webhook action     lifecycle
=================  ==============
opened, reopened   OPEN
synchronize,       UPDATED
edited
closed             CLOSED
labeled/unlabeled  OPEN/CLOSED when a label filter is configured
=================  ==============
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime
from typing import Any

import httpx

from prcanary.core.errors import ConfigError, UnavailableError, ValidationError
from prcanary.core.logging import get_logger
from prcanary.model.environments import LifecycleState
from prcanary.model.tags import canary_id
from prcanary.signals.base import SignalEvent, utcnow
from prcanary.signals.polling import OpenReference

logger = get_logger(__name__)

_ACTIONS = {
    "opened": LifecycleState.OPEN,
    "reopened": LifecycleState.OPEN,
    "synchronize": LifecycleState.UPDATED,
    "edited": LifecycleState.UPDATED,
    "closed": LifecycleState.CLOSED,
}


def _parse_time(value: str | None) -> datetime:
    if not value:
        return utcnow()
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _labels(pr: dict[str, Any]) -> set[str]:
    return {label.get("name", "") for label in pr.get("labels", []) if isinstance(label, dict)}


class GitHubPullRequestLister:
    """Snapshot of open pull requests for one repository.

    Args:
        repo: ``owner/name``
        token: API token (optional for public repositories)
        api_url: API base URL (GitHub Enterprise supported)
        label: Only PRs carrying this label are reported
        client: Injected ``httpx.AsyncClient`` (tests, connection reuse)
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        repo: str,
        token: str | None = None,
        api_url: str = "https://api.github.com",
        label: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        per_page: int = 100,
    ):
        if not repo or "/" not in repo:
            raise ConfigError(f"github repo must be 'owner/name', got {repo!r}")
        self._repo = repo
        self._label = label
        self._per_page = per_page
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(base_url=api_url, timeout=timeout)
        self._headers = headers

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_open_references(self) -> list[OpenReference]:
        """Every open PR (matching the label filter) as an OpenReference.

        Raises:
            UnavailableError: Transport failure, rate limit or 5xx.
            ConfigError: Authentication or repository errors.
        """
        url: str | None = f"/repos/{self._repo}/pulls"
        params: dict[str, Any] | None = {"state": "open", "per_page": self._per_page}
        references: list[OpenReference] = []
        while url:
            try:
                resp = await self._client.get(url, params=params, headers=self._headers)
            except httpx.HTTPError as e:
                raise UnavailableError(f"github request failed: {e}", cause=e) from e
            self._raise_for_status(resp)
            for pr in resp.json():
                if self._label and self._label not in _labels(pr):
                    continue
                references.append(
                    OpenReference(
                        canary_id=canary_id(pr["number"]),
                        revision=pr["head"]["sha"],
                        requested_at=_parse_time(pr.get("updated_at")),
                    )
                )
            next_link = resp.links.get("next")
            url = next_link["url"] if next_link else None
            params = None
        return references

    def _raise_for_status(self, resp: httpx.Response) -> None:
        status = resp.status_code
        if status < 400:
            return
        if status == 429 or status >= 500 or (
            status == 403 and resp.headers.get("x-ratelimit-remaining") == "0"
        ):
            retry_after = resp.headers.get("retry-after")
            raise UnavailableError(
                f"github returned {status}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            ).with_context(url=str(resp.request.url), http_status=status)
        raise ConfigError(f"github returned {status} for {self._repo}").with_context(
            url=str(resp.request.url), http_status=status
        )


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Check a GitHub ``X-Hub-Signature-256`` header against *body*."""
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.removeprefix("sha256="))


def parse_pull_request_event(
    payload: dict[str, Any],
    label: str | None = None,
) -> SignalEvent | None:
    """Map a ``pull_request`` webhook payload to a lifecycle event.

    Returns None for actions that do not change the environment.

    Raises:
        ValidationError: If the payload lacks the fields we need.
    """
    action = payload.get("action")
    pr = payload.get("pull_request")
    if not isinstance(pr, dict):
        raise ValidationError("payload has no pull_request object")
    try:
        cid = canary_id(pr["number"])
        revision = pr["head"]["sha"]
    except (KeyError, TypeError) as e:
        raise ValidationError(f"pull_request payload missing {e}", cause=e) from e

    state = _ACTIONS.get(action)
    if label:
        if action == "labeled" and payload.get("label", {}).get("name") == label:
            state = LifecycleState.OPEN
        elif action == "unlabeled" and payload.get("label", {}).get("name") == label:
            state = LifecycleState.CLOSED
        elif state is not None and state != LifecycleState.CLOSED and label not in _labels(pr):
            return None
    if state is None:
        return None
    if state == LifecycleState.OPEN and pr.get("state") == "closed":
        return None

    requested_at = _parse_time(
        pr.get("closed_at") if state == LifecycleState.CLOSED else pr.get("updated_at")
    )
    return SignalEvent(
        canary_id=cid,
        revision=revision,
        state=state,
        requested_at=requested_at,
        source="github",
    )
