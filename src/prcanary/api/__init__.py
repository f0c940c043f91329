"""HTTP API: webhooks, rule-set feed, environment status."""

from prcanary.api.app import create_app

__all__ = ["create_app"]
