"""prcanary: PR-scoped canary routing and environment reconciliation."""

__version__ = "0.1.0"
