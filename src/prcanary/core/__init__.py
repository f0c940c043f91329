"""Core primitives shared by every prcanary component.

errors      CanaryError hierarchy with retry semantics
logging     structlog configuration and scoped context
hashing     deterministic content hashes for resources
config      pydantic-settings configuration
events      observability event bus
"""
