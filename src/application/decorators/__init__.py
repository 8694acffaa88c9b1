"""Application-level decorators for cross-cutting concerns."""

from application.decorators.retry import retry_on_concurrency_conflict

__all__ = ["retry_on_concurrency_conflict"]
