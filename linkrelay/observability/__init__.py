"""Observability module - structured logging."""

from linkrelay.observability.logging import bind_context, setup_logging

__all__ = ["setup_logging", "bind_context"]
