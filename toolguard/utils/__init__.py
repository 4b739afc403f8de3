# toolguard/utils/__init__.py
"""Logging helpers. Logfire setup lives in toolguard.utils.observability."""

from toolguard.utils.logging import (
    StructuredFormatter,
    configure_logging,
    get_invocation_id,
    new_invocation_id,
)

__all__ = [
    "StructuredFormatter",
    "configure_logging",
    "get_invocation_id",
    "new_invocation_id",
]
