"""Observability configuration with Pydantic Logfire."""

import logging

from toolguard.config import Settings, settings

logger = logging.getLogger(__name__)


def setup_logfire(env: Settings | None = None) -> bool:
    """Configure Logfire for observability.

    Only activates if a Logfire token is configured. Instruments httpx so
    pre-fetch and OpenRouter requests show up as spans.

    Returns:
        True if Logfire was configured.
    """
    env = env or settings
    if not env.logfire_token:
        return False

    try:
        import logfire

        logfire.configure(token=env.logfire_token, send_to_logfire="if-token-present")
        logfire.instrument_httpx()
    except Exception as e:
        # observability is optional
        logger.warning("Failed to configure Logfire: %s", str(e))
        return False
    return True
