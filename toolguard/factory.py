"""Pipeline factory for hosts that configure everything from the environment."""

import logging
from pathlib import Path

from toolguard.config import Settings, load_guard_config, settings
from toolguard.guards import build_pipeline
from toolguard.middleware.guardrails.enforcer import GuardPipeline
from toolguard.utils.logging import configure_logging
from toolguard.utils.observability import setup_logfire

logger = logging.getLogger(__name__)


def create_pipeline(
    config_path: str | Path | None = None,
    env: Settings | None = None,
    configure: bool = True,
) -> GuardPipeline:
    """Create a guard pipeline the way a host process does at startup.

    Usage:
        pipeline = create_pipeline()

        # In the host's before_tool_call hook:
        result = await pipeline.before_tool_call(event)

    Args:
        config_path: Guard config JSON. Uses Settings.config_path if not provided.
        env: Settings to read. Uses the module singleton if not provided.
        configure: Also set up logging and Logfire from the settings.

    Returns:
        A ready GuardPipeline. Call this again to pick up config changes.
    """
    env = env or settings
    if configure:
        configure_logging(env.log_level.upper(), env.structured_logging)
        setup_logfire(env)

    pipeline = build_pipeline(load_guard_config(config_path, env))
    logger.info("Created guard pipeline with %d guards", len(pipeline))
    return pipeline
