# toolguard/guards/__init__.py
"""Concrete guards and the pipeline factory.

Priority order (lower runs first):
    command-guard (10), file-guard (20), network-guard (30), web-guard (40),
    agent-guard (50), content-guard (60), channel-guard (70)
"""

import logging

from toolguard.config import (
    AGENT_GUARD,
    CHANNEL_GUARD,
    COMMAND_GUARD,
    CONTENT_GUARD,
    FILE_GUARD,
    NETWORK_GUARD,
    WEB_GUARD,
    GuardConfig,
    load_guard_config,
)
from toolguard.guards.command import CommandGuard
from toolguard.guards.file import FileGuard
from toolguard.guards.messages import (
    AgentMessageGuard,
    ChannelGuard,
    ContentGuard,
    is_cloudflare_challenge,
)
from toolguard.guards.network import NetworkGuard
from toolguard.guards.web import WebContentGuard
from toolguard.middleware.guardrails.core import Guard
from toolguard.middleware.guardrails.enforcer import GuardPipeline

logger = logging.getLogger(__name__)


def build_guards(config: GuardConfig) -> list[Guard]:
    """Instantiate every enabled guard from its resolved options."""
    guards: list[Guard] = []
    if config.is_enabled(COMMAND_GUARD):
        guards.append(CommandGuard(config.command))
    if config.is_enabled(FILE_GUARD):
        guards.append(FileGuard(config.file))
    if config.is_enabled(NETWORK_GUARD):
        guards.append(NetworkGuard(config.network))
    if config.is_enabled(WEB_GUARD):
        guards.append(WebContentGuard(config.web))
    if config.is_enabled(AGENT_GUARD):
        guards.append(AgentMessageGuard(config.agent))
    if config.is_enabled(CONTENT_GUARD):
        if not config.content_api_key:
            logger.warning("content-guard enabled without an OpenRouter API key; every scan will block")
        guards.append(ContentGuard(config.content, api_key=config.content_api_key))
    if config.is_enabled(CHANNEL_GUARD):
        guards.append(ChannelGuard(config.channel))
    return guards


def build_pipeline(config: GuardConfig | None = None) -> GuardPipeline:
    """Build a pipeline from config, loading it from the environment if omitted.

    Reloading configuration means building a new pipeline.
    """
    config = config or load_guard_config()
    return GuardPipeline(build_guards(config))


__all__ = [
    "AgentMessageGuard",
    "ChannelGuard",
    "CommandGuard",
    "ContentGuard",
    "FileGuard",
    "NetworkGuard",
    "WebContentGuard",
    "build_guards",
    "build_pipeline",
    "is_cloudflare_challenge",
]
