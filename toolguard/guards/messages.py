"""Prompt-injection guards for messages between agents and from channels.

- AgentMessageGuard: local model, tiered, on sessions_send
- ContentGuard: remote LLM, binary, on messages into search-agent sessions
- ChannelGuard: local model, tiered, on inbound channel messages
"""

import logging

from toolguard.classifiers import (
    INJECTION_LABEL,
    MODEL_ID,
    ClassifierError,
    LocalModelClassifier,
    OpenRouterClassifier,
    TextClassifier,
)
from toolguard.config import (
    AGENT_GUARD,
    CHANNEL_GUARD,
    CONTENT_GUARD,
    AgentGuardConfig,
    ChannelGuardConfig,
    ContentGuardConfig,
)
from toolguard.middleware.guardrails.content import (
    ClassificationThresholds,
    RiskAction,
    classify,
    extract_message_text,
    security_advisory,
)
from toolguard.middleware.guardrails.core import (
    MESSAGE_RECEIVED,
    Guard,
    GuardVerdict,
    ToolInvocation,
)

logger = logging.getLogger(__name__)

CLOUDFLARE_MARKERS = ("cf-mitigated", "__cf_chl", "Just a moment", "challenge-platform")


def is_cloudflare_challenge(content: str) -> bool:
    """Check for the markers of a Cloudflare interstitial page."""
    return any(marker in content for marker in CLOUDFLARE_MARKERS)


class _TieredMessageGuard(Guard):
    """Shared local-model flow: extract text, classify, map to a verdict."""

    source = "message"
    label = "Message guard"

    def __init__(
        self,
        tools: tuple[str, ...],
        thresholds: ClassificationThresholds,
        classifier: TextClassifier,
        max_content_length: int,
        fail_open: bool,
        log_detections: bool,
    ):
        super().__init__(tools, fail_open, log_detections)
        self.thresholds = thresholds
        self.classifier = classifier
        self.max_content_length = max_content_length

    def on_error(self, invocation: ToolInvocation, error: Exception) -> GuardVerdict:
        return self.blocked(
            invocation,
            f"{self.label} unavailable: blocking as a precaution.",
            "guard_error",
        )

    async def scan(self, invocation: ToolInvocation, text: str) -> GuardVerdict:
        assessment = await classify(
            text,
            self.thresholds,
            self.classifier,
            max_content_length=self.max_content_length,
        )

        if assessment.action is RiskAction.BLOCK:
            if self.log_blocks:
                logger.warning(
                    "[%s] injection chunk (score %.3f): %s",
                    self.name,
                    assessment.score,
                    assessment.chunk,
                )
            return self.blocked(
                invocation,
                f"{self.label} blocked this message: prompt injection detected "
                f"(confidence: {assessment.percent})",
                "prompt_injection",
            )
        if assessment.action is RiskAction.WARN:
            return self.warned(
                invocation,
                security_advisory(self.source, assessment.score),
                "prompt_injection",
                f"score {assessment.score:.3f}: {assessment.chunk}",
            )
        return self.allowed()


class AgentMessageGuard(_TieredMessageGuard):
    """Scan inter-agent messages with the local injection model.

    Attributes:
        guard_agents: Only messages from these callers are scanned (empty = all).
        skip_target_agents: Messages to these targets are never scanned.
    """

    name = AGENT_GUARD
    priority = 50
    source = "inter-agent message"
    label = "Agent guard"

    def __init__(
        self,
        config: AgentGuardConfig | None = None,
        classifier: TextClassifier | None = None,
    ):
        config = config or AgentGuardConfig()
        super().__init__(
            config.guarded_tools,
            config.thresholds,
            classifier or LocalModelClassifier(config.model_id or MODEL_ID, config.cache_dir),
            config.max_content_length,
            config.fail_open,
            config.log_detections,
        )
        self.guard_agents = frozenset(config.guard_agents)
        self.skip_target_agents = frozenset(config.skip_target_agents)

    async def check(self, invocation: ToolInvocation) -> GuardVerdict:
        if self.guard_agents and invocation.caller_id and invocation.caller_id not in self.guard_agents:
            return self.allowed()

        target = invocation.get_str("targetAgent", "agentId", "target")
        if target and target in self.skip_target_agents:
            return self.allowed()

        text = extract_message_text(invocation.parameters)
        if not text:
            return self.allowed()
        return await self.scan(invocation, text)


class ChannelGuard(_TieredMessageGuard):
    """Scan inbound channel messages (Slack, Telegram, ...) before the agent reads them."""

    name = CHANNEL_GUARD
    priority = 70
    source = "incoming message"
    label = "Channel guard"

    def __init__(
        self,
        config: ChannelGuardConfig | None = None,
        classifier: TextClassifier | None = None,
    ):
        config = config or ChannelGuardConfig()
        super().__init__(
            (MESSAGE_RECEIVED,),
            config.thresholds,
            classifier or LocalModelClassifier(config.model_id or MODEL_ID, config.cache_dir),
            config.max_content_length,
            config.fail_open,
            config.log_detections,
        )

    async def check(self, invocation: ToolInvocation) -> GuardVerdict:
        text = extract_message_text(invocation.parameters)
        if not text:
            return self.allowed()
        return await self.scan(invocation, text)


class ContentGuard(Guard):
    """Remote-LLM check on content handed from a search agent to the main agent.

    Only messages addressed to a session whose key starts with the search
    prefix are scanned. Every error blocks; this guard cannot fail open.
    """

    name = CONTENT_GUARD
    priority = 60

    def __init__(
        self,
        config: ContentGuardConfig | None = None,
        classifier: TextClassifier | None = None,
        api_key: str = "",
    ):
        config = config or ContentGuardConfig()
        super().__init__(config.guarded_tools, fail_open=False, log_blocks=config.log_detections)
        self.session_prefix = config.session_prefix
        self.max_content_length = config.max_content_length
        self.classifier = classifier or OpenRouterClassifier(
            api_key=config.open_router_api_key or api_key,
            model=config.model,
            timeout=config.timeout,
        )

    def on_error(self, invocation: ToolInvocation, error: Exception) -> GuardVerdict:
        detail = str(error) if isinstance(error, ClassifierError) else "internal error"
        return self.blocked(
            invocation,
            f"Content guard blocked {invocation.tool_name}: classification failed: {detail}",
            "classifier_error",
        )

    async def check(self, invocation: ToolInvocation) -> GuardVerdict:
        session_key = invocation.get_str("sessionKey", "session_key")
        if not session_key.startswith(self.session_prefix):
            logger.debug("%s to %s: skipping", invocation.tool_name, session_key or "<none>")
            return self.allowed()

        content = extract_message_text(invocation.parameters, separator="\n\n")
        if not content:
            return self.allowed()

        if is_cloudflare_challenge(content):
            logger.warning("Cloudflare challenge detected, skipping classification")
            return self.allowed()

        truncated = content[: self.max_content_length]
        result = await self.classifier.classify(truncated)
        logger.debug("Classified %s (%d chars): %s", invocation.tool_name, len(truncated), result.label)

        if result.label == INJECTION_LABEL:
            return self.blocked(
                invocation,
                f"Content guard blocked {invocation.tool_name}: prompt injection detected "
                "in message content.",
                "prompt_injection",
            )
        return self.allowed()
