"""Web content guard: pre-fetch a URL and scan it for prompt injection.

The page is fetched by the guard before the tool runs, with every redirect
hop re-validated. The tool itself fetches again afterwards, so a server that
serves different content to the second request is not covered.
"""

import logging

import httpx

from toolguard.classifiers import MODEL_ID, LocalModelClassifier, TextClassifier
from toolguard.config import WEB_GUARD, WebGuardConfig
from toolguard.middleware.guardrails.content import (
    RiskAction,
    classify,
    extract_readable_text,
    security_advisory,
)
from toolguard.middleware.guardrails.core import Guard, GuardVerdict, ToolInvocation
from toolguard.network.url_safety import Resolver, is_allowed_url, prefetch

logger = logging.getLogger(__name__)


class WebContentGuard(Guard):
    """Classify fetched web content before the agent sees it.

    Unsafe URLs (static check or any redirect hop) block. A resource that
    cannot be fetched is allowed, since there is nothing to inspect.
    """

    name = WEB_GUARD
    priority = 40

    def __init__(
        self,
        config: WebGuardConfig | None = None,
        classifier: TextClassifier | None = None,
        resolver: Resolver | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        config = config or WebGuardConfig()
        super().__init__(config.guarded_tools, config.fail_open, config.log_detections)
        self.config = config
        self.thresholds = config.thresholds
        self.classifier = classifier or LocalModelClassifier(
            config.model_id or MODEL_ID, config.cache_dir
        )
        self.resolver = resolver
        self.client = client

    def on_error(self, invocation: ToolInvocation, error: Exception) -> GuardVerdict:
        return self.blocked(
            invocation,
            "Web content guard unavailable: blocking as a precaution.",
            "guard_error",
        )

    async def check(self, invocation: ToolInvocation) -> GuardVerdict:
        url = invocation.get_str("url")
        if not url:
            return self.allowed()

        if not is_allowed_url(url):
            return self.blocked(
                invocation, f"Web content guard blocked non-public URL: {url}", "unsafe_url"
            )

        fetched = await prefetch(
            url,
            self.config.timeout,
            max_redirects=self.config.max_redirects,
            resolver=self.resolver,
            client=self.client,
        )
        if not fetched.ok:
            if fetched.unsafe_url:
                return self.blocked(
                    invocation,
                    f"Web content guard blocked non-public URL: {url}",
                    "unsafe_url",
                )
            # A failed or timed-out fetch is allowed: there is no content to
            # classify. Only unsafe hops and redirect overflow block here.
            logger.info("Nothing to inspect for %s, allowing", url)
            return self.allowed()

        text = extract_readable_text(fetched.content)
        if not text.strip():
            return self.allowed()

        assessment = await classify(
            text,
            self.thresholds,
            self.classifier,
            max_content_length=self.config.max_content_length,
        )

        if assessment.action is RiskAction.BLOCK:
            logger.debug("Injection in %s: %s", url, assessment.chunk)
            return self.blocked(
                invocation,
                "Web content guard blocked this URL: prompt injection detected "
                f"(confidence: {assessment.percent})",
                "prompt_injection",
            )
        if assessment.action is RiskAction.WARN:
            return self.warned(
                invocation,
                security_advisory("web page", assessment.score),
                "prompt_injection",
                f"score {assessment.score:.3f} for {url}",
            )
        return self.allowed()
