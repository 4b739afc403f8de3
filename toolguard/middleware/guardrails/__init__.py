# toolguard/middleware/guardrails/__init__.py
"""Guard evaluation engine for agent tool calls.

Pattern matching (commands, file paths), content-risk classification and the
pipeline that routes each tool call to its guards. The concrete guards live
in toolguard.guards.

Example:
    Using create_guardrail_hook with MCPServerStdio:

    >>> from toolguard.guards import build_pipeline
    >>> from toolguard.middleware.guardrails import create_guardrail_hook
    >>> from pydantic_ai.mcp import MCPServerStdio
    >>>
    >>> hook = create_guardrail_hook(build_pipeline())
    >>> server = MCPServerStdio("npx", ["-y", "@mcp/server-fetch"],
    ...                          process_tool_call=hook)

    Handling guardrail violations:

    >>> from toolguard.middleware.guardrails import GuardrailViolation
    >>> try:
    ...     await enforcer.check("exec", {"command": "rm -rf /"})
    ... except GuardrailViolation as e:
    ...     print(f"Blocked: {e.violation_type} - {e}")
"""

from toolguard.middleware.guardrails.commands import (
    BlockedPattern,
    CommandPatternSet,
    ConfigError,
    detect_sensitive_action,
    load_blocked_commands,
    matches_blocked_pattern,
)
from toolguard.middleware.guardrails.content import (
    ClassificationThresholds,
    RiskAction,
    RiskAssessment,
    RiskScore,
    classify,
)
from toolguard.middleware.guardrails.core import (
    MESSAGE_RECEIVED,
    Guard,
    GuardrailViolation,
    GuardVerdict,
    ToolInvocation,
    VerdictKind,
)
from toolguard.middleware.guardrails.enforcer import (
    GuardPipeline,
    GuardrailEnforcer,
    create_guardrail_hook,
)

__all__ = [
    "BlockedPattern",
    "ClassificationThresholds",
    "CommandPatternSet",
    "ConfigError",
    "Guard",
    "GuardPipeline",
    "GuardVerdict",
    "GuardrailEnforcer",
    "GuardrailViolation",
    "MESSAGE_RECEIVED",
    "RiskAction",
    "RiskAssessment",
    "RiskScore",
    "ToolInvocation",
    "VerdictKind",
    "classify",
    "create_guardrail_hook",
    "detect_sensitive_action",
    "load_blocked_commands",
    "matches_blocked_pattern",
]
