"""Core types of the tool-call guard pipeline.

This module provides:
1. ToolInvocation - the tool call submitted by the host for inspection
2. GuardVerdict - Allow, Warn(advisory) or Block(reason)
3. GuardrailViolation - exception for callers that prefer raising over verdicts
4. Guard - base class of every concrete guard

Example:
    >>> invocation = ToolInvocation("web_fetch", {"url": "http://10.0.0.1/"})
    >>> verdict = await NetworkGuard(config).check(invocation)
    >>> verdict.is_block
    True
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar

logger = logging.getLogger(__name__)

# Pseudo tool name for inbound channel messages
MESSAGE_RECEIVED = "message_received"


# ============================================================================
# Invocation
# ============================================================================


@dataclass(frozen=True)
class ToolInvocation:
    """One tool call submitted to the guard pipeline.

    Attributes:
        tool_name: Tool identifier, e.g. "web_fetch", "exec", "sessions_send".
        parameters: Tool arguments (url, command, message, file_path, ...).
        caller_id: ID of the requesting agent, if the host knows it.
        cwd: Working directory for resolving relative file paths.
    """

    tool_name: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    caller_id: str | None = None
    cwd: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters or {})))

    @classmethod
    def from_event(cls, event: Mapping[str, Any]) -> "ToolInvocation":
        """Build from a host ``before_tool_call`` event.

        Accepts both the host's camelCase keys (toolName, params, agentId) and
        snake_case equivalents.
        """
        params = event.get("params", event.get("parameters")) or {}
        if not isinstance(params, Mapping):
            params = {}
        return cls(
            tool_name=str(event.get("toolName", event.get("tool_name", ""))),
            parameters=params,
            caller_id=event.get("agentId", event.get("caller_id")),
            cwd=event.get("cwd"),
        )

    def get_str(self, *keys: str) -> str:
        """Return the first non-empty string parameter among keys, or ""."""
        for key in keys:
            value = self.parameters.get(key)
            if isinstance(value, str) and value:
                return value
        return ""


# ============================================================================
# Verdict
# ============================================================================


class VerdictKind(str, Enum):
    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"

    @property
    def severity(self) -> int:
        return {"allow": 0, "warn": 1, "block": 2}[self.value]


@dataclass(frozen=True)
class GuardVerdict:
    """Result of evaluating one or more guards.

    Exactly one kind is active. Block carries a reason, Warn carries the
    advisory for the downstream consumer, Allow carries nothing.

    Attributes:
        kind: ALLOW, WARN or BLOCK.
        message: Block reason or warn advisory ("" for allow).
        guard: Name of the guard that produced the verdict.
        category: Short tag for logging ("exfiltration", "not_allowlisted", ...).
    """

    kind: VerdictKind = VerdictKind.ALLOW
    message: str = ""
    guard: str | None = None
    category: str | None = None

    @classmethod
    def allow(cls, guard: str | None = None) -> "GuardVerdict":
        return cls(VerdictKind.ALLOW, "", guard)

    @classmethod
    def warn(cls, advisory: str, guard: str | None = None, category: str | None = None) -> "GuardVerdict":
        return cls(VerdictKind.WARN, advisory, guard, category)

    @classmethod
    def block(cls, reason: str, guard: str | None = None, category: str | None = None) -> "GuardVerdict":
        return cls(VerdictKind.BLOCK, reason, guard, category)

    @property
    def is_allow(self) -> bool:
        return self.kind is VerdictKind.ALLOW

    @property
    def is_warn(self) -> bool:
        return self.kind is VerdictKind.WARN

    @property
    def is_block(self) -> bool:
        return self.kind is VerdictKind.BLOCK

    @property
    def advisory(self) -> str | None:
        return self.message if self.is_warn else None

    @property
    def reason(self) -> str | None:
        return self.message if self.is_block else None

    def to_hook_result(self) -> dict[str, Any] | None:
        """Render the host interception contract.

        Returns:
            None for Allow, ``{"warn": True, "advisory": ...}`` for Warn and
            ``{"block": True, "reason": ...}`` for Block.
        """
        if self.is_block:
            return {"block": True, "reason": self.message}
        if self.is_warn:
            return {"warn": True, "advisory": self.message}
        return None


# ============================================================================
# Exceptions
# ============================================================================


class GuardrailViolation(Exception):
    """Raised when a guardrail blocks a tool call."""

    def __init__(self, message: str, tool_name: str, violation_type: str):
        super().__init__(message)
        self.tool_name = tool_name
        self.violation_type = violation_type

    @classmethod
    def from_verdict(cls, verdict: GuardVerdict, tool_name: str) -> "GuardrailViolation":
        return cls(verdict.message, tool_name, verdict.category or "blocked")


# ============================================================================
# Guard base class
# ============================================================================


class Guard(ABC):
    """Base class for the closed set of concrete guards.

    Subclasses set ``name`` and ``priority`` (lower runs first) and implement
    check(). A guard raises freely; the pipeline converts any exception into
    Block unless fail_open is set on the instance.

    Attributes:
        tools: Tool names this guard inspects.
        fail_open: If True, internal errors allow the call instead of blocking.
        log_blocks: Log blocked calls. Observability only; never affects verdicts.
    """

    name: ClassVar[str] = "guard"
    priority: ClassVar[int] = 100

    def __init__(
        self,
        tools: frozenset[str] | set[str] | tuple[str, ...],
        fail_open: bool = False,
        log_blocks: bool = True,
    ):
        self.tools = frozenset(tools)
        self.fail_open = fail_open
        self.log_blocks = log_blocks

    def applies_to(self, invocation: ToolInvocation) -> bool:
        return invocation.tool_name in self.tools

    @abstractmethod
    async def check(self, invocation: ToolInvocation) -> GuardVerdict:
        """Inspect an invocation and return a verdict."""

    def blocked(self, invocation: ToolInvocation, reason: str, category: str) -> GuardVerdict:
        """Build a Block verdict and log it."""
        if self.log_blocks:
            logger.warning(
                "GUARDRAIL BLOCKED: [%s] %s (tool: %s, agent: %s)",
                self.name,
                reason,
                invocation.tool_name,
                invocation.caller_id or "unknown",
            )
        return GuardVerdict.block(reason, self.name, category)

    def warned(self, invocation: ToolInvocation, advisory: str, category: str, detail: str = "") -> GuardVerdict:
        """Build a Warn verdict and log it."""
        if self.log_blocks:
            logger.warning(
                "GUARDRAIL WARNING: [%s] %s (tool: %s, agent: %s)",
                self.name,
                detail or category,
                invocation.tool_name,
                invocation.caller_id or "unknown",
            )
        return GuardVerdict.warn(advisory, self.name, category)

    def allowed(self) -> GuardVerdict:
        return GuardVerdict.allow(self.name)

    def on_error(self, invocation: ToolInvocation, error: Exception) -> GuardVerdict:
        """Verdict for an exception raised by check() when not failing open.

        The reason names the guard only; exception details stay in the logs.
        """
        return self.blocked(
            invocation,
            f"{self.name} unavailable: blocking as a precaution.",
            "guard_error",
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(tools={sorted(self.tools)}, fail_open={self.fail_open})"
