# toolguard/middleware/guardrails/enforcer.py
"""Guard pipeline and the adapters that put it in front of tool calls.

This module provides:
1. GuardPipeline - routes an invocation to its guards and aggregates verdicts
2. create_guardrail_hook - pydantic-ai process_tool_call hook for MCP servers
3. GuardrailEnforcer - raising check() and a decorator for plain Python tools

Example:
    >>> pipeline = GuardPipeline([CommandGuard(), NetworkGuard()])
    >>> await pipeline.before_tool_call(
    ...     {"toolName": "exec", "params": {"command": "rm -rf /"}}
    ... )
    {'block': True, 'reason': '...'}

    Using create_guardrail_hook with MCPServerStdio:

    >>> from pydantic_ai.mcp import MCPServerStdio
    >>> hook = create_guardrail_hook(pipeline)
    >>> server = MCPServerStdio("npx", ["-y", "@mcp/server-fetch"],
    ...                          process_tool_call=hook)
"""

import asyncio
import functools
import inspect
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

from pydantic_ai import RunContext
from pydantic_ai.mcp import CallToolFunc, ToolResult

from toolguard.middleware.guardrails.core import (
    MESSAGE_RECEIVED,
    Guard,
    GuardrailViolation,
    GuardVerdict,
    ToolInvocation,
)
from toolguard.utils.logging import invocation_id_var, new_invocation_id

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


# ============================================================================
# Pipeline
# ============================================================================


class GuardPipeline:
    """Ordered set of guards evaluated for every tool call.

    Guards run in ascending priority (deterministic pattern guards first,
    then network checks, then classifiers). The first Block ends evaluation;
    otherwise the strongest verdict wins (Warn over Allow). An exception
    from a guard becomes Block unless that guard fails open.

    Attributes:
        guards: Guards sorted by priority.
    """

    def __init__(self, guards: Iterable[Guard]):
        self.guards: tuple[Guard, ...] = tuple(sorted(guards, key=lambda g: g.priority))
        logger.info(
            "Guard pipeline ready: %s",
            ", ".join(f"{g.name}({g.priority})" for g in self.guards) or "(no guards)",
        )

    def guards_for(self, invocation: ToolInvocation) -> list[Guard]:
        return [g for g in self.guards if g.applies_to(invocation)]

    async def _run_guard(self, guard: Guard, invocation: ToolInvocation) -> GuardVerdict:
        try:
            return await guard.check(invocation)
        except Exception as e:
            if guard.fail_open:
                logger.error("%s error, allowing (fail_open): %s", guard.name, e)
                return guard.allowed()
            logger.error("%s error, blocking: %s", guard.name, e)
            return guard.on_error(invocation, e)

    async def evaluate(self, invocation: ToolInvocation) -> GuardVerdict:
        """Evaluate one tool call against every applicable guard.

        Args:
            invocation: The attempted tool call.

        Returns:
            The first Block, else the strongest Warn, else Allow.
        """
        token = invocation_id_var.set(new_invocation_id())
        try:
            strongest = GuardVerdict.allow()
            for guard in self.guards_for(invocation):
                verdict = await self._run_guard(guard, invocation)
                if verdict.is_block:
                    return verdict
                if verdict.kind.severity > strongest.kind.severity:
                    strongest = verdict
            return strongest
        finally:
            invocation_id_var.reset(token)

    async def evaluate_message(self, text: str, channel: str | None = None) -> GuardVerdict:
        """Evaluate an inbound channel message (Slack, Telegram, ...)."""
        invocation = ToolInvocation(
            MESSAGE_RECEIVED,
            {"text": text, "channel": channel},
            caller_id=channel,
        )
        return await self.evaluate(invocation)

    async def before_tool_call(self, event: Mapping[str, Any]) -> dict[str, Any] | None:
        """Host adapter for the ``before_tool_call`` hook.

        Args:
            event: ``{"toolName", "params", "agentId"?, "cwd"?}``.

        Returns:
            None to allow, ``{"warn": True, "advisory": ...}`` or
            ``{"block": True, "reason": ...}``.
        """
        verdict = await self.evaluate(ToolInvocation.from_event(event))
        return verdict.to_hook_result()

    async def message_received(self, event: Mapping[str, Any]) -> dict[str, Any] | None:
        """Host adapter for the ``message_received`` hook."""
        message = event.get("message")
        text = message.get("text") if isinstance(message, Mapping) else None
        text = text or event.get("text") or ""
        if not isinstance(text, str) or not text:
            return None
        verdict = await self.evaluate_message(text, event.get("channel"))
        return verdict.to_hook_result()

    async def aclose(self) -> None:
        """Close HTTP clients held by classifier backends."""
        for guard in self.guards:
            closer = getattr(getattr(guard, "classifier", None), "aclose", None)
            if closer is not None:
                await closer()

    def __len__(self) -> int:
        return len(self.guards)


# ============================================================================
# pydantic-ai integration
# ============================================================================


def _prefix_result(result: ToolResult, advisory: str) -> ToolResult:
    if isinstance(result, str):
        return f"{advisory}\n\n{result}"
    if isinstance(result, list):
        return [{"type": "text", "text": advisory}, *result]
    return [{"type": "text", "text": advisory}, result]


def create_guardrail_hook(pipeline: GuardPipeline, caller_id: str | None = None):
    """Create a process_tool_call hook that runs the guard pipeline.

    The hook is compatible with pydantic-ai's MCPServerStdio
    ``process_tool_call`` parameter.

    Args:
        pipeline: Pipeline to evaluate every call with.
        caller_id: Agent ID reported to the guards.

    Returns:
        Async hook function with signature:
        (ctx, call_tool, name, tool_args) -> ToolResult
    """

    async def guardrail_hook(
        ctx: RunContext,
        call_tool: CallToolFunc,
        name: str,
        tool_args: dict[str, Any],
    ) -> ToolResult:
        verdict = await pipeline.evaluate(ToolInvocation(name, tool_args, caller_id=caller_id))
        if verdict.is_block:
            return [{"type": "text", "text": f"[BLOCKED] {verdict.reason}"}]

        result = await call_tool(name, tool_args, None)
        if verdict.is_warn:
            return _prefix_result(result, verdict.message)
        return result

    return guardrail_hook


# ============================================================================
# Enforcer for plain Python tools
# ============================================================================


class GuardrailEnforcer:
    """Applies the guard pipeline to custom Python tool functions.

    Attributes:
        pipeline: Pipeline used for every check.
        caller_id: Agent ID reported to the guards.
    """

    def __init__(self, pipeline: GuardPipeline, caller_id: str | None = None):
        self.pipeline = pipeline
        self.caller_id = caller_id

    async def check(self, tool_name: str, parameters: Mapping[str, Any]) -> GuardVerdict:
        """Check if a tool call is allowed.

        Returns:
            The Allow or Warn verdict.

        Raises:
            GuardrailViolation: If the pipeline blocks the call.
        """
        verdict = await self.pipeline.evaluate(
            ToolInvocation(tool_name, parameters, caller_id=self.caller_id)
        )
        if verdict.is_block:
            raise GuardrailViolation.from_verdict(verdict, tool_name)
        return verdict

    def wrap_tool(self, func: F) -> F:
        """Wrap a tool function with guard checks under its own name."""
        return self.wrap_tool_with_name(func.__name__)(func)

    def wrap_tool_with_name(self, tool_name: str) -> Callable[[F], F]:
        """Wrap a tool function with guard checks using a custom tool name.

        Positional and keyword arguments are bound to the function's
        parameter names and passed to the guards as the tool parameters.
        Sync functions run the check with asyncio.run, so they must not be
        called from inside a running event loop.

        Example:
            >>> @enforcer.wrap_tool_with_name("exec")
            ... async def run_shell(command: str) -> str:
            ...     ...
        """

        def decorator(func: F) -> F:
            signature = inspect.signature(func)

            def parameters(args: tuple, kwargs: dict) -> dict[str, Any]:
                return dict(signature.bind_partial(*args, **kwargs).arguments)

            if inspect.iscoroutinefunction(func):

                @functools.wraps(func)
                async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                    await self.check(tool_name, parameters(args, kwargs))
                    return await func(*args, **kwargs)

                return async_wrapper  # type: ignore[return-value]

            @functools.wraps(func)
            def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
                asyncio.run(self.check(tool_name, parameters(args, kwargs)))
                return func(*args, **kwargs)

            return sync_wrapper  # type: ignore[return-value]

        return decorator
