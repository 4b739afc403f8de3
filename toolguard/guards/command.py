"""Destructive shell command guard."""

import logging

from toolguard.config import COMMAND_GUARD, CommandGuardConfig
from toolguard.middleware.guardrails.commands import (
    CommandPatternSet,
    default_pattern_set,
    load_blocked_commands,
    matches_blocked_pattern,
)
from toolguard.middleware.guardrails.core import Guard, GuardVerdict, ToolInvocation

logger = logging.getLogger(__name__)


class CommandGuard(Guard):
    """Block shell commands matching the destructive pattern set.

    The full command (single-quoted strings blanked) is matched first, then
    each ``&&``/``||``/``;`` segment. The block reason is the pattern's message.
    """

    name = COMMAND_GUARD
    priority = 10

    def __init__(
        self,
        config: CommandGuardConfig | None = None,
        patterns: CommandPatternSet | None = None,
    ):
        config = config or CommandGuardConfig()
        super().__init__(config.guarded_tools, config.fail_open, config.log_blocks)
        if patterns is None:
            patterns = (
                load_blocked_commands(config.patterns_path)
                if config.patterns_path
                else default_pattern_set()
            )
        self.patterns = patterns

    async def check(self, invocation: ToolInvocation) -> GuardVerdict:
        command = invocation.get_str("command")
        if not command:
            return self.allowed()

        if not self.patterns.patterns:
            if self.fail_open:
                return self.allowed()
            return self.blocked(
                invocation,
                "Command guard config unavailable: blocking for safety.",
                "config_error",
            )

        pattern = matches_blocked_pattern(command, self.patterns)
        if pattern is None:
            return self.allowed()

        logger.debug("Command matched %r: %s", pattern.source, command[:200])
        return self.blocked(invocation, pattern.message, pattern.category)
