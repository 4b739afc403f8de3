"""File access guard with no_access / read_only / no_delete levels.

Direct file tools (read, write, edit, apply_patch) are checked by their path
arguments; exec/bash commands are parsed into the paths they read, write and
delete. The guard's own protection config is always write-protected.
"""

import logging
import os
from pathlib import Path

from toolguard.config import FILE_GUARD, FileGuardConfig
from toolguard.middleware.guardrails.commands import ConfigError
from toolguard.middleware.guardrails.core import Guard, GuardVerdict, ToolInvocation
from toolguard.middleware.guardrails.files import (
    DEFAULT_PROTECTION_PATH,
    FileProtectionConfig,
    PathMatch,
    check_path,
    default_protection_config,
    extract_file_paths_from_command,
    extract_patch_paths,
    load_protection_config,
)

logger = logging.getLogger(__name__)

WRITE_TOOLS = frozenset({"write", "edit"})
SHELL_TOOLS = frozenset({"exec", "bash"})

# Levels that forbid each kind of access
_BLOCKS_READ = frozenset({"no_access"})
_BLOCKS_WRITE = frozenset({"no_access", "read_only"})
_BLOCKS_DELETE = frozenset({"no_access", "read_only", "no_delete"})


class FileGuard(Guard):
    """Path-based protection for sensitive files.

    Attributes:
        protection: Base protection levels.
        agent_protection: Per-agent levels (base merged with the override).
        self_protection: Globs that reads may see but nothing may modify.
        config_error: True if the protection file was malformed and the guard
            is blocking everything (only when not failing open).
    """

    name = FILE_GUARD
    priority = 20

    def __init__(
        self,
        config: FileGuardConfig | None = None,
        protection: FileProtectionConfig | None = None,
    ):
        config = config or FileGuardConfig()
        super().__init__(config.guarded_tools, config.fail_open, config.log_blocks)

        config_path = Path(config.config_path) if config.config_path else DEFAULT_PROTECTION_PATH
        self.config_error = False

        if protection is None:
            try:
                protection = load_protection_config(config_path)
            except ConfigError as e:
                logger.error("File guard config error: %s", e)
                self.config_error = not self.fail_open
                protection = default_protection_config()
        self.protection = protection

        self.self_protection: tuple[str, ...] = (
            str(config_path.resolve()),
            str(DEFAULT_PROTECTION_PATH.parent.resolve() / "**"),
        )

        self.agent_protection: dict[str, FileProtectionConfig] = {}
        for agent_id, override in config.agent_overrides.items():
            try:
                extra = load_protection_config(override.config_path)
            except ConfigError as e:
                logger.warning("Failed to load file guard override for %s: %s", agent_id, e)
                continue
            self.agent_protection[agent_id] = self.protection.merge(extra)

        logger.info(
            "File guard ready (levels: %s, overrides: %d, fail_open: %s)",
            ", ".join(self.protection.levels),
            len(self.agent_protection),
            self.fail_open,
        )

    def protection_for(self, agent_id: str | None) -> FileProtectionConfig:
        if agent_id and agent_id in self.agent_protection:
            return self.agent_protection[agent_id]
        return self.protection

    def _deny(self, invocation: ToolInvocation, path: str, match: PathMatch) -> GuardVerdict:
        return self.blocked(
            invocation,
            f"File guard blocked access: {path} is protected ({match.label}). "
            f"{invocation.tool_name} access denied.",
            match.label,
        )

    async def check(self, invocation: ToolInvocation) -> GuardVerdict:
        if self.config_error:
            return self.blocked(
                invocation,
                "File guard config error: blocking as a precaution.",
                "config_error",
            )

        cwd = invocation.cwd or os.getcwd()
        levels = self.protection_for(invocation.caller_id)
        tool = invocation.tool_name

        if tool in SHELL_TOOLS:
            return self._check_command(invocation, cwd, levels)

        if tool == "apply_patch":
            patch = invocation.get_str("patch", "diff", "input", "file_path")
            for path in extract_patch_paths(patch):
                match = check_path(path, cwd, levels, self.self_protection)
                if match and (match.self_protection or match.level in _BLOCKS_WRITE):
                    return self._deny(invocation, path, match)
            return self.allowed()

        file_path = invocation.get_str("file_path", "path")
        if not file_path:
            return self.allowed()

        is_write = tool in WRITE_TOOLS
        match = check_path(
            file_path, cwd, levels, self.self_protection if is_write else None
        )
        if match is None:
            return self.allowed()
        blocking = _BLOCKS_WRITE if is_write else _BLOCKS_READ
        if match.self_protection or match.level in blocking:
            return self._deny(invocation, file_path, match)
        return self.allowed()

    def _check_command(
        self, invocation: ToolInvocation, cwd: str, levels: FileProtectionConfig
    ) -> GuardVerdict:
        command = invocation.get_str("command")
        if not command:
            return self.allowed()

        paths = extract_file_paths_from_command(command)
        checks = (
            (paths.reads, _BLOCKS_READ),
            (paths.writes, _BLOCKS_WRITE),
            (paths.deletes, _BLOCKS_DELETE),
        )
        for found, blocking in checks:
            # reading the guard's own config is allowed
            guarded = None if blocking is _BLOCKS_READ else self.self_protection
            for path in found:
                match = check_path(path, cwd, levels, guarded)
                if match is None:
                    continue
                if match.self_protection or match.level in blocking:
                    return self._deny(invocation, path, match)
        return self.allowed()
