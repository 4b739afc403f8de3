"""Path-based, multi-level file protection.

Protection levels, highest priority first:
- no_access: no read, write or delete (secrets, credentials, keys).
- read_only: readable but never written or deleted (lock files).
- no_delete: readable and writable but never deleted (.git, LICENSE).

Paths are checked in absolute, cwd-relative and symlink-resolved form against
glob patterns. Shell commands are parsed into the paths they read, write and
delete so the same levels apply to ``cat .env`` or ``rm LICENSE``.
"""

import fnmatch
import json
import logging
import os
import re
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from toolguard.middleware.guardrails.commands import ConfigError

logger = logging.getLogger(__name__)

LEVEL_PRIORITY: tuple[str, ...] = ("no_access", "read_only", "no_delete")

DEFAULT_PROTECTION_PATH = Path(__file__).resolve().parents[2] / "data" / "file_guard.json"

SELF_PROTECTION = "self-protection"

_CASE_INSENSITIVE = sys.platform == "darwin"

READ_CMDS = frozenset({"cat", "head", "tail", "less", "more"})
GREP_CMDS = frozenset({"grep", "egrep", "fgrep", "rg"})
DELETE_CMDS = frozenset({"rm", "unlink", "shred"})
COPY_MOVE_CMDS = frozenset({"cp", "mv"})

_FLAG = re.compile(r"^-[a-zA-Z0-9]+$")
_SED_EXPR = re.compile(r"^[sy]/.*/.*/")
_REDIRECT_OUT = re.compile(r">{1,2}\s*(\S+)")
_REDIRECT_IN = re.compile(r"<\s*(\S+)")
_TOKEN = re.compile(r"""(?:[^\s"']+|"[^"]*"|'[^']*')+""")
_PATCH_HEADER = re.compile(r"^(?:---|\+\+\+)\s+[ab]/(.+)$")


# ============================================================================
# Configuration
# ============================================================================


@dataclass(frozen=True)
class ProtectionLevel:
    """Glob patterns protected at one level."""

    name: str
    patterns: tuple[str, ...] = ()
    description: str | None = None


@dataclass(frozen=True)
class FileProtectionConfig:
    """Immutable set of protection levels keyed by level name."""

    levels: Mapping[str, ProtectionLevel] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object) -> "FileProtectionConfig":
        """Build from ``{"protection_levels": {level: {"patterns": [...]}}}``.

        Raises:
            ConfigError: If the document does not have that shape.
        """
        if not isinstance(data, dict) or not isinstance(data.get("protection_levels"), dict):
            raise ConfigError("missing protection_levels object")

        levels: dict[str, ProtectionLevel] = {}
        for name, definition in data["protection_levels"].items():
            if not isinstance(definition, dict):
                raise ConfigError(f"protection level {name!r} must be an object")
            patterns = definition.get("patterns", [])
            if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
                raise ConfigError(f"protection level {name!r} patterns must be strings")
            levels[name] = ProtectionLevel(
                name=name,
                patterns=tuple(patterns),
                description=definition.get("description"),
            )
        return cls(levels=levels)

    def merge(self, override: "FileProtectionConfig") -> "FileProtectionConfig":
        """Union the patterns of every level; the override can only add."""
        merged: dict[str, ProtectionLevel] = {}
        for name in [*self.levels, *(n for n in override.levels if n not in self.levels)]:
            base = self.levels.get(name)
            extra = override.levels.get(name)
            patterns: list[str] = []
            for p in [*(base.patterns if base else ()), *(extra.patterns if extra else ())]:
                if p not in patterns:
                    patterns.append(p)
            description = (extra.description if extra else None) or (
                base.description if base else None
            )
            merged[name] = ProtectionLevel(name, tuple(patterns), description)
        return FileProtectionConfig(levels=merged)


def load_protection_config(path: str | Path | None = None) -> FileProtectionConfig:
    """Load protection levels from JSON.

    A missing file yields the bundled defaults.

    Raises:
        ConfigError: If the file exists but is malformed.
    """
    config_path = Path(path) if path else DEFAULT_PROTECTION_PATH
    if not config_path.exists():
        if path:
            logger.info("No file guard config at %s, using defaults", config_path)
        return default_protection_config()
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Malformed config at {config_path}: {e}") from e
    return FileProtectionConfig.from_dict(data)


def default_protection_config() -> FileProtectionConfig:
    return FileProtectionConfig.from_dict(
        json.loads(DEFAULT_PROTECTION_PATH.read_text(encoding="utf-8"))
    )


# ============================================================================
# Path checks
# ============================================================================


@dataclass(frozen=True)
class PathMatch:
    """Result of matching a path against the protection levels."""

    level: str
    pattern: str
    self_protection: bool = False

    @property
    def label(self) -> str:
        return SELF_PROTECTION if self.self_protection else self.level


def _glob_match(path: str, pattern: str) -> bool:
    if _CASE_INSENSITIVE:
        return fnmatch.fnmatch(path.lower(), pattern.lower())
    return fnmatch.fnmatchcase(path, pattern)


def normalize_path(file_path: str, cwd: str) -> tuple[str, str | None]:
    """Expand ``~``, absolutize against cwd, and resolve symlinks if possible.

    Returns:
        (absolute, resolved) where resolved is None if the path does not exist.
    """
    expanded = os.path.expanduser(file_path)
    if os.path.isabs(expanded):
        absolute = os.path.normpath(expanded)
    else:
        absolute = os.path.normpath(os.path.join(cwd, expanded))

    resolved = os.path.realpath(absolute) if os.path.lexists(absolute) else None
    return absolute, resolved


def check_path(
    file_path: str,
    cwd: str,
    config: FileProtectionConfig,
    self_protection: Iterable[str] | None = None,
) -> PathMatch | None:
    """Find the highest-priority protection level matching a path.

    Args:
        file_path: Path as given by the tool call (may be relative or ~).
        cwd: Working directory to resolve relative paths against.
        config: Protection levels.
        self_protection: Glob patterns that are always no_access; pass only
            when checking writes/deletes.

    Returns:
        PathMatch or None if the path is unprotected.
    """
    absolute, resolved = normalize_path(file_path, cwd)
    relative = os.path.relpath(absolute, cwd)
    candidates = [absolute, relative]
    if resolved and resolved != absolute:
        candidates.append(resolved)

    for pattern in self_protection or ():
        if any(_glob_match(p, pattern) for p in (absolute, resolved) if p):
            return PathMatch("no_access", pattern, self_protection=True)

    for level in LEVEL_PRIORITY:
        entry = config.levels.get(level)
        if not entry:
            continue
        for pattern in entry.patterns:
            if any(_glob_match(p, pattern) for p in candidates):
                return PathMatch(level, pattern)
    return None


# ============================================================================
# Shell command parsing
# ============================================================================


@dataclass
class CommandPaths:
    """Paths a shell command reads, writes and deletes."""

    reads: list[str] = field(default_factory=list)
    writes: list[str] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)


def split_shell_command(command: str) -> list[str]:
    """Split on ``|``, ``&&``, ``||`` and ``;`` outside of quotes."""
    parts: list[str] = []
    current: list[str] = []
    in_single = in_double = False
    i = 0
    while i < len(command):
        ch = command[i]
        nxt = command[i + 1] if i + 1 < len(command) else ""

        if ch == "\\" and not in_single:
            current.append(command[i : i + 2])
            i += 2
            continue
        if ch == "'" and not in_double:
            in_single = not in_single
        elif ch == '"' and not in_single:
            in_double = not in_double
        elif not (in_single or in_double) and (
            ch in ";|" or (ch == "&" and nxt == "&")
        ):
            parts.append("".join(current).strip())
            current = []
            if (ch == "&" and nxt == "&") or (ch == "|" and nxt == "|"):
                i += 1
            i += 1
            continue
        current.append(ch)
        i += 1

    parts.append("".join(current).strip())
    return [p for p in parts if p]


def _strip_quotes(token: str) -> str:
    if len(token) >= 2 and token[0] == token[-1] and token[0] in "'\"":
        return token[1:-1]
    return token


def _positional_args(tokens: list[str]) -> list[str]:
    args = []
    after_dashes = False
    for token in tokens:
        if token == "--":
            after_dashes = True
            continue
        if not after_dashes and (_FLAG.match(token) or token.startswith("--")):
            continue
        args.append(_strip_quotes(token))
    return args


def extract_file_paths_from_command(command: str) -> CommandPaths:
    """Classify the file arguments of a shell command.

    Recognizes redirects, cat/head/tail/less/more, the grep family, sed
    (in-place counts as a write), tee, cp/mv and rm/unlink/shred.
    """
    paths = CommandPaths()

    for sub in split_shell_command(command):
        for match in _REDIRECT_OUT.finditer(sub):
            paths.writes.append(_strip_quotes(match.group(1)))
        for match in _REDIRECT_IN.finditer(sub):
            paths.reads.append(_strip_quotes(match.group(1)))

        cleaned = _REDIRECT_IN.sub("", _REDIRECT_OUT.sub("", sub)).strip()
        tokens = _TOKEN.findall(cleaned)
        while tokens and tokens[0] == "sudo":
            tokens = tokens[1:]
        if not tokens:
            continue

        base_cmd = os.path.basename(tokens[0])
        rest = tokens[1:]

        if base_cmd in DELETE_CMDS:
            paths.deletes.extend(_positional_args(rest))
        elif base_cmd in COPY_MOVE_CMDS:
            args = _positional_args(rest)
            sources = args[:-1] if len(args) >= 2 else args
            paths.reads.extend(sources)
            if len(args) >= 2:
                paths.writes.append(args[-1])
            if base_cmd == "mv":
                # a move removes the source path
                paths.deletes.extend(sources)
        elif base_cmd == "sed":
            in_place = any(t.startswith("-i") for t in rest)
            files = [a for a in _positional_args(rest) if not _SED_EXPR.match(a)]
            (paths.writes if in_place else paths.reads).extend(files)
        elif base_cmd == "tee":
            paths.writes.extend(_positional_args(rest))
        elif base_cmd in GREP_CMDS:
            # first positional argument is the search pattern
            paths.reads.extend(_positional_args(rest)[1:])
        elif base_cmd in READ_CMDS:
            paths.reads.extend(_positional_args(rest))

    return paths


def extract_patch_paths(patch: str) -> list[str]:
    """Collect target paths from unified diff ``---``/``+++`` headers."""
    found: list[str] = []
    for line in patch.splitlines():
        match = _PATCH_HEADER.match(line)
        if match and match.group(1) not in found:
            found.append(match.group(1))
    return found
