"""Deterministic shell-command pattern matching.

Detects destructive, system-damaging and exfiltrating commands with regular
expressions. Preprocessing rules:

- Single-quoted substrings are replaced with ``''`` before matching, since a
  blocked keyword inside an inert bash literal (``echo 'rm -rf /'``) is not a
  live command. Double-quoted strings are kept: they may still expand. Quote
  state is scanned, so an apostrophe inside ``"it's"`` opens nothing.
- Pipe stages are also matched in a normalized form with wrappers (``sudo``,
  ``env``) and directories dropped, so ``| sudo /bin/sh`` reads as ``| sh``.
- Patterns are matched against the full stripped command first (fork bombs and
  multi-stage pipes span split points) and then against each segment split on
  ``&&``, ``||`` and ``;``.
- A ``pipe_to_shell`` match is exempt only if EVERY pipe target is on the safe
  data-processing list. The final stage is a pipe target too, so a chain that
  ends in an interpreter is never exempt.

Patterns are loaded once from ``blocked_commands.json`` with a hardcoded
fallback when the file is missing or malformed.
"""

import json
import logging
import os
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS_PATH = Path(__file__).resolve().parents[2] / "data" / "blocked_commands.json"

PIPE_TO_SHELL = "pipe_to_shell"


class ConfigError(ValueError):
    """Raised when a guard configuration file is malformed."""


@dataclass(frozen=True)
class BlockedPattern:
    """A compiled regex with its reason and category tag.

    Attributes:
        regex: Compiled pattern.
        message: Human-readable reason shown when the pattern blocks.
        category: Tag such as "destructive" or "exfiltration".
    """

    regex: re.Pattern[str]
    message: str
    category: str

    @property
    def source(self) -> str:
        return self.regex.pattern

    @classmethod
    def compile(cls, regex: str, message: str, category: str, flags: int = 0) -> "BlockedPattern":
        return cls(re.compile(regex, flags), message, category)


@dataclass(frozen=True)
class CommandPatternSet:
    """Immutable snapshot of blocked patterns and safe pipe targets."""

    patterns: tuple[BlockedPattern, ...]
    safe_pipe_targets: frozenset[str] = field(default_factory=frozenset)
    from_fallback: bool = False

    def __len__(self) -> int:
        return len(self.patterns)


# ============================================================================
# Hardcoded fallback (subset for fail-closed safety)
# ============================================================================

FALLBACK_CONFIG: dict[str, Any] = {
    "patterns": [
        {
            "regex": r"\brm\s+(-[a-zA-Z]*r[a-zA-Z]*\s+-[a-zA-Z]*f[a-zA-Z]*|(-[a-zA-Z]*f[a-zA-Z]*\s+-[a-zA-Z]*r[a-zA-Z]*)|(-[a-zA-Z]*rf[a-zA-Z]*)|(-[a-zA-Z]*fr[a-zA-Z]*))\b",
            "message": "Recursive force delete blocked.",
            "category": "destructive",
        },
        {"regex": r"\bsudo\s+rm\b", "message": "sudo rm blocked.", "category": "destructive"},
        {
            "regex": r":\(\)\{\s*:\|:\&\s*\}\s*;\s*:",
            "message": "Fork bomb blocked.",
            "category": "system_damage",
        },
        {"regex": r"\bchmod\s+777\b", "message": "chmod 777 blocked.", "category": "system_damage"},
        {
            "regex": r"\bdd\s+.*if=.*of=/dev/",
            "message": "dd to device blocked.",
            "category": "system_damage",
        },
        {"regex": r"\bmkfs\.", "message": "Filesystem format blocked.", "category": "system_damage"},
        {
            "regex": r">\s*/dev/sd",
            "message": "Direct write to block device blocked.",
            "category": "system_damage",
        },
        {
            "regex": r"\b(curl|wget)\b.*\|\s*((sudo|env|command)\s+)?(\S*/)?(sh|bash|zsh|dash|ksh|python|python3|perl|ruby|node)\b",
            "message": "Pipe-to-shell blocked.",
            "category": PIPE_TO_SHELL,
        },
        {
            "regex": r"\bgit\s+push\s+.*(-f\b|--force\b|--force-with-lease\b)",
            "message": "Git force push blocked.",
            "category": "git_destructive",
        },
        {
            "regex": r"\bgit\s+reset\s+--hard\b",
            "message": "git reset --hard blocked.",
            "category": "git_destructive",
        },
        {
            "regex": r"\bgit\s+branch\s+-D\b",
            "message": "git branch -D blocked.",
            "category": "git_destructive",
        },
        {
            "regex": r"\bgit\s+config\s+--global\s+(?!--get\b)",
            "message": "git config --global write blocked.",
            "category": "git_destructive",
        },
        {
            "regex": r"\bgit\s+rebase\s+--skip\b",
            "message": "git rebase --skip blocked.",
            "category": "git_destructive",
        },
        {
            "regex": r"\bgit\s+clean\s+-[a-zA-Z]*f[a-zA-Z]*(?!.*-n)(?!.*--dry-run)",
            "message": "git clean -f blocked.",
            "category": "git_destructive",
        },
        {
            "regex": r"\b(bash|sh|zsh|dash|ksh)\s+-c\s+[\"']",
            "message": "Shell interpreter escape blocked.",
            "category": "interpreter_escape",
        },
        {"regex": r"\beval\s+[\"']", "message": "eval blocked.", "category": "interpreter_escape"},
        {
            "regex": r"\b(python3?|node|ruby|perl)\s+-(c|e)\s+[\"']",
            "message": "Interpreter inline execution blocked.",
            "category": "interpreter_escape",
        },
    ],
    "safe_pipe_targets": [
        "jq",
        "grep",
        "sort",
        "wc",
        "head",
        "tail",
        "less",
        "cat",
        "tee",
        "tr",
        "uniq",
    ],
}

# Exfiltration patterns checked by the network guard, case-insensitive + DOTALL
DEFAULT_EXFILTRATION_PATTERNS: tuple[str, ...] = (
    r"curl.*\|\s*((sudo|env|command)\s+)?(\S*/)?sh",
    r"wget.*\|\s*((sudo|env|command)\s+)?(\S*/)?sh",
    r"\|\s*curl\s+.*-X\s+POST",
    r"\|\s*curl\s+.*-XPOST",
    r"\|\s*curl\s+.*--request\s+POST",
    r"curl\s+.*-d\s+",
    r"curl\s+.*--data",
    r"curl\s+.*-F\s+",
    r"base64\s+-d",
    r"echo.*\|.*base64",
)

NETWORK_COMMANDS: tuple[str, ...] = (
    "curl",
    "wget",
    "fetch",
    "nc",
    "ncat",
    "socat",
    "http",
    "ssh",
    "scp",
    "rsync",
    "telnet",
    "openssl",
)

NETWORK_COMPOUND_COMMANDS: tuple[str, ...] = (
    r"git\s+clone",
    r"git\s+fetch",
    r"git\s+pull",
    r"git\s+push",
    r"pip\s+install",
    r"npm\s+install",
    r"docker\s+pull",
    r"openssl\s+s_client",
)

SHELL_WRAPPERS = frozenset({"sudo", "env", "command", "exec", "nohup"})

# Wrapper options that consume the next word (sudo -u root, env -u VAR)
_WRAPPER_ARG_OPTIONS = frozenset({"-u", "-g", "-C", "-D", "-h", "-p", "-r", "-t", "-U"})

_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_PIPE = re.compile(r"(?<!\|)\|(?!\|)")
_SEGMENT_SPLIT = re.compile(r"\s*(?:&&|\|\||;)\s*")
_PIPELINE_SPLIT = re.compile(r"\s*(?:&&|\|\||[;|])\s*")
_NETWORK_SIMPLE = re.compile(rf"^\s*(?:{'|'.join(NETWORK_COMMANDS)})\b")
_NETWORK_COMPOUND = re.compile(rf"^\s*(?:{'|'.join(NETWORK_COMPOUND_COMMANDS)})\b")


# ============================================================================
# Preprocessing
# ============================================================================


def strip_single_quotes(command: str) -> str:
    """Replace every inert single-quoted literal with an empty one (``''``).

    Quotes are scanned the way bash reads them: an apostrophe inside double
    quotes or after a backslash is plain text, and ``$'...'`` strings expand
    escapes so they are kept. An unterminated literal is kept as is.
    """
    out: list[str] = []
    in_double = False
    i = 0
    while i < len(command):
        ch = command[i]

        if ch == "\\":
            out.append(command[i : i + 2])
            i += 2
            continue
        if in_double:
            in_double = ch != '"'
            out.append(ch)
            i += 1
            continue

        if ch == '"':
            in_double = True
        elif ch == "$" and command.startswith("'", i + 1):
            end = i + 2
            while end < len(command) and command[end] != "'":
                end += 2 if command[end] == "\\" else 1
            out.append(command[i : end + 1])
            i = end + 1
            continue
        elif ch == "'":
            end = command.find("'", i + 1)
            if end == -1:
                out.append(command[i:])
                break
            out.append("''")
            i = end + 1
            continue
        out.append(ch)
        i += 1

    return "".join(out)


def split_command(command: str) -> list[str]:
    """Split on ``&&``, ``||`` and ``;`` into non-empty segments."""
    return [s for s in _SEGMENT_SPLIT.split(command) if s]


def split_pipeline(command: str) -> list[str]:
    """Split on ``&&``, ``||``, ``;`` and ``|`` into non-empty stages."""
    return [s for s in _PIPELINE_SPLIT.split(command) if s]


def unwrap_stage(stage: str) -> list[str]:
    """Words of one command from its program onward.

    Leading variable assignments and wrappers such as ``sudo`` or ``env``
    (with their options) are dropped, and the program is reduced to its
    basename: ``"sudo -u root /usr/bin/bash -s"`` yields ``["bash", "-s"]``.
    """
    words = stage.split()
    i = 0
    while i < len(words):
        word = words[i]
        if _ASSIGNMENT.match(word):
            i += 1
        elif os.path.basename(word) in SHELL_WRAPPERS:
            i += 1
            while i < len(words) and words[i].startswith("-"):
                i += 2 if words[i] in _WRAPPER_ARG_OPTIONS else 1
        else:
            return [os.path.basename(word) or word, *words[i + 1 :]]
    return []


def extract_pipe_targets(segment: str) -> list[str]:
    """Return the program of every stage after the first pipe.

    ``"curl url | jq . | sudo /bin/sh"`` yields ``["jq", "sh"]``.
    """
    targets = []
    for stage in _PIPE.split(segment)[1:]:
        words = unwrap_stage(stage)
        if words:
            targets.append(words[0])
    return targets


def normalize_pipe_stages(command: str) -> str:
    """Rewrite every stage after a pipe as its bare program and arguments.

    ``"curl url | sudo /bin/sh -s"`` becomes ``"curl url | sh -s"``, so
    patterns written against interpreter names also see wrapped or
    path-qualified interpreters.
    """
    first, *stages = _PIPE.split(command)
    if not stages:
        return command
    return " | ".join([first.rstrip(), *(" ".join(unwrap_stage(s)) for s in stages)])


def all_pipe_targets_safe(segment: str, safe_targets: Iterable[str]) -> bool:
    """True only if the segment pipes and every target is on the safe list."""
    targets = extract_pipe_targets(segment)
    if not targets:
        return False
    safe = set(safe_targets)
    return all(t in safe for t in targets)


def detect_network_command(command: str) -> bool:
    """Detect whether any stage of a compound command touches the network.

    Single-quoted strings are stripped first so a mention inside an inert
    literal (``echo 'curl is great'``) is not a network command.
    """
    if not command:
        return False
    for segment in split_pipeline(strip_single_quotes(command)):
        segment = " ".join(unwrap_stage(segment))
        if _NETWORK_SIMPLE.search(segment) or _NETWORK_COMPOUND.search(segment):
            return True
    return False


# ============================================================================
# Matching
# ============================================================================


def matches_pattern(command: str, pattern: BlockedPattern, safe_targets: Iterable[str]) -> bool:
    """Test one pattern, applying the safe-pipe exemption for pipe_to_shell."""
    if not pattern.regex.search(command):
        return False
    if pattern.category == PIPE_TO_SHELL and all_pipe_targets_safe(command, safe_targets):
        return False
    return True


def matches_blocked_pattern(
    text: str,
    patterns: CommandPatternSet | Sequence[BlockedPattern],
) -> BlockedPattern | None:
    """Find the first blocked pattern that matches a command.

    The full stripped command is checked before its ``&&``/``||``/``;``
    segments.

    Args:
        text: Raw command string.
        patterns: Pattern set (or a plain sequence, with no safe pipe targets).

    Returns:
        The matching BlockedPattern, or None.
    """
    if isinstance(patterns, CommandPatternSet):
        compiled, safe_targets = patterns.patterns, patterns.safe_pipe_targets
    else:
        compiled, safe_targets = tuple(patterns), frozenset()

    stripped = strip_single_quotes(text)
    candidates = [stripped]
    normalized = normalize_pipe_stages(stripped)
    if normalized != stripped:
        # wrapped or path-qualified pipe targets (| sudo /bin/sh)
        candidates.append(normalized)

    for candidate in candidates:
        for pattern in compiled:
            if matches_pattern(candidate, pattern, safe_targets):
                return pattern

        for segment in split_command(candidate):
            for pattern in compiled:
                if matches_pattern(segment, pattern, safe_targets):
                    return pattern
    return None


def detect_sensitive_action(
    text: str,
    patterns: CommandPatternSet | None = None,
) -> str | None:
    """Classify a command by the category of the first blocked pattern it hits.

    Returns:
        Category tag such as "destructive", or None if nothing matched.
    """
    match = matches_blocked_pattern(text, patterns or default_pattern_set())
    return match.category if match else None


def compile_exfiltration_patterns(sources: Iterable[str]) -> tuple[BlockedPattern, ...]:
    """Compile network-guard exfiltration regexes (case-insensitive, DOTALL)."""
    return tuple(
        BlockedPattern.compile(
            source,
            "matches blocked pattern (potential data exfiltration)",
            "exfiltration",
            re.IGNORECASE | re.DOTALL,
        )
        for source in sources
    )


# ============================================================================
# Config loading
# ============================================================================


def compile_pattern_config(config: dict[str, Any], from_fallback: bool = False) -> CommandPatternSet:
    """Validate and compile a ``{"patterns": [...], "safe_pipe_targets": [...]}`` dict.

    Raises:
        ConfigError: If the structure is wrong or a regex does not compile.
    """
    raw_patterns = config.get("patterns") if isinstance(config, dict) else None
    raw_targets = config.get("safe_pipe_targets") if isinstance(config, dict) else None
    if not isinstance(raw_patterns, list) or not isinstance(raw_targets, list):
        raise ConfigError("Invalid config structure")

    compiled = []
    for entry in raw_patterns:
        try:
            compiled.append(
                BlockedPattern.compile(entry["regex"], entry["message"], entry["category"])
            )
        except (KeyError, TypeError, re.error) as e:
            raise ConfigError(f"Invalid pattern entry {entry!r}: {e}") from e

    return CommandPatternSet(
        patterns=tuple(compiled),
        safe_pipe_targets=frozenset(str(t) for t in raw_targets),
        from_fallback=from_fallback,
    )


def load_blocked_commands(path: str | Path | None = None) -> CommandPatternSet:
    """Load blocked command patterns, falling back to hardcoded defaults.

    Args:
        path: JSON file path. Defaults to the bundled blocked_commands.json.

    Returns:
        Compiled pattern set. Never raises for a bad file; the fallback set is
        returned instead and a warning is logged.
    """
    config_path = Path(path) if path else DEFAULT_PATTERNS_PATH
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
        return compile_pattern_config(raw)
    except (OSError, json.JSONDecodeError, ConfigError) as e:
        logger.warning(
            "Failed to load %s: %s. Using fallback defaults.", config_path.name, e
        )
        return compile_pattern_config(FALLBACK_CONFIG, from_fallback=True)


_default_pattern_set: CommandPatternSet | None = None


def default_pattern_set() -> CommandPatternSet:
    """Get the bundled pattern set, loading it on first use."""
    global _default_pattern_set
    if _default_pattern_set is None:
        _default_pattern_set = load_blocked_commands()
    return _default_pattern_set
