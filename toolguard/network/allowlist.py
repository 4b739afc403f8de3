"""Glob-based domain allowlisting with per-agent additive overrides.

Patterns are matched case-insensitively with shell-style globs. A wildcard
pattern like ``*.github.com`` matches ``api.github.com`` and
``a.b.github.com`` but NOT the bare ``github.com``; list both entries to
cover a domain and all of its subdomains.

An empty allowlist denies every domain.
"""

import fnmatch
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_DOMAINS: tuple[str, ...] = (
    "github.com",
    "*.github.com",
    "npmjs.org",
    "registry.npmjs.org",
    "pypi.org",
    "*.pypi.org",
    "api.anthropic.com",
)


@dataclass(frozen=True)
class AllowlistEntry:
    """A single glob pattern, optionally scoped to one agent.

    Attributes:
        pattern: Glob pattern such as ``github.com`` or ``*.github.com``.
        agent_id: Owning agent for override entries; None for base entries.
    """

    pattern: str
    agent_id: str | None = None

    def matches(self, hostname: str) -> bool:
        return fnmatch.fnmatchcase(hostname.lower(), self.pattern.lower())


def is_domain_allowed(hostname: str, patterns: Iterable[str]) -> bool:
    """Check if a hostname matches any of the allowed glob patterns.

    Args:
        hostname: Hostname to check (case-insensitive).
        patterns: Glob patterns. An empty collection allows nothing.

    Returns:
        True if any pattern matches.
    """
    if not hostname:
        return False
    lower = hostname.lower()
    return any(fnmatch.fnmatchcase(lower, p.lower()) for p in patterns)


@dataclass(frozen=True)
class DomainAllowlist:
    """Base allowlist plus per-agent extra patterns.

    Overrides are unioned with the base set, never substituted for it, so an
    override can only widen that agent's access.

    Attributes:
        base: Patterns that apply to every caller.
        overrides: Agent ID to extra patterns for that agent.
    """

    base: tuple[AllowlistEntry, ...] = ()
    overrides: Mapping[str, tuple[AllowlistEntry, ...]] = field(default_factory=dict)

    @classmethod
    def from_patterns(
        cls,
        patterns: Iterable[str],
        agent_overrides: Mapping[str, Iterable[str]] | None = None,
    ) -> "DomainAllowlist":
        """Build an allowlist from plain pattern strings."""
        base = tuple(AllowlistEntry(p) for p in patterns)
        overrides = {
            agent_id: tuple(AllowlistEntry(p, agent_id) for p in extra)
            for agent_id, extra in (agent_overrides or {}).items()
        }
        return cls(base=base, overrides=overrides)

    def patterns_for(self, agent_id: str | None = None) -> list[str]:
        """Return the effective patterns for a caller (base first)."""
        entries = list(self.base)
        if agent_id and agent_id in self.overrides:
            entries.extend(self.overrides[agent_id])
        return [e.pattern for e in entries]

    def is_allowed(self, hostname: str, agent_id: str | None = None) -> bool:
        allowed = is_domain_allowed(hostname, self.patterns_for(agent_id))
        if not allowed:
            logger.debug(
                "Domain %s not allowlisted (agent: %s)", hostname, agent_id or "unknown"
            )
        return allowed

    def __len__(self) -> int:
        return len(self.base)
