# tests/test_allowlist.py
"""Tests for domain allowlist matching."""

from toolguard.network.allowlist import (
    DEFAULT_ALLOWED_DOMAINS,
    AllowlistEntry,
    DomainAllowlist,
    is_domain_allowed,
)


class TestIsDomainAllowed:
    """Tests for is_domain_allowed function."""

    def test_exact_match(self):
        assert is_domain_allowed("github.com", ["github.com"]) is True

    def test_case_insensitive(self):
        assert is_domain_allowed("GitHub.COM", ["github.com"]) is True
        assert is_domain_allowed("github.com", ["GITHUB.com"]) is True

    def test_wildcard_matches_subdomains(self):
        assert is_domain_allowed("api.github.com", ["*.github.com"]) is True
        assert is_domain_allowed("a.b.github.com", ["*.github.com"]) is True

    def test_wildcard_does_not_match_apex(self):
        assert is_domain_allowed("github.com", ["*.github.com"]) is False

    def test_lookalike_domain_rejected(self):
        assert is_domain_allowed("github.com.evil.io", DEFAULT_ALLOWED_DOMAINS) is False
        assert is_domain_allowed("evilgithub.com", DEFAULT_ALLOWED_DOMAINS) is False

    def test_empty_allowlist_denies(self):
        assert is_domain_allowed("github.com", []) is False

    def test_empty_hostname_denied(self):
        assert is_domain_allowed("", ["*"]) is False

    def test_entry_matches(self):
        entry = AllowlistEntry("*.pypi.org")
        assert entry.matches("files.pypi.org") is True
        assert entry.matches("pypi.org") is False


class TestDomainAllowlist:
    """Tests for DomainAllowlist with per-agent overrides."""

    def test_base_patterns(self):
        allowlist = DomainAllowlist.from_patterns(["github.com"])
        assert allowlist.is_allowed("github.com") is True
        assert allowlist.is_allowed("example.com") is False

    def test_override_is_unioned_with_base(self):
        allowlist = DomainAllowlist.from_patterns(
            ["github.com"], {"researcher": ["*.wikipedia.org"]}
        )
        assert allowlist.is_allowed("en.wikipedia.org", "researcher") is True
        assert allowlist.is_allowed("github.com", "researcher") is True

    def test_override_does_not_leak_to_other_agents(self):
        allowlist = DomainAllowlist.from_patterns(
            ["github.com"], {"researcher": ["*.wikipedia.org"]}
        )
        assert allowlist.is_allowed("en.wikipedia.org", "coder") is False
        assert allowlist.is_allowed("en.wikipedia.org") is False

    def test_patterns_for(self):
        allowlist = DomainAllowlist.from_patterns(["a.com"], {"x": ["b.com"]})
        assert allowlist.patterns_for("x") == ["a.com", "b.com"]
        assert allowlist.patterns_for("y") == ["a.com"]

    def test_empty_base_with_override(self):
        allowlist = DomainAllowlist.from_patterns([], {"x": ["b.com"]})
        assert allowlist.is_allowed("b.com", "x") is True
        assert allowlist.is_allowed("b.com") is False
        assert len(allowlist) == 0
