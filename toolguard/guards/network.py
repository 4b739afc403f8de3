"""Network access guard: domain allowlist, SSRF and exfiltration checks.

Purely deterministic, apart from the optional DNS re-check of allowlisted
hostnames.
"""

import logging

from toolguard.config import NETWORK_GUARD, NetworkGuardConfig
from toolguard.middleware.guardrails.commands import (
    compile_exfiltration_patterns,
    detect_network_command,
    matches_blocked_pattern,
)
from toolguard.middleware.guardrails.core import Guard, GuardVerdict, ToolInvocation
from toolguard.network.allowlist import DomainAllowlist
from toolguard.network.ip_ranges import describe_address, is_ip_address
from toolguard.network.url_safety import (
    Resolver,
    extract_domain,
    extract_urls,
    is_disallowed_hostname,
    normalize_hostname,
    resolves_to_public_addresses,
)

logger = logging.getLogger(__name__)


class NetworkGuard(Guard):
    """Allowlist-based egress control for fetch and shell tools.

    Host checks, in order: direct IP literal, localhost, allowlist (with
    per-agent overrides), DNS re-check. For shell commands, only commands
    that invoke a network program are inspected; exfiltration patterns block
    before any domain is considered.
    """

    name = NETWORK_GUARD
    priority = 30

    def __init__(
        self,
        config: NetworkGuardConfig | None = None,
        resolver: Resolver | None = None,
    ):
        config = config or NetworkGuardConfig()
        self.fetch_tools = frozenset(config.fetch_tools)
        self.exec_tools = frozenset(config.exec_tools)
        super().__init__(self.fetch_tools | self.exec_tools, config.fail_open, config.log_blocks)

        self.allowlist = DomainAllowlist.from_patterns(
            config.allowed_domains, config.agent_overrides
        )
        self.exfiltration_patterns = compile_exfiltration_patterns(config.blocked_patterns)
        self.block_direct_ip = config.block_direct_ip
        self.resolve_dns = config.resolve_dns
        self.dns_timeout = config.dns_timeout
        self.resolver = resolver

        logger.info(
            "Network guard ready (domains: %d, block_direct_ip: %s, resolve_dns: %s, fail_open: %s)",
            len(self.allowlist),
            self.block_direct_ip,
            self.resolve_dns,
            self.fail_open,
        )

    async def check_domain(self, domain: str, agent_id: str | None = None) -> tuple[str, str] | None:
        """Check one hostname.

        Returns:
            (reason, category) if the host is blocked, else None.
        """
        host = normalize_hostname(domain)
        is_ip = bool(is_ip_address(host))

        if is_ip:
            label = describe_address(host)
            if label is not None:
                return f"direct IP access to {label} address blocked: {domain}", "direct_ip"
            if self.block_direct_ip:
                return f"direct IP access blocked: {domain}", "direct_ip"

        if is_disallowed_hostname(host):
            return f"hostname blocked: {domain}", "hostname"

        if not self.allowlist.is_allowed(host, agent_id):
            return f"domain not in allowlist: {domain}", "not_allowlisted"

        if self.resolve_dns and not is_ip:
            if not await resolves_to_public_addresses(host, self.dns_timeout, self.resolver):
                return (
                    f"DNS resolution blocked: {domain} resolves to private/reserved IP",
                    "dns_rebinding",
                )
        return None

    async def check(self, invocation: ToolInvocation) -> GuardVerdict:
        tool = invocation.tool_name

        if tool in self.fetch_tools:
            url = invocation.get_str("url")
            if not url:
                return self.allowed()
            domain = extract_domain(url)
            if not domain:
                return self.blocked(
                    invocation, f"Network guard blocked {tool}: invalid URL.", "invalid_url"
                )
            result = await self.check_domain(domain, invocation.caller_id)
            if result:
                reason, category = result
                return self.blocked(invocation, f"Network guard blocked {tool}: {reason}", category)
            return self.allowed()

        command = invocation.get_str("command")
        if not command or not detect_network_command(command):
            return self.allowed()

        pattern = matches_blocked_pattern(command, self.exfiltration_patterns)
        if pattern is not None:
            return self.blocked(
                invocation, f"Network guard blocked {tool}: {pattern.message}.", pattern.category
            )

        for url in extract_urls(command):
            domain = extract_domain(url)
            if not domain:
                continue
            result = await self.check_domain(domain, invocation.caller_id)
            if result:
                reason, category = result
                return self.blocked(invocation, f"Network guard blocked {tool}: {reason}", category)
        return self.allowed()
