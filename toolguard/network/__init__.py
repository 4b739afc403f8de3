# toolguard/network/__init__.py
"""SSRF protection: IP range checks, URL validation, DNS re-check, allowlists."""

from toolguard.network.allowlist import (
    DEFAULT_ALLOWED_DOMAINS,
    AllowlistEntry,
    DomainAllowlist,
    is_domain_allowed,
)
from toolguard.network.ip_ranges import (
    describe_address,
    is_ip_address,
    is_private_or_reserved,
)
from toolguard.network.url_safety import (
    PrefetchResult,
    extract_domain,
    extract_urls,
    is_allowed_url,
    prefetch,
    resolves_to_public_addresses,
)

__all__ = [
    "AllowlistEntry",
    "DEFAULT_ALLOWED_DOMAINS",
    "DomainAllowlist",
    "PrefetchResult",
    "describe_address",
    "extract_domain",
    "extract_urls",
    "is_allowed_url",
    "is_domain_allowed",
    "is_ip_address",
    "is_private_or_reserved",
    "prefetch",
    "resolves_to_public_addresses",
]
