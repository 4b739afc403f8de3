"""URL safety validation: scheme, hostname, IP literal and DNS checks.

Validation steps, in order:
1. Reject anything that is not http/https.
2. Normalize the hostname (strip brackets and trailing dot, lowercase).
3. Reject ``localhost`` and ``*.localhost`` outright.
4. IP-literal hostnames are checked against the IP range classifier.
5. Optionally resolve the hostname and require EVERY returned address to be
   public (anti DNS rebinding).

Pre-fetch follows redirects manually so that each hop is re-validated with the
same rules, up to MAX_REDIRECTS hops. DNS resolution and fetches run under a
caller-supplied timeout; a timed-out DNS lookup is a rejection.

Example:
    >>> is_allowed_url("http://169.254.169.254/latest/meta-data")
    False
    >>> is_allowed_url("https://github.com/openclaw")
    True
    >>> await resolves_to_public_addresses("github.com", timeout=2.0)
    True
"""

import asyncio
import logging
import re
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from urllib.parse import unquote, urljoin, urlsplit

import httpx

from toolguard.network.ip_ranges import describe_address, is_ip_address

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})

MAX_REDIRECTS = 5

DEFAULT_DNS_TIMEOUT = 2.0

DEFAULT_MAX_BYTES = 2_000_000

USER_AGENT = "toolguard-prefetch/0.1"

URL_REGEX = re.compile(r"https?://[^\s\"'`,;)}\]>]+", re.IGNORECASE)

# Numeric IPv4 spellings the WHATWG URL parser accepts (2130706433, 0x7f.1, ...)
_NUMERIC_HOST = re.compile(r"^(0x[0-9a-f]+|[0-9]+)(\.(0x[0-9a-f]+|[0-9]+)){0,3}$")

Resolver = Callable[[str], Awaitable[list[str]]]


# ============================================================================
# Hostname helpers
# ============================================================================


def normalize_hostname(hostname: str) -> str:
    """Strip IPv6 brackets and one trailing dot, then lowercase."""
    host = hostname.strip()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if host.endswith("."):
        host = host[:-1]
    host = host.lower()

    if _NUMERIC_HOST.match(host):
        try:
            host = socket.inet_ntoa(socket.inet_aton(host))
        except OSError:
            pass
    return host


def is_disallowed_hostname(host: str) -> bool:
    """Check for localhost and any *.localhost name."""
    return host == "localhost" or host.endswith(".localhost")


def extract_urls(text: str) -> list[str]:
    """Extract all http/https URLs from a string (e.g. a shell command)."""
    if not text:
        return []
    return URL_REGEX.findall(text)


def extract_domain(url: str) -> str | None:
    """Extract the normalized hostname from a URL.

    Percent-encoded hostnames are decoded first, so ``github%2ecom`` yields
    ``github.com``.

    Returns:
        The hostname, or None if the URL cannot be parsed or has no host.
    """
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return normalize_hostname(unquote(hostname))


# ============================================================================
# Static URL checks
# ============================================================================


def check_url(url: str) -> str | None:
    """Validate a URL without touching the network.

    Args:
        url: URL to validate.

    Returns:
        None if the URL is acceptable, otherwise a short rejection reason.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return "invalid URL"

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        return f"scheme not allowed: {parts.scheme or '(none)'}"

    host = extract_domain(url)
    if not host:
        return "missing hostname"
    if is_disallowed_hostname(host):
        return f"hostname blocked: {host}"
    if is_ip_address(host):
        label = describe_address(host)
        if label is not None:
            return f"direct IP access to {label} address blocked: {host}"
    return None


def is_allowed_url(url: str) -> bool:
    """Check scheme, hostname blocklist and IP-literal ranges for a URL."""
    return check_url(url) is None


# ============================================================================
# DNS resolution (anti-rebinding)
# ============================================================================


async def system_resolver(hostname: str) -> list[str]:
    """Resolve a hostname to every address the system resolver returns."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    addresses: list[str] = []
    for info in infos:
        address = str(info[4][0])
        if address not in addresses:
            addresses.append(address)
    return addresses


async def resolves_to_public_addresses(
    hostname: str,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    resolver: Resolver | None = None,
) -> bool:
    """Resolve a hostname and require every address to be public.

    A single private address among several results is a rejection. An empty
    answer, a resolver failure and a timeout are all rejections.

    Args:
        hostname: Hostname (or IP literal) to check.
        timeout: Seconds to wait for resolution.
        resolver: Async resolver; defaults to the system resolver.

    Returns:
        True only if resolution succeeded and every address is public.
    """
    host = normalize_hostname(hostname)
    if is_ip_address(host):
        return describe_address(host) is None

    resolve = resolver or system_resolver
    try:
        addresses = await asyncio.wait_for(resolve(host), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("DNS resolution timed out for %s after %.1fs", host, timeout)
        return False
    except (OSError, UnicodeError) as e:
        logger.info("DNS resolution failed for %s: %s", host, e)
        return False

    if not addresses:
        return False

    for address in addresses:
        label = describe_address(address)
        if label is not None:
            logger.warning("%s resolves to %s address %s", host, label, address)
            return False
    return True


async def is_allowed_public_destination(
    url: str,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    resolver: Resolver | None = None,
) -> bool:
    """Static URL checks followed by the DNS re-check of its hostname."""
    if not is_allowed_url(url):
        return False
    host = extract_domain(url)
    if host is None:
        return False
    return await resolves_to_public_addresses(host, timeout, resolver)


# ============================================================================
# Pre-fetch with per-hop redirect validation
# ============================================================================


@dataclass(frozen=True)
class PrefetchResult:
    """Outcome of a pre-fetch.

    Attributes:
        ok: True if content was retrieved.
        content: Response body decoded as text (empty unless ok).
        unsafe_url: True if a hop failed URL validation or the redirect
            limit was exceeded. False for plain fetch failures.
        final_url: URL of the last hop attempted.
    """

    ok: bool
    content: str = ""
    unsafe_url: bool = False
    final_url: str | None = None


async def _read_limited(response: httpx.Response, max_bytes: int) -> bytes:
    buffer = bytearray()
    async for chunk in response.aiter_bytes():
        remaining = max_bytes - len(buffer)
        if remaining <= 0:
            break
        buffer.extend(chunk[:remaining])
    return bytes(buffer)


def _decode(body: bytes, encoding: str | None) -> str:
    try:
        return body.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


async def prefetch(
    url: str,
    timeout: float = 10.0,
    *,
    max_redirects: int = MAX_REDIRECTS,
    max_bytes: int = DEFAULT_MAX_BYTES,
    dns_timeout: float = DEFAULT_DNS_TIMEOUT,
    resolver: Resolver | None = None,
    client: httpx.AsyncClient | None = None,
) -> PrefetchResult:
    """Fetch a URL, validating every redirect hop before following it.

    Args:
        url: Starting URL.
        timeout: Per-request timeout in seconds.
        max_redirects: Maximum number of redirects to follow.
        max_bytes: Maximum number of body bytes to read.
        dns_timeout: Timeout for the DNS re-check of each hop.
        resolver: Async resolver used for the DNS re-check.
        client: Optional pre-configured client (redirects must not be
            followed automatically). A temporary client is used otherwise.

    Returns:
        PrefetchResult describing the outcome.
    """
    if client is None:
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=False,
            headers={"User-Agent": USER_AGENT},
        ) as own_client:
            return await _prefetch_with(
                own_client, url, timeout, max_redirects, max_bytes, dns_timeout, resolver
            )
    return await _prefetch_with(
        client, url, timeout, max_redirects, max_bytes, dns_timeout, resolver
    )


async def _prefetch_with(
    client: httpx.AsyncClient,
    url: str,
    timeout: float,
    max_redirects: int,
    max_bytes: int,
    dns_timeout: float,
    resolver: Resolver | None,
) -> PrefetchResult:
    current_url = url

    for _ in range(max_redirects + 1):
        if not await is_allowed_public_destination(current_url, dns_timeout, resolver):
            logger.warning("Blocked pre-fetch to non-public URL: %s", current_url)
            return PrefetchResult(ok=False, unsafe_url=True, final_url=current_url)

        try:
            async with client.stream(
                "GET", current_url, follow_redirects=False, timeout=timeout
            ) as response:
                if 300 <= response.status_code < 400:
                    location = response.headers.get("location")
                    if not location:
                        return PrefetchResult(ok=False, final_url=current_url)
                    current_url = urljoin(current_url, location)
                    continue

                if not response.is_success:
                    logger.info(
                        "Pre-fetch of %s returned HTTP %d",
                        current_url,
                        response.status_code,
                    )
                    return PrefetchResult(ok=False, final_url=current_url)

                body = await _read_limited(response, max_bytes)
                return PrefetchResult(
                    ok=True,
                    content=_decode(body, response.encoding),
                    final_url=current_url,
                )
        except httpx.HTTPError as e:
            # Timeouts land here too: an unreachable page is not an unsafe URL.
            # DNS timeouts stay rejections in resolves_to_public_addresses.
            logger.info("Pre-fetch of %s failed: %s", current_url, e)
            return PrefetchResult(ok=False, final_url=current_url)

    logger.warning("Blocked pre-fetch for excessive redirects: %s", url)
    return PrefetchResult(ok=False, unsafe_url=True, final_url=current_url)
