"""IP range classification for SSRF protection.

Answers "is this address private, reserved, loopback, link-local or
multicast?" for IPv4 and IPv6 string forms. Checks are integer range tests
over the 32-bit (IPv4) or 128-bit (IPv6) value of the address, not string
prefix matching.

IPv4-mapped IPv6 addresses (``::ffff:a.b.c.d`` and the compressed hextet form
``::ffff:c0a8:101``) are unwrapped and re-checked against the IPv4 rules, as
are the IPv4-compatible, NAT64 and 6to4 forms that carry an IPv4 address.

Example:
    >>> is_private_or_reserved("10.0.0.1")
    True
    >>> is_private_or_reserved("::ffff:192.168.1.1")
    True
    >>> is_private_or_reserved("8.8.8.8")
    False
"""

import ipaddress
import re

# (start, end, label), inclusive bounds
IPV4_BLOCKED_RANGES: tuple[tuple[int, int, str], ...] = (
    (0x00000000, 0x00FFFFFF, "this-network"),  # 0.0.0.0/8
    (0x0A000000, 0x0AFFFFFF, "private"),  # 10.0.0.0/8
    (0x64400000, 0x647FFFFF, "carrier-grade NAT"),  # 100.64.0.0/10
    (0x7F000000, 0x7FFFFFFF, "loopback"),  # 127.0.0.0/8
    (0xA9FE0000, 0xA9FEFFFF, "link-local"),  # 169.254.0.0/16
    (0xAC100000, 0xAC1FFFFF, "private"),  # 172.16.0.0/12
    (0xC0A80000, 0xC0A8FFFF, "private"),  # 192.168.0.0/16
    (0xC6120000, 0xC613FFFF, "benchmark"),  # 198.18.0.0/15
    (0xE0000000, 0xFFFFFFFF, "multicast/reserved"),  # 224.0.0.0/4 and above
)


def _ipv6_range(network: str, label: str) -> tuple[int, int, str]:
    net = ipaddress.IPv6Network(network)
    return int(net.network_address), int(net.broadcast_address), label


IPV6_BLOCKED_RANGES: tuple[tuple[int, int, str], ...] = (
    (0, 0, "unspecified"),  # ::
    (1, 1, "loopback"),  # ::1
    _ipv6_range("fc00::/7", "unique-local"),
    _ipv6_range("fe80::/10", "link-local"),
    _ipv6_range("fec0::/10", "site-local"),
    _ipv6_range("ff00::/8", "multicast"),
)

# IPv6 prefixes whose low 32 bits carry an IPv4 address
IPV6_EMBEDDED_IPV4_PREFIXES: tuple[ipaddress.IPv6Network, ...] = (
    ipaddress.IPv6Network("::/96"),  # IPv4-compatible
    ipaddress.IPv6Network("64:ff9b::/96"),  # NAT64 well-known prefix
)

_MAPPED_PREFIX = "::ffff:"
_HEXTET_PAIR = re.compile(r"^([0-9a-f]{1,4}):([0-9a-f]{1,4})$")


def ipv4_to_int(address: str) -> int | None:
    """Convert dotted-quad IPv4 to its 32-bit integer value.

    Returns:
        The integer value, or None if the string is not a valid IPv4 address.
    """
    try:
        return int(ipaddress.IPv4Address(address))
    except ValueError:
        return None


def ipv6_to_int(address: str) -> int | None:
    """Convert an IPv6 string (zone suffix ignored) to its 128-bit value."""
    try:
        return int(ipaddress.IPv6Address(address.split("%", 1)[0]))
    except ValueError:
        return None


def is_ip_address(host: str) -> int:
    """Return the IP family of host: 4, 6, or 0 if it is not an IP literal."""
    if ipv4_to_int(host) is not None:
        return 4
    if ipv6_to_int(host) is not None:
        return 6
    return 0


def mapped_ipv4_from_ipv6(address: str) -> str | None:
    """Unwrap an IPv4-mapped IPv6 address to dotted-quad form.

    Handles both ``::ffff:192.168.1.1`` and ``::ffff:c0a8:101`` as well as
    any other spelling of the same 128-bit value (e.g. the fully expanded
    ``0:0:0:0:0:ffff:c0a8:0101``).

    Returns:
        The embedded IPv4 address, or None if address is not IPv4-mapped.
    """
    lower = address.lower().split("%", 1)[0]
    if lower.startswith(_MAPPED_PREFIX):
        tail = lower[len(_MAPPED_PREFIX) :]
        if ipv4_to_int(tail) is not None:
            return tail
        match = _HEXTET_PAIR.match(tail)
        if match:
            hi = int(match.group(1), 16)
            lo = int(match.group(2), 16)
            return f"{(hi >> 8) & 0xFF}.{hi & 0xFF}.{(lo >> 8) & 0xFF}.{lo & 0xFF}"

    try:
        mapped = ipaddress.IPv6Address(lower).ipv4_mapped
    except ValueError:
        return None
    return str(mapped) if mapped is not None else None


def embedded_ipv4_from_ipv6(address: str) -> str | None:
    """Extract the IPv4 address carried by a translation or tunnel form.

    Covers IPv4-compatible (``::127.0.0.1``), NAT64 (``64:ff9b::a9fe:a9fe``)
    and 6to4 (``2002:7f00:1::``) addresses.
    """
    try:
        ip = ipaddress.IPv6Address(address.split("%", 1)[0])
    except ValueError:
        return None
    if ip.sixtofour is not None:
        return str(ip.sixtofour)
    for prefix in IPV6_EMBEDDED_IPV4_PREFIXES:
        if ip in prefix:
            return str(ipaddress.IPv4Address(int(ip) & 0xFFFFFFFF))
    return None


def _ipv4_range_label(address: str) -> str | None:
    value = ipv4_to_int(address)
    if value is None:
        return "invalid"
    for start, end, label in IPV4_BLOCKED_RANGES:
        if start <= value <= end:
            return label
    return None


def _ipv6_range_label(address: str) -> str | None:
    value = ipv6_to_int(address)
    if value is None:
        return "invalid"
    for start, end, label in IPV6_BLOCKED_RANGES:
        if start <= value <= end:
            return label

    mapped = mapped_ipv4_from_ipv6(address) or embedded_ipv4_from_ipv6(address)
    if mapped is not None:
        return _ipv4_range_label(mapped)
    return None


def is_private_or_reserved_ipv4(address: str) -> bool:
    """Check an IPv4 address against the non-public ranges.

    Unparseable input counts as non-public.
    """
    return _ipv4_range_label(address) is not None


def is_private_or_reserved_ipv6(address: str) -> bool:
    """Check an IPv6 address, unwrapping IPv4-mapped forms.

    Unparseable input counts as non-public.
    """
    return _ipv6_range_label(address) is not None


def is_private_or_reserved(address: str) -> bool:
    """Check whether an IPv4 or IPv6 address is not publicly routable.

    Args:
        address: Address string. IPv6 may carry brackets or a zone suffix.

    Returns:
        True for private, reserved, loopback, link-local, multicast or
        unparseable addresses; False for public addresses.
    """
    return describe_address(address) is not None


def describe_address(address: str) -> str | None:
    """Name the non-public range an address falls into.

    Returns:
        A short label such as ``"link-local"`` or ``"loopback"``, ``"invalid"``
        for strings that are not IP addresses, or None for public addresses.
    """
    host = address.strip().strip("[]")
    family = is_ip_address(host)
    if family == 4:
        return _ipv4_range_label(host)
    if family == 6:
        return _ipv6_range_label(host)
    return "invalid"
