"""URL validation for notification provider endpoints.

Provider URLs come from user configuration, so they are checked once when the
provider is built:

- Validates URL schemes (per provider)
- Blocks loopback, private and link-local addresses when requested
- DNS rebinding protection via hostname resolution
- IDN (Internationalized Domain Names) handling

Self-hosted services (ntfy, gotify) legitimately live on private networks and
validate with ``block_private_ips=False``.
"""

import ipaddress
import socket
from urllib.parse import ParseResult, urlparse

from updatewatch.exceptions import SSRFProtectionError

# Private IP ranges (RFC 1918, RFC 4193, and other reserved ranges)
PRIVATE_IP_RANGES = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),  # Link-local (cloud metadata: 169.254.169.254)
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fe80::/10"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("100.64.0.0/10"),
]

LOCALHOST_HOSTNAMES = {
    "localhost",
    "localhost.localdomain",
    "ip6-localhost",
    "ip6-loopback",
}


def is_private_ip(ip_address: str) -> bool:
    """Check if an IP address is private, loopback, or link-local.

    Raises:
        ValueError: If ip_address is not a valid IP address
    """
    ip_obj = ipaddress.ip_address(ip_address)
    if any(ip_obj in network for network in PRIVATE_IP_RANGES):
        return True
    # IPv4-mapped IPv6 addresses (::ffff:127.0.0.1)
    if isinstance(ip_obj, ipaddress.IPv6Address) and ip_obj.ipv4_mapped:
        return is_private_ip(str(ip_obj.ipv4_mapped))
    return False


def resolve_hostname(hostname: str) -> str | None:
    """Resolve a hostname to its first IP address, or None when resolution fails."""
    try:
        addr_info = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except (socket.gaierror, socket.herror, OSError):
        return None
    if addr_info:
        return str(addr_info[0][4][0])
    return None


def validate_provider_url(
    url: str,
    allowed_schemes: list[str] | None = None,
    block_private_ips: bool = True,
) -> ParseResult:
    """Validate a provider URL against SSRF protection policies.

    Args:
        url: The URL to validate
        allowed_schemes: Allowed URL schemes (default: ["http", "https"])
        block_private_ips: If True, block private/internal addresses and
            hostnames resolving to them

    Returns:
        Parsed URL object if validation passes

    Raises:
        SSRFProtectionError: If URL fails any validation check
        ValueError: If URL is malformed
    """
    if not url:
        raise ValueError("URL cannot be empty")

    if allowed_schemes is None:
        allowed_schemes = ["http", "https"]

    parsed = urlparse(url)
    if parsed.scheme not in allowed_schemes:
        raise SSRFProtectionError(
            f"URL scheme '{parsed.scheme}' not allowed. "
            f"Allowed schemes: {', '.join(allowed_schemes)}"
        )

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must include a hostname")

    try:
        hostname_ascii = hostname.encode("idna").decode("ascii").lower()
    except UnicodeError:
        raise ValueError(f"Invalid hostname: {hostname}")

    if not block_private_ips:
        return parsed

    if hostname_ascii in LOCALHOST_HOSTNAMES:
        raise SSRFProtectionError(f"Blocked private/internal hostname: {hostname_ascii}")

    try:
        ip_obj = ipaddress.ip_address(hostname_ascii.strip("[]"))
    except ValueError:
        ip_obj = None

    if ip_obj is not None:
        if is_private_ip(str(ip_obj)):
            raise SSRFProtectionError(f"Blocked private IP address: {ip_obj}")
        return parsed

    resolved_ip = resolve_hostname(hostname_ascii)
    if resolved_ip and is_private_ip(resolved_ip):
        raise SSRFProtectionError(
            f"Hostname '{hostname_ascii}' resolves to private IP: {resolved_ip}"
        )
    return parsed
