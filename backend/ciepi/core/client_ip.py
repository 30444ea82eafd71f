"""Client IP extraction for audit columns and rate limiting.

The portal runs behind a reverse proxy (and sometimes Cloudflare), so the
socket peer is usually the proxy. Forwarding headers are checked first.
"""

from starlette.requests import Request

_FORWARDING_HEADERS = ("x-real-ip", "cf-connecting-ip")

# Longest textual IPv6 address (with embedded IPv4) is 45 chars
_MAX_IP_LENGTH = 45


def get_client_ip(request: Request) -> str | None:
    """Best-effort client IP for a request.

    Order: first hop of ``X-Forwarded-For``, ``X-Real-IP``,
    ``CF-Connecting-IP``, then the socket peer.

    Args:
        request: Incoming request.

    Returns:
        IP string, or None when nothing usable is available.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop[:_MAX_IP_LENGTH]

    for header in _FORWARDING_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.strip()[:_MAX_IP_LENGTH]

    if request.client is not None and request.client.host:
        return request.client.host[:_MAX_IP_LENGTH]
    return None
