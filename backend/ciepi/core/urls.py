"""Portal URLs embedded in verification emails and API responses."""

from ciepi.core.config import settings


def _base_url() -> str:
    return settings.public_base_url.rstrip("/")


def build_verification_url(token: str) -> str:
    """URL the registrant clicks to confirm their address.

    The token is an opaque path segment, never a query parameter.
    """
    return f"{_base_url()}/verificacion/{token}"


def build_waiting_url(token: str) -> str:
    """URL of the page that polls token status while the user checks email."""
    return f"{_base_url()}/verificacion/esperando/{token}"
