"""Shared dependencies for API endpoints.

The verification endpoints are public registrant flows (the token itself
is the credential), so the only shared dependencies are the database
session and the caller's IP.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ciepi.core.client_ip import get_client_ip
from ciepi.core.database import get_db


def client_ip(request: Request) -> str | None:
    """Client IP recorded on issued and consumed tokens."""
    return get_client_ip(request)


# Type aliases for cleaner endpoint signatures
DbSession = Annotated[AsyncSession, Depends(get_db)]
ClientIp = Annotated[str | None, Depends(client_ip)]
