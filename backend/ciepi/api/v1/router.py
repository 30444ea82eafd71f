"""API v1 router aggregator.

All v1 endpoint routers are included here (mounted at /api/v1).
"""

from fastapi import APIRouter

from ciepi.api.v1 import verification

router = APIRouter()

# =============================================================================
# Email Verification
# =============================================================================

router.include_router(
    verification.router, prefix="/verificacion", tags=["verificacion"]
)
