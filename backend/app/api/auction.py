"""Admin API: auction performance."""
from fastapi import APIRouter, Depends

from app.core.errors import success_response
from app.core.security import require_admin
from app.services.auction import auction_metrics

router = APIRouter(prefix="/api/admin/auction", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/metrics")
def get_auction_metrics():
    """Running totals since process start."""
    return success_response(auction_metrics.snapshot())
