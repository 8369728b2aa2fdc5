from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from starlette.concurrency import run_in_threadpool

from papertrail.config import settings
from papertrail.dependencies import get_engine
from papertrail.schemas.maintenance import PurgeRequest, PurgeResponse
from papertrail.services.engine import Engine
from papertrail.services.errors import StorageUnavailable

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.maintenance_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="MAINTENANCE_TOKEN not configured",
        )
    if not provided or provided != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


@router.post("/purge", response_model=PurgeResponse)
async def purge_expired(
    payload: Optional[PurgeRequest] = None,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    engine: Engine = Depends(get_engine),
):
    _require_admin_token(x_admin_token)
    limit = (payload.limit if payload else None) or settings.purge_batch_limit
    try:
        counts = await run_in_threadpool(engine.purge_expired, limit)
    except StorageUnavailable:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable")
    return PurgeResponse(success=True, **counts)
