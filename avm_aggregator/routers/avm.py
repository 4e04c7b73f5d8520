import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response
from fastapi.responses import JSONResponse, StreamingResponse

from ..core.errors import AvmError, InvalidAddressError
from ..core.security import rate_limit, require_api_key
from ..schemas import (
    AvmFetchResponse,
    AvmRequest,
    ConsolidateRequest,
    ConsolidatedResult,
    HistoryEntryView,
)
from ..services.consolidator import consolidate
from ..services.history import load_entry, time_ago
from ..services.sweep_service import SweepService, sweep_service

logger = logging.getLogger(__name__)

router = APIRouter()

def service_dep() -> SweepService:
    return sweep_service()

@router.get("/avm/stream")
async def stream_avm(
    address: str = Query(default=""),
    _auth = Depends(require_api_key),
    _lim  = Depends(rate_limit),
    svc: SweepService = Depends(service_dep),
):
    # Validation happens inside svc.stream, before the response starts.
    lines = svc.stream(address)
    return StreamingResponse(
        lines,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

@router.post("/avm", response_model=AvmFetchResponse)
async def post_avm(
    body: AvmRequest,
    response: Response,
    if_none_match: str | None = Header(default=None, alias="If-None-Match"),
    _auth = Depends(require_api_key),
    _lim  = Depends(rate_limit),
    svc: SweepService = Depends(service_dep),
):
    """Synchronous full sweep; what callers use when the stream breaks early."""
    try:
        payload, from_cache, etag = await svc.sweep(body.address)
    except (InvalidAddressError, HTTPException):
        raise
    except AvmError as exc:
        logger.error("sweep failed: %s", exc.message)
        return JSONResponse(status_code=502, content={"error": "Failed to fetch AVM data"})
    except Exception:
        logger.exception("sweep failed")
        return JSONResponse(status_code=502, content={"error": "Failed to fetch AVM data"})

    if if_none_match and if_none_match == etag:
        return Response(status_code=304, headers={"ETag": etag})
    payload["cached"] = from_cache
    response.headers["ETag"] = etag
    return payload

@router.post("/avm/consolidate", response_model=ConsolidatedResult)
async def post_consolidate(body: ConsolidateRequest):
    return consolidate(body.estimates)

@router.get("/history", response_model=list[HistoryEntryView])
async def list_history(svc: SweepService = Depends(service_dep)):
    return [
        HistoryEntryView(entry=e, time_ago=time_ago(e.timestamp))
        for e in svc.store.entries()
    ]

@router.get("/history/{entry_id}", response_model=HistoryEntryView)
async def get_history_entry(entry_id: str, svc: SweepService = Depends(service_dep)):
    entry = svc.store.get(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="History entry not found")
    return HistoryEntryView(entry=entry, time_ago=time_ago(entry.timestamp), sources=load_entry(entry))

@router.delete("/history", status_code=204)
async def clear_history(
    _auth = Depends(require_api_key),
    svc: SweepService = Depends(service_dep),
):
    svc.store.clear()
    return Response(status_code=204)
