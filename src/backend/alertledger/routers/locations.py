"""
Background location router: the device reports samples, old ones are purged.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime

from alertledger.models.location import LocationSample
from alertledger.services.errors import AlertLedgerError
from alertledger.services.location_history import LocationHistoryService
from alertledger.services.store import SupabaseStore
from alertledger.routers.deps import get_store, http_error

router = APIRouter(prefix="/locations", tags=["locations"])


class SampleIn(BaseModel):
    lat: float
    lng: float
    accuracy: Optional[float] = None
    source: str = 'gps'
    timestamp: datetime


class RecordSamplesRequest(BaseModel):
    user_id: str
    samples: List[SampleIn]


@router.post("/samples")
async def record_samples(request: RecordSamplesRequest, store: SupabaseStore = Depends(get_store)):
    try:
        recorded = LocationHistoryService(store).record_samples(request.user_id, [
            LocationSample(user_id=request.user_id, **sample.model_dump())
            for sample in request.samples
        ])
    except AlertLedgerError as e:
        raise http_error(e)
    return {'recorded': recorded}


@router.delete("/samples")
async def purge_samples(user_id: str, days: Optional[int] = None, store: SupabaseStore = Depends(get_store)):
    """Delete samples older than the retention window (90 days unless given)."""
    try:
        purged = LocationHistoryService(store).purge_older_than(user_id, days)
    except AlertLedgerError as e:
        raise http_error(e)
    return {'purged': purged}
