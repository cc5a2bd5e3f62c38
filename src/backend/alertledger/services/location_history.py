"""
Background location history reported by the user's device.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from alertledger.config import settings
from alertledger.models.location import LocationSample
from alertledger.services.store import LOCATION_SAMPLES, SupabaseStore
from alertledger.utils.dates import ensure_utc, to_iso, utcnow

logger = logging.getLogger(__name__)

SAMPLES_FOR_MAX_CONFIDENCE = 5


@dataclass(frozen=True)
class AverageLocation:
    lat: float
    lng: float
    sample_count: int

    @property
    def confidence(self) -> float:
        return min(self.sample_count / SAMPLES_FOR_MAX_CONFIDENCE, 1.0)


class LocationHistoryService:
    """Stores device location samples and answers time-window queries over them."""

    def __init__(self, store: SupabaseStore):
        self.store = store

    def record_samples(self, user_id: str, samples: Iterable[LocationSample]) -> int:
        """Store samples for a user. Returns the number stored."""
        stored = 0
        for sample in samples:
            sample = sample.model_copy(update={
                'user_id': user_id,
                'timestamp': ensure_utc(sample.timestamp)
            })
            self.store.insert(LOCATION_SAMPLES, sample)
            stored += 1

        logger.debug("Recorded location samples", extra={
            "user_id": user_id,
            "count": stored
        })
        return stored

    def samples_between(self, user_id: str, start: datetime, end: datetime) -> List[LocationSample]:
        rows = self.store.find(LOCATION_SAMPLES, {
            'user_id': user_id,
            'timestamp__gte': to_iso(start),
            'timestamp__lte': to_iso(end)
        }, order_by='timestamp')
        return [LocationSample(**row) for row in rows]

    def average_near(
        self,
        user_id: str,
        timestamp: datetime,
        window_minutes: Optional[int] = None
    ) -> Optional[AverageLocation]:
        """
        Average of the user's samples within ±window_minutes of timestamp.

        Returns:
            AverageLocation, or None when there are no samples in the window
        """
        window = timedelta(minutes=window_minutes or settings.LOCATION_WINDOW_MINUTES)
        timestamp = ensure_utc(timestamp)
        samples = self.samples_between(user_id, timestamp - window, timestamp + window)
        if not samples:
            return None

        count = len(samples)
        return AverageLocation(
            lat=sum(s.lat for s in samples) / count,
            lng=sum(s.lng for s in samples) / count,
            sample_count=count
        )

    def purge_older_than(self, user_id: str, days: Optional[int] = None) -> int:
        """Delete samples older than the retention window. Returns the number deleted."""
        cutoff = utcnow() - timedelta(days=days or settings.LOCATION_RETENTION_DAYS)
        deleted = self.store.delete(LOCATION_SAMPLES, {
            'user_id': user_id,
            'timestamp__lt': to_iso(cutoff)
        })

        logger.info("Purged old location samples", extra={
            "user_id": user_id,
            "deleted": len(deleted)
        })
        return len(deleted)
