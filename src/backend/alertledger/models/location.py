"""
Pydantic models for location inference and location learning.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

MAX_VISIT_HISTORY_SIZE = 20
VISITS_FOR_MAX_CONFIDENCE = 10


class LocationMatch(BaseModel):
    """Result of the location matcher: where a transaction most likely happened."""
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    place_name: Optional[str] = None
    source: str
    confidence: float
    hint: Optional[str] = None
    needs_geocoding: bool = False
    sample_count: Optional[int] = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


class LocationSample(BaseModel):
    """One background location fix reported by the user's device."""
    id: Optional[str] = None
    user_id: str
    lat: float
    lng: float
    accuracy: Optional[float] = None
    source: str = 'gps'
    timestamp: datetime


class Visit(BaseModel):
    lat: float
    lng: float
    timestamp: datetime


class MerchantLocation(BaseModel):
    """Where a user's merchant is, averaged over their recent GPS-bearing visits."""
    id: Optional[str] = None
    user_id: str
    merchant_key: str
    merchant_name: str
    lat: float
    lng: float
    address: Optional[str] = None
    city: Optional[str] = None
    place_name: Optional[str] = None
    visits: int = 0
    confidence: float = 0.0
    visit_history: List[Visit] = Field(default_factory=list)
    first_visit: Optional[datetime] = None
    last_visit: Optional[datetime] = None

    def record_visit(self, lat: float, lng: float, timestamp: datetime) -> None:
        """Add a visit, keep the newest 20 samples, and recompute average and confidence."""
        self.visits += 1
        self.visit_history.append(Visit(lat=lat, lng=lng, timestamp=timestamp))
        if len(self.visit_history) > MAX_VISIT_HISTORY_SIZE:
            self.visit_history = self.visit_history[-MAX_VISIT_HISTORY_SIZE:]

        count = len(self.visit_history)
        self.lat = sum(v.lat for v in self.visit_history) / count
        self.lng = sum(v.lng for v in self.visit_history) / count
        self.confidence = min(self.visits / VISITS_FOR_MAX_CONFIDENCE, 1.0)
        if self.first_visit is None:
            self.first_visit = timestamp
        self.last_visit = timestamp


class PatternLocation(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None
    city: Optional[str] = None
    place_name: Optional[str] = None


class EmailLocationPattern(BaseModel):
    """A regex learned from a correction that signals location inside a sender's emails."""
    id: Optional[str] = None
    user_id: Optional[str] = None
    sender: str
    sender_domain: Optional[str] = None
    merchant_key: Optional[str] = None
    merchant_name: Optional[str] = None
    pattern: Optional[str] = None
    pattern_type: Optional[str] = None
    example: Optional[str] = None
    location: PatternLocation = Field(default_factory=PatternLocation)
    confidence: float = 0.5
    times_matched: int = 0
    successful_extractions: int = 0
    is_global: bool = False
    last_used: Optional[datetime] = None

    def record_success(self, when: datetime) -> None:
        self.times_matched += 1
        self.successful_extractions += 1
        self.confidence = min(self.successful_extractions / self.times_matched, 1.0)
        self.last_used = when

    def record_failure(self, when: datetime) -> None:
        self.times_matched += 1
        self.confidence = self.successful_extractions / self.times_matched
        self.last_used = when
