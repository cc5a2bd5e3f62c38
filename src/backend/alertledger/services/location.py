"""
Location inference and location learning.

LocationMatcher tries five strategies in strict priority order and returns
the first that succeeds:

1. GPS coordinates parsed from the message (0.9)
2. The user's learned location for this merchant (visits >= 2, confidence >= 0.5)
3. Average of the user's background location samples within ±15 minutes
   (confidence min(samples/5, 1) must reach 0.4)
4. A learned email location pattern for this sender that matches the message
5. A free-text hint from the message (0.3, needs geocoding)

LocationLearner feeds strategies 2 and 4 from approved transactions and
user corrections.
"""

import re
import logging
from datetime import datetime
from typing import Dict, List, Optional

from alertledger.models.location import (
    EmailLocationPattern,
    LocationMatch,
    MerchantLocation,
    PatternLocation,
)
from alertledger.models.transaction import GeoPoint
from alertledger.services.errors import LearningStoreWriteFailure, StoreError
from alertledger.services.location_history import LocationHistoryService
from alertledger.services.parser import GPS_PATTERN
from alertledger.services.store import (
    EMAIL_LOCATION_PATTERNS,
    MERCHANT_LOCATIONS,
    SupabaseStore,
)
from alertledger.utils.dates import ensure_utc, to_iso, utcnow
from alertledger.utils.similarity import normalize_merchant_name

logger = logging.getLogger(__name__)

# Location sources
PARSED_GPS_COORDINATES = 'parsed_gps_coordinates'
LEARNED_MERCHANT_LOCATION = 'learned_merchant_location'
BACKGROUND_LOCATION_HISTORY = 'background_location_history'
LEARNED_EMAIL_PATTERN = 'learned_email_pattern'
TEXT_HINT = 'text_hint'
USER_CORRECTION = 'user_correction'

# Confidence levels
VERY_HIGH = 0.9
MEDIUM = 0.5
MINIMUM = 0.4
LOW = 0.3

MIN_VISITS_FOR_CONFIDENCE = 2
NEW_EMAIL_PATTERN_CONFIDENCE = 0.6

# Sources precise enough to teach a merchant's location
LEARNABLE_SOURCES = (PARSED_GPS_COORDINATES, BACKGROUND_LOCATION_HISTORY, USER_CORRECTION)

LOCATION_TEXT_PATTERNS = [
    ('address_text', re.compile(r'\b(location|address)\s*[:\-]\s*([^\n]{3,80})', re.IGNORECASE)),
    ('branch_info', re.compile(r'\b(branch|store)\s*[:\-]\s*([^\n]{3,80})', re.IGNORECASE)),
    ('city_name', re.compile(r'\b()([A-Z][A-Za-z]+(?: [A-Z][A-Za-z]+)*, [A-Z][A-Za-z]+)\b')),
]


def merchant_key(merchant: Optional[str]) -> Optional[str]:
    if not merchant or merchant == 'Unknown':
        return None
    return normalize_merchant_name(merchant) or None


def extract_location_pattern(text: str) -> Optional[Dict[str, str]]:
    """
    Find the part of a message that says where it happened and turn it into a
    reusable regex.

    Returns:
        {'pattern', 'pattern_type', 'example'} or None
    """
    if not text:
        return None

    for pattern_type, regex in LOCATION_TEXT_PATTERNS:
        match = regex.search(text)
        if match:
            label, value = match.group(1), match.group(2).strip()
            prefix = re.escape(label) + r'\s*[:\-]\s*' if label else ''
            return {
                'pattern': prefix + re.escape(value),
                'pattern_type': pattern_type,
                'example': match.group(0).strip(),
            }

    match = GPS_PATTERN.search(text)
    if match:
        return {
            'pattern': GPS_PATTERN.pattern,
            'pattern_type': 'gps_coordinates',
            'example': match.group(0),
        }
    return None


class LocationMatcher:
    """Attaches a best-guess location to a parsed transaction."""

    def __init__(self, store: SupabaseStore, history: LocationHistoryService):
        self.store = store
        self.history = history

    def match(
        self,
        user_id: str,
        timestamp: datetime,
        merchant: Optional[str] = None,
        sender: Optional[str] = None,
        raw_text: Optional[str] = None,
        gps: Optional[GeoPoint] = None,
        location_hint: Optional[str] = None
    ) -> Optional[LocationMatch]:
        """
        Run the strategies in order.

        Returns:
            LocationMatch, or None when no strategy produced a location
        """
        try:
            if gps is not None:
                logger.debug("Using parsed GPS location", extra={"user_id": user_id})
                return LocationMatch(
                    lat=gps.lat,
                    lng=gps.lng,
                    source=PARSED_GPS_COORDINATES,
                    confidence=VERY_HIGH
                )

            learned = self._learned_merchant_location(user_id, merchant)
            if learned:
                return learned

            background = self._background_location(user_id, timestamp)
            if background:
                return background

            if sender and raw_text:
                from_pattern = self._email_pattern_location(user_id, sender, raw_text, merchant)
                if from_pattern:
                    return from_pattern

            if location_hint:
                logger.debug("Location hint available for geocoding", extra={"hint": location_hint})
                return LocationMatch(
                    source=TEXT_HINT,
                    confidence=LOW,
                    hint=location_hint,
                    needs_geocoding=True
                )

            return None

        except Exception as e:
            logger.error("Error in location matching", extra={
                "user_id": user_id,
                "error": str(e)
            }, exc_info=True)
            return None

    def _learned_merchant_location(self, user_id: str, merchant: Optional[str]) -> Optional[LocationMatch]:
        key = merchant_key(merchant)
        if not key:
            return None

        row = self.store.find_one(MERCHANT_LOCATIONS, {'user_id': user_id, 'merchant_key': key})
        if not row:
            return None

        learned = MerchantLocation(**row)
        if learned.visits < MIN_VISITS_FOR_CONFIDENCE or learned.confidence < MEDIUM:
            return None

        logger.debug("Using learned merchant location", extra={
            "merchant": merchant,
            "confidence": learned.confidence
        })
        return LocationMatch(
            lat=learned.lat,
            lng=learned.lng,
            address=learned.address,
            city=learned.city,
            place_name=learned.place_name,
            source=LEARNED_MERCHANT_LOCATION,
            confidence=learned.confidence,
            sample_count=learned.visits
        )

    def _background_location(self, user_id: str, timestamp: datetime) -> Optional[LocationMatch]:
        average = self.history.average_near(user_id, timestamp)
        if average is None or average.confidence < MINIMUM:
            return None

        logger.debug("Using background location average", extra={
            "count": average.sample_count,
            "confidence": average.confidence
        })
        return LocationMatch(
            lat=average.lat,
            lng=average.lng,
            source=BACKGROUND_LOCATION_HISTORY,
            confidence=average.confidence,
            sample_count=average.sample_count
        )

    def patterns_for_sender(
        self,
        user_id: str,
        sender: str,
        merchant: Optional[str]
    ) -> List[EmailLocationPattern]:
        """Sender patterns for this merchant (or merchant-agnostic), merchant-specific first."""
        rows = self.store.find(EMAIL_LOCATION_PATTERNS, {
            'user_id': user_id,
            'sender': sender.lower()
        }, order_by='confidence', desc=True)

        key = merchant_key(merchant)
        patterns = [EmailLocationPattern(**row) for row in rows]
        patterns = [p for p in patterns if p.merchant_key in (None, key)]
        return sorted(patterns, key=lambda p: p.merchant_key is None)

    def _email_pattern_location(
        self,
        user_id: str,
        sender: str,
        raw_text: str,
        merchant: Optional[str]
    ) -> Optional[LocationMatch]:
        now = utcnow()

        for pattern in self.patterns_for_sender(user_id, sender, merchant):
            if not pattern.pattern or pattern.location.lat is None:
                continue

            try:
                matched = re.search(pattern.pattern, raw_text, re.IGNORECASE) is not None
            except re.error:
                logger.warning("Invalid stored location pattern", extra={"pattern_id": pattern.id})
                continue

            if matched:
                pattern.record_success(now)
            else:
                pattern.record_failure(now)
            self._save_email_pattern_counters(pattern)

            if matched:
                logger.debug("Using learned email pattern location", extra={
                    "sender": sender,
                    "confidence": pattern.confidence
                })
                return LocationMatch(
                    lat=pattern.location.lat,
                    lng=pattern.location.lng,
                    address=pattern.location.address,
                    city=pattern.location.city,
                    place_name=pattern.location.place_name,
                    source=LEARNED_EMAIL_PATTERN,
                    confidence=pattern.confidence
                )
        return None

    def _save_email_pattern_counters(self, pattern: EmailLocationPattern) -> None:
        try:
            self.store.update(EMAIL_LOCATION_PATTERNS, {'id': pattern.id}, {
                'times_matched': pattern.times_matched,
                'successful_extractions': pattern.successful_extractions,
                'confidence': pattern.confidence,
                'last_used': to_iso(pattern.last_used) if pattern.last_used else None,
            })
        except StoreError as e:
            logger.warning("Failed to update email location pattern counters", extra={
                "pattern_id": pattern.id,
                "error": str(e)
            })


class LocationLearner:
    """Learns merchant locations and sender location patterns."""

    def __init__(self, store: SupabaseStore):
        self.store = store

    def learn_merchant_location(
        self,
        user_id: str,
        merchant: str,
        lat: float,
        lng: float,
        when: datetime,
        address: Optional[str] = None,
        city: Optional[str] = None,
        place_name: Optional[str] = None
    ) -> Optional[MerchantLocation]:
        """
        Record one visit to a merchant and persist the updated running average.

        Raises:
            LearningStoreWriteFailure: the merchant location could not be saved
        """
        key = merchant_key(merchant)
        if not key:
            return None

        try:
            row = self.store.find_one(MERCHANT_LOCATIONS, {'user_id': user_id, 'merchant_key': key})
            if row:
                learned = MerchantLocation(**row)
            else:
                learned = MerchantLocation(
                    user_id=user_id,
                    merchant_key=key,
                    merchant_name=merchant,
                    lat=lat,
                    lng=lng
                )

            learned.record_visit(lat, lng, ensure_utc(when))
            learned.address = address or learned.address
            learned.city = city or learned.city
            learned.place_name = place_name or learned.place_name

            saved = self.store.upsert(MERCHANT_LOCATIONS, learned, on_conflict='user_id,merchant_key')
        except StoreError as e:
            raise LearningStoreWriteFailure(MERCHANT_LOCATIONS, str(e)) from e

        logger.info("Learned merchant location", extra={
            "user_id": user_id,
            "merchant_key": key,
            "visits": learned.visits,
            "confidence": learned.confidence
        })
        return MerchantLocation(**saved)

    def learn_email_location_pattern(
        self,
        user_id: str,
        sender: str,
        raw_text: str,
        merchant: Optional[str],
        location: PatternLocation,
        when: datetime,
        sender_domain: Optional[str] = None
    ) -> Optional[EmailLocationPattern]:
        """
        Create or refresh the sender's location pattern from a corrected location.

        Raises:
            LearningStoreWriteFailure: the pattern could not be saved
        """
        extracted = extract_location_pattern(raw_text)
        key = merchant_key(merchant)
        filters = {'user_id': user_id, 'sender': sender.lower()}

        try:
            rows = self.store.find(EMAIL_LOCATION_PATTERNS, filters)
            existing = next(
                (EmailLocationPattern(**row) for row in rows if row.get('merchant_key') == key),
                None
            )

            if existing:
                existing.location = location
                existing.record_success(ensure_utc(when))
                if extracted:
                    existing.pattern = extracted['pattern']
                    existing.pattern_type = extracted['pattern_type']
                    existing.example = extracted['example']
                self.store.update(EMAIL_LOCATION_PATTERNS, {'id': existing.id}, existing)
                pattern = existing
                action = "Updated"
            else:
                pattern = EmailLocationPattern(
                    user_id=user_id,
                    sender=sender.lower(),
                    sender_domain=sender_domain,
                    merchant_key=key,
                    merchant_name=merchant if key else None,
                    pattern=extracted['pattern'] if extracted else None,
                    pattern_type=extracted['pattern_type'] if extracted else None,
                    example=extracted['example'] if extracted else None,
                    location=location,
                    confidence=NEW_EMAIL_PATTERN_CONFIDENCE,
                    last_used=ensure_utc(when)
                )
                pattern = EmailLocationPattern(**self.store.insert(EMAIL_LOCATION_PATTERNS, pattern))
                action = "Created"
        except StoreError as e:
            raise LearningStoreWriteFailure(EMAIL_LOCATION_PATTERNS, str(e)) from e

        logger.info(f"{action} email location pattern", extra={
            "user_id": user_id,
            "sender": sender,
            "merchant_key": key,
            "pattern_type": pattern.pattern_type
        })
        return pattern
