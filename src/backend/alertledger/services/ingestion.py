"""
Ingestion pipeline: one inbound alert in, at most one pending transaction out.

parse (bank rules, then generic) → dedup → learned email correction →
location → confidence → merchant suggestions → pending record → notification.

A message that cannot be parsed still becomes a pending record, flagged for
manual review with a minimal confidence, so nothing the bank sent is dropped.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from alertledger.config import settings
from alertledger.models.location import LocationMatch
from alertledger.models.patterns import MerchantSuggestion
from alertledger.models.pending import EMAIL_KINDS, InboundMessage, IngestResult
from alertledger.models.transaction import Candidate
from alertledger.services.bank_patterns import BankPatternMatcher
from alertledger.services.dedup import DeduplicationGate, compute_message_hash
from alertledger.services.email_patterns import EmailPatternLearner
from alertledger.services.errors import AlertLedgerError, ParseFailure, StoreError
from alertledger.services.geocoding import Geocoder
from alertledger.services.location import LocationMatcher
from alertledger.services.location_history import LocationHistoryService
from alertledger.services.merchant_patterns import MerchantPatternLearner
from alertledger.services.notifications import NotificationService
from alertledger.services.parser import TransactionParser
from alertledger.services.pending import PendingTransactionWorkflow
from alertledger.services.store import SupabaseStore
from alertledger.utils.dates import ensure_utc
from alertledger.utils.scoring import FAILED_PARSE_SCORE, score_candidate

logger = logging.getLogger(__name__)


class IngestionService:
    """Turns inbound SMS and email alerts into pending transactions."""

    def __init__(
        self,
        store: Optional[SupabaseStore] = None,
        geocoder: Optional[Geocoder] = None,
        notifier: Optional[NotificationService] = None
    ):
        """Initialize ingestion service."""
        self.store = store or SupabaseStore()
        self.parser = TransactionParser()
        self.bank_matcher = BankPatternMatcher(self.parser)
        self.dedup = DeduplicationGate(self.store)
        self.email_learner = EmailPatternLearner(self.store)
        self.merchant_learner = MerchantPatternLearner(self.store)
        self.location_matcher = LocationMatcher(self.store, LocationHistoryService(self.store))
        self.geocoder = geocoder
        self.workflow = PendingTransactionWorkflow(
            self.store,
            merchant_learner=self.merchant_learner,
            email_learner=self.email_learner,
            geocoder=geocoder,
            notifier=notifier
        )

    def _parse(self, message: InboundMessage) -> Tuple[Optional[Candidate], str, Optional[str]]:
        """
        Returns:
            (candidate, strategy, error) with candidate None on failure
        """
        candidate = self.bank_matcher.match(message.sender, message.subject, message.body)
        if candidate is not None:
            return candidate, 'bank-pattern', None

        try:
            return self.parser.parse(message.text), 'generic-parser', None
        except ParseFailure as e:
            logger.info("Could not parse message", extra={
                "user_id": message.user_id,
                "sender": message.sender,
                "error": e.code.value
            })
            return None, 'failed', e.message

    def _apply_learned(
        self,
        message: InboundMessage,
        candidate: Candidate,
        strategy: str
    ) -> Tuple[Candidate, str]:
        if message.source_kind not in EMAIL_KINDS:
            return candidate, strategy
        try:
            applied = self.email_learner.apply_learned(message.user_id, message.sender, candidate)
        except StoreError as e:
            logger.warning("Learned email pattern lookup failed", extra={
                "user_id": message.user_id,
                "error": str(e)
            })
            return candidate, strategy
        if applied is None:
            return candidate, strategy
        return applied[0], 'learned-pattern'

    def _locate(
        self,
        message: InboundMessage,
        candidate: Candidate,
        timestamp: datetime
    ) -> Optional[LocationMatch]:
        match = self.location_matcher.match(
            message.user_id,
            timestamp,
            merchant=candidate.merchant,
            sender=message.sender if message.source_kind in EMAIL_KINDS else None,
            raw_text=message.text,
            gps=candidate.gps or message.gps_hint,
            location_hint=candidate.location_hint
        )

        if match is None or not match.needs_geocoding or self.geocoder is None:
            return match

        place = self.geocoder.geocode(match.hint)
        if not place or place.get('lat') is None:
            return match

        return match.model_copy(update={
            'lat': place['lat'],
            'lng': place['lng'],
            'address': place.get('address'),
            'city': place.get('city') or None,
            'country': place.get('country') or None,
            'place_name': place.get('place_name') or None,
            'needs_geocoding': False
        })

    def _suggest(self, user_id: str, candidate: Candidate) -> Optional[MerchantSuggestion]:
        try:
            return self.merchant_learner.suggest(user_id, candidate)
        except StoreError as e:
            logger.warning("Merchant suggestion lookup failed", extra={
                "user_id": user_id,
                "error": str(e)
            })
            return None

    def ingest(self, message: InboundMessage) -> IngestResult:
        """
        Ingest one message.

        Args:
            message: The delivered alert

        Returns:
            IngestResult with status duplicate, pending or error
        """
        timestamp = ensure_utc(message.timestamp)

        try:
            candidate, strategy, parse_error = self._parse(message)

            # Fingerprint the parse as delivered; learned rewrites change after each correction.
            message_hash = compute_message_hash(
                message.user_id,
                candidate,
                timestamp,
                message_id=message.message_id,
                raw_text=message.text
            )

            existing = self.dedup.find_existing(message.user_id, message_hash)
            if existing:
                return IngestResult(status='duplicate', duplicate=True, existing=existing[1])

            if candidate is None:
                pending, created = self.workflow.create(
                    message.user_id,
                    message.source(),
                    raw_content=message.text,
                    parsing_strategy='failed',
                    message_hash=message_hash,
                    transaction_at=timestamp,
                    confidence_score=FAILED_PARSE_SCORE,
                    needs_manual_review=True,
                    parsing_error=parse_error
                )
            else:
                candidate, strategy = self._apply_learned(message, candidate, strategy)
                location = self._locate(message, candidate, timestamp)
                confidence = score_candidate(candidate, message.text)
                candidate = candidate.model_copy(update={'confidence': confidence})

                pending, created = self.workflow.create(
                    message.user_id,
                    message.source(),
                    raw_content=message.text,
                    parsing_strategy=strategy,
                    message_hash=message_hash,
                    transaction_at=timestamp,
                    candidate=candidate,
                    confidence_score=confidence,
                    location=location,
                    suggestions=self._suggest(message.user_id, candidate),
                    needs_manual_review=confidence < settings.REVIEW_CONFIDENCE_THRESHOLD
                )

            if not created:
                return IngestResult(status='duplicate', duplicate=True, existing=pending.model_dump(mode='json'))

            self.workflow.notify(pending)
            return IngestResult(status='pending', pending=pending)

        except AlertLedgerError as e:
            logger.error("Ingestion failed", extra={
                "user_id": message.user_id,
                "sender": message.sender,
                "error": e.message,
                "context": e.context
            }, exc_info=True)
            return IngestResult(status='error', error=e.message)

    def ingest_many(self, messages: Iterable[InboundMessage]) -> Dict:
        """
        Ingest a batch of messages.

        Returns:
            Summary of the batch
        """
        summary = {
            'messages_checked': 0,
            'pending_created': 0,
            'duplicates_skipped': 0,
            'errors': []
        }

        for message in messages:
            summary['messages_checked'] += 1
            result = self.ingest(message)

            if result.status == 'pending':
                summary['pending_created'] += 1
            elif result.status == 'duplicate':
                summary['duplicates_skipped'] += 1
            else:
                summary['errors'].append(result.error)

        logger.info("Batch ingestion complete", extra={
            "messages_checked": summary['messages_checked'],
            "pending_created": summary['pending_created'],
            "duplicates_skipped": summary['duplicates_skipped']
        })
        return summary
