"""
Pending-transaction review workflow.

States: pending → approved | rejected | expired. Only a pending record may
transition. Every transition is a conditional update on (id, status='pending')
so two concurrent decisions cannot both succeed, and the materialized
transaction is inserted through the (user_id, message_hash) unique index so a
retried approval never creates a second one. An approval that loses its transition
to another decision removes the transaction it materialized.

Learning after approval is best-effort: a failed learning write is logged and
never undoes the approval.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from alertledger.config import settings
from alertledger.models.location import LocationMatch, PatternLocation
from alertledger.models.patterns import LearningPattern, MerchantSuggestion
from alertledger.models.pending import (
    EMAIL_KINDS,
    CorrectedData,
    FieldChanges,
    PendingTransaction,
    Source,
    UserFeedback,
    source_sender,
)
from alertledger.models.transaction import Candidate, Transaction, TransactionLocation
from alertledger.services.bank_patterns import extract_sender_domain
from alertledger.services.email_patterns import EmailPatternLearner
from alertledger.services.errors import (
    AlertLedgerError,
    AlreadyProcessed,
    CorrectionRequired,
    LearningStoreWriteFailure,
    PendingNotFound,
    StoreError,
)
from alertledger.services.geocoding import Geocoder
from alertledger.services.location import LEARNABLE_SOURCES, USER_CORRECTION, LocationLearner
from alertledger.services.merchant_patterns import MerchantPatternLearner
from alertledger.services.notifications import NotificationService
from alertledger.services.store import (
    LEARNING_PATTERNS,
    PENDING_TRANSACTIONS,
    TRANSACTIONS,
    SupabaseStore,
    to_row,
)
from alertledger.utils.dates import ensure_utc, to_iso, utcnow

logger = logging.getLogger(__name__)

CORRECTED_LOCATION_CONFIDENCE = 1.0


class PendingTransactionWorkflow:
    """Creates pending records and applies the user's decisions to them."""

    def __init__(
        self,
        store: SupabaseStore,
        merchant_learner: Optional[MerchantPatternLearner] = None,
        email_learner: Optional[EmailPatternLearner] = None,
        location_learner: Optional[LocationLearner] = None,
        geocoder: Optional[Geocoder] = None,
        notifier: Optional[NotificationService] = None
    ):
        self.store = store
        self.merchant_learner = merchant_learner or MerchantPatternLearner(store)
        self.email_learner = email_learner or EmailPatternLearner(store)
        self.location_learner = location_learner or LocationLearner(store)
        self.geocoder = geocoder
        self.notifier = notifier

    # Creation

    def create(
        self,
        user_id: str,
        source: Source,
        raw_content: str,
        parsing_strategy: str,
        message_hash: str,
        transaction_at: datetime,
        candidate: Optional[Candidate] = None,
        confidence_score: float = 0.0,
        location: Optional[LocationMatch] = None,
        suggestions: Optional[MerchantSuggestion] = None,
        needs_manual_review: bool = False,
        parsing_error: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tuple[PendingTransaction, bool]:
        """
        Insert a pending record unless one already exists for (user, hash).

        Returns:
            (record, created) where created is False if the hash was taken

        Raises:
            StoreError: the pending record could not be written
        """
        now = ensure_utc(now)
        pending = PendingTransaction(
            user_id=user_id,
            parsed_data=candidate,
            source=source,
            raw_content=raw_content,
            parsing_strategy=parsing_strategy,
            confidence_score=confidence_score,
            message_hash=message_hash,
            location=location,
            suggestions=suggestions,
            needs_manual_review=needs_manual_review,
            parsing_error=parsing_error,
            transaction_at=ensure_utc(transaction_at),
            created_at=now,
            expires_at=now + timedelta(days=settings.PENDING_TTL_DAYS)
        )

        row = self.store.insert_if_absent(PENDING_TRANSACTIONS, pending, on_conflict='user_id,message_hash')
        if row is None:
            existing = self.store.find_one(PENDING_TRANSACTIONS, {
                'user_id': user_id,
                'message_hash': message_hash
            })
            logger.info("Pending transaction already exists", extra={
                "user_id": user_id,
                "message_hash": message_hash
            })
            return PendingTransaction(**existing), False

        created = PendingTransaction(**row)
        logger.info("Created pending transaction", extra={
            "pending_id": created.id,
            "user_id": user_id,
            "strategy": parsing_strategy,
            "confidence": confidence_score
        })
        return created, True

    def notify(self, pending: PendingTransaction) -> bool:
        """
        Push one notification for a new pending record to the user's first device.

        The notification_sent flag is claimed with a conditional update before
        sending, so the record is announced at most once. A failed send
        releases the claim.
        """
        if self.notifier is None or pending.notification_sent:
            return False

        try:
            tokens = self.notifier.device_tokens(pending.user_id)
            if not tokens:
                return False

            claimed = self.store.update(PENDING_TRANSACTIONS, {'id': pending.id, 'notification_sent': False}, {
                'notification_sent': True,
                'notification_sent_at': to_iso(utcnow())
            })
            if not claimed:
                return False

            message = self.notifier.pending_message(pending)
            result = self.notifier.notify(tokens[0], message['title'], message['body'], message['data'])
            if not result.success:
                self.store.update(PENDING_TRANSACTIONS, {'id': pending.id}, {
                    'notification_sent': False,
                    'notification_sent_at': None
                })
                return False

            return True
        except StoreError as e:
            logger.warning("Failed to record notification", extra={
                "pending_id": pending.id,
                "error": str(e)
            })
            return False

    # Queries

    def get(self, pending_id: str, user_id: Optional[str] = None) -> PendingTransaction:
        filters = {'id': pending_id}
        if user_id:
            filters['user_id'] = user_id
        row = self.store.find_one(PENDING_TRANSACTIONS, filters)
        if not row:
            raise PendingNotFound(pending_id)
        return PendingTransaction(**row)

    def list(self, user_id: str, status: str = 'pending', limit: int = 50) -> List[PendingTransaction]:
        rows = self.store.find(
            PENDING_TRANSACTIONS,
            {'user_id': user_id, 'status': status},
            order_by='created_at',
            desc=True,
            limit=limit
        )
        return [PendingTransaction(**row) for row in rows]

    def count(self, user_id: str, status: str = 'pending') -> int:
        return self.store.count(PENDING_TRANSACTIONS, {'user_id': user_id, 'status': status})

    # Transitions

    def _transition(self, pending: PendingTransaction, values: Dict) -> PendingTransaction:
        rows = self.store.update(PENDING_TRANSACTIONS, {'id': pending.id, 'status': 'pending'}, values)
        if not rows:
            current = self.store.find_one(PENDING_TRANSACTIONS, {'id': pending.id})
            raise AlreadyProcessed(pending.id, current['status'] if current else 'deleted')
        return PendingTransaction(**rows[0])

    def _release_transaction(self, pending: PendingTransaction, transaction: Transaction) -> None:
        """
        Remove a transaction materialized by an approval that lost its transition.

        Kept only when a concurrent approval of the same record won with it.
        """
        current = self.store.find_one(PENDING_TRANSACTIONS, {'id': pending.id})
        if current and current.get('status') == 'approved' and current.get('approved_transaction_id') == transaction.id:
            return

        self.store.delete(TRANSACTIONS, {'id': transaction.id, 'pending_id': pending.id})
        logger.warning("Removed transaction of an approval that lost to another decision", extra={
            "pending_id": pending.id,
            "transaction_id": transaction.id,
            "status": current['status'] if current else 'deleted'
        })

    def _final_location(
        self,
        pending: PendingTransaction,
        corrected: CorrectedData
    ) -> Optional[TransactionLocation]:
        fix = corrected.location if 'location' in corrected.model_fields_set else None

        if fix is not None:
            location = TransactionLocation(
                **fix.model_dump(),
                confidence=CORRECTED_LOCATION_CONFIDENCE,
                source=USER_CORRECTION
            )
            if self.geocoder and location.lat is not None and not location.address:
                place = self.geocoder.reverse_geocode(location.lat, location.lng)
                if place:
                    location = location.model_copy(update={
                        k: v for k, v in place.items() if k in ('address', 'city', 'country', 'place_name') and v
                    })
            elif self.geocoder and location.lat is None and location.address:
                place = self.geocoder.geocode(location.address)
                if place:
                    location = location.model_copy(update={'lat': place['lat'], 'lng': place['lng']})
            return location

        match = pending.location
        if match is None:
            return None
        return TransactionLocation(
            lat=match.lat,
            lng=match.lng,
            address=match.address or match.hint,
            city=match.city,
            country=match.country,
            place_name=match.place_name,
            confidence=match.confidence,
            source=match.source
        )

    def approve(
        self,
        pending_id: str,
        corrected: Optional[CorrectedData] = None,
        user_id: Optional[str] = None
    ) -> Transaction:
        """
        Approve a pending record, optionally with corrections.

        Without corrections the transaction carries exactly the parsed fields.

        Raises:
            PendingNotFound: no such record
            AlreadyProcessed: the record is no longer pending
            CorrectionRequired: a failed parse was approved without an amount
        """
        pending = self.get(pending_id, user_id)
        if pending.status != 'pending':
            raise AlreadyProcessed(pending_id, pending.status)

        corrected = corrected or CorrectedData()
        original = pending.parsed_data
        if original is None and corrected.amount is None:
            raise CorrectionRequired(pending_id)

        final = corrected.resolve(original)
        changes = corrected.diff(original)

        transaction = Transaction(
            user_id=pending.user_id,
            amount=final.amount,
            currency=final.currency,
            type=final.type,
            category=final.category,
            sub_category=final.sub_category,
            merchant=final.merchant,
            note=corrected.note,
            payment_method=final.payment_method,
            source=pending.source.kind,
            tags=corrected.tags or [],
            location=self._final_location(pending, corrected),
            timestamp=pending.transaction_at,
            message_hash=pending.message_hash,
            pending_id=pending.id
        )

        row = self.store.insert_if_absent(TRANSACTIONS, transaction, on_conflict='user_id,message_hash')
        if row is None:
            row = self.store.find_one(TRANSACTIONS, {
                'user_id': pending.user_id,
                'message_hash': pending.message_hash
            })
            if not row or row.get('pending_id') != pending.id:
                raise AlreadyProcessed(pending_id, 'approved')
        saved = Transaction(**row)

        now = utcnow()
        feedback = UserFeedback(action='approved', changed_fields=changes.changed_fields(), recorded_at=now)
        try:
            self._transition(pending, {
                'status': 'approved',
                'approved_transaction_id': saved.id,
                'user_feedback': to_row(feedback)
            })
        except AlreadyProcessed:
            self._release_transaction(pending, saved)
            raise

        logger.info("Approved pending transaction", extra={
            "pending_id": pending_id,
            "transaction_id": saved.id,
            "changed_fields": feedback.changed_fields
        })

        self._learn(pending, original, final, changes, corrected, saved, now)
        return saved

    def reject(self, pending_id: str, reason: Optional[str] = None, user_id: Optional[str] = None) -> PendingTransaction:
        """
        Reject a pending record. Learners are not touched.

        Raises:
            PendingNotFound / AlreadyProcessed
        """
        pending = self.get(pending_id, user_id)
        if pending.status != 'pending':
            raise AlreadyProcessed(pending_id, pending.status)

        feedback = UserFeedback(action='rejected', reason=reason, recorded_at=utcnow())
        rejected = self._transition(pending, {
            'status': 'rejected',
            'user_feedback': to_row(feedback)
        })

        logger.info("Rejected pending transaction", extra={
            "pending_id": pending_id,
            "reason": reason
        })
        return rejected

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """
        Flip every pending record past its expires_at to expired.

        Safe to re-run: records already expired are not matched again.

        Returns:
            Number of records expired by this run
        """
        now = ensure_utc(now)
        expired = self.store.update(PENDING_TRANSACTIONS, {
            'status': 'pending',
            'expires_at__lt': to_iso(now)
        }, {'status': 'expired'})

        if expired:
            logger.info("Expired stale pending transactions", extra={"count": len(expired)})
        return len(expired)

    def bulk_approve(self, pending_ids: List[str], user_id: str) -> Dict[str, List]:
        """Approve several records without corrections; one failure does not stop the rest."""
        results = {'approved': [], 'failed': []}
        for pending_id in pending_ids:
            try:
                transaction = self.approve(pending_id, user_id=user_id)
                results['approved'].append({'pending_id': pending_id, 'transaction_id': transaction.id})
            except AlertLedgerError as e:
                results['failed'].append({'pending_id': pending_id, **e.to_dict()})
        return results

    # Learning

    def _learn(
        self,
        pending: PendingTransaction,
        original: Optional[Candidate],
        final: Candidate,
        changes: FieldChanges,
        corrected: CorrectedData,
        transaction: Transaction,
        now: datetime
    ) -> None:
        sender = source_sender(pending.source)
        is_email = pending.source.kind in EMAIL_KINDS

        steps = [('merchant_patterns', lambda: self.merchant_learner.learn(
            pending.user_id, original, final, changes, now
        ))]

        if changes.has_changes:
            steps.append(('learning_patterns', lambda: self._log_correction(
                pending, original, final, changes, transaction
            )))
            if is_email and sender:
                steps.append(('email_parsing_patterns', lambda: self.email_learner.record_correction(
                    pending.user_id,
                    sender,
                    original,
                    final,
                    subject=getattr(pending.source, 'subject', None),
                    body=pending.raw_content,
                    when=now
                )))

        location = transaction.location
        if location is not None and location.lat is not None and location.source in LEARNABLE_SOURCES:
            steps.append(('merchant_locations', lambda: self.location_learner.learn_merchant_location(
                pending.user_id,
                final.merchant,
                location.lat,
                location.lng,
                pending.transaction_at,
                address=location.address,
                city=location.city,
                place_name=location.place_name
            )))

        if changes.location_changed and location is not None and location.lat is not None and is_email and sender:
            steps.append(('email_location_patterns', lambda: self.location_learner.learn_email_location_pattern(
                pending.user_id,
                sender,
                pending.raw_content,
                final.merchant,
                PatternLocation(
                    lat=location.lat,
                    lng=location.lng,
                    address=location.address,
                    city=location.city,
                    place_name=location.place_name
                ),
                now,
                sender_domain=extract_sender_domain(sender)
            )))

        for name, step in steps:
            try:
                step()
            except LearningStoreWriteFailure as e:
                logger.warning("Learning update failed", extra={
                    "pending_id": pending.id,
                    "store": name,
                    "error": e.message,
                    "reason": e.context.get('reason')
                })
            except Exception as e:
                logger.error("Unexpected error during learning", extra={
                    "pending_id": pending.id,
                    "store": name,
                    "error": str(e)
                }, exc_info=True)

    def _log_correction(
        self,
        pending: PendingTransaction,
        original: Optional[Candidate],
        final: Candidate,
        changes: FieldChanges,
        transaction: Transaction
    ) -> None:
        entry = LearningPattern(
            user_id=pending.user_id,
            pending_id=pending.id,
            transaction_id=transaction.id,
            source_kind=pending.source.kind,
            sender=source_sender(pending.source),
            original=original.model_dump(mode='json') if original else {},
            corrected=final.model_dump(mode='json'),
            **changes.model_dump()
        )
        try:
            self.store.insert(LEARNING_PATTERNS, entry)
        except StoreError as e:
            raise LearningStoreWriteFailure(LEARNING_PATTERNS, str(e)) from e
