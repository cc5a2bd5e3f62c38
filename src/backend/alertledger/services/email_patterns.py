"""
Email-sender pattern learning and promotion to global patterns.

A user's correction to an email-sourced transaction is remembered per
(user, sender, correction signature). When three or more distinct users have
made the same correction for the same sender domain, a single global pattern
for that domain is created or refreshed through an atomic upsert on its
scope key, so concurrent promotions converge on one row.
"""

import hashlib
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from alertledger.models.patterns import CorrectionSignature, EmailParsingPattern
from alertledger.models.transaction import Candidate
from alertledger.services.bank_patterns import extract_sender_domain
from alertledger.services.errors import LearningStoreWriteFailure, StoreError
from alertledger.services.store import EMAIL_PARSING_PATTERNS, SupabaseStore
from alertledger.utils.dates import ensure_utc, to_iso, utcnow
from alertledger.utils.money import amount_key, apply_sign
from alertledger.utils.similarity import normalize_merchant_name

logger = logging.getLogger(__name__)

USER_PATTERN_CONFIDENCE = 0.7
PROMOTION_MIN_CONFIDENCE = 0.7
PROMOTION_MIN_USERS = 3
GLOBAL_BASE_CONFIDENCE = 0.7
GLOBAL_PER_USER_BONUS = 0.05
GLOBAL_MAX_CONFIDENCE = 0.95

USER_LOOKUP_THRESHOLD = 0.6
USER_LOOKUP_LIMIT = 3
GLOBAL_LOOKUP_THRESHOLD = 0.7
GLOBAL_LOOKUP_LIMIT = 2

RAW_BODY_LIMIT = 500

# Fields a learned pattern may rewrite on a new parse
APPLIED_FIELDS = ('merchant', 'category', 'sub_category', 'payment_method', 'type')


def global_confidence(user_count: int) -> float:
    """min(0.95, 0.7 + 0.05 × users), rounded to hide float drift."""
    return round(min(GLOBAL_MAX_CONFIDENCE, GLOBAL_BASE_CONFIDENCE + GLOBAL_PER_USER_BONUS * user_count), 4)


def correction_signature(candidate: Candidate) -> CorrectionSignature:
    return CorrectionSignature(
        amount=amount_key(candidate.amount),
        type=candidate.type,
        merchant=normalize_merchant_name(candidate.merchant)
    )


def candidate_fields(candidate: Optional[Candidate]) -> Dict:
    if candidate is None:
        return {}
    return candidate.model_dump(
        mode='json',
        include={'amount', 'currency', 'merchant', 'category', 'sub_category', 'payment_method', 'type'}
    )


def user_scope_key(user_id: str, sender: str, signature: CorrectionSignature) -> str:
    digest = hashlib.sha256(signature.key().encode('utf-8')).hexdigest()[:16]
    return f"user:{user_id}:{sender.lower()}:{digest}"


def global_scope_key(sender_domain: str) -> str:
    return f"global:{sender_domain}"


class EmailPatternLearner:
    """Learns per-sender corrections and promotes agreed ones to global patterns."""

    def __init__(self, store: SupabaseStore):
        self.store = store

    def record_correction(
        self,
        user_id: str,
        sender: str,
        original: Optional[Candidate],
        final: Candidate,
        subject: Optional[str] = None,
        body: Optional[str] = None,
        when: Optional[datetime] = None
    ) -> EmailParsingPattern:
        """
        Remember a user's correction for this sender, then try promotion.

        Raises:
            LearningStoreWriteFailure: the pattern could not be saved
        """
        when = ensure_utc(when)
        sender = sender.lower()
        domain = extract_sender_domain(sender) or sender
        signature = correction_signature(final)
        scope_key = user_scope_key(user_id, sender, signature)

        try:
            row = self.store.find_one(EMAIL_PARSING_PATTERNS, {'scope_key': scope_key})
            if row:
                pattern = EmailParsingPattern(**row)
                pattern.times_confirmed += 1
                pattern.original_parsed = candidate_fields(original)
            else:
                pattern = EmailParsingPattern(
                    scope_key=scope_key,
                    user_id=user_id,
                    sender=sender,
                    sender_domain=domain,
                    original_parsed=candidate_fields(original),
                    corrected_data=candidate_fields(final),
                    raw_email={'subject': subject, 'body': (body or '')[:RAW_BODY_LIMIT]},
                    signature=signature,
                    confidence=USER_PATTERN_CONFIDENCE,
                    contributing_users=[user_id]
                )
            pattern.updated_at = when

            saved = EmailParsingPattern(**self.store.upsert(
                EMAIL_PARSING_PATTERNS, pattern, on_conflict='scope_key'
            ))
        except StoreError as e:
            raise LearningStoreWriteFailure(EMAIL_PARSING_PATTERNS, str(e)) from e

        logger.info("Recorded email parsing pattern", extra={
            "user_id": user_id,
            "sender": sender,
            "times_confirmed": saved.times_confirmed
        })

        self.promote(domain, when)
        return saved

    def promote(self, sender_domain: str, when: Optional[datetime] = None) -> Optional[EmailParsingPattern]:
        """
        Create or refresh the domain's global pattern when enough users agree.

        User patterns of the domain in the 0.7+ confidence band are grouped by
        correction signature. The group with the most distinct users (first
        seen wins ties) is promoted once it spans at least three users.

        Raises:
            LearningStoreWriteFailure: the global pattern could not be saved
        """
        try:
            rows = self.store.find(EMAIL_PARSING_PATTERNS, {
                'sender_domain': sender_domain,
                'is_global': False,
                'confidence__gte': PROMOTION_MIN_CONFIDENCE
            }, order_by='updated_at')
        except StoreError as e:
            raise LearningStoreWriteFailure(EMAIL_PARSING_PATTERNS, str(e)) from e

        groups: Dict[str, List[EmailParsingPattern]] = OrderedDict()
        for row in rows:
            pattern = EmailParsingPattern(**row)
            if pattern.signature is None or not pattern.user_id:
                continue
            groups.setdefault(pattern.signature.key(), []).append(pattern)

        best: Optional[Tuple[List[EmailParsingPattern], List[str]]] = None
        for members in groups.values():
            users = sorted({p.user_id for p in members})
            if len(users) >= PROMOTION_MIN_USERS and (best is None or len(users) > len(best[1])):
                best = (members, users)

        if best is None:
            return None

        members, users = best
        representative = members[-1]
        promoted = EmailParsingPattern(
            scope_key=global_scope_key(sender_domain),
            user_id=None,
            sender=representative.sender,
            sender_domain=sender_domain,
            is_global=True,
            original_parsed=representative.original_parsed,
            corrected_data=representative.corrected_data,
            raw_email=representative.raw_email,
            signature=representative.signature,
            confidence=global_confidence(len(users)),
            times_confirmed=sum(p.times_confirmed for p in members),
            confirmed_by_users=len(users),
            contributing_users=users,
            updated_at=ensure_utc(when)
        )

        try:
            saved = EmailParsingPattern(**self.store.upsert(
                EMAIL_PARSING_PATTERNS, promoted, on_conflict='scope_key'
            ))
        except StoreError as e:
            raise LearningStoreWriteFailure(EMAIL_PARSING_PATTERNS, str(e)) from e

        logger.info("Promoted email parsing pattern to global", extra={
            "sender_domain": sender_domain,
            "confirmed_by_users": saved.confirmed_by_users,
            "confidence": saved.confidence
        })
        return saved

    def lookup(self, user_id: str, sender: str) -> List[EmailParsingPattern]:
        """
        Patterns for a sender: the user's own (confidence >= 0.6, best 3)
        ranked before global ones (confidence >= 0.7, best 2).
        """
        sender = sender.lower()
        domain = extract_sender_domain(sender) or sender

        user_rows = self.store.find(EMAIL_PARSING_PATTERNS, {
            'user_id': user_id,
            'sender_domain': domain,
            'is_global': False,
            'confidence__gte': USER_LOOKUP_THRESHOLD
        }, order_by='confidence', desc=True)
        user_patterns = [EmailParsingPattern(**row) for row in user_rows]
        # Exact sender before same-domain siblings, stable within confidence order
        user_patterns.sort(key=lambda p: p.sender != sender)

        global_rows = self.store.find(EMAIL_PARSING_PATTERNS, {
            'sender_domain': domain,
            'is_global': True,
            'confidence__gte': GLOBAL_LOOKUP_THRESHOLD
        }, order_by='confirmed_by_users', desc=True, limit=GLOBAL_LOOKUP_LIMIT)
        global_patterns = [EmailParsingPattern(**row) for row in global_rows]

        return user_patterns[:USER_LOOKUP_LIMIT] + global_patterns

    def apply_learned(
        self,
        user_id: str,
        sender: str,
        candidate: Candidate
    ) -> Optional[Tuple[Candidate, EmailParsingPattern]]:
        """
        Rewrite a fresh parse with the first learned pattern whose original
        parse had the same merchant. The amount is kept; its sign follows the
        learned type.

        Returns:
            (corrected candidate, pattern used) or None
        """
        merchant = normalize_merchant_name(candidate.merchant)

        for pattern in self.lookup(user_id, sender):
            parsed_merchant = normalize_merchant_name(pattern.original_parsed.get('merchant'))
            if not pattern.corrected_data or parsed_merchant != merchant:
                continue

            updates = {
                field: pattern.corrected_data[field]
                for field in APPLIED_FIELDS
                if pattern.corrected_data.get(field) is not None
            }
            txn_type = updates.get('type', candidate.type)
            updates['amount'] = apply_sign(candidate.amount, txn_type)
            if 'type' in updates:
                updates['type_defaulted'] = False

            self._touch(pattern)
            logger.info("Applied learned email pattern", extra={
                "user_id": user_id,
                "sender": sender,
                "pattern_id": pattern.id,
                "is_global": pattern.is_global
            })
            return candidate.model_copy(update=updates), pattern

        return None

    def _touch(self, pattern: EmailParsingPattern) -> None:
        try:
            self.store.update(EMAIL_PARSING_PATTERNS, {'id': pattern.id}, {
                'times_applied': pattern.times_applied + 1,
                'last_used': to_iso(utcnow())
            })
        except StoreError as e:
            logger.warning("Failed to update email pattern usage", extra={
                "pattern_id": pattern.id,
                "error": str(e)
            })
