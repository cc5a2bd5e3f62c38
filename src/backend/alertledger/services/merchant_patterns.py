"""
Per-user merchant, category and payment method learning.

Every approval upserts the merchant's pattern, records how the merchant was
spelled in the alert, and appends any category or payment method correction
to that pattern's bounded history. Lookups fall back to fuzzy matching so an
unseen spelling ("SBUX") still finds the learned merchant ("Starbucks").
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from alertledger.models.patterns import MerchantPattern, MerchantSuggestion
from alertledger.models.pending import FieldChanges
from alertledger.models.transaction import Candidate
from alertledger.services.errors import LearningStoreWriteFailure, StoreError
from alertledger.services.store import MERCHANT_PATTERNS, SupabaseStore
from alertledger.utils.dates import ensure_utc
from alertledger.utils.similarity import DEFAULT_THRESHOLD, fuzzy_match, normalize_merchant_name

logger = logging.getLogger(__name__)

SUGGESTION_CONFIDENCE = 0.6


class MerchantPatternLearner:
    """Learns and looks up MerchantPatterns."""

    def __init__(self, store: SupabaseStore):
        self.store = store

    def list_patterns(self, user_id: str) -> List[MerchantPattern]:
        rows = self.store.find(MERCHANT_PATTERNS, {'user_id': user_id}, order_by='total_transactions', desc=True)
        return [MerchantPattern(**row) for row in rows]

    def get_pattern(self, user_id: str, merchant_key: str) -> Optional[MerchantPattern]:
        row = self.store.find_one(MERCHANT_PATTERNS, {'user_id': user_id, 'merchant_key': merchant_key})
        return MerchantPattern(**row) if row else None

    def delete_pattern(self, user_id: str, pattern_id: str) -> bool:
        deleted = self.store.delete(MERCHANT_PATTERNS, {'id': pattern_id, 'user_id': user_id})
        return bool(deleted)

    def learn(
        self,
        user_id: str,
        original: Optional[Candidate],
        final: Candidate,
        changes: FieldChanges,
        when: Optional[datetime] = None
    ) -> Optional[MerchantPattern]:
        """
        Update the merchant's pattern after an approval.

        Args:
            original: Candidate as parsed (None for a failed parse)
            final: Candidate as approved
            changes: Which fields the user corrected

        Raises:
            LearningStoreWriteFailure: the pattern could not be saved
        """
        key = normalize_merchant_name(final.merchant)
        if not key or final.merchant == 'Unknown':
            return None

        when = ensure_utc(when)

        try:
            pattern = self.get_pattern(user_id, key)
            if pattern is None:
                pattern = MerchantPattern(
                    user_id=user_id,
                    merchant_key=key,
                    canonical_name=final.merchant
                )
            elif changes.merchant_changed:
                pattern.canonical_name = final.merchant

            if original is not None and original.merchant and original.merchant != 'Unknown':
                pattern.add_variation(original.merchant, when)

            if changes.category_changed:
                pattern.category_pattern.record(
                    original.category if original else None,
                    final.category,
                    when,
                    sub_category=final.sub_category
                )

            if changes.payment_method_changed:
                pattern.payment_method_pattern.record(
                    original.payment_method if original else None,
                    final.payment_method,
                    when
                )

            pattern.total_transactions += 1
            if changes.has_changes:
                pattern.total_corrections += 1
            pattern.last_seen = when

            saved = self.store.upsert(MERCHANT_PATTERNS, pattern, on_conflict='user_id,merchant_key')
        except StoreError as e:
            raise LearningStoreWriteFailure(MERCHANT_PATTERNS, str(e)) from e

        logger.info("Learned merchant pattern", extra={
            "user_id": user_id,
            "merchant_key": key,
            "variations": len(pattern.variations),
            "corrections": pattern.total_corrections
        })
        return MerchantPattern(**saved)

    def find_pattern(
        self,
        user_id: str,
        merchant: str,
        threshold: float = DEFAULT_THRESHOLD
    ) -> Optional[Tuple[MerchantPattern, float]]:
        """
        Find the user's pattern for a merchant string.

        Exact variation (or key) matches win outright; otherwise the best fuzzy
        match against canonical names and variations at or above threshold.

        Returns:
            (pattern, similarity) or None
        """
        if not merchant or merchant == 'Unknown':
            return None

        patterns = self.list_patterns(user_id)
        key = normalize_merchant_name(merchant)

        for pattern in patterns:
            if pattern.has_variation(merchant) or pattern.merchant_key == key:
                return pattern, 1.0

        best: Optional[Tuple[MerchantPattern, float]] = None
        for pattern in patterns:
            for name in pattern.names():
                result = fuzzy_match(merchant, name, threshold)
                if result.match and (best is None or result.similarity > best[1]):
                    best = (pattern, result.similarity)

        if best:
            logger.debug("Fuzzy matched merchant pattern", extra={
                "merchant": merchant,
                "canonical": best[0].canonical_name,
                "similarity": best[1]
            })
        return best

    def suggest(self, user_id: str, candidate: Candidate) -> Optional[MerchantSuggestion]:
        """
        Suggest corrections for a freshly parsed candidate.

        The canonical merchant is always offered; category and payment method
        only when their learned confidence is at least 0.6.
        """
        found = self.find_pattern(user_id, candidate.merchant)
        if not found:
            return None

        pattern, similarity = found
        suggestion = MerchantSuggestion(
            merchant=pattern.canonical_name,
            merchant_similarity=similarity,
            pattern_id=pattern.id
        )

        category = pattern.category_pattern
        if category.preferred and category.confidence >= SUGGESTION_CONFIDENCE:
            suggestion.category = category.preferred
            suggestion.sub_category = category.sub_category
            suggestion.category_confidence = category.confidence

        payment = pattern.payment_method_pattern
        if payment.preferred and payment.confidence >= SUGGESTION_CONFIDENCE:
            suggestion.payment_method = payment.preferred
            suggestion.payment_method_confidence = payment.confidence

        return suggestion
