"""
Pydantic models for learned merchant and email-sender patterns.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from collections import Counter

MAX_PREFERENCE_HISTORY = 20


class Variation(BaseModel):
    """One exact as-parsed spelling of a merchant."""
    text: str
    occurrences: int = 1
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None


class PreferenceCorrection(BaseModel):
    from_value: Optional[str] = None
    to_value: str
    sub_category: Optional[str] = None
    corrected_at: datetime


class PreferencePattern(BaseModel):
    """
    Preferred value learned from a bounded correction history.

    History keeps the 20 most recent corrections. The preferred value is the
    most frequent target in the retained history and confidence is its share.
    """
    preferred: Optional[str] = None
    sub_category: Optional[str] = None
    confidence: float = 0.0
    history: List[PreferenceCorrection] = Field(default_factory=list)

    def record(
        self,
        from_value: Optional[str],
        to_value: str,
        when: datetime,
        sub_category: Optional[str] = None
    ) -> None:
        self.history.append(PreferenceCorrection(
            from_value=from_value,
            to_value=to_value,
            sub_category=sub_category,
            corrected_at=when
        ))
        if len(self.history) > MAX_PREFERENCE_HISTORY:
            self.history = self.history[-MAX_PREFERENCE_HISTORY:]

        # Ties go to the value seen first in the retained history
        counts = Counter(entry.to_value for entry in self.history)
        preferred, count = counts.most_common(1)[0]

        self.preferred = preferred
        self.confidence = count / len(self.history)
        self.sub_category = next(
            (e.sub_category for e in reversed(self.history) if e.to_value == preferred),
            None
        )


class MerchantPattern(BaseModel):
    """Per-user learned mapping for one merchant, keyed by normalized name."""
    id: Optional[str] = None
    user_id: str
    merchant_key: str
    canonical_name: str
    variations: List[Variation] = Field(default_factory=list)
    category_pattern: PreferencePattern = Field(default_factory=PreferencePattern)
    payment_method_pattern: PreferencePattern = Field(default_factory=PreferencePattern)
    total_transactions: int = 0
    total_corrections: int = 0
    last_seen: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def add_variation(self, text: str, when: datetime) -> None:
        """Count an exact spelling, adding it on first sight."""
        for variation in self.variations:
            if variation.text == text:
                variation.occurrences += 1
                variation.last_seen = when
                return
        self.variations.append(Variation(text=text, first_seen=when, last_seen=when))

    def has_variation(self, text: str) -> bool:
        return any(v.text == text for v in self.variations)

    def names(self) -> List[str]:
        """Canonical name followed by every recorded variation."""
        return [self.canonical_name] + [v.text for v in self.variations]


class MerchantSuggestion(BaseModel):
    """What a learned merchant pattern suggests for a freshly parsed candidate."""
    merchant: str
    merchant_similarity: float
    category: Optional[str] = None
    sub_category: Optional[str] = None
    category_confidence: Optional[float] = None
    payment_method: Optional[str] = None
    payment_method_confidence: Optional[float] = None
    pattern_id: Optional[str] = None


class CorrectionSignature(BaseModel):
    """The (amount, type, merchant) shape of a correction, used to group users."""
    amount: str
    type: str
    merchant: str

    def key(self) -> str:
        return f"{self.amount}|{self.type}|{self.merchant}"


class EmailParsingPattern(BaseModel):
    """
    A correction learned for one email sender.

    User patterns are scoped by user, sender and correction signature. Global
    patterns have no owner and exist once per sender domain.
    """
    id: Optional[str] = None
    scope_key: str
    user_id: Optional[str] = None
    sender: str
    sender_domain: str
    is_global: bool = False
    original_parsed: Dict[str, Any] = Field(default_factory=dict)
    corrected_data: Dict[str, Any] = Field(default_factory=dict)
    raw_email: Dict[str, Any] = Field(default_factory=dict)
    signature: Optional[CorrectionSignature] = None
    confidence: float = 0.7
    times_confirmed: int = 1
    confirmed_by_users: int = 1
    contributing_users: List[str] = Field(default_factory=list)
    times_applied: int = 0
    last_used: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LearningPattern(BaseModel):
    """Append-only log of one approval's corrections with explicit change flags."""
    id: Optional[str] = None
    user_id: str
    pending_id: str
    transaction_id: Optional[str] = None
    source_kind: str
    sender: Optional[str] = None
    original: Dict[str, Any]
    corrected: Dict[str, Any]
    amount_changed: bool = False
    type_changed: bool = False
    merchant_changed: bool = False
    category_changed: bool = False
    payment_method_changed: bool = False
    location_changed: bool = False
    created_at: Optional[datetime] = None
