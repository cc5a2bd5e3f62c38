"""
Pydantic models for the review queue: inbound messages, pending transactions,
user corrections and ingestion results.
"""

from pydantic import BaseModel, Field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime
from decimal import Decimal

from alertledger.models.transaction import Candidate, GeoPoint, PaymentMethod, SourceKind, TransactionType
from alertledger.models.location import LocationMatch
from alertledger.models.patterns import MerchantSuggestion
from alertledger.utils.money import apply_sign
from alertledger.utils.similarity import normalize_merchant_name

PendingStatus = Literal['pending', 'approved', 'rejected', 'expired']
ParsingStrategy = Literal['bank-pattern', 'generic-parser', 'learned-pattern', 'failed']

EMAIL_KINDS = ('email', 'gmail')


class SmsSource(BaseModel):
    kind: Literal['sms'] = 'sms'
    sender: str


class EmailSource(BaseModel):
    kind: Literal['email', 'gmail'] = 'email'
    email_id: Optional[str] = None
    subject: Optional[str] = None
    sender: str


class ManualSource(BaseModel):
    kind: Literal['manual'] = 'manual'


Source = Annotated[Union[SmsSource, EmailSource, ManualSource], Field(discriminator='kind')]


def source_sender(source: Union[SmsSource, EmailSource, ManualSource]) -> Optional[str]:
    return getattr(source, 'sender', None)


class InboundMessage(BaseModel):
    """One delivered notification, from the SMS webhook, the Gmail poller or a forward."""
    user_id: str
    sender: str
    subject: Optional[str] = None
    body: str
    timestamp: Optional[datetime] = None
    message_id: Optional[str] = None
    source_kind: SourceKind = 'sms'
    gps_hint: Optional[GeoPoint] = None

    @property
    def text(self) -> str:
        """Subject and body joined, the way parsers see an email."""
        if self.subject:
            return f"{self.subject}\n{self.body}"
        return self.body

    def source(self) -> Union[SmsSource, EmailSource, ManualSource]:
        if self.source_kind in EMAIL_KINDS:
            return EmailSource(
                kind=self.source_kind,
                email_id=self.message_id,
                subject=self.subject,
                sender=self.sender
            )
        if self.source_kind == 'manual':
            return ManualSource()
        return SmsSource(sender=self.sender)


class CorrectedLocation(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    place_name: Optional[str] = None


class FieldChanges(BaseModel):
    """Which fields a review actually changed relative to the original parse."""
    amount_changed: bool = False
    type_changed: bool = False
    merchant_changed: bool = False
    category_changed: bool = False
    payment_method_changed: bool = False
    location_changed: bool = False

    @property
    def has_changes(self) -> bool:
        return any(self.model_dump().values())

    def changed_fields(self) -> List[str]:
        return [name[:-len('_changed')] for name, value in self.model_dump().items() if value]


class CorrectedData(BaseModel):
    """
    Partial update over a Candidate.

    Only fields the client actually sent count as corrections; a field set to
    the value that was already parsed is not a change. A corrected amount is
    a magnitude; the final type decides its sign.
    """
    amount: Optional[Decimal] = Field(default=None, gt=0)
    type: Optional[TransactionType] = None
    merchant: Optional[str] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    location: Optional[CorrectedLocation] = None
    note: Optional[str] = None
    tags: Optional[List[str]] = None

    def _sent(self, name: str) -> bool:
        return name in self.model_fields_set and getattr(self, name) is not None

    def resolve(self, original: Optional[Candidate]) -> Candidate:
        """Apply the corrections to the original parse and return the final candidate."""
        if original is None:
            original = Candidate(amount=self.amount or Decimal('0'))

        updates: Dict[str, Any] = {}
        for name in ('type', 'merchant', 'category', 'sub_category', 'payment_method'):
            if self._sent(name):
                updates[name] = getattr(self, name)

        final_type = updates.get('type', original.type)
        amount = self.amount if self._sent('amount') else original.amount
        updates['amount'] = apply_sign(amount, final_type)
        if 'type' in updates:
            updates['type_defaulted'] = False

        return original.model_copy(update=updates)

    def diff(self, original: Optional[Candidate]) -> FieldChanges:
        final = self.resolve(original)
        if original is None:
            return FieldChanges(
                amount_changed=True,
                type_changed=self._sent('type'),
                merchant_changed=self._sent('merchant'),
                category_changed=self._sent('category'),
                payment_method_changed=self._sent('payment_method'),
                location_changed=self._sent('location')
            )

        return FieldChanges(
            amount_changed=final.amount != original.amount,
            type_changed=final.type != original.type,
            merchant_changed=(
                normalize_merchant_name(final.merchant) != normalize_merchant_name(original.merchant)
            ),
            category_changed=(
                final.category != original.category or final.sub_category != original.sub_category
            ),
            payment_method_changed=final.payment_method != original.payment_method,
            location_changed=self._sent('location')
        )


class UserFeedback(BaseModel):
    action: Literal['approved', 'rejected']
    reason: Optional[str] = None
    changed_fields: List[str] = Field(default_factory=list)
    recorded_at: datetime


class PendingTransaction(BaseModel):
    """A parsed (or failed) candidate waiting for the user's decision."""
    id: Optional[str] = None
    user_id: str
    parsed_data: Optional[Candidate] = None
    source: Source
    raw_content: str
    parsing_strategy: ParsingStrategy
    status: PendingStatus = 'pending'
    confidence_score: float = 0.0
    message_hash: str
    location: Optional[LocationMatch] = None
    suggestions: Optional[MerchantSuggestion] = None
    needs_manual_review: bool = False
    parsing_error: Optional[str] = None
    notification_sent: bool = False
    notification_sent_at: Optional[datetime] = None
    approved_transaction_id: Optional[str] = None
    user_feedback: Optional[UserFeedback] = None
    transaction_at: datetime
    created_at: Optional[datetime] = None
    expires_at: datetime

    class Config:
        from_attributes = True


class IngestResult(BaseModel):
    """Outcome of ingesting one message: duplicate, pending, or error."""
    status: Literal['duplicate', 'pending', 'error']
    duplicate: bool = False
    existing: Optional[Dict[str, Any]] = None
    pending: Optional[PendingTransaction] = None
    error: Optional[str] = None
