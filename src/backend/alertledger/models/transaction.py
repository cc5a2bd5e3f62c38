"""
Pydantic models for parsed candidates and materialized transactions.
"""

from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import datetime
from decimal import Decimal

from alertledger.utils.categories import DEFAULT_CATEGORY

PaymentMethod = Literal['cash', 'card', 'upi', 'wallet', 'netbanking', 'other']
TransactionType = Literal['expense', 'income']
SourceKind = Literal['sms', 'email', 'gmail', 'manual']


class GeoPoint(BaseModel):
    """A latitude/longitude pair."""
    lat: float
    lng: float


class Candidate(BaseModel):
    """
    Transaction guess produced by parsing, before review.

    amount is signed: positive for expenses, negative for income.
    """
    amount: Decimal
    currency: str = "INR"
    merchant: str = "Unknown"
    category: str = DEFAULT_CATEGORY
    sub_category: Optional[str] = None
    payment_method: PaymentMethod = 'other'
    type: TransactionType = 'expense'
    type_defaulted: bool = False  # neither credit nor debit wording was found
    account_number: Optional[str] = None
    balance: Optional[Decimal] = None
    bank_name: Optional[str] = None
    gps: Optional[GeoPoint] = None
    location_hint: Optional[str] = None
    confidence: float = 0.0


class TransactionLocation(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    place_name: Optional[str] = None
    confidence: Optional[float] = None
    source: Optional[str] = None


class Transaction(BaseModel):
    """Materialized transaction. Unique per (user_id, message_hash)."""
    id: Optional[str] = None
    user_id: str
    amount: Decimal
    currency: str = "INR"
    type: TransactionType = 'expense'
    category: str = DEFAULT_CATEGORY
    sub_category: Optional[str] = None
    merchant: str = "Unknown"
    note: Optional[str] = None
    payment_method: PaymentMethod = 'other'
    source: SourceKind = 'manual'
    tags: List[str] = Field(default_factory=list)
    location: Optional[TransactionLocation] = None
    timestamp: datetime
    message_hash: str
    pending_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
