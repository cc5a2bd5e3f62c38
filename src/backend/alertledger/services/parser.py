"""
Transaction parser for bank SMS and email alerts.

Turns raw notification text into a Candidate: amount, merchant, type,
payment method and category, plus account number, balance and any location
the message carries.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from decimal import Decimal

from alertledger.config import settings
from alertledger.models.transaction import Candidate, GeoPoint
from alertledger.services.errors import AmountNotFound, InvalidAmount
from alertledger.utils.categories import classify_category
from alertledger.utils.money import apply_sign, parse_money

logger = logging.getLogger(__name__)

AMOUNT_NUMBER = r'([0-9][0-9,]*(?:\.[0-9]{1,2})?)'
MERCHANT_CHARS = r'[A-Za-z0-9\s\-_.&]'

CREDIT_WORDS = ('credited', 'received', 'refund', 'cashback')
DEBIT_WORDS = ('debited', 'spent', 'purchased', 'paid', 'withdrawn', 'deducted', 'deduction')
TRANSACTION_KEYWORDS = ('debited', 'credited', 'spent', 'paid', 'received', 'transaction', 'purchase')


@dataclass(frozen=True)
class PatternSpec:
    """A named regex pattern with an example, compiled once."""
    name: str
    pattern: str
    example: str
    flags: int = re.IGNORECASE
    compiled: re.Pattern = field(default=None, init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'compiled', re.compile(self.pattern, self.flags))


AMOUNT_PATTERN = PatternSpec(
    name='amount',
    pattern=(
        r'(?:\bRs\.?|\bINR\.?|₹)\s*' + AMOUNT_NUMBER
        + r'|' + AMOUNT_NUMBER + r'\s*(?:Rs\b|INR\b|₹)'
        + r'|\b' + AMOUNT_NUMBER + r'\s+(?:deduction|debited|credited|spent|paid|withdrawn)\b'
    ),
    example='Rs.250 / 100.00 INR / 510 deduction',
    flags=re.IGNORECASE | re.MULTILINE,
)

MERCHANT_PATTERNS = [
    PatternSpec(
        name='to_at_before_channel',
        pattern=r'\b(?:to|at)\s+(' + MERCHANT_CHARS + r'+?)\s+(?:via|using|through|on|by|with|for)\b',
        example='spent at Dominos via UPI',
    ),
    PatternSpec(
        name='spent_at',
        pattern=r'\bspent\s+at\s+(' + MERCHANT_CHARS + r'+?)\s+(?:via|using|through|on)\b',
        example='spent at Cafe Coffee Day on 05-01',
    ),
    PatternSpec(
        name='upi_handle',
        pattern=r'\bUPI[:\-\s]+(' + MERCHANT_CHARS + r'+?)\s+(?:on|via|ref)\b',
        example='UPI: SWIGGY ref 4021',
    ),
    PatternSpec(
        name='generic_counterparty',
        pattern=r'\b(?:to|at|from|merchant)\s+(' + MERCHANT_CHARS + r'{3,30})',
        example='refund from Amazon',
    ),
]

# Captures that name the user's own account rather than a counterparty
SELF_REFERENCE = re.compile(r'^(?:your|my|ur)\b|^(?:a/?c|acct|account)\b', re.IGNORECASE)

PAYMENT_METHOD_RULES: List[Tuple[str, re.Pattern]] = [
    ('upi', re.compile(r'\bUPI\b', re.IGNORECASE)),
    ('card', re.compile(r'\b(?:card|visa|master(?:card)?|maestro|rupay|amex)\b', re.IGNORECASE)),
    ('netbanking', re.compile(r'\b(?:net\s*banking|NEFT|RTGS|IMPS)\b', re.IGNORECASE)),
    ('wallet', re.compile(r'\b(?:wallet|paytm|phonepe|gpay|googlepay|google\s+pay|amazon\s+pay)\b', re.IGNORECASE)),
    ('cash', re.compile(r'\b(?:cash|ATM|withdrawal)\b', re.IGNORECASE)),
]

ACCOUNT_PATTERN = re.compile(
    r'\b(?:a/c|acct|account)\s*(?:no\.?\s*)?(?:ending\s*(?:with\s*)?)?[:\-]?\s*([xX*]*\d{3,6})\b',
    re.IGNORECASE
)
BALANCE_PATTERN = re.compile(
    r'\b(?:avl\.?\s*bal(?:ance)?|avail(?:able)?\.?\s*bal(?:ance)?|bal(?:ance)?)\s*(?:is\s*)?[:\-]?\s*'
    r'(?:Rs\.?|INR\.?|₹)\s*' + AMOUNT_NUMBER,
    re.IGNORECASE
)
GPS_PATTERN = re.compile(
    r'(?:lat|latitude)[:\s]+(-?\d+\.\d+)[,\s]+(?:lon|lng|longitude)[:\s]+(-?\d+\.\d+)',
    re.IGNORECASE
)
LOCATION_HINT_PATTERN = re.compile(
    r'\b(?:location|address|branch|store)\s*[:\-]\s*([^\n]{3,80})',
    re.IGNORECASE
)


def _contains_word(text: str, words) -> bool:
    return any(re.search(r'\b' + re.escape(word), text, re.IGNORECASE) for word in words)


def has_transaction_keyword(text: str) -> bool:
    return _contains_word(text or '', TRANSACTION_KEYWORDS)


def clean_merchant(raw: str) -> str:
    merchant = re.sub(r'\s+', ' ', raw).strip()
    return re.sub(r'[.,;:]+$', '', merchant).strip()


class TransactionParser:
    """Generic parser for bank and wallet alerts from any sender."""

    def extract_amount(self, text: str) -> Decimal:
        """
        Find the transaction amount.

        The first currency-marked number wins, either prefixed or suffixed
        with Rs/INR/₹, or a bare number directly followed by a debit/credit
        keyword.

        Raises:
            AmountNotFound: no amount-like text in the message
            InvalidAmount: the amount does not parse or is not positive
        """
        match = AMOUNT_PATTERN.compiled.search(text)
        if not match:
            raise AmountNotFound()

        raw = next(group for group in match.groups() if group)
        amount = parse_money(raw)
        if amount is None or amount <= 0:
            raise InvalidAmount(raw)
        return amount

    def extract_merchant(self, text: str, patterns: Optional[List[PatternSpec]] = None) -> str:
        """
        Find the counterparty using ordered positional patterns.

        The first pattern producing a usable name wins; captures that refer to
        the user's own account are skipped. Returns "Unknown" if none match.
        """
        for spec in patterns or MERCHANT_PATTERNS:
            for match in spec.compiled.finditer(text):
                merchant = clean_merchant(match.group(1))
                if not merchant or SELF_REFERENCE.match(merchant):
                    continue
                logger.debug("Merchant matched", extra={
                    "pattern": spec.name,
                    "merchant": merchant
                })
                return merchant
        return 'Unknown'

    def detect_payment_method(self, text: str) -> str:
        for method, pattern in PAYMENT_METHOD_RULES:
            if pattern.search(text):
                return method
        return 'other'

    def detect_type(
        self,
        text: str,
        credit_words=CREDIT_WORDS,
        debit_words=DEBIT_WORDS
    ) -> Tuple[str, bool]:
        """
        Decide income vs expense from keywords.

        Returns:
            (type, defaulted) where defaulted is True when neither keyword set
            matched and the type fell back to expense
        """
        if _contains_word(text, credit_words):
            return 'income', False
        if _contains_word(text, debit_words):
            return 'expense', False
        return 'expense', True

    def extract_account_number(self, text: str) -> Optional[str]:
        match = ACCOUNT_PATTERN.search(text)
        return match.group(1) if match else None

    def extract_balance(self, text: str) -> Optional[Decimal]:
        match = BALANCE_PATTERN.search(text)
        return parse_money(match.group(1)) if match else None

    def extract_gps(self, text: str) -> Optional[GeoPoint]:
        match = GPS_PATTERN.search(text)
        if not match:
            return None
        lat, lng = float(match.group(1)), float(match.group(2))
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            return None
        return GeoPoint(lat=lat, lng=lng)

    def extract_location_hint(self, text: str) -> Optional[str]:
        match = LOCATION_HINT_PATTERN.search(text)
        if not match:
            return None
        return match.group(1).strip().rstrip('.,;') or None

    def build_candidate(
        self,
        text: str,
        amount: Decimal,
        merchant: str,
        txn_type: str,
        type_defaulted: bool,
        bank_name: Optional[str] = None
    ) -> Candidate:
        """Assemble a Candidate from already extracted amount, merchant and type."""
        category, sub_category = classify_category(f"{text} {merchant}")

        return Candidate(
            amount=apply_sign(amount, txn_type),
            currency=settings.DEFAULT_CURRENCY,
            merchant=merchant,
            category=category,
            sub_category=sub_category,
            payment_method=self.detect_payment_method(text),
            type=txn_type,
            type_defaulted=type_defaulted,
            account_number=self.extract_account_number(text),
            balance=self.extract_balance(text),
            bank_name=bank_name,
            gps=self.extract_gps(text),
            location_hint=self.extract_location_hint(text),
        )

    def parse(self, text: str) -> Candidate:
        """
        Parse alert text into a Candidate.

        Raises:
            AmountNotFound / InvalidAmount when no usable amount exists
        """
        if not text or not text.strip():
            raise AmountNotFound()

        amount = self.extract_amount(text)
        merchant = self.extract_merchant(text)
        txn_type, type_defaulted = self.detect_type(text)

        candidate = self.build_candidate(text, amount, merchant, txn_type, type_defaulted)

        logger.debug("Parsed transaction", extra={
            "amount": str(candidate.amount),
            "merchant": candidate.merchant,
            "type": candidate.type,
            "payment_method": candidate.payment_method
        })
        return candidate
