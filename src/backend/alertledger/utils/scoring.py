"""
Confidence scoring for parsed candidates.

The score decides how much review a candidate needs. Each present signal
adds a fixed weight to a neutral base; very large amounts are penalized as
likely misparses.
"""

from decimal import Decimal
from typing import Optional

from alertledger.models.transaction import Candidate
from alertledger.services.parser import has_transaction_keyword
from alertledger.utils.categories import DEFAULT_CATEGORY

BASE_SCORE = 0.5
SIGNAL_WEIGHT = 0.1
OUTLIER_PENALTY = 0.2
OUTLIER_AMOUNT = Decimal('100000')

# Score given to messages whose amount could not be parsed at all
FAILED_PARSE_SCORE = 0.1


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def score_candidate(candidate: Candidate, raw_text: Optional[str] = None) -> float:
    """
    Score a parsed candidate from 0.0 to 1.0.

    Scoring factors:
    - Base: 0.5
    - +0.1 each: merchant found, account number, balance, payment method
      detected, category other than the default
    - -0.2 when the absolute amount exceeds 100000
    - +0.1 when the raw text carries a transaction keyword
    """
    score = BASE_SCORE

    signals = (
        candidate.merchant and candidate.merchant != 'Unknown',
        candidate.account_number,
        candidate.balance is not None,
        candidate.payment_method != 'other',
        candidate.category and candidate.category != DEFAULT_CATEGORY,
    )
    score += SIGNAL_WEIGHT * sum(1 for signal in signals if signal)

    if abs(candidate.amount) > OUTLIER_AMOUNT:
        score -= OUTLIER_PENALTY

    if raw_text and has_transaction_keyword(raw_text):
        score += SIGNAL_WEIGHT

    # Float accumulation (0.5 + 0.1 * n) is rounded so equal inputs compare equal
    return round(clamp(score), 4)
