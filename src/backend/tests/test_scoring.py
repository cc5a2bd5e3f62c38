"""
Test suite for candidate confidence scoring.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from decimal import Decimal
import pytest

from alertledger.models.transaction import Candidate
from alertledger.utils.scoring import BASE_SCORE, score_candidate


class TestScoreCandidate:

    def test_bare_candidate_scores_base(self):
        assert score_candidate(Candidate(amount=Decimal('10'))) == BASE_SCORE

    def test_every_signal_adds_weight(self):
        candidate = Candidate(
            amount=Decimal('250'),
            merchant='Dominos',
            account_number='XX1234',
            balance=Decimal('1000'),
            payment_method='upi',
            category='Food'
        )
        assert score_candidate(candidate) == 1.0

    def test_keyword_bonus(self):
        candidate = Candidate(amount=Decimal('10'))
        assert score_candidate(candidate, "Rs 10 debited") == 0.6

    def test_outlier_penalty_uses_magnitude(self):
        """Large income (negative amount) is penalized the same as a large expense."""
        expense = Candidate(amount=Decimal('250000'))
        income = Candidate(amount=Decimal('-250000'), type='income')

        assert score_candidate(expense) == pytest.approx(0.3)
        assert score_candidate(income) == pytest.approx(0.3)

    def test_clamped_to_one(self):
        candidate = Candidate(
            amount=Decimal('250'),
            merchant='Dominos',
            account_number='XX1234',
            balance=Decimal('1000'),
            payment_method='upi',
            category='Food'
        )
        assert score_candidate(candidate, "spent") == 1.0

    def test_spend_alert_score(self):
        """Merchant, UPI and category signals plus the keyword bonus."""
        candidate = Candidate(amount=Decimal('250'), merchant='Dominos', payment_method='upi', category='Food')
        assert score_candidate(candidate, "Rs.250 spent at Dominos via UPI") == 0.9


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
