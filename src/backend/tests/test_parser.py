"""
Test suite for the generic transaction parser.

Tests cover:
- Amount extraction (prefixed, suffixed, keyword-anchored, Indian grouping)
- Merchant extraction and self-reference skipping
- Income vs expense detection and the expense default
- Payment method, account, balance, GPS and location hints
- Category classification
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from decimal import Decimal
import pytest

from alertledger.services.errors import AmountNotFound, InvalidAmount
from alertledger.services.parser import TransactionParser, has_transaction_keyword
from alertledger.utils.categories import DEFAULT_CATEGORY, classify_category


@pytest.fixture
def parser():
    return TransactionParser()


class TestParseScenarios:
    """End-to-end parses of typical alerts."""

    def test_upi_spend(self, parser):
        """Rs.250 spent at Dominos via UPI → 250 expense at Dominos over UPI."""
        candidate = parser.parse("Rs.250 spent at Dominos via UPI on 2024-01-05")

        assert candidate.amount == Decimal('250')
        assert candidate.type == 'expense'
        assert candidate.type_defaulted is False
        assert candidate.merchant == 'Dominos'
        assert candidate.payment_method == 'upi'
        assert candidate.category == 'Food'
        assert candidate.currency == 'INR'

    def test_refund_credit_is_negative_income(self, parser):
        """A credited refund is income, so the amount is negative."""
        candidate = parser.parse("INR 5,000 credited to your account, refund from Amazon")

        assert candidate.amount == Decimal('-5000')
        assert candidate.type == 'income'
        assert candidate.merchant == 'Amazon'

    def test_card_alert_with_account_and_balance(self, parser):
        text = "Your A/c XX1234 debited for Rs 1,499.00 at Flipkart on 12-02-24 using card. Avl Bal: Rs 20,000.50"
        candidate = parser.parse(text)

        assert candidate.amount == Decimal('1499.00')
        assert candidate.type == 'expense'
        assert candidate.merchant == 'Flipkart'
        assert candidate.payment_method == 'card'
        assert candidate.account_number == 'XX1234'
        assert candidate.balance == Decimal('20000.50')
        assert candidate.category == 'Shopping'

    def test_no_type_keyword_defaults_to_expense(self, parser):
        candidate = parser.parse("Rs.120 at Chai Point on 05-01")

        assert candidate.type == 'expense'
        assert candidate.type_defaulted is True
        assert candidate.amount > 0

    def test_empty_text_raises(self, parser):
        with pytest.raises(AmountNotFound):
            parser.parse("   ")

    def test_no_amount_raises(self, parser):
        with pytest.raises(AmountNotFound):
            parser.parse("Your OTP for login is 482913. Do not share it.")


class TestAmountExtraction:

    def test_prefix_forms(self, parser):
        assert parser.extract_amount("Rs. 1,250.00 debited") == Decimal('1250.00')
        assert parser.extract_amount("INR 75 spent") == Decimal('75')
        assert parser.extract_amount("₹ 99.5 paid") == Decimal('99.5')

    def test_suffix_form(self, parser):
        assert parser.extract_amount("100.00 INR debited from card") == Decimal('100.00')

    def test_keyword_anchored_form(self, parser):
        assert parser.extract_amount("510 deduction from wallet") == Decimal('510')

    def test_indian_grouping(self, parser):
        assert parser.extract_amount("Rs 1,23,456.78 credited") == Decimal('123456.78')

    def test_first_amount_wins(self, parser):
        """The transaction amount comes before the balance in alerts."""
        assert parser.extract_amount("Rs 500 debited. Avl bal Rs 9,000") == Decimal('500')

    def test_zero_amount_is_invalid(self, parser):
        with pytest.raises(InvalidAmount):
            parser.extract_amount("Rs 0 debited")


class TestMerchantExtraction:

    def test_to_before_channel(self, parser):
        assert parser.extract_merchant("Paid Rs 90 to Swiggy using UPI") == 'Swiggy'

    def test_skips_own_account(self, parser):
        """'to your account' names the user, the real counterparty comes later."""
        text = "Rs 300 credited to your account, from Rahul Sharma"
        assert parser.extract_merchant(text) == 'Rahul Sharma'

    def test_unknown_when_absent(self, parser):
        assert parser.extract_merchant("Rs 300 debited") == 'Unknown'


class TestTypeDetection:

    def test_credit_words(self, parser):
        assert parser.detect_type("cashback received") == ('income', False)

    def test_debit_words(self, parser):
        assert parser.detect_type("amount withdrawn") == ('expense', False)

    def test_neither(self, parser):
        assert parser.detect_type("transaction alert") == ('expense', True)

    def test_word_start_only(self, parser):
        """'prepaid' must not read as 'paid'."""
        assert parser.detect_type("prepaid plan") == ('expense', True)

    @pytest.mark.parametrize("text", ["amount refunded", "cashbacks added", "Refunded by merchant"])
    def test_inflected_credit_words(self, parser, text):
        assert parser.detect_type(text) == ('income', False)

    def test_refunded_alert_is_income(self, parser):
        candidate = parser.parse("Rs.500 refunded to your card by Amazon")

        assert candidate.type == 'income'
        assert candidate.amount == Decimal('-500')
        assert candidate.type_defaulted is False


class TestPaymentMethod:

    @pytest.mark.parametrize("text,expected", [
        ("via UPI ref 1234", 'upi'),
        ("using your Visa card", 'card'),
        ("NEFT transfer", 'netbanking'),
        ("Paytm wallet", 'wallet'),
        ("ATM withdrawal", 'cash'),
        ("payment done", 'other'),
    ])
    def test_detection(self, parser, text, expected):
        assert parser.detect_payment_method(text) == expected


class TestLocationSignals:

    def test_gps_coordinates(self, parser):
        point = parser.extract_gps("Txn at lat: 12.9716, lng: 77.5946")
        assert point.lat == pytest.approx(12.9716)
        assert point.lng == pytest.approx(77.5946)

    def test_out_of_range_gps_ignored(self, parser):
        assert parser.extract_gps("lat: 120.5, lng: 77.5") is None

    def test_location_hint(self, parser):
        assert parser.extract_location_hint("Store: MG Road, Bengaluru.") == 'MG Road, Bengaluru'


class TestCategories:

    def test_first_rule_wins(self):
        """Amazon is shopping even when the alert also says credited."""
        assert classify_category("refund credited from amazon") == ('Shopping', 'E-commerce')

    def test_whole_words(self):
        """'rent' must not fire on 'current'."""
        assert classify_category("current account charges") == (DEFAULT_CATEGORY, None)

    def test_default(self):
        assert classify_category("") == (DEFAULT_CATEGORY, None)


def test_transaction_keywords():
    assert has_transaction_keyword("Amount debited")
    assert not has_transaction_keyword("Your OTP is 1234")


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
