"""
Sender-specific parsing rules for known banks and wallets.

Each rule set is keyed by sender email domain and is tried before the generic
TransactionParser. Unknown senders, and known senders whose amount patterns
find nothing, fall back to the generic parser.
"""

import re
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from alertledger.models.transaction import Candidate
from alertledger.services.parser import AMOUNT_NUMBER, MERCHANT_CHARS, PatternSpec, TransactionParser
from alertledger.utils.money import parse_money

logger = logging.getLogger(__name__)

_SENDER_DOMAIN = re.compile(r'@([a-z0-9.-]+\.[a-z]{2,})>?\s*$', re.IGNORECASE)


def extract_sender_domain(sender: Optional[str]) -> Optional[str]:
    """
    Domain part of a sender address, lowercased.

    Examples:
        "alerts@hdfcbank.com" -> "hdfcbank.com"
        "HDFC Bank <alerts@hdfcbank.com>" -> "hdfcbank.com"
    """
    if not sender:
        return None
    match = _SENDER_DOMAIN.search(sender.strip())
    return match.group(1).lower() if match else None


def _amount(name: str, prefix: str, example: str) -> PatternSpec:
    return PatternSpec(name=name, pattern=prefix + AMOUNT_NUMBER, example=example)


def _merchant(name: str, pattern: str, example: str) -> PatternSpec:
    return PatternSpec(name=name, pattern=pattern.replace('{M}', MERCHANT_CHARS), example=example)


RS = _amount('rs', r'\bRs\.?\s*', 'Rs. 1,250.00')
RS_DOT = _amount('rs_dot', r'\bRs\.', 'Rs.1250')
INR = _amount('inr', r'\bINR\s*', 'INR 1250')
RUPEE = _amount('rupee', r'₹\s*', '₹1,250')

AT_ON = _merchant('at_on', r'\bat\s+({M}+?)\s+on\b', 'at AMAZON on 05-01-24')
TO_USING = _merchant('to_using', r'\bto\s+({M}+?)\s+using\b', 'to SWIGGY using UPI')
TO_VIA = _merchant('to_via', r'\bto\s+({M}+?)\s+via\b', 'to Zomato via UPI')


@dataclass(frozen=True)
class BankPattern:
    name: str
    amount_patterns: Tuple[PatternSpec, ...]
    merchant_patterns: Tuple[PatternSpec, ...]
    debit_keywords: Tuple[str, ...]
    credit_keywords: Tuple[str, ...]


BANK_PATTERNS: Dict[str, BankPattern] = {
    'hdfcbank.com': BankPattern(
        name='HDFC Bank',
        amount_patterns=(RS, INR),
        merchant_patterns=(AT_ON, TO_USING),
        debit_keywords=('debited', 'spent', 'paid'),
        credit_keywords=('credited', 'received', 'refund'),
    ),
    'sbicard.com': BankPattern(
        name='SBI Card',
        amount_patterns=(RS_DOT, INR),
        merchant_patterns=(
            AT_ON,
            _merchant('merchant_label', r'\bmerchant[:\s]+({M}+)', 'Merchant: BIG BAZAAR'),
        ),
        debit_keywords=('transaction', 'purchase', 'spent'),
        credit_keywords=('refund', 'reversal'),
    ),
    'icicibank.com': BankPattern(
        name='ICICI Bank',
        amount_patterns=(RS, INR),
        merchant_patterns=(AT_ON, TO_USING),
        debit_keywords=('debited', 'withdrawn', 'paid'),
        credit_keywords=('credited', 'deposit', 'received'),
    ),
    'axisbank.com': BankPattern(
        name='Axis Bank',
        amount_patterns=(RS, INR),
        merchant_patterns=(AT_ON,),
        debit_keywords=('debited', 'spent'),
        credit_keywords=('credited', 'received'),
    ),
    'paytm.com': BankPattern(
        name='Paytm',
        amount_patterns=(RS, RUPEE),
        merchant_patterns=(
            TO_VIA,
            _merchant('payment_to', r'\bpayment\s+to\s+({M}+)', 'Payment to Chai Point'),
        ),
        debit_keywords=('sent', 'paid', 'payment to'),
        credit_keywords=('received', 'payment from'),
    ),
    'phonepe.com': BankPattern(
        name='PhonePe',
        amount_patterns=(RS, RUPEE),
        merchant_patterns=(TO_VIA, AT_ON),
        debit_keywords=('sent', 'paid', 'payment'),
        credit_keywords=('received', 'got'),
    ),
    'google.com': BankPattern(
        name='Google Pay',
        amount_patterns=(RUPEE, RS),
        merchant_patterns=(
            TO_VIA,
            _merchant('you_paid_to', r'\bYou\s+(?:paid|sent)\s+to\s+({M}+)', 'You paid to Rahul'),
        ),
        debit_keywords=('paid', 'sent'),
        credit_keywords=('received',),
    ),
}


def find_bank_pattern(domain: Optional[str]) -> Optional[BankPattern]:
    """Rule set for a domain or any of its parent domains (alerts.hdfcbank.com → hdfcbank.com)."""
    if not domain:
        return None
    for known, pattern in BANK_PATTERNS.items():
        if domain == known or domain.endswith('.' + known):
            return pattern
    return None


class BankPatternMatcher:
    """Parses alerts from known bank and wallet senders with their own rules."""

    def __init__(self, parser: Optional[TransactionParser] = None):
        self.parser = parser or TransactionParser()

    def match(self, sender: str, subject: Optional[str], body: str) -> Optional[Candidate]:
        """
        Parse with the sender's bank rules.

        Returns:
            Candidate, or None when the sender is unknown or no amount matched
        """
        domain = extract_sender_domain(sender)
        bank = find_bank_pattern(domain)
        if bank is None:
            return None

        text = f"{subject} {body}" if subject else body

        amount = None
        for spec in bank.amount_patterns:
            match = spec.compiled.search(text)
            if match:
                amount = parse_money(match.group(1))
                if amount is not None and amount > 0:
                    break
                amount = None

        if amount is None:
            logger.debug("Bank pattern found no amount, falling back", extra={
                "domain": domain,
                "bank": bank.name
            })
            return None

        merchant = self.parser.extract_merchant(text, list(bank.merchant_patterns))
        if merchant == 'Unknown':
            merchant = self.parser.extract_merchant(text)

        txn_type, type_defaulted = self.parser.detect_type(
            text,
            credit_words=bank.credit_keywords,
            debit_words=bank.debit_keywords
        )

        candidate = self.parser.build_candidate(
            text,
            amount=amount,
            merchant=merchant,
            txn_type=txn_type,
            type_defaulted=type_defaulted,
            bank_name=bank.name
        )

        logger.info("Parsed with bank pattern", extra={
            "bank": bank.name,
            "amount": str(candidate.amount),
            "merchant": candidate.merchant
        })
        return candidate
