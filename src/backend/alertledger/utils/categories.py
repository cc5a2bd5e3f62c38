"""
Keyword-based category classification.

Rules are checked in order and the first rule with a keyword found in the
lowercased text wins, so more specific rules go first.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

DEFAULT_CATEGORY = "General Expense"


@dataclass(frozen=True)
class CategoryRule:
    keywords: Tuple[str, ...]
    category: str
    sub_category: Optional[str] = None


DEFAULT_RULES: List[CategoryRule] = [
    CategoryRule(('uber', 'ola', 'rapido', 'taxi'), 'Transport', 'Taxi'),
    CategoryRule(('irctc', 'redbus', 'metro'), 'Transport', 'Public Transport'),
    CategoryRule(('indian oil', 'hpcl', 'bharat petroleum', 'petrol', 'fuel'), 'Transport', 'Fuel'),
    CategoryRule(('starbucks', 'cafe', 'coffee', 'chai'), 'Food', 'Cafe'),
    CategoryRule(('flipkart', 'amazon', 'myntra', 'ajio', 'meesho'), 'Shopping', 'E-commerce'),
    CategoryRule(('zomato', 'swiggy', 'dominos', 'restaurant', 'pizza'), 'Food', 'Dining'),
    CategoryRule(('bigbasket', 'blinkit', 'zepto', 'dmart', 'grocery'), 'Food', 'Groceries'),
    CategoryRule(('netflix', 'spotify', 'hotstar', 'prime video'), 'Entertainment', 'Subscriptions'),
    CategoryRule(('airtel', 'jio', 'vodafone', 'electricity', 'broadband'), 'Bills', 'Utilities'),
    CategoryRule(('pharmacy', 'apollo', 'hospital', 'clinic'), 'Health', 'Medical'),
    CategoryRule(('rent', 'landlord'), 'Housing', 'Rent'),
    CategoryRule(('salary', 'payroll', 'credited'), 'Income', None),
]


def classify_category(
    text: str,
    rules: Optional[List[CategoryRule]] = None
) -> Tuple[str, Optional[str]]:
    """
    Map merchant/message text to (category, sub_category).

    Returns ("General Expense", None) when no rule matches.
    """
    lowered = (text or '').lower()
    for rule in rules or DEFAULT_RULES:
        for keyword in rule.keywords:
            # Whole words only: "rent" must not fire on "current"
            if re.search(r'\b' + re.escape(keyword) + r'\b', lowered):
                return rule.category, rule.sub_category
    return DEFAULT_CATEGORY, None
