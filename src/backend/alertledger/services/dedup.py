"""
Deduplication gate.

A message fingerprint is the SHA-256 of the transport message id when one
exists, otherwise of (amount, merchant, day, user). At most one pending or
final transaction may exist per (user_id, message_hash); the unique indexes
in migrations/001_initial_schema.sql enforce it, this module only computes the hash and does the
fast-path lookup.
"""

import hashlib
import logging
from datetime import datetime
from typing import Optional, Tuple

from alertledger.models.transaction import Candidate
from alertledger.services.store import PENDING_TRANSACTIONS, TRANSACTIONS, SupabaseStore
from alertledger.utils.dates import ensure_utc
from alertledger.utils.money import amount_key
from alertledger.utils.similarity import normalize_merchant_name

logger = logging.getLogger(__name__)


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode('utf-8')).hexdigest()


def compute_message_hash(
    user_id: str,
    candidate: Optional[Candidate],
    timestamp: datetime,
    message_id: Optional[str] = None,
    raw_text: Optional[str] = None
) -> str:
    """
    Fingerprint a message for duplicate detection.

    Args:
        user_id: Owner of the message
        candidate: Parsed candidate, or None for a failed parse
        timestamp: Transaction time (only the UTC day is used)
        message_id: Stable transport id (Gmail id, SMS id) if the transport has one
        raw_text: Message text, used only when the parse failed

    Returns:
        Hex SHA-256 digest
    """
    if message_id:
        return _sha256(f"msg:{message_id}")

    day = ensure_utc(timestamp).date().isoformat()

    if candidate is None:
        text = ' '.join((raw_text or '').lower().split())
        return _sha256(f"raw:{text}_{day}_{user_id}")

    merchant = normalize_merchant_name(candidate.merchant) or 'unknown'
    return _sha256(f"{amount_key(candidate.amount)}_{merchant}_{day}_{user_id}")


class DeduplicationGate:
    """Looks up existing pending or final records for a (user, hash) pair."""

    def __init__(self, store: SupabaseStore):
        self.store = store

    def find_existing(self, user_id: str, message_hash: str) -> Optional[Tuple[str, dict]]:
        """
        Returns:
            (table, row) of the existing record, or None if the hash is new
        """
        for table in (PENDING_TRANSACTIONS, TRANSACTIONS):
            row = self.store.find_one(table, {
                'user_id': user_id,
                'message_hash': message_hash
            })
            if row:
                logger.info("Duplicate message detected", extra={
                    "user_id": user_id,
                    "message_hash": message_hash,
                    "table": table
                })
                return table, row
        return None
