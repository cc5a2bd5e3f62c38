"""
Push notifications over the FCM HTTP endpoint.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests

from alertledger.config import settings
from alertledger.models.pending import PendingTransaction
from alertledger.services.store import DEVICE_TOKENS, SupabaseStore
from alertledger.utils.money import format_money

logger = logging.getLogger(__name__)

PENDING_NOTIFICATION_TITLE = "New Transaction Detected"


@dataclass
class NotifyResult:
    success: bool
    reason: Optional[str] = None
    message_id: Optional[str] = None
    should_remove_token: bool = False


class NotificationService:
    """Sends one push notification per request; never retries."""

    def __init__(self, store: Optional[SupabaseStore] = None, session: Optional[requests.Session] = None):
        self.store = store
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(settings.FCM_SERVER_KEY)

    def device_tokens(self, user_id: str) -> List[str]:
        if self.store is None:
            return []
        rows = self.store.find(DEVICE_TOKENS, {'user_id': user_id}, order_by='created_at')
        return [row['token'] for row in rows if row.get('token')]

    def notify(self, token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> NotifyResult:
        """Send a notification to one device. Failures are logged and returned, not raised."""
        if not self.configured:
            logger.warning("Push notifications not configured")
            return NotifyResult(success=False, reason='not_configured')

        payload = {
            'to': token,
            'priority': 'high',
            'notification': {'title': title, 'body': body, 'sound': 'default'},
            'data': data or {},
        }

        try:
            response = self.session.post(
                settings.FCM_URL,
                json=payload,
                headers={
                    'Authorization': f"key={settings.FCM_SERVER_KEY}",
                    'Content-Type': 'application/json'
                },
                timeout=settings.HTTP_TIMEOUT_SECONDS
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("Failed to send push notification", extra={"error": str(e)})
            return NotifyResult(success=False, reason='request_failed')

        if result.get('failure'):
            error = (result.get('results') or [{}])[0].get('error', 'unknown_error')
            logger.warning("Push notification rejected", extra={"error": error})
            return NotifyResult(
                success=False,
                reason=error,
                should_remove_token=error in ('InvalidRegistration', 'NotRegistered')
            )

        message_id = (result.get('results') or [{}])[0].get('message_id')
        logger.info("Push notification sent", extra={"message_id": message_id})
        return NotifyResult(success=True, message_id=message_id)

    def pending_message(self, pending: PendingTransaction) -> Dict:
        """Title, body and data payload announcing a new pending transaction."""
        candidate = pending.parsed_data
        if candidate is None:
            body = "A bank alert needs your review"
            data = {'type': 'pending_transaction', 'pending_transaction_id': pending.id or ''}
        else:
            verb = 'Received' if candidate.type == 'income' else 'Spent'
            body = f"{verb} {format_money(candidate.amount, candidate.currency)}"
            if candidate.merchant and candidate.merchant != 'Unknown':
                body += f" at {candidate.merchant}"
            data = {
                'type': 'pending_transaction',
                'pending_transaction_id': pending.id or '',
                'amount': str(abs(candidate.amount)),
                'merchant': candidate.merchant,
                'category': candidate.category,
                'click_action': 'PENDING_TRANSACTIONS',
            }
        return {'title': PENDING_NOTIFICATION_TITLE, 'body': body, 'data': data}
