"""
Scheduled Gmail polling.

Each poll lists unread alert messages, ingests the ones not seen recently and
marks them read. Errors back off exponentially up to a ceiling; an
authentication failure (401 or a revoked refresh token) stops polling until
the process is restarted with new credentials.
"""

import asyncio
import logging
import threading
from collections import OrderedDict
from typing import Dict, Optional

from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from alertledger.config import settings
from alertledger.services.email import EmailService
from alertledger.services.ingestion import IngestionService

logger = logging.getLogger(__name__)


class SeenMessageCache:
    """Bounded set of message ids; the oldest id is evicted first."""

    def __init__(self, max_size: int):
        self.max_size = max_size
        self._ids: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, message_id: str) -> None:
        self._ids[message_id] = None
        self._ids.move_to_end(message_id)
        while len(self._ids) > self.max_size:
            self._ids.popitem(last=False)


class GmailPoller:
    """Polls one Gmail inbox on behalf of one user."""

    def __init__(
        self,
        email_service: EmailService,
        ingestion: IngestionService,
        user_id: Optional[str] = None
    ):
        self.email_service = email_service
        self.ingestion = ingestion
        self.user_id = user_id or settings.GMAIL_USER_ID
        self.seen = SeenMessageCache(settings.SEEN_MESSAGE_CACHE_SIZE)
        self.consecutive_failures = 0
        self.disabled = False
        self.disabled_reason: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def next_delay(self) -> float:
        """Seconds until the next poll: the interval, doubled per consecutive failure, capped."""
        delay = settings.POLL_INTERVAL_SECONDS * (2 ** self.consecutive_failures)
        return min(delay, settings.POLL_MAX_BACKOFF_SECONDS)

    def _disable(self, reason: str) -> None:
        self.disabled = True
        self.disabled_reason = reason
        logger.error("Gmail polling disabled", extra={
            "user_id": self.user_id,
            "reason": reason
        })

    def poll_once(self) -> Dict:
        """
        Run one poll. Concurrent callers (the schedule and a manual sync) run one
        at a time.

        Returns:
            Summary of the poll
        """
        with self._lock:
            return self._poll()

    def _poll(self) -> Dict:
        summary = {
            'disabled': self.disabled,
            'messages_checked': 0,
            'pending_created': 0,
            'duplicates_skipped': 0,
            'already_seen': 0,
            'errors': []
        }
        if self.disabled:
            return summary

        try:
            stubs = self.email_service.list_messages()
            summary['messages_checked'] = len(stubs)

            for stub in stubs:
                message_id = stub['id']
                if message_id in self.seen:
                    summary['already_seen'] += 1
                    continue

                message = self.email_service.get_message(message_id)
                result = self.ingestion.ingest(self.email_service.to_inbound(message, self.user_id))

                if result.status == 'error':
                    summary['errors'].append(result.error)
                    continue

                if result.status == 'pending':
                    summary['pending_created'] += 1
                else:
                    summary['duplicates_skipped'] += 1

                self.seen.add(message_id)
                self.email_service.mark_as_read(message_id)

        except RefreshError as e:
            self._disable(f"credentials rejected: {e}")
            summary['disabled'] = True
            return summary
        except HttpError as e:
            if e.resp.status == 401:
                self._disable("unauthorized")
                summary['disabled'] = True
                return summary
            self.consecutive_failures += 1
            summary['errors'].append(f"Gmail API error: {e.resp.status}")
            logger.warning("Gmail poll failed, backing off", extra={
                "status": e.resp.status,
                "failures": self.consecutive_failures,
                "next_delay": self.next_delay
            })
            return summary
        except Exception as e:
            self.consecutive_failures += 1
            summary['errors'].append(f"Poll failed: {str(e)}")
            logger.error("Gmail poll failed", extra={
                "failures": self.consecutive_failures,
                "next_delay": self.next_delay
            }, exc_info=True)
            return summary

        self.consecutive_failures = 0
        logger.info("Gmail poll complete", extra={
            "user_id": self.user_id,
            "messages_checked": summary['messages_checked'],
            "pending_created": summary['pending_created']
        })
        return summary

    async def run(self) -> None:
        """Poll until cancelled or disabled."""
        while not self.disabled:
            await asyncio.to_thread(self.poll_once)
            await asyncio.sleep(self.next_delay)
