"""
Test suite for scheduled Gmail polling.

Tests cover:
- New messages ingested and marked read, seen ids skipped
- Per-message ingestion errors leave the message unread for the next poll
- Overlapping polls serialized
- Exponential backoff on API errors and reset on success
- 401 and revoked refresh tokens disabling the poller
- Bounded seen-message cache
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import asyncio
import base64
import threading
from unittest.mock import Mock

import httplib2
import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from alertledger.config import settings
from alertledger.services.email import EmailService
from alertledger.services.ingestion import IngestionService
from alertledger.services.poller import GmailPoller, SeenMessageCache
from alertledger.services.store import PENDING_TRANSACTIONS

INBOX = {
    'm1': "Rs.250 spent at Dominos via UPI",
    'm2': "Rs.1,499 spent at Flipkart using card",
}


def gmail_message(message_id, body):
    return {
        'id': message_id,
        'internalDate': '1704450600000',
        'payload': {
            'mimeType': 'text/plain',
            'headers': [
                {'name': 'Subject', 'value': 'Transaction alert'},
                {'name': 'From', 'value': 'alerts@mybank.example'},
            ],
            'body': {'data': base64.urlsafe_b64encode(body.encode('utf-8')).decode('ascii')},
        },
    }


def http_error(status):
    return HttpError(httplib2.Response({'status': status, 'reason': 'error'}), b'')


@pytest.fixture(autouse=True)
def poll_settings(monkeypatch):
    monkeypatch.setattr(settings, 'POLL_INTERVAL_SECONDS', 30)
    monkeypatch.setattr(settings, 'POLL_MAX_BACKOFF_SECONDS', 900)


@pytest.fixture
def gmail():
    gmail = Mock()
    api = gmail.users.return_value.messages.return_value
    api.list.return_value.execute.return_value = {'messages': [{'id': i} for i in INBOX]}
    api.get.side_effect = lambda userId, id, format: Mock(
        execute=Mock(return_value=gmail_message(id, INBOX[id]))
    )
    return gmail


@pytest.fixture
def api(gmail):
    return gmail.users.return_value.messages.return_value


@pytest.fixture
def poller(gmail, store, user_id):
    return GmailPoller(EmailService(service=gmail), IngestionService(store), user_id=user_id)


class TestPollOnce:

    def test_ingests_and_marks_read(self, poller, api, fake_supabase, user_id):
        summary = poller.poll_once()

        assert summary['messages_checked'] == 2
        assert summary['pending_created'] == 2
        assert summary['errors'] == []
        assert [c.kwargs['id'] for c in api.modify.call_args_list] == ['m1', 'm2']
        rows = fake_supabase.rows(PENDING_TRANSACTIONS)
        assert {row['user_id'] for row in rows} == {user_id}
        assert {row['source']['kind'] for row in rows} == {'gmail'}

    def test_seen_messages_are_skipped(self, poller, api):
        poller.poll_once()
        summary = poller.poll_once()

        assert summary['already_seen'] == 2
        assert summary['pending_created'] == 0
        assert api.get.call_count == 2

    def test_redelivered_message_counts_as_duplicate(self, poller, api):
        poller.poll_once()
        poller.seen = SeenMessageCache(10)

        summary = poller.poll_once()

        assert summary['duplicates_skipped'] == 2
        assert api.modify.call_count == 4

    def test_concurrent_polls_run_one_at_a_time(self, poller, api):
        """A manual sync arriving mid-poll waits for the scheduled poll to finish."""
        results = {}
        second = threading.Thread(target=lambda: results.setdefault('second', poller.poll_once()))

        def list_inbox():
            if not second.is_alive() and 'blocked' not in results:
                second.start()
                second.join(timeout=0.2)
                results['blocked'] = second.is_alive()
            return {'messages': [{'id': i} for i in INBOX]}

        api.list.return_value.execute.side_effect = list_inbox

        first = poller.poll_once()
        second.join(timeout=5)

        assert results['blocked'] is True
        assert first['pending_created'] == 2
        assert results['second']['already_seen'] == 2
        assert api.get.call_count == 2

    def test_ingestion_error_leaves_message_unread(self, poller, api, fake_supabase):
        fake_supabase.failing_tables.add(PENDING_TRANSACTIONS)

        summary = poller.poll_once()

        assert len(summary['errors']) == 2
        assert api.modify.call_count == 0
        assert 'm1' not in poller.seen
        assert poller.consecutive_failures == 0


class TestBackoff:

    def test_api_errors_double_the_delay(self, poller, api):
        api.list.return_value.execute.side_effect = http_error(500)

        assert poller.next_delay == 30
        poller.poll_once()
        assert poller.next_delay == 60
        summary = poller.poll_once()
        assert poller.next_delay == 120
        assert summary['errors'] == ["Gmail API error: 500"]

    def test_delay_is_capped(self, poller):
        poller.consecutive_failures = 10
        assert poller.next_delay == 900

    def test_success_resets(self, poller, api):
        api.list.return_value.execute.side_effect = [http_error(503), {'messages': []}]

        poller.poll_once()
        assert poller.consecutive_failures == 1
        poller.poll_once()
        assert poller.consecutive_failures == 0
        assert poller.next_delay == 30

    def test_unexpected_error_backs_off(self, poller, api):
        api.get.side_effect = ConnectionError("socket closed")

        summary = poller.poll_once()

        assert poller.consecutive_failures == 1
        assert summary['errors'] == ["Poll failed: socket closed"]


class TestDisable:

    def test_unauthorized_stops_polling(self, poller, api):
        api.list.return_value.execute.side_effect = http_error(401)

        summary = poller.poll_once()

        assert summary['disabled'] is True
        assert poller.disabled_reason == "unauthorized"

        api.list.reset_mock()
        assert poller.poll_once()['disabled'] is True
        api.list.assert_not_called()

    def test_revoked_refresh_token(self, poller, api):
        api.list.return_value.execute.side_effect = RefreshError("invalid_grant")

        poller.poll_once()

        assert poller.disabled is True
        assert "invalid_grant" in poller.disabled_reason

    def test_run_loop_ends_when_disabled(self, poller, api, monkeypatch):
        monkeypatch.setattr(settings, 'POLL_INTERVAL_SECONDS', 0)
        api.list.return_value.execute.side_effect = [{'messages': []}, http_error(401)]

        asyncio.run(poller.run())

        assert poller.disabled is True
        assert api.list.return_value.execute.call_count == 2


class TestSeenMessageCache:

    def test_oldest_evicted(self):
        cache = SeenMessageCache(2)
        for message_id in ('a', 'b', 'c'):
            cache.add(message_id)

        assert 'a' not in cache
        assert 'b' in cache and 'c' in cache
        assert len(cache) == 2

    def test_re_adding_refreshes(self):
        cache = SeenMessageCache(2)
        cache.add('a')
        cache.add('b')
        cache.add('a')
        cache.add('c')

        assert 'a' in cache
        assert 'b' not in cache


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
