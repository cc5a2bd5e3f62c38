"""
Test suite for the ingestion pipeline.

Tests cover:
- SMS alert → pending transaction with strategy, confidence and review flag
- Duplicate delivery by transport id and by content
- Unparseable alerts stored for manual review
- Learned email corrections applied to new parses
- Location from message GPS and geocoded text hints
- Batch summaries and store outages
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from datetime import datetime, timezone
from decimal import Decimal
import pytest

from alertledger.models.pending import CorrectedData, InboundMessage
from alertledger.models.transaction import Candidate, GeoPoint
from alertledger.services.ingestion import IngestionService
from alertledger.services.location import PARSED_GPS_COORDINATES, TEXT_HINT
from alertledger.services.store import PENDING_TRANSACTIONS

WHEN = datetime(2024, 1, 5, 10, 30, tzinfo=timezone.utc)
DOMINOS_SMS = "Rs.250 spent at Dominos via UPI on 2024-01-05"


class FakeGeocoder:
    def geocode(self, query):
        return {'address': f"{query}, Karnataka", 'city': 'Bengaluru', 'country': 'India', 'place_name': '',
                'lat': 12.975, 'lng': 77.606}

    def reverse_geocode(self, lat, lng):
        return None


@pytest.fixture
def service(store):
    return IngestionService(store)


def sms(user_id, body=DOMINOS_SMS, **fields):
    return InboundMessage(user_id=user_id, sender="VM-HDFCBK", body=body, timestamp=WHEN, **fields)


def email(user_id, body=DOMINOS_SMS, **fields):
    return InboundMessage(
        user_id=user_id,
        sender="alerts@mybank.example",
        subject="Transaction alert",
        body=body,
        timestamp=WHEN,
        source_kind='email',
        **fields
    )


class TestIngest:

    def test_sms_becomes_pending(self, service, user_id):
        result = service.ingest(sms(user_id))

        assert result.status == 'pending'
        pending = result.pending
        assert pending.parsing_strategy == 'generic-parser'
        assert pending.parsed_data.amount == Decimal('250')
        assert pending.parsed_data.merchant == 'Dominos'
        assert pending.confidence_score == 0.9
        assert pending.parsed_data.confidence == 0.9
        assert pending.needs_manual_review is False
        assert pending.transaction_at == WHEN
        assert pending.source.kind == 'sms'

    def test_low_confidence_needs_review(self, service, user_id):
        result = service.ingest(sms(user_id, body="Rs.75 on 05-01"))

        assert result.pending.confidence_score == 0.5
        assert result.pending.needs_manual_review is True

    def test_unparseable_alert_is_kept(self, service, user_id):
        result = service.ingest(sms(user_id, body="Your OTP for login is 482913. Do not share it."))

        assert result.status == 'pending'
        pending = result.pending
        assert pending.parsed_data is None
        assert pending.parsing_strategy == 'failed'
        assert pending.confidence_score == 0.1
        assert pending.needs_manual_review is True
        assert pending.parsing_error == "Could not parse transaction amount"

    def test_known_bank_sender_uses_bank_rules(self, service, user_id):
        message = InboundMessage(
            user_id=user_id,
            sender="alerts@hdfcbank.com",
            subject="Alert: Card transaction",
            body="Rs. 2,340.00 spent on HDFC Bank Card XX4321 at AMAZON on 05-01-24.",
            timestamp=WHEN,
            source_kind='email'
        )

        result = service.ingest(message)

        assert result.pending.parsing_strategy == 'bank-pattern'
        assert result.pending.parsed_data.bank_name == 'HDFC Bank'
        assert result.pending.source.sender == "alerts@hdfcbank.com"


class TestDuplicates:

    def test_redelivered_message_id(self, service, fake_supabase, user_id):
        first = service.ingest(sms(user_id, message_id="sms-1"))
        second = service.ingest(sms(user_id, message_id="sms-1"))

        assert second.status == 'duplicate'
        assert second.duplicate is True
        assert second.existing['id'] == first.pending.id
        assert len(fake_supabase.rows(PENDING_TRANSACTIONS)) == 1

    def test_same_content_same_day(self, service, fake_supabase, user_id):
        service.ingest(sms(user_id))
        again = service.ingest(sms(user_id, body="Rs.250.00 spent at DOMINOS via UPI"))

        assert again.status == 'duplicate'
        assert len(fake_supabase.rows(PENDING_TRANSACTIONS)) == 1

    def test_same_alert_for_two_users(self, service, fake_supabase, user_id):
        service.ingest(sms(user_id))
        service.ingest(sms("00000000-0000-0000-0000-000000000002"))

        assert len(fake_supabase.rows(PENDING_TRANSACTIONS)) == 2

    def test_approved_message_stays_deduplicated(self, service, user_id):
        first = service.ingest(sms(user_id, message_id="sms-1"))
        service.workflow.approve(first.pending.id)

        assert service.ingest(sms(user_id, message_id="sms-1")).status == 'duplicate'

    def test_redelivery_after_learned_correction(self, service, fake_supabase, user_id):
        """A correction learned from the first delivery must not change the fingerprint."""
        first = service.ingest(email(user_id))
        service.workflow.approve(first.pending.id, CorrectedData(merchant="Domino's Pizza"))

        again = service.ingest(email(user_id))

        assert again.status == 'duplicate'
        assert again.existing['id'] == first.pending.id
        assert len(fake_supabase.rows(PENDING_TRANSACTIONS)) == 1


class TestLearnedPatterns:

    def test_email_correction_applied_to_next_alert(self, service, user_id):
        service.email_learner.record_correction(
            user_id,
            "alerts@mybank.example",
            Candidate(amount=Decimal('250'), merchant='Dominos'),
            Candidate(amount=Decimal('250'), merchant="Domino's Pizza", category='Food', sub_category='Pizza')
        )

        result = service.ingest(email(user_id, body="Rs.400 spent at Dominos via UPI"))

        assert result.pending.parsing_strategy == 'learned-pattern'
        assert result.pending.parsed_data.merchant == "Domino's Pizza"
        assert result.pending.parsed_data.sub_category == 'Pizza'
        assert result.pending.parsed_data.amount == Decimal('400')

    def test_sms_ignores_email_patterns(self, service, user_id):
        service.email_learner.record_correction(
            user_id,
            "VM-HDFCBK",
            Candidate(amount=Decimal('250'), merchant='Dominos'),
            Candidate(amount=Decimal('250'), merchant="Domino's Pizza")
        )

        result = service.ingest(sms(user_id))

        assert result.pending.parsing_strategy == 'generic-parser'


class TestLocation:

    def test_gps_hint_from_device(self, service, user_id):
        result = service.ingest(sms(user_id, gps_hint=GeoPoint(lat=12.97, lng=77.59)))

        location = result.pending.location
        assert location.source == PARSED_GPS_COORDINATES
        assert (location.lat, location.lng) == (12.97, 77.59)

    def test_text_hint_is_geocoded(self, store, user_id):
        service = IngestionService(store, geocoder=FakeGeocoder())

        result = service.ingest(sms(user_id, body=DOMINOS_SMS + ". Store: MG Road, Bengaluru"))

        location = result.pending.location
        assert location.source == TEXT_HINT
        assert location.needs_geocoding is False
        assert location.lat == 12.975
        assert location.city == 'Bengaluru'

    def test_text_hint_without_geocoder(self, service, user_id):
        result = service.ingest(sms(user_id, body=DOMINOS_SMS + ". Store: MG Road, Bengaluru"))

        location = result.pending.location
        assert location.needs_geocoding is True
        assert location.hint == "MG Road, Bengaluru"


class TestBatch:

    def test_summary(self, service, user_id):
        summary = service.ingest_many([
            sms(user_id),
            sms(user_id),
            sms(user_id, body="not a transaction"),
        ])

        assert summary == {
            'messages_checked': 3,
            'pending_created': 2,
            'duplicates_skipped': 1,
            'errors': []
        }

    def test_store_outage_is_reported(self, service, fake_supabase, user_id):
        fake_supabase.failing_tables.add(PENDING_TRANSACTIONS)

        result = service.ingest(sms(user_id))

        assert result.status == 'error'
        assert result.error == "Database select on pending_transactions failed"


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
