"""
Test suite for location inference and location learning.

Tests cover:
- Strategy priority (GPS → learned merchant → background → email pattern → hint)
- Confidence gates on learned merchant locations and background averages
- MerchantLocation visit averaging and monotonic confidence
- Email location pattern extraction and success/failure bookkeeping
- Background sample recording and retention purge
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from datetime import datetime, timezone, timedelta
import pytest

from alertledger.models.location import LocationSample, MerchantLocation, PatternLocation
from alertledger.models.transaction import GeoPoint
from alertledger.services.location import (
    BACKGROUND_LOCATION_HISTORY,
    LEARNED_EMAIL_PATTERN,
    LEARNED_MERCHANT_LOCATION,
    PARSED_GPS_COORDINATES,
    TEXT_HINT,
    LocationLearner,
    LocationMatcher,
    extract_location_pattern,
)
from alertledger.services.location_history import LocationHistoryService
from alertledger.services.store import EMAIL_LOCATION_PATTERNS, LOCATION_SAMPLES
from alertledger.utils.dates import utcnow

WHEN = datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc)
SENDER = "alerts@hdfcbank.com"


@pytest.fixture
def history(store):
    return LocationHistoryService(store)


@pytest.fixture
def matcher(store, history):
    return LocationMatcher(store, history)


@pytest.fixture
def learner(store):
    return LocationLearner(store)


def visit(learner, user_id, merchant, times, lat=12.97, lng=77.59):
    for i in range(times):
        learner.learn_merchant_location(user_id, merchant, lat, lng, WHEN + timedelta(days=i))


class TestStrategyPriority:

    def test_parsed_gps_first(self, matcher, learner, user_id):
        visit(learner, user_id, "Dominos", 6)

        match = matcher.match(user_id, WHEN, merchant="Dominos", gps=GeoPoint(lat=1.0, lng=2.0))

        assert match.source == PARSED_GPS_COORDINATES
        assert match.confidence == 0.9
        assert (match.lat, match.lng) == (1.0, 2.0)

    def test_learned_merchant_location(self, matcher, learner, user_id):
        visit(learner, user_id, "Dominos", 5)

        match = matcher.match(user_id, WHEN, merchant="DOMINOS")

        assert match.source == LEARNED_MERCHANT_LOCATION
        assert match.confidence == 0.5
        assert match.sample_count == 5

    def test_too_few_visits_skipped(self, matcher, learner, user_id):
        visit(learner, user_id, "Dominos", 3)
        assert matcher.match(user_id, WHEN, merchant="Dominos") is None

    def test_background_average(self, matcher, history, user_id):
        history.record_samples(user_id, [
            LocationSample(user_id=user_id, lat=10.0, lng=20.0, timestamp=WHEN - timedelta(minutes=5)),
            LocationSample(user_id=user_id, lat=12.0, lng=22.0, timestamp=WHEN + timedelta(minutes=10)),
            LocationSample(user_id=user_id, lat=50.0, lng=50.0, timestamp=WHEN + timedelta(hours=2)),
        ])

        match = matcher.match(user_id, WHEN, merchant="Unknown")

        assert match.source == BACKGROUND_LOCATION_HISTORY
        assert match.lat == pytest.approx(11.0)
        assert match.lng == pytest.approx(21.0)
        assert match.confidence == pytest.approx(0.4)

    def test_single_background_sample_not_enough(self, matcher, history, user_id):
        history.record_samples(user_id, [
            LocationSample(user_id=user_id, lat=10.0, lng=20.0, timestamp=WHEN),
        ])
        assert matcher.match(user_id, WHEN) is None

    def test_text_hint_last(self, matcher, user_id):
        match = matcher.match(user_id, WHEN, location_hint="MG Road, Bengaluru")

        assert match.source == TEXT_HINT
        assert match.confidence == 0.3
        assert match.needs_geocoding is True
        assert match.hint == "MG Road, Bengaluru"

    def test_nothing_known(self, matcher, user_id):
        assert matcher.match(user_id, WHEN, merchant="Dominos") is None

    def test_store_outage_degrades_to_none(self, matcher, fake_supabase, user_id):
        fake_supabase.failing_tables.add('merchant_locations')
        assert matcher.match(user_id, WHEN, merchant="Dominos") is None


class TestMerchantLocation:

    def test_confidence_never_decreases(self):
        location = MerchantLocation(user_id="u1", merchant_key="dominos", merchant_name="Dominos", lat=0, lng=0)
        previous = 0.0
        for i in range(25):
            location.record_visit(12.0 + i * 0.001, 77.0, WHEN + timedelta(days=i))
            assert location.confidence >= previous
            previous = location.confidence

        assert location.visits == 25
        assert location.confidence == 1.0
        assert len(location.visit_history) == 20

    def test_average_of_recent_visits(self):
        location = MerchantLocation(user_id="u1", merchant_key="dominos", merchant_name="Dominos", lat=0, lng=0)
        location.record_visit(10.0, 70.0, WHEN)
        location.record_visit(12.0, 72.0, WHEN + timedelta(days=1))

        assert location.lat == pytest.approx(11.0)
        assert location.lng == pytest.approx(71.0)
        assert location.first_visit == WHEN
        assert location.last_visit == WHEN + timedelta(days=1)

    def test_learner_persists_running_average(self, learner, user_id):
        learner.learn_merchant_location(user_id, "Dominos", 10.0, 70.0, WHEN)
        saved = learner.learn_merchant_location(user_id, "Dominos", 12.0, 72.0, WHEN + timedelta(days=1),
                                                address="Koramangala")

        assert saved.visits == 2
        assert saved.lat == pytest.approx(11.0)
        assert saved.address == "Koramangala"
        assert saved.confidence == pytest.approx(0.2)

    def test_unknown_merchant_not_learned(self, learner, user_id):
        assert learner.learn_merchant_location(user_id, "Unknown", 1.0, 2.0, WHEN) is None


class TestEmailLocationPatterns:

    def test_extract_labelled_location(self):
        extracted = extract_location_pattern("Txn of Rs 500\nStore: Phoenix Mall, Pune\nThanks")

        assert extracted['pattern_type'] == 'branch_info'
        assert extracted['example'] == 'Store: Phoenix Mall, Pune'

    def test_extract_gps(self):
        extracted = extract_location_pattern("lat: 18.5, lng: 73.8")
        assert extracted['pattern_type'] == 'gps_coordinates'

    def test_nothing_to_extract(self):
        assert extract_location_pattern("Rs 500 debited") is None

    def test_learned_pattern_matches_later_email(self, matcher, learner, fake_supabase, user_id):
        learner.learn_email_location_pattern(
            user_id, SENDER,
            "Rs 500 spent\nStore: Phoenix Mall, Pune",
            None,
            PatternLocation(lat=18.56, lng=73.91, place_name="Phoenix Mall"),
            WHEN
        )

        match = matcher.match(
            user_id, WHEN,
            sender=SENDER,
            raw_text="Rs 900 spent\nstore: Phoenix Mall, Pune"
        )

        assert match.source == LEARNED_EMAIL_PATTERN
        assert match.place_name == "Phoenix Mall"
        row = fake_supabase.rows(EMAIL_LOCATION_PATTERNS)[0]
        assert row['times_matched'] == 1
        assert row['successful_extractions'] == 1
        assert row['confidence'] == 1.0

    def test_unmatched_pattern_records_failure(self, matcher, learner, fake_supabase, user_id):
        learner.learn_email_location_pattern(
            user_id, SENDER,
            "Store: Phoenix Mall, Pune",
            None,
            PatternLocation(lat=18.56, lng=73.91),
            WHEN
        )

        assert matcher.match(user_id, WHEN, sender=SENDER, raw_text="Store: Inorbit Mall, Hyderabad") is None

        row = fake_supabase.rows(EMAIL_LOCATION_PATTERNS)[0]
        assert row['times_matched'] == 1
        assert row['successful_extractions'] == 0
        assert row['confidence'] == 0.0

    def test_relearning_updates_existing_pattern(self, learner, fake_supabase, user_id):
        for lat in (18.5, 18.6):
            learner.learn_email_location_pattern(
                user_id, SENDER, "Branch: Baner", "Dominos", PatternLocation(lat=lat, lng=73.8), WHEN
            )

        rows = fake_supabase.rows(EMAIL_LOCATION_PATTERNS)
        assert len(rows) == 1
        assert rows[0]['location']['lat'] == 18.6
        assert rows[0]['merchant_key'] == 'dominos'


class TestLocationHistory:

    def test_purge_keeps_recent_samples(self, history, fake_supabase, user_id):
        now = utcnow()
        history.record_samples(user_id, [
            LocationSample(user_id=user_id, lat=1.0, lng=1.0, timestamp=now - timedelta(days=100)),
            LocationSample(user_id=user_id, lat=2.0, lng=2.0, timestamp=now - timedelta(days=1)),
        ])

        assert history.purge_older_than(user_id) == 1
        remaining = fake_supabase.rows(LOCATION_SAMPLES)
        assert [row['lat'] for row in remaining] == [2.0]

    def test_samples_are_owned_by_caller(self, history, fake_supabase, user_id):
        history.record_samples(user_id, [LocationSample(user_id="spoofed", lat=1.0, lng=1.0, timestamp=WHEN)])
        assert fake_supabase.rows(LOCATION_SAMPLES)[0]['user_id'] == user_id


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
