"""
Tests for the processed-event ledger.
"""

from sqlmodel import Session

from rockid.models.processed_event import ProcessedEvent
from rockid.services.event_ledger import is_event_processed, record_event


class TestEventLedger:
    def test_unknown_event_not_processed(self, test_session: Session):
        assert is_event_processed("evt_unknown", test_session) is False

    def test_record_then_processed(self, test_session: Session):
        assert record_event("evt_1", "uid_1", test_session, event_type="RENEWAL", product_id="rockid_weekly_399")

        assert is_event_processed("evt_1", test_session) is True
        event = test_session.get(ProcessedEvent, "evt_1")
        assert event.user_id == "uid_1"
        assert event.event_type == "RENEWAL"
        assert event.source == "revenuecat"
        assert event.processed_at is not None

    def test_duplicate_record_returns_false(self, test_engine):
        with Session(test_engine) as first:
            assert record_event("evt_1", "uid_1", first) is True

        # Second delivery that passed its check before the first committed
        with Session(test_engine) as second:
            assert record_event("evt_1", "uid_1", second) is False
            assert is_event_processed("evt_1", second) is True
