"""
Unit tests for the sync engine.

Tests the SyncEngine run lifecycle against a mocked CardDAV client and a
real in-memory contact store.
"""

import logging
import threading
from unittest.mock import MagicMock

import pytest

from icontact_sync.api.carddav import AddressBook, CardDAVClient, CardDAVError
from icontact_sync.storage.db import ContactDatabase, StoreError
from icontact_sync.sync.contact import Contact
from icontact_sync.sync.engine import (
    SyncEngine,
    SyncInProgressError,
    SyncOutcome,
    SyncPhase,
    SyncRunResult,
)

# ==============================================================================
# Fixtures
# ==============================================================================


def vcard(name, phone):
    """Build a minimal vCard record."""
    return f"BEGIN:VCARD\nVERSION:3.0\nFN:{name}\nTEL:{phone}\nEND:VCARD"


@pytest.fixture
def db():
    """Create an open, initialized in-memory store."""
    store = ContactDatabase(":memory:")
    store.open()
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def client():
    """Create a mock CardDAV client with one empty address book."""
    mock = MagicMock(spec=CardDAVClient)
    mock.list_address_books.return_value = [AddressBook(url="https://dav/book/")]
    mock.list_vcards.return_value = []
    mock.fetch_all_vcards.side_effect = lambda: CardDAVClient.fetch_all_vcards(mock)
    return mock


def make_engine(client, store, clock=None):
    if clock is None:
        return SyncEngine(client=client, store=store)
    return SyncEngine(client=client, store=store, clock=clock)


# ==============================================================================
# Successful Runs
# ==============================================================================


class TestSyncRuns:
    """Tests for end-to-end reconciliation runs."""

    def test_first_run_with_duplicate_phone(self, client, db):
        """Test a first run where two records share a phone number."""
        client.list_vcards.return_value = [
            vcard("A", "111"),
            vcard("B", "222"),
            vcard("A2", "111"),
        ]

        result = make_engine(client, db).run()

        assert result.success
        assert result.phase == SyncPhase.COMPLETED
        assert result.duplicates_dropped == 1
        assert result.outcome == SyncOutcome(
            total_seen=2, inserted=2, updated=0, skipped=0, success=True
        )
        assert db.read_name_index() == {"111": "A", "222": "B"}
        assert db.get_sync_run_count() == 1

    def test_rename_run(self, client, db):
        """Test a run with one rename and one unchanged contact."""
        db.insert_many_unordered([Contact("A", "111"), Contact("B", "222")])
        client.list_vcards.return_value = [vcard("A-new", "111"), vcard("B", "222")]

        result = make_engine(client, db).run()

        assert result.outcome == SyncOutcome(
            total_seen=2, inserted=0, updated=1, skipped=1, success=True
        )
        assert db.read_name_index() == {"111": "A-new", "222": "B"}

    def test_unparsable_records_are_skipped(self, client, db):
        """Test a run where some records lack a name or phone."""
        client.list_vcards.return_value = [
            vcard("A", "111"),
            "BEGIN:VCARD\nFN:No Phone\nEND:VCARD",
            "BEGIN:VCARD\nTEL:333\nEND:VCARD",
        ]

        result = make_engine(client, db).run()

        assert result.records_fetched == 3
        assert result.contacts_parsed == 1
        assert result.unparsable == 2
        assert result.outcome.total_seen == 1
        assert result.outcome.inserted == 1

    def test_concurrent_insert_conflict(self, client, db):
        """Test that a key stored between planning and executing is absorbed."""
        client.list_vcards.return_value = [vcard("A", "111"), vcard("B", "222")]
        original_read = db.read_name_index

        def read_then_race():
            index = original_read()
            db.insert_many_unordered([Contact("Racer", "222")])
            return index

        db.read_name_index = read_then_race

        result = make_engine(client, db).run()

        assert result.success
        assert result.insert_conflicts == ["222"]
        assert result.outcome == SyncOutcome(
            total_seen=2, inserted=1, updated=0, skipped=1, success=True
        )

    def test_empty_source(self, client, db):
        """Test a run with no remote records."""
        result = make_engine(client, db).run()

        assert result.success
        assert result.outcome == SyncOutcome(total_seen=0, success=True)
        assert db.get_sync_run_count() == 1

    def test_second_run_is_unchanged(self, client, db):
        """Test that rerunning with the same source changes nothing."""
        client.list_vcards.return_value = [vcard("A", "111"), vcard("B", "222")]
        engine = make_engine(client, db)
        engine.run()

        result = engine.run()

        assert result.outcome == SyncOutcome(
            total_seen=2, inserted=0, updated=0, skipped=2, success=True
        )
        assert db.get_sync_run_count() == 2

    def test_local_only_contacts_are_untouched(self, client, db):
        """Test that contacts missing from the source are never removed."""
        db.insert_many_unordered([Contact("Local", "999")])
        client.list_vcards.return_value = [vcard("A", "111")]

        make_engine(client, db).run()

        assert db.read_name_index() == {"999": "Local", "111": "A"}

    def test_multiple_address_books_in_order(self, client, db):
        """Test that records from every book are reconciled, first book wins."""
        books = [AddressBook(url="https://dav/a/"), AddressBook(url="https://dav/b/")]
        client.list_address_books.return_value = books
        client.list_vcards.side_effect = [
            [vcard("From A", "111")],
            [vcard("From B", "111"), vcard("Only B", "222")],
        ]

        result = make_engine(client, db).run()

        assert result.records_fetched == 3
        assert db.read_name_index() == {"111": "From A", "222": "Only B"}

    @pytest.mark.parametrize(
        "stored,records",
        [
            ({}, [vcard("A", "1"), vcard("B", "2")]),
            ({"1": "A"}, [vcard("A", "1"), vcard("B", "2"), vcard("C", "3")]),
            ({"1": "Old", "2": "B"}, [vcard("New", "1"), vcard("B", "2"), vcard("X", "1")]),
        ],
    )
    def test_counts_add_up(self, client, db, stored, records):
        """Test that inserted + updated + skipped equals total_seen."""
        db.insert_many_unordered([Contact(name, key) for key, name in stored.items()])
        client.list_vcards.return_value = records

        outcome = make_engine(client, db).run().outcome

        assert outcome.inserted + outcome.updated + outcome.skipped == outcome.total_seen

    def test_recorded_run_matches_outcome(self, client, db):
        """Test that the audit record holds the outcome counts."""
        client.list_vcards.return_value = [vcard("A", "111")]

        make_engine(client, db).run()

        run = db.get_last_sync_run()
        assert run["total_seen"] == 1
        assert run["inserted"] == 1
        assert run["success"] == 1
        assert run["error_message"] is None


# ==============================================================================
# Failures
# ==============================================================================


class TestSyncFailures:
    """Tests for failure handling and audit recording."""

    def test_fetch_failure_writes_no_record(self, client, db):
        """Test that a remote failure leaves the audit trail untouched."""
        client.list_address_books.side_effect = CardDAVError("connection refused")

        result = make_engine(client, db).run()

        assert not result.success
        assert result.phase == SyncPhase.FAILED
        assert result.error == "connection refused"
        assert result.outcome is None
        assert db.get_sync_run_count() == 0

    def test_fetch_goes_through_client(self, db):
        """Test that one run makes exactly one bulk fetch call."""
        client = MagicMock(spec=CardDAVClient)
        client.fetch_all_vcards.return_value = [vcard("A", "1"), vcard("B", "2")]

        result = make_engine(client, db).run()

        assert result.success
        assert result.records_fetched == 2
        client.fetch_all_vcards.assert_called_once_with()
        client.list_address_books.assert_not_called()

    def test_fetch_failure_in_second_book(self, client, db):
        """Test that a failure listing any book aborts before parsing."""
        client.list_address_books.return_value = [
            AddressBook(url="https://dav/a/"),
            AddressBook(url="https://dav/b/"),
        ]
        client.list_vcards.side_effect = [[vcard("A", "1")], CardDAVError("timeout")]

        result = make_engine(client, db).run()

        assert not result.success
        assert db.get_contact_count() == 0
        assert db.get_sync_run_count() == 0

    def test_read_failure_writes_failure_record(self, client, db):
        """Test that a store read failure is recorded with zeroed counts."""
        client.list_vcards.return_value = [vcard("A", "1")]
        db.read_name_index = MagicMock(side_effect=StoreError("database is locked"))

        result = make_engine(client, db).run()

        assert not result.success
        assert result.outcome == SyncOutcome.failed("database is locked")
        run = db.get_last_sync_run()
        assert run["success"] == 0
        assert run["error_message"] == "database is locked"
        assert run["total_seen"] == 0
        assert run["inserted"] == 0
        assert run["updated"] == 0
        assert run["skipped"] == 0

    def test_write_failure_writes_failure_record(self, client, db):
        """Test that an execution failure is recorded with zeroed counts."""
        client.list_vcards.return_value = [vcard("A", "1")]
        db.insert_many_unordered = MagicMock(side_effect=StoreError("disk full"))

        result = make_engine(client, db).run()

        assert not result.success
        assert db.get_last_sync_run()["error_message"] == "disk full"

    def test_error_without_message_uses_type_name(self, client, db):
        """Test that an empty error text falls back to the exception type."""
        client.list_vcards.return_value = [vcard("A", "1")]
        db.read_name_index = MagicMock(side_effect=RuntimeError())

        result = make_engine(client, db).run()

        assert result.error == "RuntimeError"
        assert db.get_last_sync_run()["error_message"] == "RuntimeError"

    def test_audit_failure_is_swallowed(self, client, db, caplog):
        """Test that a failing audit write is logged and never raised."""
        client.list_vcards.return_value = [vcard("A", "1")]
        db.append_sync_run = MagicMock(side_effect=StoreError("readonly database"))

        with caplog.at_level(logging.ERROR, logger="icontact_sync.sync.engine"):
            result = make_engine(client, db).run()

        assert result.success
        assert result.audit_error == "readonly database"
        assert db.read_name_index() == {"1": "A"}
        assert "Failed to record sync run" in caplog.text

    def test_audit_failure_after_run_failure(self, client, db):
        """Test that the original error is kept when recording also fails."""
        client.list_vcards.return_value = [vcard("A", "1")]
        db.read_name_index = MagicMock(side_effect=StoreError("locked"))
        db.append_sync_run = MagicMock(side_effect=StoreError("readonly"))

        result = make_engine(client, db).run()

        assert result.error == "locked"
        assert result.audit_error == "readonly"

    def test_failure_is_logged_with_phase(self, client, db, caplog):
        """Test that the failing phase appears in the log."""
        client.list_address_books.side_effect = CardDAVError("unreachable")

        with caplog.at_level(logging.ERROR, logger="icontact_sync.sync.engine"):
            make_engine(client, db).run()

        assert "failed during fetching" in caplog.text


# ==============================================================================
# Dry Run, Guard and Timing
# ==============================================================================


class TestSyncEngineBehaviour:
    """Tests for dry runs, run exclusion and timing."""

    def test_dry_run_writes_nothing(self, client, db):
        """Test that a dry run stops after planning."""
        db.insert_many_unordered([Contact("Old", "1")])
        client.list_vcards.return_value = [vcard("New", "1"), vcard("B", "2")]

        result = make_engine(client, db).run(dry_run=True)

        assert result.success
        assert result.dry_run
        assert result.outcome is None
        assert len(result.plan.inserts) == 1
        assert len(result.plan.updates) == 1
        assert db.read_name_index() == {"1": "Old"}
        assert db.get_sync_run_count() == 0

    def test_dry_run_failure_writes_no_record(self, client, db):
        """Test that a failing dry run does not touch the audit trail."""
        client.list_vcards.return_value = [vcard("A", "1")]
        db.read_name_index = MagicMock(side_effect=StoreError("locked"))

        result = make_engine(client, db).run(dry_run=True)

        assert not result.success
        assert db.get_sync_run_count() == 0

    def test_run_in_progress_is_rejected(self, client, db):
        """Test that a second run on the same engine is refused."""
        engine = make_engine(client, db)
        started = threading.Event()
        release = threading.Event()

        def blocking_fetch():
            started.set()
            release.wait(timeout=5)
            return []

        client.list_address_books.side_effect = blocking_fetch
        worker = threading.Thread(target=engine.run)
        worker.start()
        try:
            assert started.wait(timeout=5)
            with pytest.raises(SyncInProgressError):
                engine.run()
        finally:
            release.set()
            worker.join(timeout=5)

    def test_engine_is_reusable_after_failure(self, client, db):
        """Test that the guard is released after a failed run."""
        engine = make_engine(client, db)
        client.list_address_books.side_effect = [
            CardDAVError("down"),
            [AddressBook(url="https://dav/book/")],
        ]

        assert not engine.run().success
        assert engine.run().success
        assert engine.phase == SyncPhase.IDLE

    def test_duration_uses_clock(self, client, db):
        """Test that duration is measured with the injected clock."""
        clock = MagicMock(side_effect=[100.0, 102.5])

        result = make_engine(client, db, clock=clock).run()

        assert result.duration == pytest.approx(2.5)

    def test_duration_is_logged(self, client, db, caplog):
        """Test that completion is logged with the elapsed time."""
        clock = MagicMock(side_effect=[0.0, 1.25])

        with caplog.at_level(logging.INFO, logger="icontact_sync.sync.engine"):
            make_engine(client, db, clock=clock).run()

        assert "Sync run completed in 1.25s" in caplog.text

    def test_counts_are_logged(self, client, db, caplog):
        """Test that the final counts are logged."""
        client.list_vcards.return_value = [vcard("A", "1")]

        with caplog.at_level(logging.INFO, logger="icontact_sync.sync.engine"):
            make_engine(client, db).run()

        assert "Inserted: 1, Updated: 0, Skipped: 0" in caplog.text

    def test_get_status(self, client, db):
        """Test the status snapshot."""
        client.list_vcards.return_value = [vcard("A", "1")]
        engine = make_engine(client, db)
        engine.run()

        status = engine.get_status()

        assert status["phase"] == "idle"
        assert status["contact_count"] == 1
        assert status["last_run"]["inserted"] == 1


class TestSyncOutcome:
    """Tests for the SyncOutcome record."""

    def test_failed_outcome_is_zeroed(self):
        """Test the failure constructor."""
        outcome = SyncOutcome.failed("boom")
        assert outcome.total_seen == 0
        assert outcome.inserted == 0
        assert outcome.updated == 0
        assert outcome.skipped == 0
        assert not outcome.success
        assert outcome.error_message == "boom"

    def test_to_record(self):
        """Test conversion to a store record."""
        record = SyncOutcome(total_seen=3, inserted=1, updated=1, skipped=1).to_record()
        assert record == {
            "total_seen": 3,
            "inserted": 1,
            "updated": 1,
            "skipped": 1,
            "success": True,
            "error_message": None,
        }


class TestSyncRunResult:
    """Tests for SyncRunResult."""

    def test_default_is_not_success(self):
        """Test that an unfinished result is not successful."""
        assert not SyncRunResult().success

    def test_summary_includes_counts(self):
        """Test summary text for a completed run."""
        result = SyncRunResult(
            phase=SyncPhase.COMPLETED,
            outcome=SyncOutcome(total_seen=2, inserted=1, updated=0, skipped=1),
            records_fetched=3,
            contacts_parsed=2,
            duration=1.5,
        )
        summary = result.summary()
        assert "Inserted: 1" in summary
        assert "Skipped: 1" in summary
        assert "Skipped (unparsable): 1" in summary
        assert "Duration: 1.50s" in summary

    def test_summary_includes_error(self):
        """Test summary text for a failed run."""
        result = SyncRunResult(phase=SyncPhase.FAILED, error="boom")
        assert "Error: boom" in result.summary()
