"""
Sync engine for one-way iCloud contacts reconciliation.

Sequences one run: fetch raw vCards, parse, deduplicate, plan against the
stored names, execute the plan, and append one audit record. The remote
address book is authoritative; local-only contacts are left alone.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from icontact_sync.api.carddav import CardDAVClient
from icontact_sync.storage.db import ContactDatabase
from icontact_sync.sync.contact import parse_vcards
from icontact_sync.sync.executor import PlanExecutor
from icontact_sync.sync.planner import WritePlan, dedupe_contacts, plan_writes

logger = logging.getLogger(__name__)


class SyncPhase(str, Enum):
    """Phases of a single sync run."""

    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncInProgressError(Exception):
    """Raised when a run is requested while another run is active."""

    pass


@dataclass(frozen=True)
class SyncOutcome:
    """
    Persisted audit record for one run.

    On success the counts satisfy inserted + updated + skipped == total_seen,
    where total_seen is the number of unique contacts. Failed runs carry
    zeroed counts and the error text.
    """

    total_seen: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    success: bool = True
    error_message: Optional[str] = None

    @classmethod
    def failed(cls, error_message: str) -> "SyncOutcome":
        return cls(success=False, error_message=error_message)

    def to_record(self) -> dict[str, Any]:
        return {
            "total_seen": self.total_seen,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "success": self.success,
            "error_message": self.error_message,
        }


@dataclass
class SyncRunResult:
    """
    Result of SyncEngine.run().

    The primary result is the phase the run ended in and its outcome.
    audit_error is set when writing the outcome record itself failed; it
    never changes whether the run succeeded.
    """

    phase: SyncPhase = SyncPhase.IDLE
    outcome: Optional[SyncOutcome] = None
    plan: Optional[WritePlan] = None
    dry_run: bool = False

    records_fetched: int = 0
    contacts_parsed: int = 0
    duplicates_dropped: int = 0
    insert_conflicts: list[str] = field(default_factory=list)

    duration: float = 0.0
    error: Optional[str] = None
    audit_error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.phase == SyncPhase.COMPLETED

    @property
    def unparsable(self) -> int:
        return self.records_fetched - self.contacts_parsed

    def summary(self) -> str:
        """Human-readable summary of the run."""
        lines = [
            "Sync Summary:",
            f"  Records fetched: {self.records_fetched}",
            f"  Contacts parsed: {self.contacts_parsed}",
        ]
        if self.unparsable:
            lines.append(f"  Skipped (unparsable): {self.unparsable}")
        if self.duplicates_dropped:
            lines.append(f"  Duplicates dropped: {self.duplicates_dropped}")

        if self.dry_run and self.plan is not None:
            lines.extend(
                [
                    "",
                    "Changes to apply:",
                    f"  Insert: {len(self.plan.inserts)}",
                    f"  Update: {len(self.plan.updates)}",
                    f"  Unchanged: {self.plan.unchanged}",
                ]
            )
        elif self.outcome is not None and self.outcome.success:
            lines.extend(
                [
                    "",
                    f"  Inserted: {self.outcome.inserted}",
                    f"  Updated: {self.outcome.updated}",
                    f"  Skipped: {self.outcome.skipped}",
                ]
            )
            if self.insert_conflicts:
                lines.append(f"  Insert conflicts: {len(self.insert_conflicts)}")

        if self.error:
            lines.extend(["", f"Error: {self.error}"])
        if self.audit_error:
            lines.append(f"Warning: sync run was not recorded: {self.audit_error}")

        lines.append(f"\nDuration: {self.duration:.2f}s")
        return "\n".join(lines)


def _error_text(error: BaseException) -> str:
    return str(error) or type(error).__name__


class SyncEngine:
    """
    Orchestrates one reconciliation run at a time.

    Runs move through FETCHING, PARSING, PLANNING and EXECUTING and end in
    COMPLETED or FAILED. A failure during fetching leaves no audit record;
    any failure after parsing has begun is recorded with zeroed counts.
    Only one run may be active per engine.

    Usage:
        engine = SyncEngine(client=client, store=store)
        result = engine.run()
        print(result.summary())
    """

    def __init__(
        self,
        client: CardDAVClient,
        store: ContactDatabase,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the sync engine.

        Args:
            client: Remote directory client
            store: Open contact store
            clock: Monotonic clock used to time runs
        """
        self.client = client
        self.store = store
        self._clock = clock
        self._run_lock = threading.Lock()
        self.phase = SyncPhase.IDLE

    def _enter(self, phase: SyncPhase) -> None:
        logger.debug(f"Sync phase: {self.phase.value} -> {phase.value}")
        self.phase = phase

    def run(self, dry_run: bool = False) -> SyncRunResult:
        """
        Execute one sync run.

        Args:
            dry_run: Stop after planning; nothing is written and no audit
                     record is appended

        Returns:
            SyncRunResult describing the run. Run failures are reported
            here, not raised.

        Raises:
            SyncInProgressError: If another run is active on this engine
        """
        if not self._run_lock.acquire(blocking=False):
            raise SyncInProgressError("A sync run is already in progress")
        try:
            return self._run(dry_run)
        finally:
            self.phase = SyncPhase.IDLE
            self._run_lock.release()

    def _run(self, dry_run: bool) -> SyncRunResult:
        result = SyncRunResult(dry_run=dry_run)
        started = self._clock()

        logger.info("Syncing contacts from remote address book...")
        self._enter(SyncPhase.FETCHING)
        try:
            records = self.client.fetch_all_vcards()
        except Exception as e:
            # Nothing was parsed, so this run leaves no audit record
            return self._fail(result, started, e, record=False)
        result.records_fetched = len(records)

        try:
            self._enter(SyncPhase.PARSING)
            contacts = parse_vcards(records)
            result.contacts_parsed = len(contacts)
            if result.unparsable:
                logger.info(f"Skipped {result.unparsable} records without name or phone")

            unique, dropped = dedupe_contacts(contacts)
            result.duplicates_dropped = dropped
            if dropped:
                logger.info(f"Dropped {dropped} duplicate contacts (same phone)")

            self._enter(SyncPhase.PLANNING)
            plan = plan_writes(unique, self.store.read_name_index())
            result.plan = plan
            logger.debug(f"Write plan: {plan.summary()}")

            if dry_run:
                return self._complete(result, started)

            self._enter(SyncPhase.EXECUTING)
            execution = PlanExecutor(self.store).execute(plan)
        except Exception as e:
            return self._fail(result, started, e, record=True)

        result.insert_conflicts = execution.conflicts
        if execution.conflicts:
            logger.warning(
                f"{len(execution.conflicts)} contacts already existed in the store, "
                "skipping"
            )

        skipped = len(unique) - execution.inserted_count - execution.updated_count
        outcome = SyncOutcome(
            total_seen=len(unique),
            inserted=execution.inserted_count,
            updated=execution.updated_count,
            skipped=skipped,
            success=True,
        )
        result.outcome = outcome
        logger.info(
            f"Inserted: {outcome.inserted}, Updated: {outcome.updated}, "
            f"Skipped: {outcome.skipped}"
        )
        result.audit_error = self._record(outcome)
        return self._complete(result, started)

    def _complete(self, result: SyncRunResult, started: float) -> SyncRunResult:
        self._enter(SyncPhase.COMPLETED)
        result.phase = SyncPhase.COMPLETED
        result.duration = self._clock() - started
        mode = "Dry run" if result.dry_run else "Sync run"
        logger.info(f"{mode} completed in {result.duration:.2f}s")
        return result

    def _fail(
        self, result: SyncRunResult, started: float, error: Exception, record: bool
    ) -> SyncRunResult:
        failed_in = self.phase
        self._enter(SyncPhase.FAILED)
        result.phase = SyncPhase.FAILED
        result.error = _error_text(error)
        result.duration = self._clock() - started
        logger.error(
            f"Sync run failed during {failed_in.value} after "
            f"{result.duration:.2f}s: {result.error}"
        )

        if record and not result.dry_run:
            outcome = SyncOutcome.failed(result.error)
            result.outcome = outcome
            result.audit_error = self._record(outcome)
        return result

    def _record(self, outcome: SyncOutcome) -> Optional[str]:
        """
        Append the outcome to the audit trail.

        Returns:
            None on success, or the error text if the write failed. The
            failure is logged and never raised.
        """
        try:
            self.store.append_sync_run(outcome.to_record())
        except Exception as e:
            logger.error(f"Failed to record sync run: {e}")
            return _error_text(e)
        return None

    def get_status(self) -> dict[str, Any]:
        """Current phase, stored contact count and the last recorded run."""
        return {
            "phase": self.phase.value,
            "contact_count": self.store.get_contact_count(),
            "last_run": self.store.get_last_sync_run(),
        }

    def __repr__(self) -> str:
        return f"SyncEngine(store={self.store!r}, phase={self.phase.value})"
