"""
Write plan execution against the contact store.
"""

import logging
from dataclasses import dataclass, field

from icontact_sync.storage.db import ContactDatabase
from icontact_sync.sync.planner import WritePlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionResult:
    """
    Counts reported by PlanExecutor.

    Attributes:
        inserted_count: Contacts actually inserted
        updated_count: Contacts whose stored name actually changed
        conflicts: Identity keys whose insert hit an existing row
    """

    inserted_count: int = 0
    updated_count: int = 0
    conflicts: list[str] = field(default_factory=list)


class PlanExecutor:
    """
    Applies a WritePlan with one bulk insert and one bulk update.

    Duplicate-key conflicts on insert are absorbed: the rows that did go
    in are still counted. Any other store failure raises StoreError to the
    caller. Skipped counts are derived by the caller, not tracked here.

    Usage:
        executor = PlanExecutor(store)
        result = executor.execute(plan)
    """

    def __init__(self, store: ContactDatabase):
        self.store = store

    def execute(self, plan: WritePlan) -> ExecutionResult:
        """
        Apply the plan to the store.

        Args:
            plan: Inserts and name updates computed by plan_writes()

        Returns:
            ExecutionResult with the measured counts

        Raises:
            StoreError: If a bulk operation fails for a reason other than
                        a duplicate key
        """
        inserted_count = 0
        updated_count = 0
        conflicts: list[str] = []

        if plan.inserts:
            insert_result = self.store.insert_many_unordered(plan.inserts)
            inserted_count = insert_result.inserted_count
            if insert_result.has_conflicts:
                conflicts = list(insert_result.duplicate_keys)
                logger.debug(
                    f"Insert conflicts on {len(conflicts)} identity keys: "
                    f"{', '.join(conflicts)}"
                )

        if plan.updates:
            updated_count = self.store.update_names_unordered(plan.updates)

        return ExecutionResult(
            inserted_count=inserted_count,
            updated_count=updated_count,
            conflicts=conflicts,
        )
