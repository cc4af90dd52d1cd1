"""
Deduplication and write planning for contact reconciliation.

Both steps are pure: they take canonical contacts (and a snapshot of the
stored names) and return new values without touching the store.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from icontact_sync.sync.contact import Contact


@dataclass(frozen=True)
class NameUpdate:
    """A "set full_name where identity_key matches" directive."""

    identity_key: str
    new_full_name: str


@dataclass(frozen=True)
class WritePlan:
    """
    Minimal set of writes that makes the store reflect the source.

    Attributes:
        inserts: Contacts whose identity key is not stored yet
        updates: Name changes for contacts already stored
        unchanged: Number of contacts already stored with the same name
    """

    inserts: list[Contact] = field(default_factory=list)
    updates: list[NameUpdate] = field(default_factory=list)
    unchanged: int = 0

    @property
    def total(self) -> int:
        """Number of unique contacts the plan was computed from."""
        return len(self.inserts) + len(self.updates) + self.unchanged

    def has_changes(self) -> bool:
        return bool(self.inserts or self.updates)

    def summary(self) -> str:
        return (
            f"{len(self.inserts)} to insert, {len(self.updates)} to update, "
            f"{self.unchanged} unchanged"
        )


def dedupe_contacts(contacts: Iterable[Contact]) -> tuple[list[Contact], int]:
    """
    Collapse contacts to one per identity key, first occurrence wins.

    Later contacts with an already-seen key are dropped even when their
    full_name differs. Input order is preserved.

    Args:
        contacts: Canonical contacts in source order

    Returns:
        Tuple of (unique contacts, number of contacts dropped)
    """
    seen: set[str] = set()
    unique: list[Contact] = []
    dropped = 0

    for contact in contacts:
        if contact.identity_key in seen:
            dropped += 1
            continue
        seen.add(contact.identity_key)
        unique.append(contact)

    return unique, dropped


def plan_writes(
    unique: Iterable[Contact], existing: Mapping[str, str]
) -> WritePlan:
    """
    Diff unique contacts against the stored names.

    Args:
        unique: Deduplicated contacts
        existing: identity_key -> stored full_name, read in one bulk query
                  before planning

    Returns:
        WritePlan with inserts for unknown keys, updates for keys whose
        stored name differs (exact comparison) and a count of the rest
    """
    inserts: list[Contact] = []
    updates: list[NameUpdate] = []
    unchanged = 0

    for contact in unique:
        if contact.identity_key not in existing:
            inserts.append(contact)
        elif existing[contact.identity_key] != contact.full_name:
            updates.append(
                NameUpdate(
                    identity_key=contact.identity_key,
                    new_full_name=contact.full_name,
                )
            )
        else:
            unchanged += 1

    return WritePlan(inserts=inserts, updates=updates, unchanged=unchanged)
