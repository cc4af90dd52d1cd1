"""
Contact data model and vCard record parsing.

Provides the canonical Contact representation used by the reconciliation
engine, and a tolerant parser that turns one raw vCard into a Contact or
rejects it. A malformed record never raises; it simply yields no contact.
"""

import io
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Optional

from vobject.base import ParseError, getLogicalLines, parseLine
from vobject.icalendar import stringToTextValues

from icontact_sync.utils.normalization import normalize_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Contact:
    """
    Canonical contact ready for reconciliation.

    Attributes:
        full_name: Display name from the source record
        identity_key: Normalized phone value, unique per contact

    Usage:
        contact = parse_vcard(raw_vcard)
        if contact is not None:
            print(contact.identity_key)
    """

    full_name: str
    identity_key: str

    def __post_init__(self) -> None:
        if not self.full_name:
            raise ValueError("Contact full_name must not be empty")
        if not self.identity_key:
            raise ValueError("Contact identity_key must not be empty")

    def to_dict(self) -> dict[str, str]:
        return {"full_name": self.full_name, "identity_key": self.identity_key}


def _unescape_text(value: str) -> str:
    # No list separator: FN is a single text value
    return "".join(stringToTextValues(value, listSeparator=None))


def _content_lines(raw: str) -> Iterator[tuple[str, str]]:
    """
    Yield (NAME, value) for each logical line vobject can read.

    Folded lines are joined and group prefixes and parameters are dropped.
    Lines that are not content lines are skipped.
    """
    for line, line_number in getLogicalLines(io.StringIO(raw)):
        try:
            name, _params, value, _group = parseLine(line, line_number)
        except ParseError:
            continue
        yield name.upper(), value or ""


def _extract_fields(raw: str) -> tuple[Optional[str], Optional[str]]:
    """
    Find the first non-empty FN value and the first non-empty TEL value.

    Returns:
        Tuple of (full_name, phone), either may be None
    """
    full_name: Optional[str] = None
    phone: Optional[str] = None

    for name, value in _content_lines(raw):
        if name == "FN" and full_name is None:
            full_name = _unescape_text(value).strip() or None
        elif name == "TEL" and phone is None and value.strip():
            # Later TEL entries are ignored; the first is the preferred one
            phone = value

        if full_name is not None and phone is not None:
            break

    return full_name, phone


def parse_vcard(raw: Any) -> Optional[Contact]:
    """
    Parse one raw vCard record into a canonical Contact.

    Property names match case-insensitively and may carry a group prefix
    (``item1.TEL``) or parameters (``TEL;type=CELL``). The first non-empty
    FN and the first non-empty TEL are used.

    Args:
        raw: vCard text as returned by the remote directory

    Returns:
        Contact, or None when the display name or phone is missing, the
        normalized phone is empty, or the record is malformed

    Example:
        >>> parse_vcard("FN:Alice\\nTEL:555-1234")
        Contact(full_name='Alice', identity_key='5551234')
    """
    if not isinstance(raw, str):
        return None

    try:
        full_name, phone = _extract_fields(raw)
        identity_key = normalize_phone(phone)
        if not full_name or not identity_key:
            return None
        return Contact(full_name=full_name, identity_key=identity_key)
    except Exception as e:
        logger.debug(f"Discarding unparsable record: {e}")
        return None


def parse_vcards(records: list[Any]) -> list[Contact]:
    """
    Parse a batch of raw records, dropping the ones that yield no contact.

    Source order is preserved.
    """
    contacts = []
    for raw in records:
        contact = parse_vcard(raw)
        if contact is not None:
            contacts.append(contact)
    return contacts
