"""
Unit tests for the contact module.

Tests the Contact data model and vCard record parsing.
"""

import pytest

from icontact_sync.sync.contact import Contact, parse_vcard, parse_vcards


class TestContact:
    """Tests for the Contact data class."""

    def test_create_contact(self):
        """Test creating a contact with both fields."""
        contact = Contact(full_name="Alice", identity_key="5551234")
        assert contact.full_name == "Alice"
        assert contact.identity_key == "5551234"

    def test_empty_full_name_rejected(self):
        """Test that an empty full_name raises ValueError."""
        with pytest.raises(ValueError, match="full_name"):
            Contact(full_name="", identity_key="5551234")

    def test_empty_identity_key_rejected(self):
        """Test that an empty identity_key raises ValueError."""
        with pytest.raises(ValueError, match="identity_key"):
            Contact(full_name="Alice", identity_key="")

    def test_contact_is_immutable(self):
        """Test that contacts cannot be modified after creation."""
        contact = Contact(full_name="Alice", identity_key="5551234")
        with pytest.raises(AttributeError):
            contact.full_name = "Bob"  # type: ignore[misc]

    def test_contacts_with_same_values_are_equal(self):
        """Test value equality."""
        assert Contact("Alice", "1") == Contact("Alice", "1")
        assert Contact("Alice", "1") != Contact("Alice", "2")

    def test_to_dict(self):
        """Test dictionary conversion."""
        contact = Contact(full_name="Alice", identity_key="5551234")
        assert contact.to_dict() == {"full_name": "Alice", "identity_key": "5551234"}


class TestParseVcard:
    """Tests for parse_vcard()."""

    def test_parse_minimal_record(self):
        """Test the simplest record with FN and TEL."""
        contact = parse_vcard("FN:Alice\nTEL:555-1234")
        assert contact == Contact(full_name="Alice", identity_key="5551234")

    def test_parse_full_vcard(self):
        """Test a complete vCard 3.0 record with CRLF line endings."""
        raw = (
            "BEGIN:VCARD\r\n"
            "VERSION:3.0\r\n"
            "N:Smith;John;;;\r\n"
            "FN:John Smith\r\n"
            "TEL;type=CELL;type=VOICE;type=pref:+1 (555) 123-4567\r\n"
            "EMAIL;type=INTERNET:john@example.com\r\n"
            "END:VCARD\r\n"
        )
        contact = parse_vcard(raw)
        assert contact is not None
        assert contact.full_name == "John Smith"
        assert contact.identity_key == "+15551234567"

    def test_only_first_tel_is_used(self):
        """Test that later TEL entries are ignored."""
        contact = parse_vcard("FN:Bob\nTEL:111\nTEL:222")
        assert contact is not None
        assert contact.identity_key == "111"

    def test_tel_before_fn(self):
        """Test that field order in the record does not matter."""
        contact = parse_vcard("BEGIN:VCARD\nTEL:555 0000\nFN:Carol\nEND:VCARD")
        assert contact == Contact(full_name="Carol", identity_key="5550000")

    def test_first_fn_is_used(self):
        """Test that a second FN does not replace the first."""
        contact = parse_vcard("FN:First\nFN:Second\nTEL:1")
        assert contact is not None
        assert contact.full_name == "First"

    def test_empty_tel_line_is_skipped(self):
        """Test that a TEL with no value does not hide a later TEL."""
        contact = parse_vcard("FN:Alice\nTEL:\nTEL:555-1234")
        assert contact == Contact(full_name="Alice", identity_key="5551234")

    def test_blank_fn_line_is_skipped(self):
        """Test that an empty FN does not hide a later FN."""
        contact = parse_vcard("FN:\nFN:   \nFN:Alice\nTEL:555-1234")
        assert contact == Contact(full_name="Alice", identity_key="5551234")

    def test_parameters_with_empty_value_are_skipped(self):
        """Test that an empty TEL with parameters is treated as absent."""
        contact = parse_vcard("FN:Alice\nTEL;type=CELL:\nitem2.TEL;type=HOME:555 0000")
        assert contact is not None
        assert contact.identity_key == "5550000"

    def test_tab_folded_tel(self):
        """Test unfolding a phone split across lines with a tab."""
        contact = parse_vcard("FN:Lee\nitem1.TEL;type=CELL:(555) 123\n\t-4567")
        assert contact is not None
        assert contact.identity_key == "5551234567"

    def test_escaped_newline_in_name(self):
        """Test that an escaped newline becomes a real newline."""
        contact = parse_vcard("FN:Line\\nBreak\nTEL:1")
        assert contact is not None
        assert contact.full_name == "Line\nBreak"

    def test_missing_tel_returns_none(self):
        """Test that a record without TEL yields no contact."""
        assert parse_vcard("BEGIN:VCARD\nFN:Dave\nEND:VCARD") is None

    def test_missing_fn_returns_none(self):
        """Test that a record without FN yields no contact."""
        assert parse_vcard("BEGIN:VCARD\nTEL:555\nEND:VCARD") is None

    def test_empty_fn_returns_none(self):
        """Test that a blank display name yields no contact."""
        assert parse_vcard("FN:   \nTEL:555") is None

    def test_tel_that_normalizes_to_empty_returns_none(self):
        """Test that punctuation-only phones yield no contact."""
        assert parse_vcard("FN:Eve\nTEL: ( ) - ") is None

    def test_group_prefixed_tel(self):
        """Test that group prefixes like item1. are accepted."""
        contact = parse_vcard("FN:Frank\nitem1.TEL;type=pref:555-9999\nitem1.X-ABLabel:work")
        assert contact is not None
        assert contact.identity_key == "5559999"

    def test_property_names_are_case_insensitive(self):
        """Test lowercase property names."""
        contact = parse_vcard("fn:Grace\ntel:555")
        assert contact == Contact(full_name="Grace", identity_key="555")

    def test_folded_lines_are_joined(self):
        """Test that folded continuation lines are unfolded."""
        contact = parse_vcard("FN:Henry Long\n  Name\nTEL:555")
        assert contact is not None
        assert contact.full_name == "Henry Long Name"

    def test_escaped_characters_in_name(self):
        """Test that escaped commas and semicolons are unescaped."""
        contact = parse_vcard("FN:Doe\\, Jane\nTEL:555")
        assert contact is not None
        assert contact.full_name == "Doe, Jane"

    def test_name_is_trimmed(self):
        """Test surrounding whitespace is stripped from the name."""
        contact = parse_vcard("FN:  Ivy  \nTEL:555")
        assert contact is not None
        assert contact.full_name == "Ivy"

    def test_name_keeps_case(self):
        """Test that names are not case-folded."""
        contact = parse_vcard("FN:mcDONALD\nTEL:555")
        assert contact is not None
        assert contact.full_name == "mcDONALD"

    def test_lines_without_colon_are_ignored(self):
        """Test that garbage lines do not break parsing."""
        contact = parse_vcard("garbage line\nFN:Jack\n???\nTEL:555")
        assert contact == Contact(full_name="Jack", identity_key="555")

    @pytest.mark.parametrize("raw", [None, 42, b"FN:A\nTEL:1", ["FN:A"], {}])
    def test_non_string_input_returns_none(self, raw):
        """Test that non-string records never raise."""
        assert parse_vcard(raw) is None

    def test_empty_string_returns_none(self):
        """Test that an empty record yields no contact."""
        assert parse_vcard("") is None

    def test_parse_is_deterministic(self):
        """Test that parsing the same record twice gives equal contacts."""
        raw = "FN:Kate\nTEL:(555) 000-1111"
        assert parse_vcard(raw) == parse_vcard(raw)


class TestParseVcards:
    """Tests for parse_vcards()."""

    def test_drops_unparsable_records(self):
        """Test that rejected records are removed from the batch."""
        records = ["FN:A\nTEL:1", "FN:B", None, "FN:C\nTEL:3"]
        contacts = parse_vcards(records)
        assert [c.full_name for c in contacts] == ["A", "C"]

    def test_preserves_order(self):
        """Test that source order is kept, duplicates included."""
        records = ["FN:B\nTEL:2", "FN:A\nTEL:1", "FN:B2\nTEL:2"]
        contacts = parse_vcards(records)
        assert [c.identity_key for c in contacts] == ["2", "1", "2"]

    def test_empty_batch(self):
        """Test parsing an empty batch."""
        assert parse_vcards([]) == []
