"""
Unit Tests for the Remark Parser

Test coverage for:
- Structured (JSON) payloads
- Every legacy separator phrase
- Separator precedence (earliest index wins)
- Whole-text fallback and remark/description fallback
"""

import logging

import pytest

from taskhive.remark_parser import (
    LEGACY_SEPARATORS,
    ParsedRemark,
    encode_remark,
    parse_legacy,
    parse_remark,
    parse_structured,
)


class TestStructured:
    """Test JSON payload decoding."""

    def test_notes_and_changes(self):
        assert parse_remark('{"notes": "a", "changes": "b"}') == ParsedRemark("a", "b")

    def test_encoded_payload(self):
        assert parse_remark(encode_remark("a", "b")) == ParsedRemark(notes="a", change_details="b")

    def test_missing_notes(self):
        assert parse_remark('{"changes": "fix it"}') == ParsedRemark("", "fix it")

    def test_empty_changes_absent(self):
        assert parse_remark('{"notes": "ok", "changes": "  "}').change_details is None

    def test_non_object_json_falls_through(self):
        assert parse_structured("[1, 2]") is None
        assert parse_remark("42") == ParsedRemark(notes="42")

    def test_non_string_fields(self):
        assert parse_remark('{"notes": 5, "changes": ["x"]}') == ParsedRemark("", None)


class TestLegacy:
    """Test historical plain-text encodings."""

    def test_changes_needed(self):
        assert parse_remark("done - Changes needed: fix X") == ParsedRemark("done", "fix X")

    @pytest.mark.parametrize("separator", LEGACY_SEPARATORS)
    def test_each_separator(self, separator):
        parsed = parse_remark(f"notes here{separator} the fix ")
        assert parsed.notes == "notes here"
        assert parsed.change_details == "the fix"

    def test_earliest_separator_wins(self):
        text = "ok - Requested changes: a - Changes needed: b"
        assert parse_legacy(text) == ParsedRemark("ok", "a - Changes needed: b")

    def test_changes_required_on_new_line(self):
        parsed = parse_remark("Looks close\nChanges Required: rename the field")
        assert parsed == ParsedRemark("Looks close", "rename the field")

    def test_separator_without_details(self):
        assert parse_remark("needs work - Changes needed") == ParsedRemark("needs work", None)

    def test_unknown_separator_is_plain(self):
        text = "good - Please fix: spacing"
        assert parse_remark(text) == ParsedRemark(notes=text)


class TestFallbacks:
    """Test remark/description selection and degenerate input."""

    def test_remark_preferred(self):
        assert parse_remark("from remark", "from description").notes == "from remark"

    def test_description_when_remark_blank(self):
        assert parse_remark("  ", "from description").notes == "from description"
        assert parse_remark(None, "from description").notes == "from description"

    def test_nothing_to_parse(self):
        assert parse_remark(None, None) == ParsedRemark(notes="")

    def test_malformed_json_is_plain(self):
        assert parse_remark('{"notes": ') == ParsedRemark(notes='{"notes": ')

    def test_non_text_values_count_as_empty(self):
        assert parse_remark({"notes": "a"}, "from description").notes == "from description"
        assert parse_remark(42, ["x"]) == ParsedRemark(notes="")

    def test_deeply_nested_json_is_plain(self):
        raw = "[" * 100000
        assert parse_structured(raw) is None
        assert parse_remark(raw) == ParsedRemark(notes=raw)

    def test_encode_without_changes(self):
        assert encode_remark("fine") == '{"notes": "fine"}'

    def test_deep_nesting_logged(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="remark_parser"):
            parse_remark("[" * 100000)
        assert "nested too deeply" in caplog.text
