"""
Tests for the Snapshot Differ.

These tests verify:
1. Identical snapshots produce an empty diff
2. Changes are categorized by the fixed change table
3. Added and removed paths are reported separately from changes
4. Numeric keys are split into increased and decreased
5. The snapshot history is a bounded ring buffer
"""

import pytest

from patternscope.config import EngineSettings
from patternscope.dom import HtmlDocument
from patternscope.scanning.snapshot import (
    ChangeType,
    Diff,
    SnapshotDiffer,
    categorize_change,
    diff_values,
)


# =============================================================================
# TEST FIXTURES
# =============================================================================

def make_document(body: str) -> HtmlDocument:
    """Helper to build a document from body markup."""
    return HtmlDocument(f"<html><body>{body}</body></html>")


def make_differ(doc: HtmlDocument, **overrides) -> SnapshotDiffer:
    """Helper to build a differ with a fixed clock."""
    settings = EngineSettings(**overrides)
    return SnapshotDiffer(doc, settings=settings, clock=lambda: 1000.0)


def entry_at(diff: Diff, path: str):
    matching = [e for e in diff.changed if e.path == path]
    assert len(matching) == 1, f"expected one change at {path}, got {len(matching)}"
    return matching[0]


# =============================================================================
# CHANGE TABLE TESTS
# =============================================================================

class TestCategorizeChange:
    """Test the fixed change classification table."""

    def test_child_count_up_and_down(self):
        assert categorize_change("child_count", 1, 3) == ChangeType.CHILDREN_ADDED
        assert categorize_change("child_count", 3, 1) == ChangeType.CHILDREN_REMOVED

    def test_text_length_up_and_down(self):
        assert categorize_change("text_length", 2, 8) == ChangeType.TEXT_GREW
        assert categorize_change("text_length", 8, 2) == ChangeType.TEXT_SHRUNK

    def test_value_cleared_and_filled(self):
        assert categorize_change("value", "hi", "") == ChangeType.INPUT_CLEARED
        assert categorize_change("value", "", "hi") == ChangeType.INPUT_FILLED
        assert categorize_change("value", "a", "b") == ChangeType.VALUE_CHANGED

    def test_display_transitions(self):
        assert categorize_change("display", "none", "block") == ChangeType.BECAME_VISIBLE
        assert categorize_change("display", "block", "none") == ChangeType.BECAME_HIDDEN
        assert categorize_change("display", "block", "flex") == ChangeType.VALUE_CHANGED

    def test_state_keys(self):
        assert categorize_change("scroll_top", 0, 10) == ChangeType.SCROLLED
        assert categorize_change("aria-expanded", "false", "true") == ChangeType.ARIA_TOGGLED
        assert categorize_change("checked", False, True) == ChangeType.CHECK_TOGGLED

    def test_unknown_key_is_value_changed(self):
        assert categorize_change("data-state", "a", "b") == ChangeType.VALUE_CHANGED

    def test_diff_values_reports_new_and_missing_keys(self):
        changes = diff_values({"text": "a"}, {"value": "x"})

        assert [(c.key, c.before, c.after) for c in changes] == [
            ("text", "a", None),
            ("value", None, "x"),
        ]


# =============================================================================
# SCAN CYCLE TESTS
# =============================================================================

class TestScanCycle:
    """Test first_scan / next_scan behavior."""

    def test_identical_snapshots_give_empty_diff(self):
        doc = make_document("<div><span>Hi</span></div>")
        differ = make_differ(doc)

        differ.first_scan()
        diff = differ.next_scan()

        assert diff.is_empty
        assert diff.changed == ()
        assert set(diff.unchanged) == {"DIV[0]", "DIV[0]>SPAN[0]"}

    def test_next_scan_without_baseline_starts_one(self):
        doc = make_document("<div></div>")
        differ = make_differ(doc)

        diff = differ.next_scan()

        assert diff.is_empty
        assert differ.snapshot_count == 1

    def test_first_scan_clears_history(self):
        doc = make_document("<div></div>")
        differ = make_differ(doc)
        differ.first_scan()
        differ.next_scan()

        differ.first_scan()

        assert differ.snapshot_count == 1

    def test_ring_buffer_keeps_last_snapshots(self):
        doc = make_document("<div></div>")
        differ = make_differ(doc, max_snapshots=3)

        differ.first_scan()
        for _ in range(4):
            differ.next_scan()

        assert differ.snapshot_count == 3

    def test_element_count(self):
        doc = make_document("<ul><li>a</li><li>b</li></ul>")
        differ = make_differ(doc)

        differ.first_scan()

        assert differ.element_count == 3


# =============================================================================
# DIFF CONTENT TESTS
# =============================================================================

class TestDiffContent:
    """Test what ends up in each bucket of a Diff."""

    def test_text_grew(self):
        doc = make_document("<div><span>Hi</span></div>")
        differ = make_differ(doc)
        differ.first_scan()

        doc.set_text(doc.query("span"), "Hi there")
        diff = differ.next_scan()

        entry = entry_at(diff, "DIV[0]>SPAN[0]")
        change = entry.change_for("text_length")
        assert change.before == 2
        assert change.after == 8
        assert change.change_type == ChangeType.TEXT_GREW
        assert any(
            n.path == "DIV[0]>SPAN[0]" and n.key == "text_length"
            for n in diff.increased
        )

    def test_children_added_and_new_path(self):
        doc = make_document("<ul><li>a</li></ul>")
        differ = make_differ(doc)
        differ.first_scan()

        doc.append_html(doc.query("ul"), "<li>b</li>")
        diff = differ.next_scan()

        assert entry_at(diff, "UL[0]").has_change(ChangeType.CHILDREN_ADDED)
        assert [a.path for a in diff.added] == ["UL[0]>LI[1]"]
        assert diff.summary.added == 1

    def test_removed_path(self):
        doc = make_document("<ul><li>a</li><li>b</li></ul>")
        differ = make_differ(doc)
        differ.first_scan()

        doc.remove(doc.query_all("li")[1])
        diff = differ.next_scan()

        assert [r.path for r in diff.removed] == ["UL[0]>LI[1]"]
        assert entry_at(diff, "UL[0]").has_change(ChangeType.CHILDREN_REMOVED)
        assert any(d.key == "child_count" for d in diff.decreased)

    def test_input_cleared(self):
        doc = make_document('<input value="hello">')
        differ = make_differ(doc)
        differ.first_scan()

        doc.set_value(doc.query("input"), "")
        diff = differ.next_scan()

        entry = entry_at(diff, "INPUT[0]")
        assert entry.has_change(ChangeType.INPUT_CLEARED)
        assert entry.change_for("value_length").after == 0

    def test_became_visible(self):
        doc = make_document('<div id="panel" style="display: none"></div>')
        differ = make_differ(doc)
        differ.first_scan()

        doc.set_style(doc.query("#panel"), display="block")
        diff = differ.next_scan()

        assert entry_at(diff, "DIV[0]").has_change(ChangeType.BECAME_VISIBLE)

    def test_aria_state_toggled(self):
        doc = make_document('<button aria-expanded="false">Menu</button>')
        differ = make_differ(doc)
        differ.first_scan()

        doc.set_attribute(doc.query("button"), "aria-expanded", "true")
        diff = differ.next_scan()

        assert entry_at(diff, "BUTTON[0]").has_change(ChangeType.ARIA_TOGGLED)

    def test_scrolled(self):
        doc = make_document('<div style="height: 100px"></div>')
        box = doc.query("div")
        doc.set_scroll(box, height=400)
        differ = make_differ(doc)
        differ.first_scan()

        doc.set_scroll(box, top=120)
        diff = differ.next_scan()

        change = entry_at(diff, "DIV[0]").change_for("scroll_top")
        assert change.change_type == ChangeType.SCROLLED
        assert change.after == 120

    def test_long_data_attributes_not_captured(self):
        doc = make_document(f'<div data-short="a" data-long="{"x" * 200}"></div>')
        differ = make_differ(doc)

        snap = differ.first_scan()

        record = snap.elements["DIV[0]"]
        assert "data-short" in record.data_attrs
        assert "data-long" not in record.data_attrs

    def test_filter_by_type(self):
        doc = make_document('<input id="a" value="x"><input id="b" value="">')
        differ = make_differ(doc)
        differ.first_scan()

        doc.set_value(doc.query("#a"), "")
        doc.set_value(doc.query("#b"), "typed")
        diff = differ.next_scan()

        cleared = SnapshotDiffer.filter_by_type(diff, ChangeType.INPUT_CLEARED)
        filled = SnapshotDiffer.filter_by_type(diff, ChangeType.INPUT_FILLED)
        assert [e.path for e in cleared] == ["INPUT[0]"]
        assert [e.path for e in filled] == ["INPUT[1]"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
