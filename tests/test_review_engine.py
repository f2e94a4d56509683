"""
Unit Tests for the Review Derivation Engine

Test coverage for:
- Classification of new_status values
- Latest-record selection and tie-breaking
- Order independence of derivation
- History annotation with parsed notes
- Tolerance of garbled historical data
"""

import random

import pytest

from taskhive.review_engine import classify, classify_action, derive_review, summarize_reviews
from taskhive.status import ReviewAction, ReviewStatus
from tests.conftest import make_record


class TestClassify:
    """Test the single classification function."""

    @pytest.mark.parametrize("new_status", ["Request Changes", "request_changes", " CHANGES REQUESTED "])
    def test_request(self, new_status):
        assert classify(new_status) == (ReviewStatus.CHANGES_REQUESTED, ReviewAction.REQUEST_CHANGES, True)

    @pytest.mark.parametrize("new_status", ["On Hold", "hold", "on-hold"])
    def test_hold(self, new_status):
        assert classify(new_status) == (ReviewStatus.ON_HOLD, ReviewAction.HOLD_DISCUSSION, True)

    def test_completed_with_approval_text(self):
        assert classify("Completed", "Review approved: ship it") == (
            ReviewStatus.APPROVED, ReviewAction.APPROVE, False
        )
        assert classify("done", "Approved: fine")[0] == ReviewStatus.APPROVED

    def test_approval_text_in_remark(self):
        assert classify("Completed", "", "review approved")[0] == ReviewStatus.APPROVED

    def test_plain_completion_is_pending(self):
        assert classify("Done", "Task status changed from In Progress to Done") == (
            ReviewStatus.PENDING, None, True
        )

    @pytest.mark.parametrize("new_status", [None, "", "In Progress", "???", 12])
    def test_unknown_is_pending(self, new_status):
        assert classify(new_status) == (ReviewStatus.PENDING, None, True)

    def test_history_action_defaults_to_approve(self):
        assert classify_action("Request Changes") == ReviewAction.REQUEST_CHANGES
        assert classify_action("On Hold") == ReviewAction.HOLD_DISCUSSION
        assert classify_action(None) == ReviewAction.APPROVE
        assert classify_action("garbage") == ReviewAction.APPROVE


class TestDerive:
    """Test derivation over a task's records."""

    def test_empty(self):
        review = derive_review([], task_id=4)
        assert review.review_status == ReviewStatus.PENDING
        assert review.needs_review is True
        assert review.history == ()
        assert review.latest_notes is None

    def test_request_then_approve(self):
        records = [
            make_record("Request Changes", minutes=1, remark="fix spacing", sequence=1),
            make_record("Completed", minutes=2, description="Review approved: looks good", sequence=2),
        ]
        review = derive_review(records, task_id=1)
        assert review.review_status == ReviewStatus.APPROVED
        assert review.needs_review is False
        assert review.last_action == ReviewAction.APPROVE
        assert review.latest_notes == "looks good"
        assert [n.action for n in review.history] == [ReviewAction.REQUEST_CHANGES, ReviewAction.APPROVE]
        assert review.history[0].notes == "fix spacing"

    def test_latest_by_created_at_not_input_order(self):
        records = [
            make_record("Completed", minutes=5, description="Review approved: ok", sequence=1),
            make_record("Request Changes", minutes=9, remark='{"notes": "no", "changes": "redo"}', sequence=2),
        ]
        review = derive_review(list(reversed(records)))
        assert review.review_status == ReviewStatus.CHANGES_REQUESTED
        assert review.latest_change_details == "redo"

    def test_same_timestamp_tie_broken_by_sequence(self):
        records = [
            make_record("On Hold", minutes=3, description="Held for discussion: later", sequence=8),
            make_record("Completed", minutes=3, description="Review approved: ok", sequence=7),
        ]
        assert derive_review(records).review_status == ReviewStatus.ON_HOLD

    def test_shuffle_invariance(self):
        records = [
            make_record("Todo", minutes=0, description='Task "x" created', sequence=1),
            make_record("Done", minutes=1, description="Task status changed from In Progress to Done", sequence=2),
            make_record("Request Changes", minutes=2, description="Feedback: a - Changes needed: b", sequence=3),
            make_record("Todo", minutes=3, sequence=4),
            make_record("Done", minutes=4, sequence=5),
            make_record("Completed", minutes=4, description="Review approved: fine", sequence=6),
        ]
        expected = derive_review(records, task_id=1)
        rng = random.Random(1234)
        for _ in range(20):
            shuffled = records[:]
            rng.shuffle(shuffled)
            assert derive_review(shuffled, task_id=1) == expected
        assert expected.review_status == ReviewStatus.APPROVED

    def test_legacy_feedback_in_history(self):
        records = [make_record("Request Changes", description="Feedback: close - Changes needed: tests", sequence=1)]
        note = derive_review(records).latest
        assert note.notes == "close"
        assert note.change_details == "tests"

    def test_garbled_values_do_not_raise(self):
        records = [
            make_record(None, minutes=1, description="", sequence=1),
            make_record("\x00??", minutes=2, remark="{not json", sequence=2),
        ]
        review = derive_review(records)
        assert review.review_status == ReviewStatus.PENDING
        assert all(n.action == ReviewAction.APPROVE for n in review.history)

    def test_non_integer_sequence_does_not_raise(self):
        records = [
            make_record("Completed", minutes=3, description="Review approved: ok", sequence=3),
            make_record("Request Changes", minutes=3, sequence="4"),
            make_record("On Hold", minutes=1, sequence=None, record_id=17),
        ]
        review = derive_review(records)
        assert review.review_status == ReviewStatus.APPROVED
        assert len(review.history) == 3

    def test_non_text_remark_does_not_raise(self):
        records = [make_record("Request Changes", remark={"notes": "a"}, description=None, sequence=1)]
        review = derive_review(records)
        assert review.review_status == ReviewStatus.CHANGES_REQUESTED
        assert review.latest_notes == ""

    def test_to_dict(self):
        review = derive_review([make_record("On Hold", description="Held for discussion: sync", sequence=1)])
        data = review.to_dict()
        assert data["review_status"] == "on_hold"
        assert data["last_action"] == "hold_discussion"
        assert data["latest_notes"] == "sync"
        assert len(data["history"]) == 1


class TestSummary:
    """Test per-status counts."""

    def test_counts(self):
        reviews = [
            derive_review([make_record("Completed", description="Review approved: ok", sequence=1)]),
            derive_review([make_record("On Hold", sequence=1)]),
            derive_review([]),
        ]
        summary = summarize_reviews(reviews)
        assert summary == {
            "pending": 1,
            "approved": 1,
            "changes_requested": 0,
            "on_hold": 1,
            "total": 3,
        }
