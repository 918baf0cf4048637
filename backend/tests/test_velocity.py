"""Tests for the velocity aggregation."""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from services.lifecycle import IssueLifecycle
from services.velocity import ClassifiedIssue, VelocityAggregator


@pytest.fixture
def aggregator():
    return VelocityAggregator(bug_label="bug")


@pytest.fixture
def classified(make_issue):
    def _make(number, lifecycle, **kwargs):
        return ClassifiedIssue(make_issue(number=number, **kwargs), lifecycle)
    return _make


class TestContributions:
    """Test the (sprint, category) pairs per lifecycle."""

    def test_completed_across_sprints(self):
        pairs = VelocityAggregator.contributions(IssueLifecycle(start=62, done=64), 70)
        assert pairs == [(62, "incomplete"), (63, "incomplete"), (64, "complete")]

    def test_completed_in_start_sprint(self):
        assert VelocityAggregator.contributions(IssueLifecycle(start=62, done=62), 70) == [
            (62, "complete")
        ]

    def test_open_runs_to_current_sprint(self):
        pairs = VelocityAggregator.contributions(IssueLifecycle(start=62), 64)
        assert pairs == [(62, "incomplete"), (63, "incomplete"), (64, "incomplete")]

    def test_started_after_current(self):
        """A sprint label for a future sprint contributes nothing yet."""
        assert VelocityAggregator.contributions(IssueLifecycle(start=66), 64) == []

    def test_rejected(self):
        assert VelocityAggregator.contributions(IssueLifecycle(rejected=63), 70) == [
            (63, "rejected")
        ]

    def test_not_started(self):
        assert VelocityAggregator.contributions(IssueLifecycle(), 70) == []
        assert VelocityAggregator.contributions(IssueLifecycle(done=63), 70) == []


class TestAggregate:
    """Test building the per-sprint report."""

    def test_counts_and_type_tags(self, aggregator, classified):
        report = aggregator.aggregate([
            classified(1, IssueLifecycle(start=62, done=63)),
            classified(2, IssueLifecycle(start=63, done=63), labels=["bug"]),
            classified(3, IssueLifecycle(start=63, done=63), is_pull_request=True),
        ], current_sprint=64)

        assert report.count(62, "incomplete") == 1
        assert report.count(62, "incomplete:issue") == 1
        assert report.count(63, "complete") == 3
        assert report.count(63, "complete:issue") == 1
        assert report.count(63, "complete:bug") == 1
        assert report.count(63, "complete:PR") == 1
        assert report.count(64, "complete") == 0
        assert report.entry(64, "complete") is None

    def test_issue_numbers_sorted_per_repository(self, aggregator, classified):
        report = aggregator.aggregate([
            classified(9, IssueLifecycle(start=62)),
            classified(2, IssueLifecycle(start=62)),
            classified(5, IssueLifecycle(start=62), repository="strongloop/strong-supervisor"),
        ], current_sprint=62)

        entry = report.entry(62, "incomplete")
        assert entry.count == 3
        assert entry.issues == {
            "strongloop/strong-pm": [2, 9],
            "strongloop/strong-supervisor": [5],
        }

    def test_rejected_counted(self, aggregator, classified):
        report = aggregator.aggregate([classified(4, IssueLifecycle(rejected=62))], 64)
        assert report.count(62, "rejected") == 1
        assert report.count(62, "rejected:issue") == 1
        assert report.excluded == []

    def test_not_started_excluded(self, aggregator, classified):
        never = classified(7, IssueLifecycle())
        closed_unworked = classified(8, IssueLifecycle(done=63), state="closed")
        report = aggregator.aggregate([never, closed_unworked], 64)
        assert report.sprints == {}
        assert report.excluded == [never, closed_unworked]

    def test_order_does_not_matter(self, aggregator, classified):
        items = [
            classified(1, IssueLifecycle(start=62, done=64)),
            classified(2, IssueLifecycle(start=63), labels=["bug"]),
            classified(3, IssueLifecycle(rejected=63), is_pull_request=True),
            classified(4, IssueLifecycle(start=62), repository="strongloop/strong-supervisor"),
        ]
        forward = aggregator.aggregate(items, 65).to_dict()
        backward = aggregator.aggregate(list(reversed(items)), 65).to_dict()
        assert forward["sprints"] == backward["sprints"]

    def test_aggregate_is_repeatable(self, aggregator, classified):
        items = [classified(1, IssueLifecycle(start=62, done=63))]
        assert aggregator.aggregate(items, 64).to_dict() == aggregator.aggregate(items, 64).to_dict()

    def test_custom_bug_label(self, classified):
        aggregator = VelocityAggregator(bug_label="defect")
        report = aggregator.aggregate(
            [classified(1, IssueLifecycle(start=62, done=62), labels=["defect", "bug"])], 62
        )
        assert report.count(62, "complete:bug") == 1


class TestReportToDict:
    """Test JSON shape of the report."""

    def test_to_dict(self, aggregator, classified):
        report = aggregator.aggregate([
            classified(1, IssueLifecycle(start=62, done=63)),
            classified(2, IssueLifecycle()),
        ], current_sprint=63)

        data = report.to_dict()
        assert data["currentSprint"] == 63
        assert list(data["sprints"]) == ["62", "63"]
        assert data["sprints"]["63"]["complete"] == {
            "count": 1, "issues": {"strongloop/strong-pm": [1]}
        }
        assert data["excluded"][0]["number"] == 2
        assert data["excluded"][0]["lifecycle"] == {"start": None, "done": None, "rejected": None}
