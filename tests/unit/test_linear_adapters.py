"""Unit tests for Linear payload conversion."""

import pytest

from testflight_pm.linear.adapters import (
    map_priority,
    map_state_type,
    placeholder_issue,
    to_comment,
    to_issue,
    to_label,
    to_project,
    to_user,
)
from testflight_pm.models import TrackingTeam

from factories import issue_node

TEAM = TrackingTeam(id="team-1", name="App", key="APP")


@pytest.mark.parametrize("value, expected", [(1, 1), (4, 4), (0, 3), (5, 3), (None, 3), ("2", 2), ("high", 3)])
def test_map_priority(value, expected):
    """Priorities 1..4 pass through; everything else maps to 3."""
    assert map_priority(value) == expected


@pytest.mark.parametrize("value, expected", [("started", "started"), ("triage", "triage"), ("weird", "backlog"), (None, "backlog")])
def test_map_state_type(value, expected):
    """Unknown state types fall back to backlog."""
    assert map_state_type(value) == expected


class TestToIssue:
    def test_full_node(self):
        """A complete issue node converts field for field."""
        issue = to_issue(issue_node("i1", description="TestFlight ID: abc", identifier="APP-7"))
        assert issue.identifier == "APP-7"
        assert issue.priority == 2
        assert issue.state.type == "backlog"
        assert issue.team.key == "APP"
        assert issue.creator.name == "Bot"
        assert issue.created_at.year == 2024

    def test_partial_node_defaults(self):
        """Missing optional fields get defaults instead of errors."""
        issue = to_issue({"id": "i2", "priority": 0.0}, team=TEAM)
        assert issue.priority == 3
        assert issue.team is TEAM
        assert issue.state.name == "Unknown"
        assert issue.creator.id == "unknown"
        assert issue.description == ""
        assert issue.updated_at == issue.created_at

    def test_labels_flatten(self):
        """Label connections flatten into labels with parent ids."""
        node = {"id": "i3", "labels": {"nodes": [{"id": "l1", "name": "crash", "parent": {"id": "g1"}}]}}
        issue = to_issue(node)
        assert issue.labels[0].name == "crash"
        assert issue.labels[0].parent_id == "g1"


class TestOtherViews:
    def test_group_label_detected_by_children(self):
        """Labels with children are marked as groups."""
        label = to_label({"id": "g1", "name": "Bug", "children": {"nodes": [{"id": "l1"}]}})
        assert label.has_children is True

    def test_project_slug_fallback(self):
        """Projects without a slug id derive one from the name."""
        assert to_project({"id": "p1", "name": "Mobile App"}).slug == "mobile-app"
        assert to_project({"id": "p1", "name": "Mobile", "slugId": "abc123"}).slug == "abc123"

    def test_user_flags(self):
        """Admin and isMe flags carry over."""
        user = to_user({"id": "u1", "name": "Sam", "admin": True, "isMe": True})
        assert user.is_admin and user.is_me
        assert user.display_name == "Sam"


class TestToComment:
    def test_comment_with_issue_builds_anchor_url(self):
        """Comment URLs point at the issue with a comment anchor."""
        comment = to_comment(
            {"id": "c1", "body": "hello", "issue": issue_node("i1", identifier="APP-1"), "user": {"id": "u1", "name": "Bot"}},
            team=TEAM,
        )
        assert comment.issue.identifier == "APP-1"
        assert comment.url == "https://linear.app/acme/issue/APP-1#comment-c1"
        assert comment.user.name == "Bot"

    def test_comment_without_issue_uses_placeholder(self):
        """Comments lacking an issue get the placeholder issue."""
        comment = to_comment({"id": "c2", "body": "hello"}, team=TEAM)
        assert comment.issue.title == "Unknown Issue"
        assert comment.issue.team is TEAM
        assert comment.url == ""
        assert comment.user.id == "unknown"


def test_placeholder_issue_shape():
    """The placeholder issue uses unknown ids and the default priority."""
    issue = placeholder_issue()
    assert issue.id == "unknown"
    assert issue.priority == 3
    assert issue.state.type == "backlog"
