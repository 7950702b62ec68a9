"""Unit tests for the team-scoped Linear client."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from testflight_pm.errors import ConfigurationError, TrackerError
from testflight_pm.linear.client import LinearClient
from testflight_pm.linear.gateway import LinearGateway

from factories import issue_node

TEAM = {"id": "team-1", "name": "App", "key": "APP"}


@pytest.fixture
def gateway():
    mock = MagicMock(spec=LinearGateway)
    for name in ("team", "viewer", "create_comment", "workflow_states", "update_issue", "issues", "projects", "aclose"):
        setattr(mock, name, AsyncMock())
    mock.team.return_value = TEAM
    mock.viewer.return_value = {"id": "user-1", "name": "Bot"}
    return mock


class TestLinearClient:
    """Team lookups, comments and health."""

    def test_team_id_required(self, gateway):
        """A client without a team id is a ConfigurationError."""
        with pytest.raises(ConfigurationError):
            LinearClient(gateway, "")

    @pytest.mark.asyncio
    async def test_team_is_cached(self, gateway):
        """The team is fetched once until reset_cache."""
        client = LinearClient(gateway, "team-1")
        first = await client.get_team()
        second = await client.get_team()
        assert first is second
        gateway.team.assert_awaited_once_with("team-1")

        client.reset_cache()
        await client.get_team()
        assert gateway.team.await_count == 2

    @pytest.mark.asyncio
    async def test_get_team_wraps_errors(self, gateway):
        """Team lookup failures keep their status in a TrackerError."""
        gateway.team.side_effect = TrackerError("Entity not found", status=400)
        with pytest.raises(TrackerError, match="Failed to get Linear team") as excinfo:
            await LinearClient(gateway, "team-1").get_team()
        assert excinfo.value.status == 400

    @pytest.mark.asyncio
    async def test_add_comment_returns_comment_with_issue(self, gateway):
        """Comments come back with their issue context."""
        gateway.create_comment.return_value = {
            "success": True,
            "comment": {"id": "c1", "body": "again", "issue": issue_node("i1", identifier="APP-3")},
        }
        comment = await LinearClient(gateway, "team-1").add_comment("i1", "again")

        gateway.create_comment.assert_awaited_once_with("i1", "again")
        assert comment.issue.identifier == "APP-3"
        assert comment.url.endswith("#comment-c1")

    @pytest.mark.asyncio
    async def test_add_comment_without_issue_falls_back_to_placeholder(self, gateway):
        """A comment response without its issue uses the placeholder issue."""
        gateway.create_comment.return_value = {"success": True, "comment": {"id": "c1", "body": "again"}}
        comment = await LinearClient(gateway, "team-1").add_comment("i1", "again")
        assert comment.issue.title == "Unknown Issue"
        assert comment.issue.team.key == "APP"

    @pytest.mark.asyncio
    async def test_add_comment_failure(self, gateway):
        """An unsuccessful comment mutation raises TrackerError."""
        gateway.create_comment.return_value = {"success": False}
        with pytest.raises(TrackerError, match="Failed to create comment"):
            await LinearClient(gateway, "team-1").add_comment("i1", "again")

    @pytest.mark.asyncio
    async def test_status_lookup_is_team_scoped(self, gateway):
        """Status changes look up the state within the configured team."""
        gateway.workflow_states.return_value = [{"id": "s1", "name": "Done", "type": "completed"}]
        gateway.update_issue.return_value = {"success": True, "issue": issue_node("i1")}
        client = LinearClient(gateway, "team-1")

        issue = await client.update_issue_status("i1", "Done")

        filter_ = gateway.workflow_states.call_args.args[0]
        assert filter_ == {"team": {"id": {"eq": "team-1"}}, "name": {"eq": "Done"}}
        gateway.update_issue.assert_awaited_once_with("i1", {"stateId": "s1"})
        assert issue.id == "i1"

    @pytest.mark.asyncio
    async def test_missing_status(self, gateway):
        """An unknown status name raises TrackerError."""
        gateway.workflow_states.return_value = []
        with pytest.raises(TrackerError, match="'Shipped' not found"):
            await LinearClient(gateway, "team-1").get_issue_status_by_name("Shipped")

    @pytest.mark.asyncio
    async def test_recent_issues(self, gateway):
        """Recent issues are fetched for the configured team only."""
        gateway.issues.return_value = [issue_node("i1"), issue_node("i2")]
        issues = await LinearClient(gateway, "team-1").get_recent_issues(limit=2)
        assert [issue.id for issue in issues] == ["i1", "i2"]
        gateway.issues.assert_awaited_once_with({"team": {"id": {"eq": "team-1"}}}, first=2)

    @pytest.mark.asyncio
    async def test_projects_fill_defaults(self, gateway):
        """Projects without slug, state or priority get derived defaults."""
        gateway.projects.return_value = [
            {"id": "p1", "name": "Beta Launch", "slugId": "beta-1", "state": "started", "priority": 1},
            {"id": "p2", "name": "Crash Triage"},
        ]

        projects = await LinearClient(gateway, "team-1").get_projects()

        assert [(p.slug, p.state, p.priority) for p in projects] == [
            ("beta-1", "started", 1),
            ("crash-triage", "planned", 3),
        ]


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, gateway):
        """A reachable Linear reports team and user details."""
        client = LinearClient(gateway, "team-1")
        assert await client.test_connectivity() is True

        report = await client.health_check()
        assert report["status"] == "healthy"
        details = report["details"]
        assert details["team_name"] == "App"
        assert details["team_key"] == "APP"
        assert details["current_user"] == "Bot"
        assert details["configured_team_id"] == "team-1"
        assert "timestamp" in details

    @pytest.mark.asyncio
    async def test_unhealthy_never_raises(self, gateway):
        """Failures are reported in the health payload, not raised."""
        gateway.viewer.side_effect = TrackerError("HTTP 401: unauthorized", status=401)
        client = LinearClient(gateway, "team-1")

        assert await client.test_connectivity() is False
        report = await client.health_check()
        assert report["status"] == "unhealthy"
        assert "401" in report["details"]["error"]
