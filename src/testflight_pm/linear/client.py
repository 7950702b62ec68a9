"""Team-scoped Linear client returning normalized tracking views."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from ..common.config import Settings
from ..common.logging import get_logger
from ..errors import ConfigurationError, TrackerError
from ..models import (
    TrackingComment,
    TrackingIssue,
    TrackingLabel,
    TrackingProject,
    TrackingState,
    TrackingTeam,
    TrackingUser,
    utcnow,
)
from .adapters import to_comment, to_issue, to_label, to_project, to_state, to_team, to_user
from .gateway import LinearGateway

LOGGER = get_logger(__name__)


class LinearClient:
    """Wraps :class:`LinearGateway` for one configured team.

    Team details are cached on the instance; call :meth:`reset_cache` to force a
    re-fetch.
    """

    def __init__(self, gateway: LinearGateway, team_id: str) -> None:
        if not team_id:
            raise ConfigurationError("LINEAR_TEAM_ID is required")
        self._gateway = gateway
        self._team_id = team_id
        self._team_cache: Optional[TrackingTeam] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "LinearClient":
        return cls(LinearGateway.from_settings(settings), settings.linear_team_id or "")

    @property
    def gateway(self) -> LinearGateway:
        return self._gateway

    @property
    def team_id(self) -> str:
        return self._team_id

    def reset_cache(self) -> None:
        self._team_cache = None

    async def aclose(self) -> None:
        await self._gateway.aclose()

    async def __aenter__(self) -> "LinearClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _team_filter(self, **extra: Any) -> Dict[str, Any]:
        filter_: Dict[str, Any] = {"team": {"id": {"eq": self._team_id}}}
        filter_.update(extra)
        return filter_

    async def get_team(self) -> TrackingTeam:
        if self._team_cache is None:
            try:
                self._team_cache = to_team(await self._gateway.team(self._team_id))
            except TrackerError as exc:
                raise TrackerError(f"Failed to get Linear team: {exc}", errors=exc.errors, status=exc.status) from exc
        return self._team_cache

    async def get_current_user(self) -> TrackingUser:
        return to_user(await self._gateway.viewer())

    async def get_issue_statuses(self) -> List[TrackingState]:
        return [to_state(node) for node in await self._gateway.workflow_states(self._team_filter())]

    async def get_issue_status_by_name(self, name: str) -> TrackingState:
        nodes = await self._gateway.workflow_states(self._team_filter(name={"eq": name}))
        if not nodes:
            raise TrackerError(f"Issue status '{name}' not found")
        return to_state(nodes[0])

    async def update_issue_status(self, issue_id: str, status_name: str) -> TrackingIssue:
        status = await self.get_issue_status_by_name(status_name)
        payload = await self._gateway.update_issue(issue_id, {"stateId": status.id})
        if not payload.get("success") or not payload.get("issue"):
            raise TrackerError(f"Failed to update Linear issue {issue_id} to '{status_name}'")
        return to_issue(payload["issue"], team=await self.get_team())

    async def get_issue_labels(self) -> List[TrackingLabel]:
        return [to_label(node) for node in await self._gateway.issue_labels(self._team_filter())]

    async def get_recent_issues(self, limit: int = 20) -> List[TrackingIssue]:
        team = await self.get_team()
        nodes = await self._gateway.issues(self._team_filter(), first=limit)
        return [to_issue(node, team=team) for node in nodes]

    async def get_projects(self) -> List[TrackingProject]:
        return [to_project(node) for node in await self._gateway.projects()]

    async def add_comment(self, issue_id: str, body: str) -> TrackingComment:
        """Post ``body`` on ``issue_id``.

        Raises:
            TrackerError: the mutation failed or returned no comment
        """
        payload = await self._gateway.create_comment(issue_id, body)
        comment = payload.get("comment")
        if not payload.get("success") or not comment:
            raise TrackerError(f"Failed to create comment on Linear issue {issue_id}")

        return to_comment(comment, team=await self.get_team())

    async def test_connectivity(self) -> bool:
        try:
            await self.get_current_user()
        except TrackerError as exc:
            LOGGER.warning("Linear connectivity check failed", error=str(exc))
            return False
        return True

    async def health_check(self) -> Dict[str, Any]:
        """Fetch team and viewer concurrently; never raises."""
        timestamp = utcnow().isoformat()
        try:
            team, user = await asyncio.gather(self.get_team(), self.get_current_user())
        except TrackerError as exc:
            return {
                "status": "unhealthy",
                "details": {"error": str(exc), "configured_team_id": self._team_id, "timestamp": timestamp},
            }
        return {
            "status": "healthy",
            "details": {
                "team_name": team.name,
                "team_key": team.key,
                "current_user": user.name,
                "configured_team_id": self._team_id,
                "timestamp": timestamp,
            },
        }


__all__ = ["LinearClient"]
