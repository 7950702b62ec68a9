"""Pydantic schemas for Linear GraphQL payloads and conversion to tracking views.

The ``to_*`` functions are total: any payload Linear can return (including
partial nodes from nested selections) converts without raising, with missing
optional fields defaulted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

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

STATE_TYPES = {"backlog", "unstarted", "started", "completed", "canceled", "triage"}
DEFAULT_PRIORITY = 3


def map_priority(value: Any) -> int:
    """Linear priorities 1..4 pass through; 0 (none) and anything else map to 3."""
    try:
        priority = int(value)
    except (TypeError, ValueError):
        return DEFAULT_PRIORITY
    return priority if 1 <= priority <= 4 else DEFAULT_PRIORITY


def map_state_type(value: Any) -> str:
    return value if value in STATE_TYPES else "backlog"


class _LinearModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class _NodeRef(_LinearModel):
    id: str


class _NodeList(_LinearModel):
    nodes: List[_NodeRef] = Field(default_factory=list)


class UserPayload(_LinearModel):
    id: str = "unknown"
    name: str = "Unknown User"
    display_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    is_me: bool = False
    admin: bool = False
    guest: bool = False
    active: bool = True


class TeamPayload(_LinearModel):
    id: str
    name: str = ""
    key: str = ""
    description: Optional[str] = None
    timezone: Optional[str] = None
    private: bool = False


class StatePayload(_LinearModel):
    id: str = "unknown"
    name: str = "Unknown"
    type: Optional[str] = None
    color: Optional[str] = None
    position: Optional[float] = None
    description: Optional[str] = None


class LabelPayload(_LinearModel):
    id: str
    name: str = ""
    color: Optional[str] = None
    description: Optional[str] = None
    parent: Optional[_NodeRef] = None
    children: Optional[_NodeList] = None


class _LabelList(_LinearModel):
    nodes: List[LabelPayload] = Field(default_factory=list)


class ProjectPayload(_LinearModel):
    id: str
    name: str = ""
    slug_id: Optional[str] = None
    description: Optional[str] = None
    state: Optional[str] = None
    priority: Optional[int] = None


class IssuePayload(_LinearModel):
    id: str
    identifier: str = ""
    title: str = ""
    description: Optional[str] = None
    url: str = ""
    priority: Optional[int] = None
    number: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    state: Optional[StatePayload] = None
    team: Optional[TeamPayload] = None
    assignee: Optional[UserPayload] = None
    creator: Optional[UserPayload] = None
    labels: Optional[_LabelList] = None

    @field_validator("priority", "number", mode="before")
    @classmethod
    def _int_or_none(cls, value: Any) -> Any:
        if isinstance(value, float):
            return int(value)
        return value


class UploadHeader(_LinearModel):
    key: str
    value: str


class UploadFilePayload(_LinearModel):
    upload_url: str
    asset_url: str
    headers: List[UploadHeader] = Field(default_factory=list)


class FileUploadPayload(_LinearModel):
    success: bool = False
    upload_file: Optional[UploadFilePayload] = None


class CommentPayload(_LinearModel):
    id: str
    body: str = ""
    url: Optional[str] = None
    created_at: Optional[datetime] = None
    user: Optional[UserPayload] = None
    issue: Optional[IssuePayload] = None


def fallback_user() -> TrackingUser:
    return TrackingUser(id="unknown", name="Unknown User", display_name="Unknown User", is_guest=True, active=False)


def _user_view(user: Optional[UserPayload]) -> TrackingUser:
    if user is None:
        return fallback_user()
    return TrackingUser(
        id=user.id,
        name=user.name,
        display_name=user.display_name or user.name,
        email=user.email or "",
        avatar_url=user.avatar_url,
        is_me=user.is_me,
        is_admin=user.admin,
        is_guest=user.guest,
        active=user.active,
    )


def _team_view(team: TeamPayload) -> TrackingTeam:
    return TrackingTeam(
        id=team.id,
        name=team.name,
        key=team.key,
        description=team.description or "",
        timezone=team.timezone or "UTC",
        private=team.private,
    )


def _state_view(state: Optional[StatePayload]) -> TrackingState:
    state = state or StatePayload()
    return TrackingState(
        id=state.id,
        name=state.name,
        type=map_state_type(state.type),
        color=state.color or "#000000",
        position=state.position or 0,
        description=state.description or "",
    )


def _label_view(label: LabelPayload) -> TrackingLabel:
    return TrackingLabel(
        id=label.id,
        name=label.name,
        color=label.color or "",
        description=label.description or "",
        parent_id=label.parent.id if label.parent else None,
        has_children=bool(label.children and label.children.nodes),
    )


def _issue_view(issue: IssuePayload, team: Optional[TrackingTeam]) -> TrackingIssue:
    created_at = issue.created_at or utcnow()
    return TrackingIssue(
        id=issue.id,
        identifier=issue.identifier,
        title=issue.title,
        description=issue.description or "",
        url=issue.url,
        priority=map_priority(issue.priority),
        state=_state_view(issue.state),
        team=_team_view(issue.team) if issue.team else team,
        creator=_user_view(issue.creator),
        assignee=_user_view(issue.assignee) if issue.assignee else None,
        labels=[_label_view(label) for label in (issue.labels.nodes if issue.labels else [])],
        number=issue.number or 0,
        created_at=created_at,
        updated_at=issue.updated_at or created_at,
        completed_at=issue.completed_at,
        canceled_at=issue.canceled_at,
        archived_at=issue.archived_at,
    )


def to_user(data: Optional[Mapping[str, Any]]) -> TrackingUser:
    return _user_view(UserPayload.model_validate(data) if data else None)


def to_team(data: Mapping[str, Any]) -> TrackingTeam:
    return _team_view(TeamPayload.model_validate(data))


def to_state(data: Optional[Mapping[str, Any]]) -> TrackingState:
    return _state_view(StatePayload.model_validate(data) if data else None)


def to_label(data: Mapping[str, Any]) -> TrackingLabel:
    return _label_view(LabelPayload.model_validate(data))


def to_project(data: Mapping[str, Any]) -> TrackingProject:
    project = ProjectPayload.model_validate(data)
    return TrackingProject(
        id=project.id,
        name=project.name,
        slug=project.slug_id or "-".join(project.name.lower().split()),
        description=project.description or "",
        state=project.state or "planned",
        priority=map_priority(project.priority),
    )


def to_issue(data: Mapping[str, Any], team: Optional[TrackingTeam] = None) -> TrackingIssue:
    """Convert an issue node; ``team`` fills in when the node has no team selection."""
    return _issue_view(IssuePayload.model_validate(data), team)


def placeholder_issue(team: Optional[TrackingTeam] = None) -> TrackingIssue:
    """Stand-in for a comment whose response did not include its issue."""
    return TrackingIssue(
        id="unknown",
        identifier="unknown",
        title="Unknown Issue",
        description="",
        url="",
        priority=DEFAULT_PRIORITY,
        state=TrackingState(id="unknown", name="Unknown", type="backlog"),
        team=team,
        creator=fallback_user(),
    )


def to_comment(data: Mapping[str, Any], team: Optional[TrackingTeam] = None) -> TrackingComment:
    """Convert a comment node, substituting :func:`placeholder_issue` when it has no issue."""
    comment = CommentPayload.model_validate(data)
    if comment.issue is not None:
        issue = _issue_view(comment.issue, team)
        url = comment.url or f"{issue.url}#comment-{comment.id}"
    else:
        issue = placeholder_issue(team)
        url = comment.url or ""
    return TrackingComment(
        id=comment.id,
        body=comment.body,
        issue=issue,
        user=_user_view(comment.user),
        url=url,
        created_at=comment.created_at or utcnow(),
    )


__all__ = [
    "CommentPayload",
    "FileUploadPayload",
    "IssuePayload",
    "LabelPayload",
    "fallback_user",
    "map_priority",
    "map_state_type",
    "placeholder_issue",
    "to_comment",
    "to_issue",
    "to_label",
    "to_project",
    "to_state",
    "to_team",
    "to_user",
]
