"""Typed RPCs over the Linear GraphQL API.

Every method returns the plain ``data`` payload of its operation; conversion to
the normalized views lives in :mod:`testflight_pm.linear.adapters`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..common.config import Settings
from ..common.http import build_headers, http_client
from ..common.logging import get_logger
from ..errors import ConfigurationError, TrackerError

LOGGER = get_logger(__name__)

DEFAULT_API_URL = "https://api.linear.app/graphql"

ISSUE_FIELDS = """
    id
    identifier
    title
    description
    url
    priority
    number
    createdAt
    updatedAt
    completedAt
    canceledAt
    archivedAt
    state { id name type color position description }
    team { id name key description timezone private }
    assignee { id name displayName email avatarUrl isMe admin guest active }
    creator { id name displayName email avatarUrl isMe admin guest active }
    labels { nodes { id name color description } }
"""

ISSUES_QUERY = (
    """
query Issues($filter: IssueFilter, $first: Int) {
    issues(filter: $filter, first: $first) {
        nodes {"""
    + ISSUE_FIELDS
    + """}
    }
}
"""
)

SEARCH_ISSUES_QUERY = (
    """
query SearchIssues($term: String!, $first: Int) {
    searchIssues(term: $term, first: $first) {
        nodes {"""
    + ISSUE_FIELDS
    + """}
    }
}
"""
)

CREATE_ISSUE_MUTATION = (
    """
mutation CreateIssue($input: IssueCreateInput!) {
    issueCreate(input: $input) {
        success
        issue {"""
    + ISSUE_FIELDS
    + """}
    }
}
"""
)

UPDATE_ISSUE_MUTATION = (
    """
mutation UpdateIssue($id: String!, $input: IssueUpdateInput!) {
    issueUpdate(id: $id, input: $input) {
        success
        issue {"""
    + ISSUE_FIELDS
    + """}
    }
}
"""
)

CREATE_COMMENT_MUTATION = (
    """
mutation CreateComment($input: CommentCreateInput!) {
    commentCreate(input: $input) {
        success
        comment {
            id
            body
            url
            createdAt
            user { id name displayName email avatarUrl isMe admin guest active }
            issue {"""
    + ISSUE_FIELDS
    + """}
        }
    }
}
"""
)

WORKFLOW_STATES_QUERY = """
query WorkflowStates($filter: WorkflowStateFilter) {
    workflowStates(filter: $filter) {
        nodes { id name type color position description }
    }
}
"""

ISSUE_LABELS_QUERY = """
query IssueLabels($filter: IssueLabelFilter, $first: Int) {
    issueLabels(filter: $filter, first: $first) {
        nodes {
            id
            name
            color
            description
            parent { id }
            children { nodes { id } }
        }
    }
}
"""

CREATE_LABEL_MUTATION = """
mutation CreateIssueLabel($input: IssueLabelCreateInput!) {
    issueLabelCreate(input: $input) {
        success
        issueLabel { id name color description }
    }
}
"""

TEAM_QUERY = """
query Team($id: String!) {
    team(id: $id) { id name key description timezone private }
}
"""

VIEWER_QUERY = """
query Viewer {
    viewer { id name displayName email avatarUrl isMe admin guest active }
}
"""

PROJECTS_QUERY = """
query Projects($first: Int) {
    projects(first: $first) {
        nodes { id name slugId description state priority }
    }
}
"""

FILE_UPLOAD_MUTATION = """
mutation FileUpload($contentType: String!, $filename: String!, $size: Int!) {
    fileUpload(contentType: $contentType, filename: $filename, size: $size) {
        success
        uploadFile {
            uploadUrl
            assetUrl
            headers { key value }
        }
    }
}
"""


class LinearGateway:
    """Thin async GraphQL transport for Linear.

    Raises :class:`TrackerError` for HTTP errors (with ``status``) and for any
    response carrying a GraphQL ``errors`` array (with ``errors``).
    """

    def __init__(
        self,
        api_token: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        upload_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not api_token:
            raise ConfigurationError("LINEAR_API_TOKEN is required")
        self._api_url = api_url
        self._client = client or http_client(timeout=timeout, headers=build_headers(api_key=api_token))
        self._upload_client = upload_client or http_client(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> "LinearGateway":
        return cls(
            api_token=settings.linear_api_token or "",
            api_url=settings.linear_api_url,
            timeout=settings.linear_timeout,
            client=client,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
        await self._upload_client.aclose()

    async def graphql(self, query: str, variables: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Execute one GraphQL document and return its ``data`` payload."""
        try:
            response = await self._client.post(
                self._api_url,
                json={"query": query, "variables": dict(variables or {})},
            )
        except httpx.HTTPError as exc:
            raise TrackerError(f"Linear request failed: {exc}") from exc

        if response.status_code >= 400:
            raise TrackerError(f"HTTP {response.status_code}: {response.text}", status=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise TrackerError(f"Linear returned invalid JSON: {exc}", status=response.status_code) from exc

        if payload.get("errors"):
            errors = payload["errors"]
            message = errors[0].get("message", "Unknown error") if isinstance(errors[0], dict) else str(errors[0])
            raise TrackerError(message, errors=errors)
        return payload.get("data") or {}

    # Issues

    async def create_issue(self, input_data: Mapping[str, Any]) -> Dict[str, Any]:
        data = await self.graphql(CREATE_ISSUE_MUTATION, {"input": dict(input_data)})
        return data.get("issueCreate") or {}

    async def update_issue(self, issue_id: str, input_data: Mapping[str, Any]) -> Dict[str, Any]:
        data = await self.graphql(UPDATE_ISSUE_MUTATION, {"id": issue_id, "input": dict(input_data)})
        return data.get("issueUpdate") or {}

    async def issues(self, filter: Optional[Mapping[str, Any]] = None, first: int = 50) -> List[Dict[str, Any]]:
        data = await self.graphql(ISSUES_QUERY, {"filter": dict(filter or {}), "first": first})
        return list((data.get("issues") or {}).get("nodes") or [])

    async def search_issues(self, term: str, first: int = 20) -> List[Dict[str, Any]]:
        data = await self.graphql(SEARCH_ISSUES_QUERY, {"term": term, "first": first})
        return list((data.get("searchIssues") or {}).get("nodes") or [])

    # Comments

    async def create_comment(self, issue_id: str, body: str) -> Dict[str, Any]:
        data = await self.graphql(CREATE_COMMENT_MUTATION, {"input": {"issueId": issue_id, "body": body}})
        return data.get("commentCreate") or {}

    # Team metadata

    async def workflow_states(self, filter: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        data = await self.graphql(WORKFLOW_STATES_QUERY, {"filter": dict(filter or {})})
        return list((data.get("workflowStates") or {}).get("nodes") or [])

    async def issue_labels(self, filter: Optional[Mapping[str, Any]] = None, first: int = 250) -> List[Dict[str, Any]]:
        variables: Dict[str, Any] = {"first": first}
        if filter:
            variables["filter"] = dict(filter)
        data = await self.graphql(ISSUE_LABELS_QUERY, variables)
        return list((data.get("issueLabels") or {}).get("nodes") or [])

    async def create_issue_label(self, name: str, team_id: str, color: Optional[str] = None) -> Dict[str, Any]:
        input_data: Dict[str, Any] = {"name": name, "teamId": team_id}
        if color:
            input_data["color"] = color
        data = await self.graphql(CREATE_LABEL_MUTATION, {"input": input_data})
        return data.get("issueLabelCreate") or {}

    async def team(self, team_id: str) -> Dict[str, Any]:
        data = await self.graphql(TEAM_QUERY, {"id": team_id})
        team = data.get("team")
        if not team:
            raise TrackerError(f"Linear team {team_id} not found")
        return team

    async def viewer(self) -> Dict[str, Any]:
        data = await self.graphql(VIEWER_QUERY)
        viewer = data.get("viewer")
        if not viewer:
            raise TrackerError("Linear returned no viewer for this API key")
        return viewer

    async def projects(self, first: int = 50) -> List[Dict[str, Any]]:
        data = await self.graphql(PROJECTS_QUERY, {"first": first})
        return list((data.get("projects") or {}).get("nodes") or [])

    # Assets

    async def file_upload(self, content_type: str, file_name: str, size: int) -> Dict[str, Any]:
        data = await self.graphql(
            FILE_UPLOAD_MUTATION,
            {"contentType": content_type, "filename": file_name, "size": size},
        )
        return data.get("fileUpload") or {}

    async def put_asset(
        self,
        upload_url: str,
        content: bytes,
        content_type: str,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        """PUT raw bytes to a pre-signed upload URL returned by ``file_upload``."""
        request_headers = {
            "Content-Type": content_type,
            "Cache-Control": "public, max-age=31536000",
        }
        request_headers.update(headers or {})
        try:
            response = await self._upload_client.put(upload_url, content=content, headers=request_headers)
        except httpx.HTTPError as exc:
            raise TrackerError(f"Asset upload failed: {exc}") from exc
        if response.status_code >= 400:
            raise TrackerError(
                f"Asset upload failed: {response.status_code} {response.reason_phrase}",
                status=response.status_code,
            )


__all__ = ["DEFAULT_API_URL", "LinearGateway"]
