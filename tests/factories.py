"""Record builders and an in-memory Linear gateway shared by the test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from testflight_pm.models import (
    CrashData,
    DeviceInfo,
    FeedbackRecord,
    FeedbackType,
    ImageRef,
    ScreenshotData,
    TesterInfo,
)

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class SleepRecorder:
    """Async stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_crash_record(feedback_id: str = "crash-1", **overrides: Any) -> FeedbackRecord:
    values: Dict[str, Any] = dict(
        id=feedback_id,
        type=FeedbackType.CRASH,
        submitted_at=FIXED_NOW - timedelta(hours=1),
        app_version="1.2",
        build_number="34",
        bundle_id="com.example.app",
        device_info=DeviceInfo(family="IPHONE", model="iPhone15,2", os_version="17.4", locale="en-US"),
        tester_info=TesterInfo(email="tester@example.com"),
        crash_data=CrashData(
            trace="0 libswiftCore.dylib 0x1 swift_crash",
            type="EXC_BAD_ACCESS",
            exception_type="NSInvalidArgumentException",
            exception_message="unrecognized selector",
        ),
    )
    values.update(overrides)
    return FeedbackRecord(**values)


def make_screenshot_record(
    feedback_id: str = "shot-1",
    text: str = "The save button does nothing",
    images: Optional[List[ImageRef]] = None,
    **overrides: Any,
) -> FeedbackRecord:
    values: Dict[str, Any] = dict(
        id=feedback_id,
        type=FeedbackType.SCREENSHOT,
        submitted_at=FIXED_NOW - timedelta(hours=2),
        app_version="1.2",
        build_number="34",
        bundle_id="com.example.app",
        device_info=DeviceInfo(family="IPHONE", model="iPhone14,5", os_version="17.3", locale="en-GB"),
        screenshot_data=ScreenshotData(text=text, images=images if images is not None else []),
    )
    values.update(overrides)
    return FeedbackRecord(**values)


def make_image(
    file_name: str = "shot.png",
    url: str = "https://tf.example.com/shot.png",
    expires_in: timedelta = timedelta(hours=1),
    cached: Optional[bytes] = None,
    file_size: int = 0,
) -> ImageRef:
    return ImageRef(
        url=url,
        file_name=file_name,
        file_size=file_size,
        expires_at=FIXED_NOW + expires_in,
        cached_data=cached,
    )


def issue_node(
    issue_id: str,
    description: str = "",
    team_id: str = "team-1",
    identifier: Optional[str] = None,
    title: str = "Issue",
) -> Dict[str, Any]:
    return {
        "id": issue_id,
        "identifier": identifier or f"APP-{issue_id}",
        "title": title,
        "description": description,
        "url": f"https://linear.app/acme/issue/{identifier or issue_id}",
        "priority": 2,
        "number": 1,
        "createdAt": "2024-06-01T10:00:00.000Z",
        "updatedAt": "2024-06-01T10:00:00.000Z",
        "state": {"id": "state-1", "name": "Backlog", "type": "backlog"},
        "team": {"id": team_id, "name": "App", "key": "APP"},
        "creator": {"id": "user-1", "name": "Bot"},
    }


class InMemoryLinear:
    """Minimal Linear gateway backed by lists, for end-to-end filing tests.

    Filters are approximated: team id and ``containsIgnoreCase`` clauses on
    title/description are honored; ``createdAt`` is ignored.
    """

    def __init__(self, team_id: str = "team-1") -> None:
        self.team_id = team_id
        self.issues_store: List[Dict[str, Any]] = []
        self.labels: List[Dict[str, Any]] = []
        self.comments: List[Dict[str, Any]] = []
        self.create_calls = 0
        self.uploads: List[Dict[str, Any]] = []

    def _team_issues(self, team_id: Optional[str]) -> List[Dict[str, Any]]:
        return [node for node in self.issues_store if team_id is None or node["team"]["id"] == team_id]

    async def issues(self, filter: Optional[Dict[str, Any]] = None, first: int = 50) -> List[Dict[str, Any]]:
        filter = filter or {}
        team_id = ((filter.get("team") or {}).get("id") or {}).get("eq")
        nodes = self._team_issues(team_id)
        clauses = filter.get("or")
        if clauses:
            def matches(node: Dict[str, Any]) -> bool:
                for clause in clauses:
                    for field_name, condition in clause.items():
                        needle = condition["containsIgnoreCase"].lower()
                        if needle in (node.get(field_name) or "").lower():
                            return True
                return False

            nodes = [node for node in nodes if matches(node)]
        return nodes[:first]

    async def search_issues(self, term: str, first: int = 20) -> List[Dict[str, Any]]:
        hits = [n for n in self.issues_store if term in (n.get("description") or "") or term in n["title"]]
        return hits[:first]

    async def create_issue(self, input_data: Dict[str, Any]) -> Dict[str, Any]:
        self.create_calls += 1
        number = len(self.issues_store) + 1
        node = issue_node(
            f"issue-{number}",
            description=input_data["description"],
            team_id=input_data["teamId"],
            identifier=f"APP-{number}",
            title=input_data["title"],
        )
        node["priority"] = input_data.get("priority")
        node["labelIds"] = input_data.get("labelIds", [])
        self.issues_store.append(node)
        return {"success": True, "issue": node}

    async def create_comment(self, issue_id: str, body: str) -> Dict[str, Any]:
        issue = next(node for node in self.issues_store if node["id"] == issue_id)
        comment = {"id": f"comment-{len(self.comments) + 1}", "body": body, "issue": issue}
        self.comments.append(comment)
        return {"success": True, "comment": comment}

    async def issue_labels(self, filter: Optional[Dict[str, Any]] = None, first: int = 250) -> List[Dict[str, Any]]:
        return list(self.labels)[:first]

    async def create_issue_label(self, name: str, team_id: str, color: Optional[str] = None) -> Dict[str, Any]:
        label = {"id": f"label-{len(self.labels) + 1}", "name": name}
        self.labels.append(label)
        return {"success": True, "issueLabel": label}

    async def team(self, team_id: str) -> Dict[str, Any]:
        return {"id": team_id, "name": "App", "key": "APP"}

    async def viewer(self) -> Dict[str, Any]:
        return {"id": "user-1", "name": "Bot"}

    async def file_upload(self, content_type: str, file_name: str, size: int) -> Dict[str, Any]:
        return {
            "success": True,
            "uploadFile": {
                "uploadUrl": f"https://uploads.linear.app/put/{file_name}",
                "assetUrl": f"https://uploads.linear.app/assets/{file_name}",
                "headers": [{"key": "x-goog-meta", "value": "1"}],
            },
        }

    async def put_asset(self, upload_url: str, content: bytes, content_type: str, headers=None) -> None:
        self.uploads.append({"url": upload_url, "size": len(content), "content_type": content_type, "headers": headers})

