"""Canonical feedback and tracking-issue records.

``FeedbackRecord`` is the normalized form of one TestFlight crash or
screenshot submission; ``TrackingIssue`` and friends are the normalized views
of Linear entities produced by :mod:`testflight_pm.linear.adapters`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedbackType(str, Enum):
    CRASH = "crash"
    SCREENSHOT = "screenshot"


@dataclass
class DeviceInfo:
    family: str = "UNKNOWN"
    model: Optional[str] = None
    os_version: Optional[str] = None
    locale: Optional[str] = None


@dataclass
class TesterInfo:
    email: str


@dataclass
class SystemInfo:
    """Device telemetry captured at submission time (detail endpoint only)."""

    battery_percentage: Optional[int] = None
    app_uptime_ms: Optional[int] = None
    connection_type: Optional[str] = None
    disk_bytes_available: Optional[int] = None
    disk_bytes_total: Optional[int] = None
    architecture: Optional[str] = None
    paired_apple_watch: Optional[str] = None
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None
    time_zone: Optional[str] = None
    app_platform: Optional[str] = None
    device_platform: Optional[str] = None
    disk_space_remaining_gb: Optional[float] = None
    app_uptime_formatted: Optional[str] = None


@dataclass
class CrashLogRef:
    url: str
    expires_at: datetime


@dataclass
class ImageRef:
    """A screenshot behind a time-limited signed URL.

    Once ``cached_data`` is populated the bytes win unconditionally; ``url``
    and ``expires_at`` only matter while nothing is cached.
    """

    url: str
    file_name: str
    file_size: int = 0
    expires_at: datetime = field(default_factory=utcnow)
    cached_data: Optional[bytes] = field(default=None, repr=False)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or utcnow())

    @property
    def is_cached(self) -> bool:
        return self.cached_data is not None


@dataclass
class EnhancedImage:
    url: str
    file_name: str
    file_size: int
    expires_at: datetime
    image_format: str = "png"
    index: int = 0


@dataclass
class CrashData:
    trace: str = ""
    type: str = "Unknown"
    exception_type: Optional[str] = None
    exception_message: Optional[str] = None
    logs: List[CrashLogRef] = field(default_factory=list)
    detailed_logs: Optional[List[str]] = None
    system_info: Optional[SystemInfo] = None


@dataclass
class ScreenshotData:
    text: str = ""
    images: List[ImageRef] = field(default_factory=list)
    annotations: List[Any] = field(default_factory=list)
    enhanced_images: Optional[List[EnhancedImage]] = None
    system_info: Optional[SystemInfo] = None


@dataclass
class FeedbackRecord:
    """One normalized TestFlight submission. ``id`` is the dedup key."""

    id: str
    type: FeedbackType
    submitted_at: datetime
    app_version: str
    build_number: str
    bundle_id: str
    device_info: DeviceInfo
    tester_info: Optional[TesterInfo] = None
    crash_data: Optional[CrashData] = None
    screenshot_data: Optional[ScreenshotData] = None

    def __post_init__(self) -> None:
        if (self.crash_data is None) == (self.screenshot_data is None):
            raise ValueError(
                f"Feedback {self.id} must carry exactly one of crash_data or screenshot_data"
            )

    @property
    def is_crash(self) -> bool:
        return self.type is FeedbackType.CRASH

    @property
    def images(self) -> List[ImageRef]:
        return self.screenshot_data.images if self.screenshot_data else []


@dataclass
class RateLimitSnapshot:
    remaining: int
    reset: datetime
    limit: int


# ---------------------------------------------------------------------------
# Normalized Linear views
# ---------------------------------------------------------------------------


@dataclass
class TrackingUser:
    id: str
    name: str
    display_name: str = ""
    email: str = ""
    avatar_url: Optional[str] = None
    is_me: bool = False
    is_admin: bool = False
    is_guest: bool = False
    active: bool = True


@dataclass
class TrackingTeam:
    id: str
    name: str
    key: str
    description: str = ""
    timezone: str = "UTC"
    private: bool = False


@dataclass
class TrackingState:
    id: str
    name: str
    type: str = "backlog"
    color: str = "#000000"
    position: float = 0
    description: str = ""


@dataclass
class TrackingLabel:
    id: str
    name: str
    color: str = ""
    description: str = ""
    parent_id: Optional[str] = None
    has_children: bool = False


@dataclass
class TrackingProject:
    id: str
    name: str
    slug: str
    description: str = ""
    state: str = "planned"
    priority: int = 3


@dataclass
class TrackingIssue:
    id: str
    identifier: str
    title: str
    description: str
    url: str
    priority: int
    state: TrackingState
    team: Optional[TrackingTeam]
    creator: TrackingUser
    assignee: Optional[TrackingUser] = None
    labels: List[TrackingLabel] = field(default_factory=list)
    number: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None


@dataclass
class TrackingComment:
    id: str
    body: str
    issue: TrackingIssue
    user: Optional[TrackingUser]
    url: str = ""
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ScreenshotLink:
    file_name: str
    url: str
    uploaded: bool = False
