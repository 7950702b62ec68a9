"""Map App Store Connect feedback resources onto :class:`FeedbackRecord`.

The beta feedback endpoints have shipped several field names for the same
value over time (``createdDate`` vs ``submittedAt``, ``comment`` vs
``feedbackText``, ``buildBundleId`` vs ``bundleId``). Each helper here picks
the first populated field in priority order and falls back to a stable
default, so downstream code never sees a missing key.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..common.logging import get_logger
from ..models import (
    CrashData,
    CrashLogRef,
    DeviceInfo,
    EnhancedImage,
    FeedbackRecord,
    FeedbackType,
    ImageRef,
    ScreenshotData,
    SystemInfo,
    TesterInfo,
    utcnow,
)

LOGGER = get_logger(__name__)

DEFAULT_IMAGE_TTL = timedelta(hours=1)
_GB = 1024 ** 3


def _first(attrs: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = attrs.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_timestamp(value: Any, default: Optional[datetime] = None) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            LOGGER.warning("Unparseable timestamp, using fallback", value=value)
        else:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return default or utcnow()


def submitted_at_of(resource: Mapping[str, Any]) -> datetime:
    attrs = resource.get("attributes") or {}
    return parse_timestamp(_first(attrs, "createdDate", "submittedAt"))


def image_format_for(file_name: Optional[str]) -> str:
    if not file_name or "." not in file_name:
        return "png"
    extension = file_name.rsplit(".", 1)[-1].lower()
    if extension in ("jpg", "jpeg"):
        return "jpeg"
    if extension == "heic":
        return "heic"
    return "png"


def format_uptime(uptime_ms: int) -> str:
    seconds = uptime_ms // 1000
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h {minutes % 60}m"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def _common_fields(resource: Mapping[str, Any]) -> Dict[str, Any]:
    attrs = resource.get("attributes") or {}
    email = attrs.get("email")
    return {
        "id": str(resource["id"]),
        "submitted_at": submitted_at_of(resource),
        "app_version": _first(attrs, "appVersion") or "Unknown",
        "build_number": str(_first(attrs, "buildNumber") or "Unknown"),
        "bundle_id": _first(attrs, "buildBundleId", "bundleId") or "",
        "device_info": DeviceInfo(
            family=_first(attrs, "deviceFamily") or "UNKNOWN",
            model=attrs.get("deviceModel"),
            os_version=attrs.get("osVersion"),
            locale=attrs.get("locale"),
        ),
        "tester_info": TesterInfo(email=email) if email else None,
    }


def _image_refs(raw_images: Optional[Iterable[Any]]) -> List[ImageRef]:
    images: List[ImageRef] = []
    for index, raw in enumerate(raw_images or []):
        raw = raw or {}
        images.append(
            ImageRef(
                url=raw.get("url") or "",
                file_name=raw.get("fileName") or f"screenshot_{index}.png",
                file_size=int(raw.get("fileSize") or 0),
                expires_at=parse_timestamp(raw.get("expiresAt"), default=utcnow() + DEFAULT_IMAGE_TTL),
            )
        )
    return images


def normalize_crash(resource: Mapping[str, Any]) -> FeedbackRecord:
    """Normalize one ``betaFeedbackCrashSubmissions`` resource."""
    attrs = resource.get("attributes") or {}
    logs = [
        CrashLogRef(url=log.get("url", ""), expires_at=parse_timestamp(log.get("expiresAt")))
        for log in attrs.get("crashLogs") or []
    ]
    return FeedbackRecord(
        type=FeedbackType.CRASH,
        crash_data=CrashData(
            trace=attrs.get("crashTrace") or "",
            type=attrs.get("crashType") or "Unknown",
            exception_type=attrs.get("exceptionType"),
            exception_message=attrs.get("exceptionMessage"),
            logs=logs,
        ),
        **_common_fields(resource),
    )


def normalize_screenshot(resource: Mapping[str, Any]) -> FeedbackRecord:
    """Normalize one ``betaFeedbackScreenshotSubmissions`` resource."""
    attrs = resource.get("attributes") or {}
    return FeedbackRecord(
        type=FeedbackType.SCREENSHOT,
        screenshot_data=ScreenshotData(
            text=_first(attrs, "comment", "feedbackText") or "",
            images=_image_refs(attrs.get("screenshots")),
            annotations=list(attrs.get("annotations") or []),
        ),
        **_common_fields(resource),
    )


def build_system_info(attrs: Mapping[str, Any]) -> SystemInfo:
    """Collect device telemetry from a detail resource's attributes."""
    disk_available = attrs.get("diskBytesAvailable")
    uptime_ms = attrs.get("appUptimeInMilliseconds")
    return SystemInfo(
        battery_percentage=attrs.get("batteryPercentage"),
        app_uptime_ms=uptime_ms,
        connection_type=attrs.get("connectionType"),
        disk_bytes_available=disk_available,
        disk_bytes_total=attrs.get("diskBytesTotal"),
        architecture=attrs.get("architecture"),
        paired_apple_watch=attrs.get("pairedAppleWatch"),
        screen_width=attrs.get("screenWidthInPoints"),
        screen_height=attrs.get("screenHeightInPoints"),
        time_zone=attrs.get("timeZone"),
        app_platform=attrs.get("appPlatform"),
        device_platform=attrs.get("devicePlatform"),
        disk_space_remaining_gb=round(disk_available / _GB, 1) if disk_available else None,
        app_uptime_formatted=format_uptime(uptime_ms) if uptime_ms else None,
    )


def _fill_missing(record: FeedbackRecord, attrs: Mapping[str, Any]) -> None:
    # The list payload can omit device fields the detail payload carries.
    device = record.device_info
    device.model = device.model or attrs.get("deviceModel")
    device.os_version = device.os_version or attrs.get("osVersion")
    device.locale = device.locale or attrs.get("locale")
    if device.family == "UNKNOWN" and attrs.get("deviceFamily"):
        device.family = attrs["deviceFamily"]
    if not record.bundle_id:
        record.bundle_id = _first(attrs, "buildBundleId", "bundleId") or ""
    if record.tester_info is None and attrs.get("email"):
        record.tester_info = TesterInfo(email=attrs["email"])


def merge_crash_details(record: FeedbackRecord, detail: Mapping[str, Any]) -> FeedbackRecord:
    """Merge a crash detail resource's telemetry into ``record`` in place."""
    if record.crash_data is None:
        return record
    attrs = detail.get("attributes") or {}
    record.crash_data.system_info = build_system_info(attrs)
    _fill_missing(record, attrs)
    return record


def enhance_images(raw_images: Optional[Iterable[Any]]) -> List[EnhancedImage]:
    enhanced: List[EnhancedImage] = []
    for image in _image_refs(raw_images):
        enhanced.append(
            EnhancedImage(
                url=image.url,
                file_name=image.file_name,
                file_size=image.file_size,
                expires_at=image.expires_at,
                image_format=image_format_for(image.file_name),
                index=len(enhanced),
            )
        )
    return enhanced


def merge_screenshot_details(record: FeedbackRecord, detail: Mapping[str, Any]) -> FeedbackRecord:
    """Merge a screenshot detail resource into ``record`` in place.

    The list endpoint does not return image URLs, so the detail response's
    ``screenshots`` array replaces the image list whenever it has entries. An
    empty detail array leaves whatever the list payload provided.
    """
    if record.screenshot_data is None:
        return record
    attrs = detail.get("attributes") or {}
    data = record.screenshot_data
    data.system_info = build_system_info(attrs)
    _fill_missing(record, attrs)

    raw_images = attrs.get("screenshots") or []
    if raw_images:
        data.images = _image_refs(raw_images)
        data.enhanced_images = enhance_images(raw_images)
        LOGGER.info("Screenshots found in detail response", feedback_id=record.id, count=len(data.images))
    else:
        LOGGER.warning("No screenshots in detail response", feedback_id=record.id)

    if not data.text:
        data.text = _first(attrs, "comment", "feedbackText") or ""
    return record


__all__ = [
    "build_system_info",
    "enhance_images",
    "format_uptime",
    "image_format_for",
    "merge_crash_details",
    "merge_screenshot_details",
    "normalize_crash",
    "normalize_screenshot",
    "parse_timestamp",
    "submitted_at_of",
]
