"""Markdown titles, descriptions and comments for filed TestFlight issues.

Every description embeds the submission id twice (metadata table and footer);
the duplicate detector relies on that.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from ..models import FeedbackRecord, ScreenshotLink, SystemInfo

TITLE_SNIPPET_LENGTH = 40


def _icon_and_label(record: FeedbackRecord):
    return ("💥", "Crash Report") if record.is_crash else ("📱", "User Feedback")


def _quote(text: str) -> str:
    return "> " + text.replace("\n", "\n> ")


def compose_title(record: FeedbackRecord, custom_title: Optional[str] = None) -> str:
    if custom_title:
        return custom_title
    icon, label = _icon_and_label(record)
    title = f"{icon} {label}: {record.app_version} ({record.build_number})"
    if record.crash_data is not None and record.crash_data.exception_type:
        title += f" - {record.crash_data.exception_type}"
    elif record.screenshot_data is not None and record.screenshot_data.text:
        text = record.screenshot_data.text
        snippet = text[:TITLE_SNIPPET_LENGTH]
        title += f" - {snippet}{'...' if len(snippet) < len(text) else ''}"
    return title


def _system_context(info: SystemInfo, heading: str) -> List[str]:
    rows: List[str] = []
    if info.battery_percentage is not None:
        icon = "🪫" if info.battery_percentage < 20 else "🔋"
        rows.append(f"| {icon} **Battery** | {info.battery_percentage}% |")
    if info.app_uptime_formatted:
        rows.append(f"| ⏱️ **App Uptime** | {info.app_uptime_formatted} |")
    if info.connection_type:
        icon = "📶" if "wifi" in info.connection_type.lower() else "📱"
        rows.append(f"| {icon} **Connection** | {info.connection_type} |")
    if info.disk_space_remaining_gb is not None:
        icon = "💾" if info.disk_space_remaining_gb < 1 else "💿"
        rows.append(f"| {icon} **Free Space** | {info.disk_space_remaining_gb}GB |")
    if info.architecture:
        rows.append(f"| 🏗️ **Architecture** | {info.architecture} |")
    if info.paired_apple_watch:
        rows.append(f"| ⌚ **Apple Watch** | {info.paired_apple_watch} |")
    if not rows:
        return []
    return [f"### {heading}", "", "| Context | Value |", "|---------|-------|", *rows, ""]


def _footer(record: FeedbackRecord) -> str:
    return f"*Automatically created from TestFlight feedback. ID: `{record.id}`*"


def _screenshot_section(links: Sequence[ScreenshotLink]) -> List[str]:
    lines: List[str] = []
    for link in links:
        lines += [f"**{link.file_name}:**", f"![{link.file_name}]({link.url})", ""]
    return lines


def compose_description(
    record: FeedbackRecord,
    screenshots: Sequence[ScreenshotLink] = (),
    custom_description: Optional[str] = None,
) -> str:
    """Build the issue body.

    A custom description is used verbatim with any screenshots appended under
    a "Screenshots" heading; otherwise the full standard template is rendered.
    Both end with the id footer the duplicate detector matches on.
    """
    if custom_description:
        lines = [custom_description, ""]
        if screenshots:
            lines += ["### 📸 Screenshots", "", *_screenshot_section(screenshots)]
        lines += ["---", _footer(record)]
        return "\n".join(lines)

    icon, label = _icon_and_label(record)
    device = record.device_info
    lines: List[str] = [
        f"## {icon} {label} from TestFlight",
        "",
        "| Field | Value |",
        "|-------|-------|",
        f"| **TestFlight ID** | `{record.id}` |",
        f"| **App Version** | {record.app_version} (Build {record.build_number}) |",
        f"| **Submitted** | {record.submitted_at.isoformat()} |",
        f"| **Device** | {device.model} |",
        f"| **OS Version** | {device.os_version} |",
        f"| **Locale** | {device.locale} |",
    ]
    if record.tester_info and record.tester_info.email:
        lines.append(f"| **Submitted By** | {record.tester_info.email} |")
    lines.append("")

    crash = record.crash_data
    if crash is not None:
        lines += ["### 🔍 Crash Details", "", f"**Type:** {crash.type}", ""]
        if crash.exception_type:
            lines += [f"**Exception:** `{crash.exception_type}`", ""]
        if crash.exception_message:
            lines += ["**Message:**", "```", crash.exception_message, "```", ""]
        if crash.system_info:
            lines += _system_context(crash.system_info, "📊 System Context at Crash")
        lines += ["### Stack Trace", "```", crash.trace, "```", ""]
        if crash.logs:
            lines.append("### Crash Logs")
            for index, log in enumerate(crash.logs, start=1):
                lines.append(f"- [Crash Log {index}]({log.url}) (expires: {log.expires_at.date().isoformat()})")
            lines.append("")

    feedback = record.screenshot_data
    if feedback is not None:
        lines += ["### 📝 User Feedback", ""]
        if feedback.text:
            lines += ["**Feedback Text:**", _quote(feedback.text), ""]
        if screenshots or feedback.images:
            lines += ["### 📸 Screenshots", ""]
            if screenshots:
                lines += _screenshot_section(screenshots)
            else:
                lines += [f"*{len(feedback.images)} screenshot(s) were submitted but could not be uploaded or linked.*", ""]
        if feedback.annotations:
            lines += [f"**Annotations:** {len(feedback.annotations)} user annotation(s)", ""]
        if feedback.system_info:
            lines += _system_context(feedback.system_info, "📊 System Context")

    lines += [
        "### 🛠️ Technical Information",
        "",
        "<details>",
        "<summary>Device & Environment Details</summary>",
        "",
        f"- **Device Family:** {device.family}",
        f"- **Device Model:** {device.model}",
        f"- **OS Version:** {device.os_version}",
        f"- **Locale:** {device.locale}",
        f"- **Bundle ID:** {record.bundle_id}",
        f"- **Submission Time:** {record.submitted_at.isoformat()}",
        "",
        "</details>",
        "",
        "---",
        _footer(record),
    ]
    return "\n".join(lines)


def compose_comment(record: FeedbackRecord) -> str:
    """Body of the comment added to an existing issue for a repeat submission."""
    icon, _ = _icon_and_label(record)
    device = record.device_info
    body = (
        f"{icon} **Additional TestFlight {record.type.value} report**\n\n"
        f"**TestFlight ID:** {record.id}\n"
        f"**Submitted:** {record.submitted_at.isoformat()}\n"
        f"**Device:** {device.model} ({device.os_version})\n"
    )
    if record.screenshot_data is not None and record.screenshot_data.text:
        body += f"\n**User Feedback:**\n{_quote(record.screenshot_data.text)}"
    return body


__all__ = ["compose_comment", "compose_description", "compose_title"]
