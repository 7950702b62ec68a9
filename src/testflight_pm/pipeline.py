"""File or update one Linear issue per TestFlight submission.

For each record the orchestrator runs, in order:

1. duplicate check (fail-closed): a hit gets a comment instead of a new issue
2. screenshot upload, falling back to the source URLs per image
3. title / description composition
4. label resolution (non-fatal)
5. issue creation

The outcome is always a :class:`FilingResult`; errors from steps 1 and 5 are
reported as ``FAILED`` rather than raised, so a batch keeps going.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .common.config import Settings
from .common.logging import get_logger
from .errors import DuplicateCheckError, IssueCreationError, TestFlightPMError, TrackerError
from .linear.adapters import to_issue
from .linear.assets import ScreenshotUploader
from .linear.client import LinearClient
from .linear.duplicates import DuplicateDetector
from .linear.labels import LabelResolver, unique_names
from .linear.templates import compose_comment, compose_description, compose_title
from .models import FeedbackRecord, ScreenshotLink, TrackingComment, TrackingIssue
from .retry import SleepFn
from .testflight.screenshots import ScreenshotAcquirer

LOGGER = get_logger(__name__)

CRASH_PRIORITY = 2


class FilingState(str, Enum):
    CREATED = "created"
    COMMENTED = "commented"
    FAILED = "failed"


@dataclass
class FilingOptions:
    additional_labels: List[str] = field(default_factory=list)
    assignee_id: Optional[str] = None
    project_id: Optional[str] = None
    custom_title: Optional[str] = None
    custom_description: Optional[str] = None
    priority: Optional[int] = None


@dataclass
class FilingResult:
    feedback_id: str
    state: FilingState
    issue: Optional[TrackingIssue] = None
    comment: Optional[TrackingComment] = None
    error: Optional[Exception] = None
    label_warning: Optional[str] = None
    screenshot_urls: List[ScreenshotLink] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is not FilingState.FAILED


class IssueFilingOrchestrator:
    """Turns normalized feedback into Linear issues without creating duplicates."""

    def __init__(
        self,
        client: LinearClient,
        detector: DuplicateDetector,
        uploader: ScreenshotUploader,
        labels: LabelResolver,
        default_labels: Sequence[str] = ("testflight",),
        crash_labels: Sequence[str] = ("crash", "bug"),
        feedback_labels: Sequence[str] = ("feedback", "enhancement"),
        default_priority: int = 3,
        duplicate_detection: bool = True,
        owned_acquirer: Optional[ScreenshotAcquirer] = None,
    ) -> None:
        self._client = client
        self._gateway = client.gateway
        self._detector = detector
        self._uploader = uploader
        self._labels = labels
        self._default_labels = list(default_labels)
        self._crash_labels = list(crash_labels)
        self._feedback_labels = list(feedback_labels)
        self._default_priority = default_priority
        self._duplicate_detection = duplicate_detection
        self._owned_acquirer = owned_acquirer

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: LinearClient,
        acquirer: Optional[ScreenshotAcquirer] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> "IssueFilingOrchestrator":
        """Wire the collaborators from settings.

        Pass the fetcher's ``acquirer`` to share its HTTP client; when omitted
        the orchestrator creates one and closes it in :meth:`aclose`.
        """
        gateway = client.gateway
        owned = None if acquirer is not None else ScreenshotAcquirer(sleep=sleep)
        return cls(
            client=client,
            detector=DuplicateDetector.from_settings(settings, gateway, sleep=sleep),
            uploader=ScreenshotUploader(gateway, acquirer or owned),
            labels=LabelResolver(gateway, client.team_id, sleep=sleep),
            default_labels=settings.linear_default_labels,
            crash_labels=settings.linear_crash_labels,
            feedback_labels=settings.linear_feedback_labels,
            default_priority=settings.linear_default_priority,
            duplicate_detection=settings.duplicate_detection_enabled,
            owned_acquirer=owned,
        )

    async def aclose(self) -> None:
        if self._owned_acquirer is not None:
            await self._owned_acquirer.aclose()
            self._owned_acquirer = None

    async def __aenter__(self) -> "IssueFilingOrchestrator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def file_or_update(self, record: FeedbackRecord, options: Optional[FilingOptions] = None) -> FilingResult:
        options = options or FilingOptions()
        log = LOGGER.bind(feedback_id=record.id, feedback_type=record.type.value)

        if self._duplicate_detection:
            try:
                existing = await self._detector.find_existing(record)
            except DuplicateCheckError as exc:
                log.error("Duplicate check failed; not creating an issue", error=str(exc))
                return FilingResult(record.id, FilingState.FAILED, error=exc)
            if existing is not None:
                return await self._comment_on(existing, record, log)

        links = await self._collect_screenshots(record, log)
        title = compose_title(record, options.custom_title)
        description = compose_description(record, links, options.custom_description)

        resolution = await self._labels.resolve(self._label_names(record, options))
        input_data: Dict[str, Any] = {
            "title": title,
            "description": description,
            "teamId": self._client.team_id,
            "priority": self._priority(record, options),
        }
        if options.assignee_id:
            input_data["assigneeId"] = options.assignee_id
        if options.project_id:
            input_data["projectId"] = options.project_id
        if resolution.label_ids:
            input_data["labelIds"] = resolution.label_ids

        try:
            issue = await self._create(input_data)
        except (IssueCreationError, TrackerError) as exc:
            log.error("Linear issue creation failed", error=str(exc))
            return FilingResult(
                record.id,
                FilingState.FAILED,
                error=exc,
                label_warning=resolution.warning,
                screenshot_urls=links,
            )

        log.info("Created Linear issue", issue=issue.identifier, screenshots=len(links), labels=len(resolution.label_ids))
        return FilingResult(
            record.id,
            FilingState.CREATED,
            issue=issue,
            label_warning=resolution.warning,
            screenshot_urls=links,
        )

    async def file_many(
        self, records: Iterable[FeedbackRecord], options: Optional[FilingOptions] = None
    ) -> List[FilingResult]:
        """File records one at a time; a failed record never stops the batch."""
        results: List[FilingResult] = []
        for record in records:
            try:
                result = await self.file_or_update(record, options)
            except TestFlightPMError as exc:
                LOGGER.error("Unexpected filing error", feedback_id=record.id, error=str(exc))
                result = FilingResult(record.id, FilingState.FAILED, error=exc)
            results.append(result)
        LOGGER.info(
            "Filing batch complete",
            total=len(results),
            created=sum(1 for r in results if r.state is FilingState.CREATED),
            commented=sum(1 for r in results if r.state is FilingState.COMMENTED),
            failed=sum(1 for r in results if r.state is FilingState.FAILED),
        )
        return results

    async def _comment_on(self, issue: TrackingIssue, record: FeedbackRecord, log: Any) -> FilingResult:
        log.info("Duplicate issue found; adding comment", issue=issue.identifier)
        try:
            comment = await self._client.add_comment(issue.id, compose_comment(record))
        except TrackerError as exc:
            log.error("Failed to comment on duplicate issue", issue=issue.identifier, error=str(exc))
            return FilingResult(record.id, FilingState.FAILED, issue=issue, error=exc)
        return FilingResult(record.id, FilingState.COMMENTED, issue=issue, comment=comment)

    async def _collect_screenshots(self, record: FeedbackRecord, log: Any) -> List[ScreenshotLink]:
        images = record.images
        if not images:
            return []

        def source_link(index: int) -> Optional[ScreenshotLink]:
            image = images[index]
            if not image.url:
                return None
            return ScreenshotLink(file_name=image.file_name or f"screenshot_{index}.png", url=image.url)

        outcomes: List[Optional[ScreenshotLink]]
        try:
            outcomes = (await self._uploader.upload(images)).outcomes
        except TestFlightPMError as exc:
            log.error("Screenshot upload failed entirely; linking source URLs", error=str(exc))
            outcomes = [None] * len(images)

        links: List[ScreenshotLink] = []
        for index, outcome in enumerate(outcomes):
            if outcome is None:
                outcome = source_link(index)
                if outcome is not None:
                    log.info("Linking source URL for screenshot", file_name=outcome.file_name, index=index)
            if outcome is not None:
                links.append(outcome)

        if not links:
            log.error(
                "No screenshot links available despite submitted images",
                images=[{"file_name": i.file_name, "has_url": bool(i.url), "cached": i.is_cached} for i in images],
            )
        return links

    def _label_names(self, record: FeedbackRecord, options: FilingOptions) -> List[str]:
        type_labels = self._crash_labels if record.is_crash else self._feedback_labels
        return unique_names([*self._default_labels, *type_labels, *options.additional_labels])

    def _priority(self, record: FeedbackRecord, options: FilingOptions) -> int:
        if options.priority is not None:
            return options.priority
        if record.is_crash:
            return CRASH_PRIORITY
        return self._default_priority

    async def _create(self, input_data: Dict[str, Any]) -> TrackingIssue:
        payload = await self._gateway.create_issue(input_data)
        if not payload.get("success"):
            raise IssueCreationError("Linear API error: failed to create issue")
        if not payload.get("issue"):
            raise IssueCreationError("Linear did not return the created issue")
        return to_issue(payload["issue"])


__all__ = [
    "FilingOptions",
    "FilingResult",
    "FilingState",
    "IssueFilingOrchestrator",
]
