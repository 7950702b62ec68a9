"""Find an existing Linear issue already filed for a TestFlight submission.

An issue is a confirmed duplicate only when its description contains the
submission id. Candidates come from three progressively broader lookups:

1. a filtered ``issues`` query (title or description mentions the id)
2. full-text ``searchIssues``, restricted to the configured team
3. every team issue created within the lookback window, which covers search
   indexing lag right after an issue is created

A clean miss from all three is final. Any error restarts the whole pass under
:data:`~testflight_pm.retry.SEARCH_POLICY`; once attempts run out the detector
raises :class:`DuplicateCheckError` and callers must not create an issue.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Optional

from ..common.config import Settings
from ..common.logging import get_logger
from ..errors import DuplicateCheckError
from ..models import FeedbackRecord, TrackingIssue, utcnow
from ..retry import SEARCH_POLICY, BackoffPolicy, RetryError, SleepFn, last_exception
from .adapters import to_issue
from .gateway import LinearGateway

LOGGER = get_logger(__name__)


def _mentions(node: Dict[str, Any], feedback_id: str) -> bool:
    return feedback_id in (node.get("description") or "")


class DuplicateDetector:
    """Fail-closed duplicate lookup for one Linear team."""

    def __init__(
        self,
        gateway: LinearGateway,
        team_id: str,
        lookback_days: int = 7,
        filter_page_size: int = 20,
        recent_page_size: int = 50,
        policy: BackoffPolicy = SEARCH_POLICY,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._gateway = gateway
        self._team_id = team_id
        self._lookback = timedelta(days=lookback_days)
        self._filter_page_size = filter_page_size
        self._recent_page_size = recent_page_size
        self._policy = policy
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, gateway: LinearGateway, sleep: SleepFn = asyncio.sleep) -> "DuplicateDetector":
        return cls(
            gateway,
            settings.linear_team_id or "",
            lookback_days=settings.duplicate_detection_days,
            filter_page_size=settings.duplicate_filter_page_size,
            recent_page_size=settings.duplicate_recent_page_size,
            sleep=sleep,
        )

    async def find_existing(self, record: FeedbackRecord) -> Optional[TrackingIssue]:
        """Return the issue already tracking ``record``, or ``None``.

        Raises:
            DuplicateCheckError: every attempt failed; the last cause is chained
        """
        try:
            async for attempt in self._policy.retrying(sleep=self._sleep, feedback_id=record.id):
                with attempt:
                    LOGGER.info(
                        "Searching for duplicate issue",
                        feedback_id=record.id,
                        attempt=attempt.retry_state.attempt_number,
                        max_attempts=self._policy.max_attempts,
                    )
                    return await self._search_once(record.id)
        except RetryError as exc:
            cause = last_exception(exc)
            LOGGER.error(
                "Duplicate check exhausted; refusing to file",
                feedback_id=record.id,
                attempts=self._policy.max_attempts,
                error=str(cause),
            )
            raise DuplicateCheckError(
                f"Failed to check for duplicate Linear issues: {cause}. "
                "Cannot safely proceed without duplicate check.",
                attempts=self._policy.max_attempts,
            ) from cause
        return None  # pragma: no cover

    async def _search_once(self, feedback_id: str) -> Optional[TrackingIssue]:
        team_filter = {"team": {"id": {"eq": self._team_id}}}

        filtered = await self._gateway.issues(
            {
                **team_filter,
                "or": [
                    {"title": {"containsIgnoreCase": feedback_id}},
                    {"description": {"containsIgnoreCase": f"TestFlight ID: {feedback_id}"}},
                    {"description": {"containsIgnoreCase": feedback_id}},
                ],
            },
            first=self._filter_page_size,
        )
        found = self._confirm(filtered, feedback_id, "filter")
        if found:
            return found

        searched = await self._gateway.search_issues(feedback_id, first=self._filter_page_size)
        in_team = [node for node in searched if (node.get("team") or {}).get("id") == self._team_id]
        found = self._confirm(in_team, feedback_id, "text-search")
        if found:
            return found

        since = self._clock() - self._lookback
        recent = await self._gateway.issues(
            {**team_filter, "createdAt": {"gte": since.isoformat()}},
            first=self._recent_page_size,
        )
        found = self._confirm(recent, feedback_id, "recent-scan")
        if found:
            return found

        LOGGER.info("No duplicate found", feedback_id=feedback_id)
        return None

    @staticmethod
    def _confirm(nodes: Iterable[Dict[str, Any]], feedback_id: str, tier: str) -> Optional[TrackingIssue]:
        for node in nodes:
            if _mentions(node, feedback_id):
                issue = to_issue(node)
                LOGGER.info("Found duplicate issue", feedback_id=feedback_id, issue=issue.identifier, tier=tier)
                return issue
        return None


__all__ = ["DuplicateDetector"]
