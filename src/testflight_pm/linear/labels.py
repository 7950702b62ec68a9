"""Resolve label names to Linear label ids, creating missing labels."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..common.logging import get_logger
from ..errors import LabelResolutionError, TrackerError
from ..retry import LABEL_POLICY, BackoffPolicy, RetryError, SleepFn, last_exception
from .adapters import to_label
from .gateway import LinearGateway

LOGGER = get_logger(__name__)

# Linear group labels; issues can only carry their children.
GROUP_LABELS = frozenset({"feedback", "bug", "feature", "improvement", "platform"})
LABEL_PAGE_SIZE = 250


@dataclass
class LabelResolution:
    label_ids: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    warning: Optional[str] = None


def unique_names(names: Iterable[str]) -> List[str]:
    """Lowercase and de-duplicate, keeping first-seen order."""
    seen: Dict[str, None] = {}
    for name in names:
        cleaned = name.strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


class LabelResolver:
    """Maps names to assignable label ids for one team.

    Workspace labels are included (``issueLabels`` is queried without a team
    filter). Group labels and labels with children are never assigned.
    """

    def __init__(
        self,
        gateway: LinearGateway,
        team_id: str,
        policy: BackoffPolicy = LABEL_POLICY,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._team_id = team_id
        self._policy = policy
        self._sleep = sleep

    async def resolve(self, names: Iterable[str]) -> LabelResolution:
        """Resolve ``names``; never raises.

        If every attempt fails the result has no ids and ``warning`` explains
        why, so the issue can still be filed unlabeled.
        """
        wanted = unique_names(names)
        if not wanted:
            return LabelResolution()

        try:
            async for attempt in self._policy.retrying(sleep=self._sleep, labels=wanted):
                with attempt:
                    return await self._resolve_once(wanted)
        except RetryError as exc:
            cause = last_exception(exc)
            warning = (
                f"Failed to resolve labels after {self._policy.max_attempts} attempts: {cause}. "
                f"Issue filed without labels: {', '.join(wanted)}"
            )
            LOGGER.error("Label resolution exhausted; filing without labels", labels=wanted, error=str(cause))
            return LabelResolution(failed=wanted, warning=warning)
        return LabelResolution()  # pragma: no cover

    async def _resolve_once(self, wanted: List[str]) -> LabelResolution:
        assignable, groups = await self._index()
        result = LabelResolution()
        resolved: Set[str] = set()

        def add(label_id: str) -> None:
            if label_id not in resolved:
                resolved.add(label_id)
                result.label_ids.append(label_id)

        for name in wanted:
            if name in groups:
                LOGGER.debug("Skipping group label", label=name)
                result.skipped.append(name)
                continue
            label_id = assignable.get(name)
            if label_id:
                add(label_id)
                continue
            try:
                created = await self._create(name)
            except LabelResolutionError as exc:
                LOGGER.warning("Failed to create label", label=name, error=str(exc))
                result.failed.append(name)
                continue
            if created:
                add(created)
            else:
                result.failed.append(name)

        if result.failed:
            LOGGER.warning("Some labels could not be resolved", failed=result.failed)
        if not result.label_ids:
            LOGGER.error("No labels resolved", labels=wanted)
        LOGGER.info("Resolved labels", resolved=len(result.label_ids), requested=len(wanted))
        return result

    async def _index(self) -> Tuple[Dict[str, str], Set[str]]:
        assignable: Dict[str, str] = {}
        groups: Set[str] = set()
        for node in await self._gateway.issue_labels(first=LABEL_PAGE_SIZE):
            label = to_label(node)
            key = label.name.lower()
            if key in GROUP_LABELS or label.has_children:
                groups.add(key)
            else:
                assignable.setdefault(key, label.id)
        return assignable, groups

    async def _create(self, name: str) -> Optional[str]:
        try:
            payload = await self._gateway.create_issue_label(name, self._team_id)
        except TrackerError as exc:
            message = str(exc)
            if "Duplicate label name" not in message and "already exists" not in message:
                raise LabelResolutionError(message) from exc
            # Exists at workspace level but was not in the first page.
            for node in await self._gateway.issue_labels(first=LABEL_PAGE_SIZE):
                if (node.get("name") or "").lower() == name:
                    LOGGER.info("Found existing workspace label", label=name, label_id=node["id"])
                    return node["id"]
            return None

        label = payload.get("issueLabel")
        if payload.get("success") and label:
            LOGGER.info("Created label", label=name, label_id=label["id"])
            return label["id"]
        return None


__all__ = ["GROUP_LABELS", "LabelResolution", "LabelResolver", "unique_names"]
