"""App Store Connect client for TestFlight crash and screenshot feedback."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from ..common.config import Settings
from ..common.http import USER_AGENT, http_client
from ..common.logging import get_logger
from ..errors import ConfigurationError, RequestError
from ..models import FeedbackRecord, utcnow
from .auth import AppStoreConnectTokenProvider, TokenProvider
from .executor import QueryParams, RequestExecutor
from .normalizer import (
    merge_crash_details,
    merge_screenshot_details,
    normalize_crash,
    normalize_screenshot,
    submitted_at_of,
)
from .screenshots import ScreenshotAcquirer

LOGGER = get_logger(__name__)

APP_FIELDS = "bundleId,name,sku,primaryLocale"
DETAIL_FIELDS = (
    "createdDate",
    "comment",
    "email",
    "deviceModel",
    "osVersion",
    "locale",
    "timeZone",
    "architecture",
    "connectionType",
    "pairedAppleWatch",
    "appUptimeInMilliseconds",
    "diskBytesAvailable",
    "diskBytesTotal",
    "batteryPercentage",
    "screenWidthInPoints",
    "screenHeightInPoints",
    "appPlatform",
    "devicePlatform",
    "deviceFamily",
    "buildBundleId",
)
DETAIL_INCLUDE = "build,tester"
SORT_NEWEST_FIRST = "-createdDate"


class TestFlightClient:
    """Fetches, enriches and normalizes TestFlight feedback for one app."""

    __test__ = False

    def __init__(
        self,
        executor: RequestExecutor,
        app_id: Optional[str] = None,
        bundle_id: Optional[str] = None,
        acquirer: Optional[ScreenshotAcquirer] = None,
        download_client: Optional[httpx.AsyncClient] = None,
        default_limit: int = 50,
        max_limit: int = 200,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._executor = executor
        self._app_id = app_id
        self._bundle_id = bundle_id
        self._download_client = download_client or http_client(headers={"User-Agent": USER_AGENT})
        self._acquirer = acquirer or ScreenshotAcquirer(clock=clock)
        self._default_limit = default_limit
        self._max_limit = max_limit
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        token_provider: Optional[TokenProvider] = None,
    ) -> "TestFlightClient":
        provider = token_provider or AppStoreConnectTokenProvider.from_settings(settings)
        executor = RequestExecutor.from_settings(settings, provider)
        return cls(
            executor=executor,
            app_id=settings.testflight_app_id,
            bundle_id=settings.testflight_bundle_id,
            acquirer=ScreenshotAcquirer(timeout=settings.testflight_timeout),
            default_limit=settings.testflight_default_limit,
            max_limit=settings.testflight_max_limit,
        )

    @property
    def configured_app_id(self) -> Optional[str]:
        return self._app_id

    @property
    def executor(self) -> RequestExecutor:
        return self._executor

    @property
    def acquirer(self) -> ScreenshotAcquirer:
        """Screenshot downloader; closed with this client."""
        return self._acquirer

    async def aclose(self) -> None:
        await self._executor.aclose()
        await self._acquirer.aclose()
        await self._download_client.aclose()

    async def __aenter__(self) -> "TestFlightClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # App identity
    # ------------------------------------------------------------------

    async def get_apps(self, params: Optional[QueryParams] = None) -> List[Dict[str, Any]]:
        query = QueryParams(limit=self._default_limit).merged(**_overrides(params))
        response = await self._executor.execute("/apps", query)
        return list(response.get("data") or [])

    async def get_app_by_id(self, app_id: str) -> Dict[str, Any]:
        response = await self._executor.execute(
            f"/apps/{app_id}",
            QueryParams(fields={"apps": APP_FIELDS}),
        )
        return response["data"]

    async def find_app_by_bundle_id(self, bundle_id: str) -> Optional[Dict[str, Any]]:
        """Look up an app by bundle id.

        Some API keys reject ``filter[bundleId]``; on an empty or failed
        filtered lookup this falls back to scanning up to ``max_limit`` apps.
        Errors from the fallback scan propagate.
        """
        try:
            apps = await self.get_apps(QueryParams(limit=1, filter={"bundleId": bundle_id}))
        except RequestError as exc:
            LOGGER.info("Filtered app lookup failed, scanning all apps", bundle_id=bundle_id, error=str(exc))
        else:
            if apps:
                LOGGER.info("Found app by bundle id", bundle_id=bundle_id, app_id=apps[0].get("id"))
                return apps[0]
            LOGGER.info("Filtered app lookup empty, scanning all apps", bundle_id=bundle_id)

        apps = await self.get_apps(QueryParams(limit=self._max_limit))
        for app in apps:
            if (app.get("attributes") or {}).get("bundleId") == bundle_id:
                return app

        LOGGER.warning(
            "No app found for bundle id",
            bundle_id=bundle_id,
            available=[
                f"{(app.get('attributes') or {}).get('name')}: {(app.get('attributes') or {}).get('bundleId')} ({app.get('id')})"
                for app in apps
            ],
        )
        return None

    async def resolve_app_id(self, bundle_id: Optional[str] = None) -> str:
        """Return the authoritative App Store Connect app id.

        Args:
            bundle_id: bundle id to validate against; defaults to the configured one

        Raises:
            ConfigurationError: neither identifier given, or none could be validated
        """
        app_id = self._app_id
        bundle_id = bundle_id or self._bundle_id

        if app_id and bundle_id:
            return await self._reconcile(app_id, bundle_id)

        if app_id:
            try:
                app = await self.get_app_by_id(app_id)
            except RequestError as exc:
                raise ConfigurationError(f"App ID '{app_id}' not found in App Store Connect: {exc}") from exc
            LOGGER.info("Validated app id", app_id=app_id, bundle_id=(app.get("attributes") or {}).get("bundleId"))
            return app_id

        if bundle_id:
            try:
                app = await self.find_app_by_bundle_id(bundle_id)
            except RequestError as exc:
                raise ConfigurationError(f"Failed to resolve app id from bundle id '{bundle_id}': {exc}") from exc
            if app is None:
                raise ConfigurationError(f"No app found with bundle ID '{bundle_id}' in App Store Connect")
            LOGGER.info("Resolved app id from bundle id", app_id=app["id"], bundle_id=bundle_id)
            return str(app["id"])

        raise ConfigurationError(
            "Either an app id or a bundle id is required; set TESTFLIGHT_APP_ID or TESTFLIGHT_BUNDLE_ID"
        )

    async def _reconcile(self, app_id: str, bundle_id: str) -> str:
        try:
            app = await self.find_app_by_bundle_id(bundle_id)
            if app is None:
                raise ConfigurationError(f"Bundle ID '{bundle_id}' not found in App Store Connect")
        except (RequestError, ConfigurationError) as bundle_error:
            LOGGER.warning("Bundle id validation failed, checking app id", bundle_id=bundle_id, error=str(bundle_error))
            try:
                by_id = await self.get_app_by_id(app_id)
                remote_bundle = (by_id.get("attributes") or {}).get("bundleId")
                if remote_bundle != bundle_id:
                    raise ConfigurationError(
                        f"App ID '{app_id}' has bundle ID '{remote_bundle}' but '{bundle_id}' was configured"
                    )
            except (RequestError, ConfigurationError) as app_error:
                raise ConfigurationError(
                    f"Neither app ID '{app_id}' nor bundle ID '{bundle_id}' could be validated. "
                    f"Bundle ID error: {bundle_error}; App ID error: {app_error}"
                ) from app_error
            return app_id

        remote_id = str(app["id"])
        if remote_id != app_id:
            LOGGER.warning(
                "Configured app id does not match bundle id; using App Store Connect's id",
                configured_app_id=app_id,
                remote_app_id=remote_id,
                bundle_id=bundle_id,
            )
            return remote_id
        return app_id

    # ------------------------------------------------------------------
    # Submission lists and details
    # ------------------------------------------------------------------

    async def get_app_crash_submissions(
        self, app_id: str, params: Optional[QueryParams] = None
    ) -> List[Dict[str, Any]]:
        query = QueryParams(limit=self._default_limit, sort=SORT_NEWEST_FIRST).merged(**_overrides(params))
        response = await self._executor.execute(f"/apps/{app_id}/betaFeedbackCrashSubmissions", query)
        return list(response.get("data") or [])

    async def get_app_screenshot_submissions(
        self, app_id: str, params: Optional[QueryParams] = None
    ) -> List[Dict[str, Any]]:
        query = QueryParams(limit=self._default_limit, sort=SORT_NEWEST_FIRST).merged(**_overrides(params))
        response = await self._executor.execute(f"/apps/{app_id}/betaFeedbackScreenshotSubmissions", query)
        return list(response.get("data") or [])

    async def get_detailed_crash_submission(self, crash_id: str) -> Dict[str, Any]:
        response = await self._executor.execute(
            f"/betaFeedbackCrashSubmissions/{crash_id}",
            QueryParams(
                include=DETAIL_INCLUDE,
                fields={"betaFeedbackCrashSubmissions": ",".join(DETAIL_FIELDS)},
            ),
        )
        return response["data"]

    async def get_detailed_screenshot_submission(self, screenshot_id: str) -> Dict[str, Any]:
        response = await self._executor.execute(
            f"/betaFeedbackScreenshotSubmissions/{screenshot_id}",
            QueryParams(
                include=DETAIL_INCLUDE,
                fields={"betaFeedbackScreenshotSubmissions": ",".join(DETAIL_FIELDS + ("screenshots",))},
            ),
        )
        return response["data"]

    async def get_crash_log(self, crash_id: str) -> Dict[str, Any]:
        response = await self._executor.execute(
            f"/betaFeedbackCrashSubmissions/{crash_id}/crashLog",
            QueryParams(fields={"betaCrashLogs": "logText"}),
        )
        return response["data"]

    @staticmethod
    def get_crash_log_text(crash_log: Dict[str, Any]) -> Optional[str]:
        text = (crash_log.get("attributes") or {}).get("logText")
        if not text:
            LOGGER.warning("Crash log text not available", crash_log_id=crash_log.get("id"))
            return None
        return text

    async def download_crash_logs(self, record: FeedbackRecord) -> List[str]:
        """Download the signed crash-log URLs of a crash record.

        Expired URLs are skipped and per-log failures are logged, never raised.
        """
        if record.crash_data is None:
            return []
        logs: List[str] = []
        now = self._clock()
        for log in record.crash_data.logs:
            if log.expires_at <= now:
                LOGGER.warning("Crash log URL expired", feedback_id=record.id, url=log.url)
                continue
            try:
                response = await self._download_client.get(log.url)
            except httpx.HTTPError as exc:
                LOGGER.warning("Error downloading crash log", feedback_id=record.id, url=log.url, error=str(exc))
                continue
            if not response.is_success:
                LOGGER.warning(
                    "Failed to download crash log",
                    feedback_id=record.id,
                    status=response.status_code,
                    reason=response.reason_phrase,
                )
                continue
            logs.append(response.text)
        return logs

    async def test_authentication(self) -> bool:
        try:
            await self.get_apps(QueryParams(limit=1))
        except RequestError as exc:
            LOGGER.error("App Store Connect authentication test failed", error=str(exc))
            return False
        return True

    # ------------------------------------------------------------------
    # Windowed fetch
    # ------------------------------------------------------------------

    async def fetch_since(self, cutoff: datetime, bundle_id: Optional[str] = None) -> List[FeedbackRecord]:
        """Fetch, enrich and normalize all feedback submitted at or after ``cutoff``.

        Only one page (``max_limit`` items) per submission type is read; a
        warning is logged when that page may have cut the window short.

        Returns:
            Records sorted newest first. Screenshot records come back with their
            images already downloaded where the signed URLs were still valid.
        """
        app_id = await self.resolve_app_id(bundle_id)
        page = QueryParams(limit=self._max_limit, sort=SORT_NEWEST_FIRST)

        crashes, screenshots = await asyncio.gather(
            self.get_app_crash_submissions(app_id, page),
            self.get_app_screenshot_submissions(app_id, page),
        )
        crashes = self._within_window(crashes, cutoff, "crash")
        screenshots = self._within_window(screenshots, cutoff, "screenshot")
        LOGGER.info(
            "Fetched feedback window",
            app_id=app_id,
            cutoff=cutoff.isoformat(),
            crashes=len(crashes),
            screenshots=len(screenshots),
        )

        records: List[FeedbackRecord] = []
        for resource in crashes:
            records.append(await self._enrich_crash(resource))
        for resource in screenshots:
            records.append(await self._enrich_screenshot(resource))

        records.sort(key=lambda record: record.submitted_at, reverse=True)
        return records

    def _within_window(self, resources: List[Dict[str, Any]], cutoff: datetime, kind: str) -> List[Dict[str, Any]]:
        dated: List[Tuple[datetime, Dict[str, Any]]] = [(submitted_at_of(r), r) for r in resources]
        if len(resources) >= self._max_limit and dated and min(d for d, _ in dated) >= cutoff:
            LOGGER.warning(
                "Feedback page is full and still inside the window; older items were not fetched",
                kind=kind,
                page_size=self._max_limit,
                cutoff=cutoff.isoformat(),
            )
        return [resource for submitted, resource in dated if submitted >= cutoff]

    async def _enrich_crash(self, resource: Dict[str, Any]) -> FeedbackRecord:
        record = normalize_crash(resource)
        try:
            detail = await self.get_detailed_crash_submission(record.id)
        except (RequestError, KeyError) as exc:
            LOGGER.warning("Failed to fetch crash details", feedback_id=record.id, error=str(exc))
        else:
            merge_crash_details(record, detail)

        try:
            log_text = self.get_crash_log_text(await self.get_crash_log(record.id))
        except (RequestError, KeyError) as exc:
            LOGGER.warning("Failed to fetch crash log", feedback_id=record.id, error=str(exc))
        else:
            if log_text and record.crash_data is not None:
                record.crash_data.detailed_logs = [log_text]
        return record

    async def _enrich_screenshot(self, resource: Dict[str, Any]) -> FeedbackRecord:
        record = normalize_screenshot(resource)
        try:
            detail = await self.get_detailed_screenshot_submission(record.id)
        except (RequestError, KeyError) as exc:
            LOGGER.warning("Failed to fetch screenshot details", feedback_id=record.id, error=str(exc))
        else:
            merge_screenshot_details(record, detail)

        if record.images:
            cached = await self._acquirer.acquire(record.images)
            LOGGER.info(
                "Pre-downloaded screenshots",
                feedback_id=record.id,
                cached=cached,
                total=len(record.images),
            )
        return record


def _overrides(params: Optional[QueryParams]) -> Dict[str, Any]:
    if params is None:
        return {}
    overrides: Dict[str, Any] = {"limit": params.limit, "sort": params.sort, "include": params.include}
    if params.filter:
        overrides["filter"] = dict(params.filter)
    if params.fields:
        overrides["fields"] = dict(params.fields)
    return overrides


__all__ = ["DETAIL_FIELDS", "TestFlightClient"]
