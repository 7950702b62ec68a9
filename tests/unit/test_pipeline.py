"""Unit tests for the issue filing orchestrator."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from testflight_pm.common.config import Settings
from testflight_pm.errors import DuplicateCheckError, IssueCreationError, TrackerError
from testflight_pm.linear.assets import ScreenshotUploader
from testflight_pm.linear.client import LinearClient
from testflight_pm.linear.duplicates import DuplicateDetector
from testflight_pm.linear.labels import LabelResolver
from testflight_pm.pipeline import FilingOptions, FilingState, IssueFilingOrchestrator
from testflight_pm.testflight.screenshots import ScreenshotAcquirer

from factories import FIXED_NOW, make_crash_record, make_image, make_screenshot_record


@pytest.fixture
def acquirer():
    mock = MagicMock(spec=ScreenshotAcquirer)
    mock.download = AsyncMock(return_value=None)
    return mock


def make_orchestrator(store, sleeps, acquirer, detector=None, **kwargs):
    return IssueFilingOrchestrator(
        client=LinearClient(store, "team-1"),
        detector=detector or DuplicateDetector(store, "team-1", sleep=sleeps, clock=lambda: FIXED_NOW),
        uploader=ScreenshotUploader(store, acquirer),
        labels=LabelResolver(store, "team-1", sleep=sleeps),
        **kwargs,
    )


class TestFiling:
    """New issues, duplicates and failure modes."""

    @pytest.mark.asyncio
    async def test_crash_creates_high_priority_issue(self, linear_store, sleeps, acquirer):
        """Crashes file at priority 2 with type and default labels."""
        linear_store.labels.append({"id": "g-bug", "name": "Bug"})
        orchestrator = make_orchestrator(linear_store, sleeps, acquirer)

        result = await orchestrator.file_or_update(make_crash_record("crash-1"))

        assert result.state is FilingState.CREATED
        assert result.ok
        assert result.issue.identifier == "APP-1"
        node = linear_store.issues_store[0]
        assert node["priority"] == 2
        assert node["title"].startswith("💥 Crash Report")
        assert "`crash-1`" in node["description"]
        assert len(node["labelIds"]) == 2
        assert {label["name"] for label in linear_store.labels} == {"Bug", "testflight", "crash"}
        assert result.label_warning is None

    @pytest.mark.asyncio
    async def test_feedback_uses_default_priority(self, linear_store, sleeps, acquirer):
        """Screenshot feedback uses the configured default priority."""
        orchestrator = make_orchestrator(linear_store, sleeps, acquirer, default_priority=4)
        await orchestrator.file_or_update(make_screenshot_record())
        assert linear_store.issues_store[0]["priority"] == 4

    @pytest.mark.asyncio
    async def test_refiling_same_submission_comments_instead(self, linear_store, sleeps, acquirer):
        """A second run comments on the first issue instead of creating one."""
        orchestrator = make_orchestrator(linear_store, sleeps, acquirer)
        record = make_screenshot_record("shot-7", text="Button dead")

        first = await orchestrator.file_or_update(record)
        second = await orchestrator.file_or_update(record)

        assert first.state is FilingState.CREATED
        assert second.state is FilingState.COMMENTED
        assert second.issue.id == first.issue.id
        assert second.comment.issue.identifier == "APP-1"
        assert linear_store.create_calls == 1
        assert len(linear_store.comments) == 1
        assert "**TestFlight ID:** shot-7" in linear_store.comments[0]["body"]

    @pytest.mark.asyncio
    async def test_refiling_with_custom_description_comments_instead(self, linear_store, sleeps, acquirer):
        """A custom description still carries the id, so a second run finds the first issue."""
        orchestrator = make_orchestrator(linear_store, sleeps, acquirer)
        record = make_screenshot_record("shot-99")
        options = FilingOptions(custom_description="Summary of the bug")

        first = await orchestrator.file_or_update(record, options)
        second = await orchestrator.file_or_update(record, options)

        assert (first.state, second.state) == (FilingState.CREATED, FilingState.COMMENTED)
        assert linear_store.create_calls == 1
        description = linear_store.issues_store[0]["description"]
        assert description.startswith("Summary of the bug")
        assert "`shot-99`" in description

    @pytest.mark.asyncio
    async def test_duplicate_check_failure_never_creates(self, linear_store, sleeps, acquirer):
        """A failed duplicate check blocks issue creation."""
        detector = MagicMock(spec=DuplicateDetector)
        detector.find_existing = AsyncMock(side_effect=DuplicateCheckError("search down", attempts=3))
        orchestrator = make_orchestrator(linear_store, sleeps, acquirer, detector=detector)

        result = await orchestrator.file_or_update(make_crash_record())

        assert result.state is FilingState.FAILED
        assert isinstance(result.error, DuplicateCheckError)
        assert linear_store.create_calls == 0

    @pytest.mark.asyncio
    async def test_detection_disabled_skips_search(self, linear_store, sleeps, acquirer):
        """With detection off every run creates an issue."""
        detector = MagicMock(spec=DuplicateDetector)
        detector.find_existing = AsyncMock()
        orchestrator = make_orchestrator(linear_store, sleeps, acquirer, detector=detector, duplicate_detection=False)

        await orchestrator.file_or_update(make_crash_record())
        await orchestrator.file_or_update(make_crash_record())

        detector.find_existing.assert_not_awaited()
        assert linear_store.create_calls == 2

    @pytest.mark.asyncio
    async def test_comment_failure_reported(self, linear_store, sleeps, acquirer):
        """A failed duplicate comment is reported as FAILED."""
        orchestrator = make_orchestrator(linear_store, sleeps, acquirer)
        record = make_crash_record()
        await orchestrator.file_or_update(record)
        linear_store.create_comment = AsyncMock(side_effect=TrackerError("HTTP 500: boom", status=500))

        result = await orchestrator.file_or_update(record)

        assert result.state is FilingState.FAILED
        assert result.issue is not None

    @pytest.mark.asyncio
    async def test_create_without_success_fails(self, linear_store, sleeps, acquirer):
        """An unsuccessful create mutation is reported as FAILED."""
        linear_store.create_issue = AsyncMock(return_value={"success": False})
        result = await make_orchestrator(linear_store, sleeps, acquirer).file_or_update(make_crash_record())
        assert result.state is FilingState.FAILED
        assert isinstance(result.error, IssueCreationError)


class TestScreenshotsAndLabels:
    @pytest.mark.asyncio
    async def test_failed_upload_falls_back_to_source_url(self, linear_store, sleeps, acquirer):
        """An image that fails to upload links its source URL."""
        images = [
            make_image(file_name="a.png", url="https://tf.example.com/a.png", cached=b"a"),
            make_image(file_name="b.png", url="https://tf.example.com/b.png"),
        ]
        result = await make_orchestrator(linear_store, sleeps, acquirer).file_or_update(
            make_screenshot_record(images=images)
        )

        assert result.state is FilingState.CREATED
        assert [(link.file_name, link.uploaded) for link in result.screenshot_urls] == [("a.png", True), ("b.png", False)]
        description = linear_store.issues_store[0]["description"]
        assert "![a.png](https://uploads.linear.app/assets/a.png)" in description
        assert "![b.png](https://tf.example.com/b.png)" in description

    @pytest.mark.asyncio
    async def test_same_named_images_each_get_a_link(self, linear_store, sleeps, acquirer):
        """A failed image falls back to its own source URL even when another image shares its name."""
        images = [
            make_image(file_name="screenshot.png", url="https://tf.example.com/1.png", cached=b"one"),
            make_image(file_name="screenshot.png", url="https://tf.example.com/2.png"),
        ]
        result = await make_orchestrator(linear_store, sleeps, acquirer).file_or_update(
            make_screenshot_record(images=images)
        )

        assert [(link.url, link.uploaded) for link in result.screenshot_urls] == [
            ("https://uploads.linear.app/assets/screenshot.png", True),
            ("https://tf.example.com/2.png", False),
        ]

    @pytest.mark.asyncio
    async def test_fallback_keeps_image_order(self, linear_store, sleeps, acquirer):
        """Source-URL fallbacks stay in the position of the image they replace."""
        images = [
            make_image(file_name="first.png", url="https://tf.example.com/first.png"),
            make_image(file_name="second.png", url="https://tf.example.com/second.png", cached=b"2"),
        ]
        result = await make_orchestrator(linear_store, sleeps, acquirer).file_or_update(
            make_screenshot_record(images=images)
        )

        assert [link.file_name for link in result.screenshot_urls] == ["first.png", "second.png"]
        assert [link.uploaded for link in result.screenshot_urls] == [False, True]

    @pytest.mark.asyncio
    async def test_rejected_upload_request_links_every_source_url(self, linear_store, sleeps, acquirer):
        """When Linear refuses uploads outright, every image links its source URL."""
        linear_store.file_upload = AsyncMock(side_effect=TrackerError("HTTP 403: forbidden", status=403))
        images = [
            make_image(file_name="a.png", url="https://tf.example.com/a.png", cached=b"a"),
            make_image(file_name="b.png", url="https://tf.example.com/b.png", cached=b"b"),
        ]
        result = await make_orchestrator(linear_store, sleeps, acquirer).file_or_update(
            make_screenshot_record(images=images)
        )

        assert result.state is FilingState.CREATED
        assert all(not link.uploaded for link in result.screenshot_urls)
        description = linear_store.issues_store[0]["description"]
        assert "![a.png](https://tf.example.com/a.png)" in description
        assert "![b.png](https://tf.example.com/b.png)" in description
        assert linear_store.uploads == []

    @pytest.mark.asyncio
    async def test_no_links_at_all_notes_submitted_count(self, linear_store, sleeps, acquirer):
        """Without any links the description notes the submitted count."""
        record = make_screenshot_record(images=[make_image(file_name="gone.png", url="")])
        result = await make_orchestrator(linear_store, sleeps, acquirer).file_or_update(record)

        assert result.screenshot_urls == []
        assert "*1 screenshot(s) were submitted" in linear_store.issues_store[0]["description"]

    @pytest.mark.asyncio
    async def test_label_failure_still_files_issue(self, linear_store, sleeps, acquirer):
        """Label lookup failure files the issue with a warning."""
        linear_store.issue_labels = AsyncMock(side_effect=TrackerError("HTTP 503", status=503))

        result = await make_orchestrator(linear_store, sleeps, acquirer).file_or_update(make_crash_record())

        assert result.state is FilingState.CREATED
        assert "Failed to resolve labels" in result.label_warning
        assert linear_store.issues_store[0]["labelIds"] == []

    @pytest.mark.asyncio
    async def test_options_override_defaults(self, linear_store, sleeps, acquirer):
        """Filing options override title, priority, assignee and project."""
        captured = {}
        original = linear_store.create_issue

        async def spy(input_data):
            captured.update(input_data)
            return await original(input_data)

        linear_store.create_issue = spy
        options = FilingOptions(
            additional_labels=["Urgent"],
            assignee_id="user-9",
            project_id="proj-1",
            custom_title="Checkout crash",
            priority=1,
        )

        await make_orchestrator(linear_store, sleeps, acquirer).file_or_update(make_crash_record(), options)

        assert captured["title"] == "Checkout crash"
        assert captured["priority"] == 1
        assert captured["assigneeId"] == "user-9"
        assert captured["projectId"] == "proj-1"
        assert "urgent" in {label["name"] for label in linear_store.labels}


@pytest.mark.asyncio
async def test_file_many_keeps_going(linear_store, sleeps, acquirer):
    """One failed record does not stop the batch."""
    calls = {"n": 0}
    original = linear_store.create_issue

    async def flaky(input_data):
        calls["n"] += 1
        if calls["n"] == 1:
            return {"success": True, "issue": None}
        return await original(input_data)

    linear_store.create_issue = flaky
    results = await make_orchestrator(linear_store, sleeps, acquirer).file_many(
        [make_crash_record("c1"), make_crash_record("c2")]
    )

    assert [result.state for result in results] == [FilingState.FAILED, FilingState.CREATED]


def test_from_settings_wires_labels_and_priority(linear_store, acquirer):
    """from_settings carries label, priority and detection settings."""
    settings = Settings(
        _env_file=None,
        linear_api_token="lin_api_x",
        linear_team_id="team-1",
        linear_default_priority=4,
        linear_default_labels=["beta"],
        duplicate_detection_enabled=False,
    )
    orchestrator = IssueFilingOrchestrator.from_settings(settings, LinearClient(linear_store, "team-1"), acquirer=acquirer)

    assert orchestrator._default_priority == 4
    assert orchestrator._default_labels == ["beta"]
    assert orchestrator._duplicate_detection is False


class TestAcquirerLifecycle:
    """Closing the screenshot downloader the orchestrator owns."""

    @pytest.mark.asyncio
    async def test_created_acquirer_closed_on_exit(self, linear_store):
        """Without a shared acquirer the orchestrator builds one and closes it."""
        settings = Settings(_env_file=None, linear_api_token="lin_api_x", linear_team_id="team-1")
        with patch("testflight_pm.pipeline.ScreenshotAcquirer") as acquirer_cls:
            acquirer_cls.return_value.aclose = AsyncMock()
            async with IssueFilingOrchestrator.from_settings(settings, LinearClient(linear_store, "team-1")):
                pass

        acquirer_cls.return_value.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shared_acquirer_left_open(self, linear_store, acquirer):
        """A caller-supplied acquirer belongs to the caller and is not closed."""
        settings = Settings(_env_file=None, linear_api_token="lin_api_x", linear_team_id="team-1")
        orchestrator = IssueFilingOrchestrator.from_settings(
            settings, LinearClient(linear_store, "team-1"), acquirer=acquirer
        )

        await orchestrator.aclose()

        acquirer.aclose.assert_not_awaited()
