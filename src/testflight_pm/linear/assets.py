"""Upload screenshots to Linear's asset storage."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from pydantic import ValidationError

from ..common.logging import get_logger
from ..errors import AssetError, TrackerError, UploadUnavailableError
from ..models import ImageRef, ScreenshotLink
from ..testflight.screenshots import ScreenshotAcquirer
from .adapters import FileUploadPayload
from .gateway import LinearGateway

LOGGER = get_logger(__name__)

_CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "heic": "image/heic",
}


def content_type_for(file_name: Optional[str]) -> str:
    if not file_name or "." not in file_name:
        return "image/png"
    return _CONTENT_TYPES.get(file_name.rsplit(".", 1)[-1].lower(), "image/png")


@dataclass
class UploadResult:
    """Upload outcome per input image, in input order; ``None`` marks a failure."""

    outcomes: List[Optional[ScreenshotLink]] = field(default_factory=list)

    @property
    def links(self) -> List[ScreenshotLink]:
        return [link for link in self.outcomes if link is not None]

    @property
    def uploaded(self) -> int:
        return len(self.links)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.uploaded


class ScreenshotUploader:
    """Moves screenshot bytes into Linear and returns stable asset URLs.

    Cached bytes are used when present; otherwise the image is downloaded
    through the acquirer if its signed URL is still valid. Each image fails
    on its own without affecting the rest, except when Linear rejects the
    ``fileUpload`` request for authorization reasons: that aborts the batch
    with :class:`UploadUnavailableError`.
    """

    def __init__(self, gateway: LinearGateway, acquirer: ScreenshotAcquirer) -> None:
        self._gateway = gateway
        self._acquirer = acquirer

    async def upload(self, images: Sequence[ImageRef]) -> UploadResult:
        result = UploadResult()
        for index, image in enumerate(images):
            file_name = image.file_name or f"screenshot_{index}.png"
            try:
                asset_url = await self._upload_one(image, file_name)
            except UploadUnavailableError:
                raise
            except (AssetError, TrackerError) as exc:
                LOGGER.warning("Screenshot upload failed", file_name=file_name, index=index, error=str(exc))
                result.outcomes.append(None)
                continue
            result.outcomes.append(ScreenshotLink(file_name=file_name, url=asset_url, uploaded=True))
            LOGGER.info("Uploaded screenshot", file_name=file_name, index=index)
        return result

    async def _upload_one(self, image: ImageRef, file_name: str) -> str:
        data = image.cached_data
        if data is None:
            data = await self._acquirer.download(image)
            if data is None:
                raise AssetError(f"Screenshot URL expired before upload: {file_name}")

        content_type = content_type_for(file_name)
        try:
            raw = await self._gateway.file_upload(content_type, file_name, len(data))
        except TrackerError as exc:
            if exc.status in (401, 403):
                raise UploadUnavailableError(f"Linear rejected the upload request: {exc}", status=exc.status) from exc
            raise
        try:
            payload = FileUploadPayload.model_validate(raw)
        except ValidationError as exc:
            raise AssetError(f"Malformed upload target for {file_name}: {exc}") from exc
        if not payload.success or payload.upload_file is None:
            raise AssetError(f"Linear refused an upload URL for {file_name}")

        target = payload.upload_file
        await self._gateway.put_asset(
            target.upload_url,
            data,
            content_type,
            headers={header.key: header.value for header in target.headers},
        )
        return target.asset_url


__all__ = ["ScreenshotUploader", "UploadResult", "content_type_for"]
