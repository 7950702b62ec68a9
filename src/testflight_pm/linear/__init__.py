"""Linear side: GraphQL gateway, tracking client and filing helpers."""

from .assets import ScreenshotUploader, UploadResult
from .client import LinearClient
from .duplicates import DuplicateDetector
from .gateway import LinearGateway
from .labels import LabelResolution, LabelResolver

__all__ = [
    "DuplicateDetector",
    "LabelResolution",
    "LabelResolver",
    "LinearClient",
    "LinearGateway",
    "ScreenshotUploader",
    "UploadResult",
]
