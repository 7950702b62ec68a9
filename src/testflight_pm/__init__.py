"""Bridge TestFlight crash reports and screenshot feedback into Linear issues."""

from .models import FeedbackRecord, FeedbackType
from .pipeline import FilingOptions, FilingResult, FilingState, IssueFilingOrchestrator

__version__ = "1.0.0"

__all__ = [
    "FeedbackRecord",
    "FeedbackType",
    "FilingOptions",
    "FilingResult",
    "FilingState",
    "IssueFilingOrchestrator",
    "__version__",
]
