"""Combined health check for both ends of the bridge."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict

from .common.logging import get_logger
from .linear.client import LinearClient
from .models import utcnow
from .testflight.client import TestFlightClient

LOGGER = get_logger(__name__)


@dataclass
class HealthReport:
    testflight_authenticated: bool
    linear_connected: bool
    linear_status: str
    linear_details: Dict[str, Any] = field(default_factory=dict)
    checked_at: str = field(default_factory=lambda: utcnow().isoformat())

    @property
    def healthy(self) -> bool:
        return self.testflight_authenticated and self.linear_connected and self.linear_status == "healthy"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": "healthy" if self.healthy else "unhealthy",
            "testflight": {"authenticated": self.testflight_authenticated},
            "linear": {
                "connected": self.linear_connected,
                "status": self.linear_status,
                **self.linear_details,
            },
            "checked_at": self.checked_at,
        }


async def check_health(testflight: TestFlightClient, linear: LinearClient) -> HealthReport:
    authenticated, connected, linear_health = await asyncio.gather(
        testflight.test_authentication(),
        linear.test_connectivity(),
        linear.health_check(),
    )
    report = HealthReport(
        testflight_authenticated=authenticated,
        linear_connected=connected,
        linear_status=linear_health["status"],
        linear_details=dict(linear_health.get("details") or {}),
    )
    LOGGER.info("Health check complete", **report.as_dict())
    return report


__all__ = ["HealthReport", "check_health"]
