"""Shared fixtures for the unit suite."""

from __future__ import annotations

from datetime import datetime

import pytest

from factories import FIXED_NOW, InMemoryLinear, SleepRecorder


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def linear_store() -> InMemoryLinear:
    return InMemoryLinear()
