from __future__ import annotations

import pytest
import pytest_asyncio

from boardroom.db.database import Database
from tests.fakes import FakeClock, RecordingTelemetry


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def telemetry():
    return RecordingTelemetry()


@pytest_asyncio.fixture
async def database():
    db = Database(":memory:")
    await db.connect()
    yield db
    await db.close()
