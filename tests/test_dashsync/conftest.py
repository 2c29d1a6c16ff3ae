from __future__ import annotations

import pytest

from fakes import FakeClient, FakeClock


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in (
        "DASHSYNC_API_URL",
        "DASHSYNC_API_TOKEN",
        "DASHSYNC_TIMEOUT",
        "DASHSYNC_CACHE_TTL",
        "DASHSYNC_BATCH_SIZE",
    ):
        monkeypatch.delenv(var, raising=False)
