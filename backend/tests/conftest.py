"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path

# Skip server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest

from fastapi.testclient import TestClient
from server import app
from services.record_store import RecordNotFoundError, RecordStore, RecordStoreError


class MemoryRecordStore(RecordStore):
    """RecordStore over plain dicts, with switchable fetch/update failures."""

    def __init__(self, records=None):
        super().__init__()
        self.records = {k: dict(v) for k, v in (records or {}).items()}
        self.fail_fetch = False
        self.fail_update = False
        self.fetch_calls = []
        self.updates = []
        self.notified = []

    async def fetch(self, record_id, fields):
        self.fetch_calls.append(record_id)
        if self.fail_fetch:
            raise RecordStoreError("Record store unavailable", record_id=record_id)
        record = self.records.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        snapshot = {"account_id": record_id}
        for field in fields:
            if field in record:
                snapshot[field] = record[field]
        return snapshot

    async def update(self, record_id, values):
        self.updates.append((record_id, dict(values)))
        if self.fail_update:
            raise RecordStoreError("Write rejected", record_id=record_id)
        if record_id not in self.records:
            raise RecordNotFoundError(record_id)
        self.records[record_id].update(values)

    async def notify_changed(self, record_id):
        self.notified.append(record_id)
        await super().notify_changed(record_id)


@pytest.fixture
def memory_store():
    return MemoryRecordStore()


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def _reset_workflow_sessions():
    from services.workflow_sessions import workflow_sessions
    yield
    workflow_sessions.close_all()
