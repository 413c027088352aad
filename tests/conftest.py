import sys
from pathlib import Path

import pytest
import pytest_asyncio

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from crawler.types import (  # noqa: E402
    OUTCOME_COMPLETED,
    OUTCOME_FAILED,
    OUTCOME_TIMEOUT,
    RUN_SUCCEEDED,
    TERMINAL_FAILURE_STATUSES,
    RunOutcome,
)
from database import Database, init_db  # noqa: E402


class FakeApifyClient:
    """In-memory stand-in for ApifyClient (same coroutine surface)."""

    def __init__(self, items=None, status=RUN_SUCCEEDED, run_id="run-1"):
        self.items = list(items or [])
        self.status = status
        self.run_id = run_id
        self.statuses: dict[str, str] = {}
        self.unreachable: set[str] = set()
        self.start_error: Exception | None = None
        self.started: list[tuple[str, dict]] = []
        self.status_checks: list[str] = []

    async def start(self):
        return None

    async def stop(self):
        return None

    async def run_actor(self, actor_id, run_input):
        if self.start_error is not None:
            raise self.start_error
        self.started.append((actor_id, run_input))
        return {"id": self.run_id, "status": "READY", "defaultDatasetId": "ds-1"}

    async def get_run_status(self, run_id):
        from crawler.apify_client import ApifyError

        self.status_checks.append(run_id)
        if run_id in self.unreachable:
            raise ApifyError("Apify unreachable: connection refused", category="network")
        return {"id": run_id, "status": self.statuses.get(run_id, self.status), "defaultDatasetId": "ds-1"}

    async def get_dataset_items(self, dataset_id, limit=None):
        return list(self.items)

    async def wait_for_run(self, run_id, **kwargs):
        status = self.statuses.get(run_id, self.status)
        if status == RUN_SUCCEEDED:
            return RunOutcome(OUTCOME_COMPLETED, status, list(self.items))
        if status in TERMINAL_FAILURE_STATUSES:
            return RunOutcome(OUTCOME_FAILED, status)
        return RunOutcome(OUTCOME_TIMEOUT, status)


@pytest.fixture
def fake_apify():
    return FakeApifyClient()


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(database)
    try:
        yield database
    finally:
        await database.dispose()
