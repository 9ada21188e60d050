"""
HTTP control surface tests.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from clawd_worker import api
from clawd_worker.agents.observability import ObservabilityAgent
from clawd_worker.agents.rate_limiter import RateLimiter
from clawd_worker.agents.scheduler import CycleScheduler
from clawd_worker.errors import CycleInProgress, EnumerationFailed
from clawd_worker.schemas import CycleSummary


class StubScheduler(CycleScheduler):
    """Scheduler whose trigger outcome is set by the test."""

    def __init__(self, executor, config):
        super().__init__(executor, config)
        self.trigger_error = None
        self.trigger_calls = []

    async def trigger(self, dry_run=None):
        self.trigger_calls.append(dry_run)
        if self.trigger_error is not None:
            raise self.trigger_error
        return CycleSummary(dry_run=bool(dry_run), executed=0 if dry_run else 1)


@pytest.fixture
def client(worker_config, monkeypatch):
    scheduler = StubScheduler(executor=None, config=worker_config)
    worker = api.Worker(
        config=worker_config,
        scheduler=scheduler,
        rate_limiter=RateLimiter(),
        observability=ObservabilityAgent(worker_config),
    )
    monkeypatch.setattr(api, "_worker", worker)
    return TestClient(api.app), scheduler


class TestHealthAndStatus:
    def test_health(self, client):
        http, _ = client
        response = http.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "starting"
        assert body["cycleInProgress"] is False
        assert body["lastCycleAt"] is None

    def test_status_includes_config(self, client):
        http, _ = client
        body = http.get("/status").json()
        assert body["config"]["intervalMs"] == 10
        assert body["config"]["dryRun"] is False
        assert body["total_cycles_run"] == 0
        assert "circuits" in body
        assert body["rate_limits"]["max_transactions"] == 5

    def test_uninitialized_worker_is_503(self, monkeypatch):
        monkeypatch.setattr(api, "_worker", None)
        response = TestClient(api.app).get("/health")
        assert response.status_code == 503


class TestTriggers:
    def test_trigger_returns_summary(self, client):
        http, scheduler = client
        response = http.post("/trigger")
        assert response.status_code == 200
        assert response.json()["executed"] == 1
        assert scheduler.trigger_calls == [None]

    def test_dry_run_trigger(self, client):
        http, scheduler = client
        response = http.post("/cycle/dry-run")
        assert response.status_code == 200
        assert response.json()["dry_run"] is True
        assert scheduler.trigger_calls == [True]

    def test_cycle_in_progress_is_409(self, client):
        http, scheduler = client
        scheduler.trigger_error = CycleInProgress()
        response = http.post("/trigger")
        assert response.status_code == 409
        assert response.json() == {"error": "Cycle already in progress"}

    def test_cycle_failure_is_500(self, client):
        http, scheduler = client
        scheduler.trigger_error = EnumerationFailed("store down")
        response = http.post("/cycle/dry-run")
        assert response.status_code == 500
        assert "store down" in response.json()["error"]

    def test_timeout_is_500(self, client):
        http, scheduler = client
        scheduler.trigger_error = asyncio.TimeoutError()
        response = http.post("/trigger")
        assert response.status_code == 500
        assert response.json()["error"] == "Cycle timed out"

    def test_recent_cycles_empty(self, client):
        http, _ = client
        assert http.get("/cycles/recent").json() == []
