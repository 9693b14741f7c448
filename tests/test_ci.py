"""
Tests for stagefix.ci — GitHub Actions trigger/poll over httpx.

All HTTP goes through httpx.MockTransport; nothing leaves the process.
"""

import json
from itertools import count

import httpx
import pytest

from stagefix.ci import CIClient, RunStatus, wait_for_run
from stagefix.errors import PollTimeout, WorkflowError


# ── Helpers ───────────────────────────────────────────────────────────────────

class FakeActions:
    """Minimal in-memory model of the Actions endpoints used by CIClient."""

    def __init__(self, statuses=None, dispatch_status=204, spawn_run=True):
        self.runs = [{"id": 100}]
        self.dispatched: list[dict] = []
        self.statuses = list(statuses or [{"status": "completed", "conclusion": "success"}])
        self.dispatch_status = dispatch_status
        self.spawn_run = spawn_run
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path.endswith("/dispatches"):
            if self.dispatch_status >= 400:
                return httpx.Response(self.dispatch_status, json={"message": "nope"})
            self.dispatched.append(json.loads(request.content))
            if self.spawn_run:
                self.runs.insert(0, {"id": 101})
            return httpx.Response(204)
        if request.method == "GET" and path.endswith("/runs") and "/workflows/" in path:
            return httpx.Response(200, json={"workflow_runs": self.runs[:1]})
        if request.method == "GET" and "/runs/" in path:
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            return httpx.Response(200, json={**status, "html_url": "https://github.com/acme/shop/actions/runs/101"})
        return httpx.Response(404)


def _client(actions: FakeActions) -> CIClient:
    http = httpx.Client(transport=httpx.MockTransport(actions))
    return CIClient("acme/shop", "token", http=http, sleep=lambda s: None)


# ── trigger ───────────────────────────────────────────────────────────────────

class TestTrigger:
    def test_returns_new_run_id(self):
        actions = FakeActions()
        assert _client(actions).trigger("stagefix.yml", {"stage": "staging"}, ref="main") == 101

    def test_sends_ref_and_inputs(self):
        actions = FakeActions()
        _client(actions).trigger("stagefix.yml", {"stage": "prod", "command": "deploy"}, ref="release")
        assert actions.dispatched == [{"ref": "release", "inputs": {"stage": "prod", "command": "deploy"}}]

    def test_sends_bearer_token(self):
        actions = FakeActions()
        _client(actions).trigger("stagefix.yml")
        assert all(r.headers["Authorization"] == "Bearer token" for r in actions.requests)

    def test_http_error_raises_workflow_error(self):
        actions = FakeActions(dispatch_status=403)
        with pytest.raises(WorkflowError) as exc:
            _client(actions).trigger("stagefix.yml")
        assert "403" in exc.value.message
        assert "actions: write" in exc.value.hint

    def test_missing_workflow_hint(self):
        actions = FakeActions(dispatch_status=404)
        with pytest.raises(WorkflowError) as exc:
            _client(actions).trigger("missing.yml")
        assert "acme/shop" in exc.value.hint

    def test_run_never_appears(self):
        actions = FakeActions(spawn_run=False)
        with pytest.raises(WorkflowError) as exc:
            _client(actions).trigger("stagefix.yml")
        assert "no run appeared" in exc.value.message

    def test_network_error_raises_workflow_error(self):
        def broken(request):
            raise httpx.ConnectError("unreachable", request=request)

        client = CIClient("acme/shop", "t", http=httpx.Client(transport=httpx.MockTransport(broken)))
        with pytest.raises(WorkflowError):
            client.poll_status(1)

    def test_repo_must_have_owner(self):
        with pytest.raises(WorkflowError):
            CIClient("shop", "t")


# ── poll ──────────────────────────────────────────────────────────────────────

class TestWaitForRun:
    def test_returns_when_completed(self):
        actions = FakeActions(statuses=[
            {"status": "queued", "conclusion": None},
            {"status": "in_progress", "conclusion": None},
            {"status": "completed", "conclusion": "success"},
        ])
        sleeps = []
        status = wait_for_run(_client(actions), 101, interval=10, timeout=600, sleep=sleeps.append)
        assert status.succeeded is True
        assert status.url.endswith("/101")
        assert sleeps == [10, 10]

    def test_failure_conclusion(self):
        actions = FakeActions(statuses=[{"status": "completed", "conclusion": "failure"}])
        status = wait_for_run(_client(actions), 101, sleep=lambda s: None)
        assert status.terminal is True
        assert status.succeeded is False

    def test_timeout_raises_poll_timeout(self):
        actions = FakeActions(statuses=[{"status": "in_progress", "conclusion": None}])
        clock = count(0, 60).__next__
        with pytest.raises(PollTimeout) as exc:
            wait_for_run(_client(actions), 101, interval=10, timeout=120, sleep=lambda s: None, clock=clock)
        assert "inconclusive" in exc.value.message
        assert exc.value.url.endswith("/101")


class TestRunStatus:
    def test_not_terminal_until_completed(self):
        assert RunStatus(1, "in_progress").terminal is False
        assert RunStatus(1, "completed", "success").succeeded is True
