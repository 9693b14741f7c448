"""
CI trigger / poll capability (GitHub Actions REST API over httpx).

    client = CIClient("acme/app", token)
    run_id = client.trigger("stagefix.yml", {"stage": "staging"}, ref="main")
    status = wait_for_run(client, run_id, interval=10, timeout=900)

The dispatch endpoint returns no run id, so trigger() notes the newest run
before dispatching and then waits for a newer one to appear.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from stagefix.errors import PollTimeout, WorkflowError


log = logging.getLogger(__name__)

API_URL = "https://api.github.com"
REQUEST_TIMEOUT = 10.0

# How long trigger() waits for the dispatched run to show up.
DISCOVERY_ATTEMPTS = 5
DISCOVERY_DELAY = 3.0


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RunStatus:
    run_id: int
    status: str                         # queued | in_progress | completed | ...
    conclusion: Optional[str] = None    # success | failure | cancelled | ...
    url: str = ""

    @property
    def terminal(self) -> bool:
        return self.status == "completed"

    @property
    def succeeded(self) -> bool:
        return self.terminal and self.conclusion == "success"


# ── Client ────────────────────────────────────────────────────────────────────

class CIClient:
    """Thin GitHub Actions client. All HTTP failures surface as WorkflowError."""

    def __init__(
        self,
        repo: str,
        token: str,
        http: httpx.Client | None = None,
        base_url: str = API_URL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if "/" not in repo:
            raise WorkflowError(
                f"github_repo must be 'owner/name', got {repo!r}",
                "Set github_repo = \"owner/name\" in stack.toml",
            )
        self.repo = repo
        self._sleep = sleep
        self._http = http or httpx.Client(timeout=REQUEST_TIMEOUT)
        self._base = f"{base_url.rstrip('/')}/repos/{repo}/actions"
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "CIClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ── Public API ────────────────────────────────────────────────────────────

    def trigger(
        self,
        workflow_id: str,
        inputs: dict[str, str] | None = None,
        ref: str = "main",
    ) -> int:
        """Dispatch `workflow_id` on `ref` and return the new run's id."""
        previous = self._latest_run_id(workflow_id)

        self._request(
            "POST",
            f"/workflows/{workflow_id}/dispatches",
            json={"ref": ref, "inputs": inputs or {}},
        )
        log.info("dispatched %s on %s@%s", workflow_id, self.repo, ref)

        for attempt in range(DISCOVERY_ATTEMPTS):
            self._sleep(DISCOVERY_DELAY)
            latest = self._latest_run_id(workflow_id)
            if latest is not None and (previous is None or latest > previous):
                log.debug("run %s found after %d attempt(s)", latest, attempt + 1)
                return latest

        raise WorkflowError(
            f"workflow {workflow_id} was dispatched but no run appeared",
            f"Check https://github.com/{self.repo}/actions",
        )

    def poll_status(self, run_id: int) -> RunStatus:
        data = self._request("GET", f"/runs/{run_id}")
        return RunStatus(
            run_id=run_id,
            status=str(data.get("status") or "unknown"),
            conclusion=data.get("conclusion"),
            url=str(data.get("html_url") or ""),
        )

    # ── Internal ──────────────────────────────────────────────────────────────

    def _latest_run_id(self, workflow_id: str) -> int | None:
        data = self._request(
            "GET",
            f"/workflows/{workflow_id}/runs",
            params={"event": "workflow_dispatch", "per_page": 1},
        )
        runs = data.get("workflow_runs") or []
        return int(runs[0]["id"]) if runs else None

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = self._base + path
        try:
            response = self._http.request(method, url, headers=self._headers, **kwargs)
        except httpx.RequestError as e:
            raise WorkflowError(
                f"CI API request failed: {e}",
                "Check network access to api.github.com",
            ) from e

        if response.status_code >= 400:
            hint = "Check that STAGEFIX_CI_TOKEN has the 'actions: write' permission"
            if response.status_code == 404:
                hint = f"Check github_repo ({self.repo}) and that the workflow file exists"
            raise WorkflowError(f"CI API {method} {path} returned HTTP {response.status_code}", hint)

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise WorkflowError(f"CI API returned invalid JSON for {path}") from e
        return data if isinstance(data, dict) else {}


# ── Polling ───────────────────────────────────────────────────────────────────

def wait_for_run(
    client: CIClient,
    run_id: int,
    interval: float = 10.0,
    timeout: float = 900.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> RunStatus:
    """
    Poll `run_id` every `interval` seconds until it completes.

    Raises PollTimeout if still running after `timeout` seconds.
    """
    deadline = clock() + timeout
    url = ""
    while True:
        status = client.poll_status(run_id)
        url = status.url or url
        if status.terminal:
            log.info("run %s finished: %s", run_id, status.conclusion)
            return status
        if clock() >= deadline:
            raise PollTimeout(run_id, timeout, url)
        log.debug("run %s is %s", run_id, status.status)
        sleep(interval)
