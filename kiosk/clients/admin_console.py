from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import logging
from typing import Any

import httpx

logger = logging.getLogger("kiosk.admin_console")

DEFAULT_POLL_INTERVAL_SECONDS = 5.0

Submission = dict[str, Any]


class AdminApiError(Exception):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


@dataclass
class AdminApiClient:
    """Operator calls against the kiosk HTTP API, authenticated with an admin token."""

    base_url: str
    token: str = field(default="", repr=False)
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)
    timeout_seconds: float = 10.0

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        return httpx.AsyncClient(
            base_url=self.base_url.rstrip("/"),
            headers=headers,
            transport=self.transport,
            timeout=self.timeout_seconds,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        async with self._client() as client:
            response = await client.request(method, path, params=params, json=json)
        if response.is_error:
            try:
                detail = str(response.json().get("detail", response.text))
            except ValueError:
                detail = response.text
            raise AdminApiError(response.status_code, detail)
        return response.json()

    async def login(self, password: str) -> str:
        payload = await self._request("POST", "/api/auth/login/admin", json={"password": password})
        self.token = str(payload["token"])
        return self.token

    async def list_submissions(
        self,
        *,
        event_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
        skip: int = 0,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": limit, "skip": skip}
        if event_id:
            params["eventId"] = event_id
        if status:
            params["status"] = status
        return await self._request("GET", "/api/submissions", params=params)

    async def get_submission(self, submission_id: str) -> Submission:
        return await self._request("GET", f"/api/submissions/{submission_id}")

    async def approve(self, submission_id: str) -> Submission:
        return await self._request("PATCH", f"/api/submissions/{submission_id}/approve")

    async def reject(self, submission_id: str) -> Submission:
        return await self._request("PATCH", f"/api/submissions/{submission_id}/reject")

    async def delete(self, submission_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/api/submissions/{submission_id}")

    async def add_to_queue(self, submission_id: str) -> Submission:
        return await self._request("POST", f"/api/submissions/{submission_id}/add-to-queue")

    async def retry(self, submission_id: str) -> Submission:
        return await self._request("POST", f"/api/submissions/{submission_id}/retry")

    async def verify_status(self, submission_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/api/submissions/{submission_id}/verify-status")

    async def regenerate(self, submission_id: str) -> Submission:
        return await self._request("POST", f"/api/submissions/{submission_id}/regenerate")

    async def processor_status(self) -> dict[str, Any]:
        return await self._request("GET", "/api/processor/status")


RECOVERABLE_ERRORS = (AdminApiError, httpx.HTTPError)


@dataclass
class AdminQueueView:
    """Operator's local copy of one event's submission list.

    Local actions are applied optimistically and then sent to the server.
    The local copy is never authoritative: any failed call throws the guess
    away and reloads, and the poll loop overwrites it on every tick.
    """

    api: AdminApiClient
    event_id: str | None = None
    status_filter: str | None = None
    limit: int = 50
    items: dict[str, Submission] = field(default_factory=dict)
    total: int = 0
    refresh_failures: int = 0

    def ordered(self) -> list[Submission]:
        return list(self.items.values())

    async def refresh(self) -> None:
        page = await self.api.list_submissions(event_id=self.event_id, status=self.status_filter, limit=self.limit)
        self.items = {item["id"]: item for item in page.get("submissions", [])}
        self.total = int(page.get("pagination", {}).get("total", len(self.items)))

    async def approve(self, submission_id: str) -> bool:
        return await self._optimistic(
            submission_id,
            lambda item: {**item, "status": "approved", "retryCount": 0},
            lambda: self.api.approve(submission_id),
        )

    async def reject(self, submission_id: str) -> bool:
        return await self._optimistic(
            submission_id,
            lambda item: {**item, "status": "rejected"},
            lambda: self.api.reject(submission_id),
        )

    async def delete(self, submission_id: str) -> bool:
        return await self._optimistic(
            submission_id,
            lambda item: None,
            lambda: self.api.delete(submission_id),
        )

    async def _optimistic(
        self,
        submission_id: str,
        guess: Callable[[Submission], Submission | None],
        call: Callable[[], Awaitable[Any]],
    ) -> bool:
        snapshot = dict(self.items)
        current = self.items.get(submission_id)
        if current is not None:
            guessed = guess(dict(current))
            if guessed is None or not self._matches_filter(guessed):
                self.items.pop(submission_id, None)
            else:
                self.items[submission_id] = guessed

        try:
            await call()
        except RECOVERABLE_ERRORS:
            logger.warning("admin action failed, reloading", exc_info=True, extra={"submission_id": submission_id})
            try:
                await self.refresh()
            except RECOVERABLE_ERRORS:
                logger.warning("reload after failed action failed", exc_info=True)
                self.items = snapshot
            return False
        return True

    def _matches_filter(self, item: Submission) -> bool:
        return self.status_filter is None or item.get("status") == self.status_filter

    async def poll_until_stopped(
        self,
        stop_event: asyncio.Event,
        *,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        while not stop_event.is_set():
            try:
                await self.refresh()
            except RECOVERABLE_ERRORS:
                self.refresh_failures += 1
                logger.warning("queue refresh failed", exc_info=True, extra={"event_id": self.event_id})

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except TimeoutError:
                continue


async def monitor_generation(
    api: AdminApiClient,
    submission_id: str,
    *,
    interval_seconds: float = 2.0,
    max_polls: int = 120,
    on_update: Callable[[Submission], None] | None = None,
) -> Submission:
    """Poll one submission until it completes or is rejected.

    Raises TimeoutError after `max_polls` checks; failed polls count but
    do not abort.
    """
    for _ in range(max_polls):
        try:
            submission = await api.get_submission(submission_id)
        except RECOVERABLE_ERRORS:
            logger.warning("generation poll failed", exc_info=True, extra={"submission_id": submission_id})
        else:
            if on_update is not None:
                on_update(submission)
            if submission.get("status") in ("completed", "rejected"):
                return submission
        await asyncio.sleep(interval_seconds)
    raise TimeoutError(f"generation for {submission_id} did not finish after {max_polls} polls")


@dataclass(frozen=True)
class BannerState:
    visible: bool
    message: str = ""


@dataclass
class SystemHealthBanner:
    """Dismissible warning derived from processor status.

    Dismissal hides the banner for the condition it was showing; a change in
    the condition (processor state or stuck count) shows it again.
    """

    condition: tuple[bool, int] | None = None
    dismissed: tuple[bool, int] | None = None

    def update(self, status: dict[str, Any]) -> BannerState:
        processor_down = not bool(status.get("isHealthy"))
        stuck = int(status.get("stuckCount") or 0)
        if not processor_down and stuck == 0:
            self.condition = None
            self.dismissed = None
            return BannerState(visible=False)

        self.condition = (processor_down, stuck)
        parts: list[str] = []
        if processor_down:
            parts.append("Processor heartbeat is stale")
        if stuck:
            parts.append(f"{stuck} submission(s) stuck in processing")
        return BannerState(visible=self.condition != self.dismissed, message="; ".join(parts))

    def dismiss(self) -> None:
        self.dismissed = self.condition
