from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import logging
from collections.abc import Callable
from typing import Any

import httpx

from app.core.config import get_settings


logger = logging.getLogger("app.notifications.client")

FeedListener = Callable[[list[dict[str, Any]], int], None]


def feed_digest(notices: list[dict[str, Any]], unread: int) -> str:
    payload = json.dumps({"notices": notices, "unread": unread}, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class NoticeFeedClient:
    """Polls the notification API and keeps a local copy of the caller's feed.

    Listeners fire only when the SHA-256 digest of the feed changes. Read and
    clear actions update the local copy first and restore the previous copy
    if the server does not confirm them, unless a poll replaced the copy while
    the request was in flight. The next poll reconciles in any case.
    The polling task belongs to this instance and ends with ``stop()``.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        interval: float | None = None,
        limit: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self.interval = interval if interval is not None else float(settings.notice_poll_interval_seconds)
        self.limit = limit or settings.notice_list_default_limit
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(10.0),
            transport=transport,
        )
        self.notices: list[dict[str, Any]] = []
        self.unread = 0
        self._digest: str | None = None
        self._listeners: list[FeedListener] = []
        self._task: asyncio.Task[None] | None = None
        self._fetches = 0

    @property
    def digest(self) -> str | None:
        return self._digest

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, listener: FeedListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._poll_loop(), name="notice-feed-poll")
        logger.info("notice_feed.started", extra={"operation": "start"})

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._owns_client:
            await self._client.aclose()
        logger.info("notice_feed.stopped", extra={"operation": "stop"})

    async def __aenter__(self) -> NoticeFeedClient:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def refresh(self) -> bool:
        """Fetch the feed once; returns True when listeners were notified."""
        listing = await self._client.get("/api/notifications", params={"limit": self.limit})
        listing.raise_for_status()
        counter = await self._client.get("/api/notifications/unread-count")
        counter.raise_for_status()

        notices = listing.json()
        unread = int(counter.json().get("unread", 0))
        self._fetches += 1
        digest = feed_digest(notices, unread)
        if digest == self._digest:
            return False
        self.notices, self.unread, self._digest = notices, unread, digest
        self._notify()
        return True

    async def mark_read(self, notice_id: str) -> bool:
        def apply() -> None:
            for item in self.notices:
                if str(item.get("id")) == str(notice_id) and not item.get("is_read"):
                    item["is_read"] = True
                    self.unread = max(0, self.unread - 1)

        return await self._optimistic("mark_read", apply, "POST", f"/api/notifications/{notice_id}/read")

    async def mark_all_read(self) -> bool:
        def apply() -> None:
            for item in self.notices:
                item["is_read"] = True
            self.unread = 0

        return await self._optimistic("mark_all_read", apply, "POST", "/api/notifications/read-all")

    async def clear_all(self) -> bool:
        def apply() -> None:
            self.notices = []
            self.unread = 0

        return await self._optimistic("clear_all", apply, "DELETE", "/api/notifications")

    async def _optimistic(self, operation: str, apply: Callable[[], None], method: str, url: str) -> bool:
        snapshot = (copy.deepcopy(self.notices), self.unread, self._digest)
        fetches = self._fetches
        apply()
        self._digest = feed_digest(self.notices, self.unread)
        self._notify()

        try:
            response = await self._client.request(method, url)
            response.raise_for_status()
            confirmed = bool(response.json().get("success", False))
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "notice_feed.action_failed",
                extra={"operation": operation, "error": f"{type(exc).__name__}: {exc}"},
            )
            confirmed = False

        # A poll that landed while the request was in flight already holds server state.
        if not confirmed and self._fetches == fetches:
            self.notices, self.unread, self._digest = snapshot
            self._notify()
        return confirmed

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.refresh()
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(
                    "notice_feed.poll_failed",
                    extra={"operation": "refresh", "error": f"{type(exc).__name__}: {exc}"},
                )
            await asyncio.sleep(self.interval)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.notices, self.unread)
            except Exception:
                logger.exception("notice_feed.listener_failed", extra={"operation": "notify"})
