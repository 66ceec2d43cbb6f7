"""Notification dispatch for match lifecycle events.

Delivery is fire-and-forget: dispatchers are called after a transition has
committed and a failure is logged, never raised back into settlement.
"""
import asyncio
import logging
from typing import Iterable, Optional, Protocol
from uuid import UUID

import aiohttp
from aiohttp import ClientError, ClientTimeout

from backend.config import get_settings

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """Events the lifecycle engine emits."""

    async def match_started(self, match_id: UUID, user_ids: Iterable[UUID]) -> None: ...

    async def vote_reminder(self, match_id: UUID, user_ids: Iterable[UUID]) -> None: ...

    async def match_disputed(self, match_id: UUID, user_ids: Iterable[UUID]) -> None: ...

    async def match_paid_out(self, match_id: UUID, winner_id: UUID, amount: int,
                             user_ids: Iterable[UUID]) -> None: ...


class LoggingNotificationDispatcher:
    """Default dispatcher: records events in the application log only."""

    async def match_started(self, match_id: UUID, user_ids: Iterable[UUID]) -> None:
        logger.info(f"[notify] match_started {match_id=}")

    async def vote_reminder(self, match_id: UUID, user_ids: Iterable[UUID]) -> None:
        logger.info(f"[notify] vote_reminder {match_id=}")

    async def match_disputed(self, match_id: UUID, user_ids: Iterable[UUID]) -> None:
        logger.info(f"[notify] match_disputed {match_id=}")

    async def match_paid_out(self, match_id: UUID, winner_id: UUID, amount: int,
                             user_ids: Iterable[UUID]) -> None:
        logger.info(f"[notify] match_paid_out {match_id=} {winner_id=} {amount=}")


class WebhookNotificationDispatcher:
    """
    Posts events to the push-notification endpoint.

    Payload matches the push function contract:
    ``{"userIds": [...], "title": str, "body": str, "data": {...}, "category": str}``.
    """

    def __init__(self, url: str, timeout_seconds: int = 10):
        self.url = url
        self.timeout = ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self):
        """Close the underlying aiohttp client session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _post(self, user_ids: Iterable[UUID], title: str, body: str, category: str, data: dict) -> bool:
        await self._ensure_session()
        payload = {
            "userIds": [str(user_id) for user_id in user_ids],
            "title": title,
            "body": body,
            "category": category,
            "data": data,
        }
        try:
            async with self._session.post(self.url, json=payload) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    logger.error(f"Notification webhook error {response.status} for {category}: {error_text}")
                    return False
                return True
        except asyncio.TimeoutError:
            logger.error(f"Notification webhook timeout for {category}")
        except ClientError as e:
            logger.error(f"Notification webhook client error for {category}: {e}")
        return False

    async def match_started(self, match_id: UUID, user_ids: Iterable[UUID]) -> None:
        await self._post(user_ids, "Match started", "Your match has started!", "match_started",
                         {"matchId": str(match_id)})

    async def vote_reminder(self, match_id: UUID, user_ids: Iterable[UUID]) -> None:
        await self._post(user_ids, "Time to vote", "Vote for the winner of your match.", "vote_reminder",
                         {"matchId": str(match_id)})

    async def match_disputed(self, match_id: UUID, user_ids: Iterable[UUID]) -> None:
        await self._post(user_ids, "Match disputed",
                         "The vote was tied. Submit evidence within 24 hours.", "match_disputed",
                         {"matchId": str(match_id)})

    async def match_paid_out(self, match_id: UUID, winner_id: UUID, amount: int,
                             user_ids: Iterable[UUID]) -> None:
        await self._post(user_ids, "Match settled", f"The winner received {amount} tokens.", "match_paid_out",
                         {"matchId": str(match_id), "winnerId": str(winner_id), "amount": amount})


_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Dispatcher configured from settings (webhook when a URL is set)."""
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        if settings.notification_webhook_url:
            _dispatcher = WebhookNotificationDispatcher(settings.notification_webhook_url,
                                                        settings.external_timeout_seconds)
        else:
            _dispatcher = LoggingNotificationDispatcher()
    return _dispatcher


async def close_notification_dispatcher() -> None:
    global _dispatcher
    if isinstance(_dispatcher, WebhookNotificationDispatcher):
        await _dispatcher.close()
    _dispatcher = None
