"""
Scoreboard publication: current ranked list plus push to subscribers.
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .models import Team

logger = logging.getLogger(__name__)

Payload = List[Dict[str, Any]]
Handler = Callable[[Payload], Awaitable[None]]
ViewKey = Tuple[int, str]
ViewValue = Tuple[Optional[float], int]


def _view_of(teams: List[Team]) -> Dict[ViewKey, ViewValue]:
    return {
        (team.id, task_id): (submission.score, submission.attempts)
        for team in teams
        for task_id, submission in team.submissions.items()
    }


def build_payload(
    teams: List[Team],
    previous_view: Optional[Dict[ViewKey, ViewValue]] = None,
) -> Payload:
    """
    Serialize teams, flagging submissions that changed since `previous_view`.

    The `recently_updated` flag only exists in the payload; it is never
    stored on the teams.

    @param teams: Ranked teams
    @param previous_view: What the receiver saw last, None for a first view
    @return: List of team dictionaries
    """
    payload = []
    for team in teams:
        data = team.to_dict()
        for submission in data["submissions"]:
            key = (team.id, submission["task_id"])
            current = (submission["score"], submission["attempts"])
            submission["recently_updated"] = (
                previous_view is not None
                and submission["attempts"] > 0
                and previous_view.get(key) != current
            )
        payload.append(data)
    return payload


class Subscription:
    """Handle returned by ScoreboardPublisher.subscribe()."""

    def __init__(
        self,
        publisher: "ScoreboardPublisher",
        subscription_id: int,
        handler: Handler,
    ) -> None:
        self.publisher = publisher
        self.id = subscription_id
        self.handler = handler
        self.last_view: Optional[Dict[ViewKey, ViewValue]] = None

    async def deliver(self, teams: List[Team]) -> None:
        payload = build_payload(teams, self.last_view)
        self.last_view = _view_of(teams)
        await self.handler(payload)

    def unsubscribe(self) -> None:
        self.publisher.unsubscribe(self)


class ScoreboardPublisher:
    """
    Holds the latest ranked scoreboard and pushes it to subscribers.

    Every push carries the full current state. Delivery failures are logged
    and never propagate to the caller that published.
    """

    def __init__(self) -> None:
        self._teams: List[Team] = []
        self._subscriptions: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    def current(self) -> List[Team]:
        return list(self._teams)

    def current_payload(self) -> Payload:
        return build_payload(self._teams)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def subscribe(
        self,
        handler: Handler,
        send_initial: bool = True,
    ) -> Subscription:
        """
        Register a handler for scoreboard pushes.

        @param handler: Coroutine function receiving the full payload
        @param send_initial: Deliver the current scoreboard right away
        @return: Subscription handle
        """
        subscription = Subscription(self, next(self._ids), handler)
        self._subscriptions[subscription.id] = subscription
        logger.debug("Subscriber %d registered", subscription.id)
        if send_initial:
            await self._deliver(subscription, self._teams)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if self._subscriptions.pop(subscription.id, None) is not None:
            logger.debug("Subscriber %d removed", subscription.id)

    async def resend(self, subscription: Subscription) -> bool:
        """
        Push the current scoreboard to one subscriber again.

        @return: False if delivery failed (already logged)
        """
        return await self._deliver(subscription, self._teams)

    def update(self, teams: List[Team]) -> None:
        """Replace the current scoreboard without notifying subscribers."""
        self._teams = list(teams)

    async def publish(self, teams: List[Team]) -> int:
        """
        Replace the current scoreboard and push it to every subscriber.

        @param teams: Freshly ranked teams
        @return: Number of subscribers that received the update
        """
        self.update(teams)
        subscriptions = list(self._subscriptions.values())
        if not subscriptions:
            return 0
        results = await asyncio.gather(
            *(self._deliver(subscription, self._teams) for subscription in subscriptions)
        )
        return sum(1 for delivered in results if delivered)

    async def _deliver(
        self,
        subscription: Subscription,
        teams: List[Team],
    ) -> bool:
        try:
            await subscription.deliver(teams)
            return True
        except Exception:
            logger.exception("Failed to push scoreboard to subscriber %d", subscription.id)
            return False
