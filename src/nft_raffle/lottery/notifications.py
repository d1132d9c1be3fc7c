"""In-memory notification bus and activity feed for the raffle engine."""

from __future__ import annotations

from collections import defaultdict, deque
from threading import Lock
from typing import Callable, Dict, List, Optional

from nft_raffle.lottery.models import Notification
from nft_raffle.utils.common import shorten_address
from nft_raffle.utils.logger import get_logger

logger = get_logger(__name__)

ALL_EVENTS = "*"

ROUND_STARTED = "round_started"
RAFFLE_ENTERED = "raffle_entered"
WINNER_SELECTED = "winner_selected"
REFUND_ISSUED = "refund_issued"
STALE_REFUNDS_SWEPT = "stale_refunds_swept"
TREASURY_WITHDRAWN = "treasury_withdrawn"
PAUSED = "paused"
UNPAUSED = "unpaused"
CONFIG_UPDATED = "config_updated"

Listener = Callable[[Notification], None]


class NotificationBus:
    """Fan-out of engine notifications plus a bounded live feed."""

    def __init__(self, *, feed_capacity: int = 200) -> None:
        self._lock = Lock()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._feed: deque[Notification] = deque(maxlen=feed_capacity)

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Listener) -> None:
        """Register ``callback`` for ``event_type`` (or ``"*"`` for everything)."""
        with self._lock:
            self._listeners[event_type].append(callback)
        logger.debug("Added listener for event_type=%s", event_type)

    def remove_listener(self, event_type: str, callback: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(event_type, [])
            if callback in listeners:
                listeners.remove(callback)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def publish(self, notification: Notification) -> None:
        with self._lock:
            self._feed.append(notification)
            listeners = list(self._listeners.get(notification.event_type, []))
            listeners += self._listeners.get(ALL_EVENTS, [])
        logger.info("%s", describe(notification))
        for callback in listeners:
            try:
                callback(notification)
            except Exception as exc:  # listeners must never break the engine
                logger.error("Listener for %s failed: %s", notification.event_type, exc)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def get_feed(self, limit: Optional[int] = None) -> List[Notification]:
        with self._lock:
            items = list(self._feed)
        if limit is not None:
            return items[-limit:]
        return items


def describe(notification: Notification) -> str:
    """One-line human readable message for the live feed and logs."""
    d = notification.details
    event = notification.event_type
    rnd = notification.round_number
    if event == RAFFLE_ENTERED:
        return f"Round {rnd}: {shorten_address(d.get('participant', ''))} took slot {d.get('slot')}"
    if event == WINNER_SELECTED:
        return f"Round {rnd}: {shorten_address(d.get('winner', ''))} won prize #{d.get('prizeId')}"
    if event == REFUND_ISSUED:
        return f"Refund of {d.get('amount')} wei paid to {shorten_address(d.get('recipient', ''))}"
    if event == STALE_REFUNDS_SWEPT:
        return f"Swept {d.get('count')} stale refunds ({d.get('amount')} wei now stranded)"
    if event == TREASURY_WITHDRAWN:
        return f"Operator withdrew {d.get('amount')} wei to {shorten_address(d.get('recipient', ''))}"
    if event == ROUND_STARTED:
        return f"Round window opened after round {rnd}"
    return f"{event} (round {rnd})"
