"""
Notification Sink: delivery of outbid / restored / won events to teams.

The processor hands events to a sink only after its transaction commits;
delivery failures never undo a bid.
"""

import threading
import logging
from enum import Enum
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)


class NotificationType(Enum):
    OUTBID = "OUTBID"
    WINNER_RESTORED = "WINNER_RESTORED"
    ITEM_WON = "ITEM_WON"


@dataclass
class Notification:
    """Event addressed to one team"""
    notification_type: NotificationType
    room_id: str
    team_id: str            # Recipient
    item_id: str
    amount: int
    leader_team_id: str
    created_at: int         # Nanoseconds
    item_name: Optional[str] = None
    leader_team_name: Optional[str] = None

    @property
    def message(self) -> str:
        item = self.item_name or self.item_id
        if self.notification_type == NotificationType.OUTBID:
            leader = self.leader_team_name or self.leader_team_id
            return f"You were outbid by {leader} on {item} ({self.amount})"
        if self.notification_type == NotificationType.WINNER_RESTORED:
            return (
                f"Your bid on {item} ({self.amount}) is leading again "
                "after a higher bid was retracted"
            )
        return f"You won {item} for {self.amount}"


class NotificationSink:
    """Receiver of notifications. Subclasses implement send()."""

    def send(self, notification: Notification) -> None:
        raise NotImplementedError


class InMemoryNotificationSink(NotificationSink):
    """Thread-safe list of delivered notifications, for polling and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self._delivered: List[Notification] = []

    def send(self, notification: Notification) -> None:
        with self._lock:
            self._delivered.append(notification)

    def delivered(
        self,
        team_id: Optional[str] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> List[Notification]:
        with self._lock:
            return [
                n for n in self._delivered
                if (team_id is None or n.team_id == team_id)
                and (notification_type is None or n.notification_type == notification_type)
            ]

    def clear(self) -> None:
        with self._lock:
            self._delivered.clear()


class StoreNotificationSink(NotificationSink):
    """Persist notifications to the team inbox table of an AuctionStore."""

    def __init__(self, store):
        self.store = store

    def send(self, notification: Notification) -> None:
        self.store.insert_notification(
            room_id=notification.room_id,
            team_id=notification.team_id,
            notification_type=notification.notification_type.value,
            message=notification.message,
            item_id=notification.item_id,
            created_at=notification.created_at,
        )
        logger.debug(
            f"[NOTIFY] {notification.notification_type.value} stored for team {notification.team_id}"
        )
