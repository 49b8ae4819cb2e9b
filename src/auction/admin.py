"""
Room Administration: owner-only room, team and item management.

The owner id is supplied by the caller; resolving it from a session is the
job of the (out of scope) authentication layer.
"""

import logging
from typing import Any, Dict, List, Optional

from auction.models import Item, Room, RoomStatus, Team
from auction.settings import AuctionSettings, default_settings
from auction.store import AuctionStore

logger = logging.getLogger(__name__)


class AdminError(Exception):
    """Base class for rejected administration requests"""


class RoomNotFound(AdminError):
    """Raised when the room (or the team/item's room) does not exist"""


class NotRoomOwner(AdminError):
    """Raised when the caller does not own the room"""


class InvalidStatusTransition(AdminError):
    """Raised when a room status change is not allowed"""


# DRAFT -> OPEN (first start), OPEN -> PAUSED, PAUSED -> OPEN
_TOGGLE = {
    RoomStatus.DRAFT: RoomStatus.OPEN,
    RoomStatus.OPEN: RoomStatus.PAUSED,
    RoomStatus.PAUSED: RoomStatus.OPEN,
}


class RoomAdmin:
    """Owner operations over rooms, teams and items."""

    def __init__(self, store: AuctionStore):
        self.store = store

    def verify_ownership(self, room_id: str, owner_id: str) -> Room:
        """
        Load a room and check its owner.

        Raises:
            RoomNotFound: If the room does not exist
            NotRoomOwner: If owner_id does not own it
        """
        room = self.store.get_room(room_id)
        if room is None:
            raise RoomNotFound(f"Room not found: {room_id}")
        if room.owner_id != owner_id:
            raise NotRoomOwner(f"Only the room owner can manage room {room_id}")
        return room

    def create_room(
        self, name: str, owner_id: str, settings: Optional[Dict[str, Any]] = None
    ) -> Room:
        """
        Create a DRAFT room.

        Args:
            name: Display name
            owner_id: Owner user id
            settings: Partial settings merged over the defaults

        Raises:
            ValueError: If the merged settings are invalid
        """
        merged = default_settings()
        if settings:
            merged = merged.merged(settings)
        room = self.store.create_room(name, owner_id, merged.to_json())
        logger.info(f"[ADMIN] Created room {room.room_id} ({name}) for {owner_id}")
        return room

    def toggle_room_status(self, room_id: str, owner_id: str) -> RoomStatus:
        room = self.verify_ownership(room_id, owner_id)
        if room.status not in _TOGGLE:
            raise InvalidStatusTransition(f"Room {room_id} is {room.status.value}")
        new_status = _TOGGLE[room.status]
        self.store.set_room_status(room_id, new_status)
        logger.info(f"[ADMIN] Room {room_id}: {room.status.value} -> {new_status.value}")
        return new_status

    def complete_room(self, room_id: str, owner_id: str) -> None:
        room = self.verify_ownership(room_id, owner_id)
        if room.status == RoomStatus.COMPLETED:
            raise InvalidStatusTransition(f"Room {room_id} is already COMPLETED")
        self.store.set_room_status(room_id, RoomStatus.COMPLETED)
        logger.info(f"[ADMIN] Room {room_id} completed")

    def get_settings(self, room_id: str) -> AuctionSettings:
        room = self.store.get_room(room_id)
        if room is None:
            raise RoomNotFound(f"Room not found: {room_id}")
        return AuctionSettings.from_json(room.settings_json)

    def update_room_settings(
        self, room_id: str, owner_id: str, partial: Dict[str, Any]
    ) -> AuctionSettings:
        """
        Shallow-merge partial settings into the room's settings.

        Raises:
            ValueError: If the merged settings are invalid (nothing is written)
        """
        room = self.verify_ownership(room_id, owner_id)
        updated = AuctionSettings.from_json(room.settings_json).merged(partial)
        self.store.set_room_settings(room_id, updated.to_json())
        logger.info(f"[ADMIN] Updated settings of room {room_id}: {sorted(partial)}")
        return updated

    def create_team(
        self,
        room_id: str,
        owner_id: str,
        name: str,
        budget: Optional[int] = None,
        roster_spots: Optional[int] = None,
        owner_name: Optional[str] = None,
    ) -> Team:
        """Create a team; budget and spots default to the room settings."""
        room = self.verify_ownership(room_id, owner_id)
        settings = AuctionSettings.from_json(room.settings_json)
        if budget is None:
            budget = settings.starting_budget
        if roster_spots is None:
            roster_spots = settings.max_roster_size
        if budget < 0 or roster_spots < 0:
            raise ValueError("Budget and roster spots cannot be negative")
        return self.store.create_team(room_id, name, budget, roster_spots, owner_name)

    def update_team(
        self, team_id: str, owner_id: str, name: str, budget: int, roster_spots: int
    ) -> None:
        team = self.store.get_team(team_id)
        if team is None:
            raise RoomNotFound(f"Team not found: {team_id}")
        self.verify_ownership(team.room_id, owner_id)
        if budget < 0 or roster_spots < 0:
            raise ValueError("Budget and roster spots cannot be negative")
        self.store.update_team(team_id, name, budget, roster_spots)

    def import_items(
        self, room_id: str, owner_id: str, records: List[Dict[str, Any]]
    ) -> List[Item]:
        """
        Create PENDING items from already-parsed records.

        Args:
            records: Dicts with 'name' and optional 'position' and 'club'

        Raises:
            ValueError: If a record has no name
        """
        self.verify_ownership(room_id, owner_id)
        for record in records:
            if not str(record.get("name", "")).strip():
                raise ValueError(f"Item record without a name: {record}")
        items = self.store.insert_items(room_id, records)
        logger.info(f"[ADMIN] Imported {len(items)} items into room {room_id}")
        return items

    def delete_item(self, item_id: str, owner_id: str) -> bool:
        """Delete an item; only PENDING items that never had a bid can go."""
        item = self.store.get_item(item_id)
        if item is None:
            return False
        self.verify_ownership(item.room_id, owner_id)
        return self.store.delete_item(item_id)

    def clear_items(self, room_id: str, owner_id: str) -> int:
        self.verify_ownership(room_id, owner_id)
        return self.store.delete_pending_items(room_id)
