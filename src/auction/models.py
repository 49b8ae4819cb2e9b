"""
Auction Models: rooms, teams, items, bids and their status enums.
"""

from enum import Enum
from dataclasses import dataclass
from typing import Optional


class RoomStatus(Enum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class ItemStatus(Enum):
    PENDING = "PENDING"
    NOMINATED = "NOMINATED"
    SOLD = "SOLD"
    UNSOLD = "UNSOLD"


class BidStatus(Enum):
    VALID = "VALID"
    RETRACTED = "RETRACTED"
    VOID = "VOID"


# Items in these states still accept bids
BIDDABLE_STATUSES = (ItemStatus.PENDING, ItemStatus.NOMINATED)


@dataclass
class Room:
    """Single auction instance"""
    room_id: str
    name: str
    owner_id: str
    status: RoomStatus
    settings_json: str          # Serialized AuctionSettings
    created_at: int             # Nanoseconds


@dataclass
class Team:
    """Participant with a budget cap and roster capacity"""
    team_id: str
    room_id: str
    name: str
    budget: int
    roster_spots: int
    owner_name: Optional[str] = None
    pin_hash: Optional[str] = None

    @property
    def is_claimed(self) -> bool:
        return self.pin_hash is not None


@dataclass
class Item:
    """Auctionable player with its current leader denormalized onto the row"""
    item_id: str
    room_id: str
    name: str
    status: ItemStatus
    position: Optional[str] = None
    club: Optional[str] = None
    winning_bid_id: Optional[str] = None
    winning_team_id: Optional[str] = None
    contract_years: Optional[int] = None
    expires_at: Optional[int] = None    # Nanoseconds
    version: int = 0


@dataclass
class Bid:
    """Offer by a team on an item. Only `status` ever changes."""
    bid_id: str
    item_id: str
    team_id: str
    amount: int
    contract_years: int
    status: BidStatus
    timestamp: int              # Nanoseconds
    sequence: int = 0           # Store insertion order, breaks timestamp ties


@dataclass
class ItemState:
    """Read shape served to polling clients"""
    item_id: str
    status: ItemStatus
    winning_team_id: Optional[str]
    winning_bid_amount: Optional[int]
    contract_years: Optional[int]
    expires_at: Optional[int]
    version: int

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "status": self.status.value,
            "winning_team_id": self.winning_team_id,
            "winning_bid_amount": self.winning_bid_amount,
            "contract_years": self.contract_years,
            "expires_at": self.expires_at,
            "version": self.version,
        }
