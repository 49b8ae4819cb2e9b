"""
Bid Errors: the closed set of outcomes a rejected bid or retraction reports.

Errors are raised inside the store unit of work so it rolls back, then
returned to the caller inside a BidResult.
"""

from typing import Any, Dict, Optional


class BidError(Exception):
    """Base class for rejected bid operations"""

    code = "BID_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details()}


class RoomNotOpen(BidError):
    code = "ROOM_NOT_OPEN"

    def __init__(self, room_id: str, status: Optional[str] = None):
        if status is None:
            message = f"Room {room_id} not found"
        else:
            message = f"Auction is not open (status: {status})"
        super().__init__(message)
        self.room_id = room_id
        self.status = status


class ItemNotFound(BidError):
    code = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        super().__init__(f"Item {item_id} not found in this room")
        self.item_id = item_id


class ItemUnavailable(BidError):
    code = "ITEM_UNAVAILABLE"

    def __init__(self, item_id: str, reason: str):
        super().__init__(f"Item {item_id} is not available: {reason}")
        self.item_id = item_id
        self.reason = reason


class TeamNotFound(BidError):
    code = "TEAM_NOT_FOUND"

    def __init__(self, team_id: str):
        super().__init__(f"Team {team_id} not found in this room")
        self.team_id = team_id


class BidTooLow(BidError):
    code = "BID_TOO_LOW"

    def __init__(self, min_bid: int, current: int):
        super().__init__(f"Minimum bid is {min_bid} (current: {current})")
        self.min_bid = min_bid
        self.current = current

    def details(self) -> Dict[str, Any]:
        return {"min": self.min_bid, "current": self.current}


class ContractYearsInvalid(BidError):
    code = "CONTRACT_YEARS_INVALID"

    def __init__(self, years: int, tier_range: Optional[str], policy: str):
        if tier_range is None:
            message = f"Contract of {years} years is not allowed ({policy})"
        else:
            message = f"Contract of {years} years is not allowed for bids {tier_range} ({policy})"
        super().__init__(message)
        self.years = years
        self.tier_range = tier_range
        self.policy = policy

    def details(self) -> Dict[str, Any]:
        return {"tier_range": self.tier_range, "policy": self.policy}


class InsufficientBudget(BidError):
    code = "INSUFFICIENT_BUDGET"

    def __init__(self, available: int, requested: int):
        super().__init__(f"Insufficient budget: available {available}, requested {requested}")
        self.available = available
        self.requested = requested

    def details(self) -> Dict[str, Any]:
        return {"available": self.available, "requested": self.requested}


class NoRosterSpots(BidError):
    code = "NO_ROSTER_SPOTS"

    def __init__(self, roster_spots: int):
        super().__init__(f"No roster spots left (capacity {roster_spots})")
        self.roster_spots = roster_spots


class Transient(BidError):
    """Store unavailable; the effect of an in-flight mutation is unknown"""

    code = "TRANSIENT"

    def __init__(self, message: str = "Storage temporarily unavailable"):
        super().__init__(message)
