"""
Sync Views for polling clients

Derived, read-only projections of the store. Nothing here is used to decide
whether a bid is accepted.

Views:
- snapshot: room, teams, active items and the caller's ledger
- list_items: filtered, paginated market listing
- active_items: NOMINATED items for the owner dashboard
"""

import math
import time
from typing import Any, Callable, Dict, List, Optional

from auction.models import Item, ItemStatus
from auction.rules import RuleEvaluator
from auction.settings import AuctionSettings
from auction.store import AuctionStore, UnitOfWork
from economics.ledger import compute_ledger

# Status filter values accepted by list_items
STATUS_FILTERS = ("ALL", "AVAILABLE", "NOMINATED", "SOLD", "UNSOLD")


class ViewNotFound(Exception):
    """Raised when the requested room or team does not exist"""


class SyncView:
    """
    Read model assembled from one store snapshot per call.

    Every figure in a response comes from the same read transaction, so a
    client never sees a ledger that disagrees with the item list beside it.
    """

    def __init__(self, store: AuctionStore, clock: Callable[[], int] = time.time_ns):
        self.store = store
        self.clock = clock

    def snapshot(self, room_id: str, team_id: str) -> Dict[str, Any]:
        """
        Full polling payload for one team.

        Raises:
            ViewNotFound: If the room or team does not exist
        """
        with self.store.snapshot() as uow:
            room = uow.get_room(room_id)
            team = uow.get_team(team_id)
            if room is None or team is None or team.room_id != room_id:
                raise ViewNotFound(f"Room {room_id} or team {team_id} not found")

            settings = AuctionSettings.from_json(room.settings_json)
            evaluator = RuleEvaluator(settings)
            ledger = compute_ledger(team.budget, team.roster_spots, uow.team_holdings(team_id))

            teams = [
                {
                    "team_id": t.team_id,
                    "name": t.name,
                    "budget": t.budget,
                    "roster_spots": t.roster_spots,
                    "claimed": t.is_claimed,
                }
                for t in uow.list_teams(room_id)
            ]
            active, _ = uow.list_items(room_id, status=ItemStatus.NOMINATED)
            active_items = [self._item_row(uow, item, evaluator) for item in active]

            me = {
                "team_id": team.team_id,
                "name": team.name,
                **ledger.to_dict(),
                "active_item_ids": uow.team_active_item_ids(team_id),
            }

        return {
            "room": {
                "room_id": room.room_id,
                "name": room.name,
                "status": room.status.value,
                "settings": settings.to_dict(),
            },
            "teams": teams,
            "active_items": active_items,
            "me": me,
            "timestamp": self.clock(),
        }

    def list_items(
        self,
        room_id: str,
        page: int = 1,
        limit: int = 50,
        search: str = "",
        position: str = "ALL",
        status: str = "ALL",
    ) -> Dict[str, Any]:
        """
        Paginated market listing, soonest expiry first.

        Args:
            page: 1-based page number
            limit: Page size
            search: Substring of the item name
            position: Position filter, 'ALL' for none
            status: One of STATUS_FILTERS; AVAILABLE means PENDING

        Raises:
            ValueError: On an unknown status filter or bad paging values
            ViewNotFound: If the room does not exist
        """
        if status not in STATUS_FILTERS:
            raise ValueError(f"Unknown status filter: {status}")
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")

        status_filter: Optional[ItemStatus] = None
        if status == "AVAILABLE":
            status_filter = ItemStatus.PENDING
        elif status != "ALL":
            status_filter = ItemStatus(status)

        with self.store.snapshot() as uow:
            room = uow.get_room(room_id)
            if room is None:
                raise ViewNotFound(f"Room {room_id} not found")
            evaluator = RuleEvaluator(AuctionSettings.from_json(room.settings_json))
            items, total = uow.list_items(
                room_id,
                status=status_filter,
                search=search or None,
                position=None if position == "ALL" else position,
                limit=limit,
                offset=(page - 1) * limit,
            )
            rows = [self._item_row(uow, item, evaluator) for item in items]

        return {
            "items": rows,
            "total": total,
            "page": page,
            "total_pages": math.ceil(total / limit),
        }

    def active_items(self, room_id: str) -> List[Dict[str, Any]]:
        """NOMINATED items with their leader's name, soonest expiry first."""
        with self.store.snapshot() as uow:
            room = uow.get_room(room_id)
            if room is None:
                raise ViewNotFound(f"Room {room_id} not found")
            evaluator = RuleEvaluator(AuctionSettings.from_json(room.settings_json))
            items, _ = uow.list_items(room_id, status=ItemStatus.NOMINATED)
            rows = []
            for item in items:
                row = self._item_row(uow, item, evaluator)
                leader = uow.get_team(item.winning_team_id)
                row["leader_team_name"] = leader.name if leader else None
                row["leader_owner_name"] = leader.owner_name if leader else None
                rows.append(row)
        return rows

    def _item_row(self, uow: UnitOfWork, item: Item, evaluator: RuleEvaluator) -> Dict[str, Any]:
        amount = uow.leading_amount(item)
        row = {
            "item_id": item.item_id,
            "name": item.name,
            "position": item.position,
            "club": item.club,
            "status": item.status.value,
            "winning_bid_id": item.winning_bid_id,
            "winning_team_id": item.winning_team_id,
            "winning_bid_amount": amount if item.winning_bid_id else None,
            "contract_years": item.contract_years,
            "expires_at": item.expires_at,
            "version": item.version,
        }
        if item.status in (ItemStatus.PENDING, ItemStatus.NOMINATED):
            row["min_next_bid"] = evaluator.min_bid(amount)
        return row
