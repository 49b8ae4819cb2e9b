"""
Team Ledger: spent, locked and available budget plus roster usage.

Pure computation over the items a team currently leads; nothing here touches
storage.
"""

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class Holding:
    """Item a team leads, with the amount of its leading bid"""

    item_id: str
    amount: int
    sold: bool      # True once SOLD, False while still NOMINATED


@dataclass(frozen=True)
class TeamLedger:
    """Budget and roster position of one team"""

    budget: int
    roster_spots: int
    spent_budget: int       # Leading bids on SOLD items
    locked_budget: int      # Leading bids on NOMINATED items
    spots_used: int

    @property
    def available_budget(self) -> int:
        return self.budget - self.spent_budget - self.locked_budget

    @property
    def spots_remaining(self) -> int:
        return self.roster_spots - self.spots_used

    def to_dict(self) -> dict:
        return {
            "budget": self.budget,
            "roster_spots": self.roster_spots,
            "spent_budget": self.spent_budget,
            "locked_budget": self.locked_budget,
            "available_budget": self.available_budget,
            "spots_used": self.spots_used,
            "spots_remaining": self.spots_remaining,
        }


def compute_ledger(
    budget: int,
    roster_spots: int,
    holdings: Iterable[Holding],
    exclude_item_id: Optional[str] = None,
) -> TeamLedger:
    """
    Derive a team's ledger from its holdings.

    Args:
        budget: Team budget cap
        roster_spots: Team roster capacity
        holdings: Items the team leads (SOLD or NOMINATED)
        exclude_item_id: NOMINATED item being bid on; a re-bid replaces the
            team's commitment on it rather than adding to it

    Returns:
        TeamLedger with spent/locked totals and spots used
    """
    spent = 0
    locked = 0
    spots = 0

    for holding in holdings:
        if holding.sold:
            spent += holding.amount
        elif holding.item_id == exclude_item_id:
            continue
        else:
            locked += holding.amount
        spots += 1

    return TeamLedger(
        budget=budget,
        roster_spots=roster_spots,
        spent_budget=spent,
        locked_budget=locked,
        spots_used=spots,
    )
