"""
Leader Selection: pick which bid leads an item after a retraction.
"""

from typing import Iterable, List, Optional

from auction.models import Bid, BidStatus


def rank_bids(bids: Iterable[Bid]) -> List[Bid]:
    """
    Order bids from strongest to weakest.

    Highest amount first; among equal amounts the earliest timestamp wins
    and then the earliest insertion (equal clock readings on a coarse clock),
    so the first team to offer an amount keeps priority.
    """
    return sorted(bids, key=lambda b: (-b.amount, b.timestamp, b.sequence))


def resolve_next_leader(remaining_bids: Iterable[Bid]) -> Optional[Bid]:
    """
    Select the bid to restore as leader.

    Args:
        remaining_bids: Bids left on the item after the retraction

    Returns:
        Strongest VALID bid, or None if the item has no valid bids left
    """
    valid = [b for b in remaining_bids if b.status == BidStatus.VALID]
    if not valid:
        return None
    return rank_bids(valid)[0]
