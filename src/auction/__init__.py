"""
Auction module: budget-constrained bidding engine.
"""

from .bidding import Ack, BidProcessor, BidResult
from .config import EngineConfig
from .rules import RuleEvaluator, minimum_bid
from .selection import resolve_next_leader
from .settings import AuctionSettings, ContractRule, default_settings
from .store import AuctionStore

__all__ = [
    "Ack",
    "BidProcessor",
    "BidResult",
    "EngineConfig",
    "RuleEvaluator",
    "minimum_bid",
    "resolve_next_leader",
    "AuctionSettings",
    "ContractRule",
    "default_settings",
    "AuctionStore",
]
