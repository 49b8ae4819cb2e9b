"""
Rule Evaluation: minimum bid increments and contract-duration tiers.

Both rules are pure and depend on the proposed amount, so they are evaluated
again on every bid attempt.
"""

import math
from decimal import Decimal
from typing import List, Optional, Tuple

from auction.errors import BidTooLow, ContractYearsInvalid
from auction.settings import AuctionSettings, ContractRule, DurationKind


def minimum_bid(current_high_bid: int, min_increment: float, opening_bid: int = 1) -> int:
    """
    Calculate the lowest acceptable next bid.

    Args:
        current_high_bid: Amount of the leading bid (0 if unbid)
        min_increment: Rate when below 1 (0.15 = 15%), absolute step otherwise
        opening_bid: Floor used when the item has no bid yet

    Returns:
        Minimum legal amount
    """
    if current_high_bid <= 0:
        return opening_bid

    if min_increment < 1:
        # Decimal keeps 100 * 1.1 at exactly 110 before rounding up
        rate = Decimal(str(min_increment))
        return math.ceil(Decimal(current_high_bid) * (1 + rate))

    return current_high_bid + int(math.ceil(min_increment))


def find_contract_rule(rules: List[ContractRule], amount: int) -> Optional[ContractRule]:
    """
    Find the tier governing a bid amount.

    Falls back to the highest tier when the amount is above every tier's
    minimum but outside its range.

    Returns:
        Matching tier, or None if the amount sits below (or between) tiers
    """
    if not rules:
        return None

    ordered = sorted(rules, key=lambda r: r.min_bid)
    for rule in ordered:
        if rule.contains(amount):
            return rule

    highest = ordered[-1]
    if amount > highest.min_bid:
        return highest
    return None


def contract_year_bounds(amount: int, settings: AuctionSettings) -> Tuple[int, Optional[int]]:
    """
    Legal contract length range for a bid amount.

    Returns:
        (min_years, max_years); max_years is None when unbounded
    """
    ceiling = settings.max_contract_years
    rule = _active_rule(amount, settings)
    if rule is None or rule.policy.kind == DurationKind.ANY:
        return 1, ceiling
    if rule.policy.kind == DurationKind.FIXED:
        return rule.policy.years, rule.policy.years
    return rule.policy.years, ceiling


def check_increment(amount: int, current_high_bid: int, settings: AuctionSettings) -> int:
    """
    Validate a bid against the increment rule.

    Returns:
        The minimum bid that was enforced

    Raises:
        BidTooLow: If amount is below the minimum
    """
    min_bid = minimum_bid(current_high_bid, settings.min_increment, settings.opening_bid)
    if amount < min_bid:
        raise BidTooLow(min_bid=min_bid, current=current_high_bid)
    return min_bid


def check_contract_years(amount: int, years: int, settings: AuctionSettings) -> None:
    """
    Validate a proposed contract length against the tier for amount.

    Raises:
        ContractYearsInvalid: If years violates the tier policy or the room ceiling
    """
    rule = _active_rule(amount, settings)
    ceiling = settings.max_contract_years

    if rule is None:
        if years < 1 or (ceiling is not None and years > ceiling):
            raise ContractYearsInvalid(years, None, _baseline_label(ceiling))
        return

    policy = rule.policy
    if policy.kind == DurationKind.FIXED:
        valid = years == policy.years
    else:
        floor = policy.years if policy.kind == DurationKind.MIN_YEARS else 1
        valid = years >= floor and (ceiling is None or years <= ceiling)

    if not valid:
        label = policy.label()
        if ceiling is not None and policy.kind != DurationKind.FIXED:
            label = f"{label}, max {ceiling}"
        raise ContractYearsInvalid(years, rule.range_label(), label)


class RuleEvaluator:
    """
    Room-bound view of the bidding rules.

    Wraps one AuctionSettings so callers evaluate both rules with a single
    object.
    """

    def __init__(self, settings: AuctionSettings):
        self.settings = settings

    def min_bid(self, current_high_bid: int) -> int:
        return minimum_bid(
            current_high_bid, self.settings.min_increment, self.settings.opening_bid
        )

    def year_bounds(self, amount: int) -> Tuple[int, Optional[int]]:
        return contract_year_bounds(amount, self.settings)

    def check(self, amount: int, contract_years: int, current_high_bid: int) -> None:
        """
        Run the increment rule, then the contract rule.

        Raises:
            BidTooLow: Increment rule failed
            ContractYearsInvalid: Contract rule failed
        """
        check_increment(amount, current_high_bid, self.settings)
        check_contract_years(amount, contract_years, self.settings)


def _active_rule(amount: int, settings: AuctionSettings) -> Optional[ContractRule]:
    if not settings.contract_logic_enabled:
        return None
    return find_contract_rule(settings.contract_rules, amount)


def _baseline_label(ceiling: Optional[int]) -> str:
    if ceiling is None:
        return "at least 1 year"
    return f"1-{ceiling} years"
