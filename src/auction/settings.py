"""
Auction Settings: per-room rule configuration stored as a JSON blob.

The blob keeps the camelCase keys used by the room settings form so rooms
created by older clients load unchanged.
"""

import json
import math
import re
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class BudgetType(Enum):
    SALARY_CAP = "SALARY_CAP"
    FAAB = "FAAB"


class DurationKind(Enum):
    """Contract-duration policy kinds"""
    ANY = "any"
    MIN_YEARS = "min"
    FIXED = "fixed"


_MIN_YEARS_PATTERN = re.compile(r"^min-(\d+)$")


def _section(data: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    value = data.get(key)
    if value is not None and not isinstance(value, dict):
        raise ValueError(f"{key} must be an object, got {type(value).__name__}")
    return value


def _to_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer, got {value!r}") from None


def _to_number(value: Any, key: str) -> float:
    """Ints stay ints; numeric strings are accepted."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{key} must be a number, got {value!r}")
    if not isinstance(value, (int, float)):
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be a number, got {value!r}") from None
    if not math.isfinite(value):
        raise ValueError(f"{key} must be finite, got {value!r}")
    return value


@dataclass(frozen=True)
class DurationPolicy:
    """Contract-duration requirement of a tier"""
    kind: DurationKind
    years: Optional[int] = None

    def label(self) -> str:
        if self.kind == DurationKind.ANY:
            return "any"
        if self.kind == DurationKind.MIN_YEARS:
            return f"min-{self.years}"
        return f"fixed-{self.years}"


@dataclass(frozen=True)
class ContractRule:
    """Bid-amount tier and the duration policy that applies inside it"""
    min_bid: int
    policy: DurationPolicy
    max_bid: Optional[int] = None   # None means "and above"

    def contains(self, amount: int) -> bool:
        return amount >= self.min_bid and (self.max_bid is None or amount <= self.max_bid)

    def range_label(self) -> str:
        if self.max_bid is None:
            return f"{self.min_bid}+"
        return f"{self.min_bid}-{self.max_bid}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContractRule":
        """
        Parse a tier from its settings form.

        Accepts durationType values 'any', 'fixed' (with 'years') and
        'min-N' (with an optional 'minYears' overriding N).

        Raises:
            ValueError: If the duration type is unknown or incomplete
        """
        if not isinstance(data, dict):
            raise ValueError(f"Contract rule must be an object, got {type(data).__name__}")
        if "minBid" not in data:
            raise ValueError(f"Contract rule without 'minBid': {data}")

        duration_type = data.get("durationType", "any")
        if duration_type == "any":
            policy = DurationPolicy(DurationKind.ANY)
        elif duration_type == "fixed":
            years = data.get("years")
            if years is None:
                raise ValueError("Fixed contract rule requires 'years'")
            policy = DurationPolicy(DurationKind.FIXED, _to_int(years, "years"))
        else:
            match = _MIN_YEARS_PATTERN.match(str(duration_type))
            if not match:
                raise ValueError(f"Unknown contract duration type: {duration_type}")
            years = data.get("minYears") or int(match.group(1))
            policy = DurationPolicy(DurationKind.MIN_YEARS, _to_int(years, "minYears"))

        max_bid = data.get("maxBid")
        return cls(
            min_bid=_to_int(data["minBid"], "minBid"),
            max_bid=_to_int(max_bid, "maxBid") if max_bid is not None else None,
            policy=policy,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"minBid": self.min_bid}
        if self.max_bid is not None:
            data["maxBid"] = self.max_bid
        if self.policy.kind == DurationKind.ANY:
            data["durationType"] = "any"
        elif self.policy.kind == DurationKind.FIXED:
            data["durationType"] = "fixed"
            data["years"] = self.policy.years
        else:
            data["durationType"] = f"min-{self.policy.years}"
            data["minYears"] = self.policy.years
        return data


@dataclass
class AuctionSettings:
    """Rules configured by the room owner"""
    budget_type: BudgetType = BudgetType.SALARY_CAP
    starting_budget: int = 200_000_000
    contract_logic_enabled: bool = True
    contract_rules: List[ContractRule] = field(default_factory=list)
    max_contract_years: Optional[int] = 4
    max_roster_size: int = 20
    min_increment: float = 1_000_000    # < 1 is a rate, >= 1 an absolute step
    opening_bid: int = 1                # Minimum bid on an unbid item
    timer_seconds: Optional[int] = 30   # None falls back to the engine default

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Check rule consistency.

        Raises:
            ValueError: If any rule is out of range or tiers overlap
        """
        if self.starting_budget < 0:
            raise ValueError(f"Starting budget cannot be negative: {self.starting_budget}")
        if self.max_roster_size < 0:
            raise ValueError(f"Roster size cannot be negative: {self.max_roster_size}")
        if self.min_increment <= 0:
            raise ValueError(f"Minimum increment must be positive: {self.min_increment}")
        if self.opening_bid < 1:
            raise ValueError(f"Opening bid must be at least 1: {self.opening_bid}")
        if self.timer_seconds is not None and self.timer_seconds <= 0:
            raise ValueError(f"Timer must be positive: {self.timer_seconds}")
        if self.max_contract_years is not None and self.max_contract_years < 1:
            raise ValueError(f"Max contract years must be at least 1: {self.max_contract_years}")

        ordered = self.sorted_rules()
        for lower, upper in zip(ordered, ordered[1:]):
            if lower.max_bid is None or lower.max_bid >= upper.min_bid:
                raise ValueError(
                    f"Contract tiers overlap: {lower.range_label()} and {upper.range_label()}"
                )

    def sorted_rules(self) -> List[ContractRule]:
        return sorted(self.contract_rules, key=lambda r: r.min_bid)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuctionSettings":
        """
        Parse a settings blob.

        Keys left out take their value from default_settings(), so "{}" and
        an empty blob load the same rules. A contractLogic block without
        "enabled" is enabled; a null or zero timerSeconds or
        maxContractYears switches that limit off.

        Raises:
            ValueError: If a value has the wrong type or breaks a rule
        """
        if not isinstance(data, dict):
            raise ValueError(f"Settings must be an object, got {type(data).__name__}")
        defaults = default_settings()

        contract_logic = _section(data, "contractLogic")
        if contract_logic is None:
            enabled = defaults.contract_logic_enabled
            rules = list(defaults.contract_rules)
        else:
            raw_rules = contract_logic.get("rules") or []
            if not isinstance(raw_rules, list):
                raise ValueError("contractLogic.rules must be a list")
            enabled = bool(contract_logic.get("enabled", True))
            rules = [ContractRule.from_dict(r) for r in raw_rules]

        roster = _section(data, "roster") or {}
        max_years = data.get("maxContractYears", defaults.max_contract_years)
        timer = data.get("timerSeconds", defaults.timer_seconds)

        try:
            budget_type = BudgetType(data.get("budgetType", defaults.budget_type.value))
        except (TypeError, ValueError):
            raise ValueError(f"Unknown budget type: {data.get('budgetType')!r}") from None

        return cls(
            budget_type=budget_type,
            starting_budget=_to_int(
                data.get("startingBudget", defaults.starting_budget), "startingBudget"
            ),
            contract_logic_enabled=enabled,
            contract_rules=rules,
            max_contract_years=_to_int(max_years, "maxContractYears") if max_years else None,
            max_roster_size=_to_int(
                roster.get("maxRosterSize", defaults.max_roster_size), "roster.maxRosterSize"
            ),
            min_increment=_to_number(
                data.get("minIncrement", defaults.min_increment), "minIncrement"
            ),
            opening_bid=_to_int(data.get("openingBid", defaults.opening_bid), "openingBid"),
            timer_seconds=_to_int(timer, "timerSeconds") if timer else None,
        )

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "AuctionSettings":
        """Load settings from a stored blob; an empty blob yields defaults."""
        if not raw:
            return default_settings()
        return cls.from_dict(json.loads(raw))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "budgetType": self.budget_type.value,
            "startingBudget": self.starting_budget,
            "contractLogic": {
                "enabled": self.contract_logic_enabled,
                "rules": [r.to_dict() for r in self.sorted_rules()],
            },
            "maxContractYears": self.max_contract_years,
            "roster": {"maxRosterSize": self.max_roster_size},
            "minIncrement": self.min_increment,
            "openingBid": self.opening_bid,
            "timerSeconds": self.timer_seconds,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    def merged(self, partial: Dict[str, Any]) -> "AuctionSettings":
        """Shallow-merge a partial settings dict over this one."""
        data = self.to_dict()
        data.update(partial)
        return AuctionSettings.from_dict(data)


def default_settings() -> AuctionSettings:
    """Salary-cap league in millions: 200M budget, 1M steps, four tiers."""
    return AuctionSettings(
        budget_type=BudgetType.SALARY_CAP,
        starting_budget=200_000_000,
        contract_logic_enabled=True,
        contract_rules=[
            ContractRule(1_000_000, DurationPolicy(DurationKind.ANY), 9_000_000),
            ContractRule(10_000_000, DurationPolicy(DurationKind.MIN_YEARS, 2), 49_000_000),
            ContractRule(50_000_000, DurationPolicy(DurationKind.MIN_YEARS, 3), 99_000_000),
            ContractRule(100_000_000, DurationPolicy(DurationKind.MIN_YEARS, 4)),
        ],
        max_contract_years=4,
        max_roster_size=20,
        min_increment=1_000_000,
        timer_seconds=30,
    )
