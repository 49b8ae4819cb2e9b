"""
Unit tests for bid placement.

Tests:
- Precondition order (room, item, team, increment, contract, budget, roster)
- Leader and countdown updates on acceptance
- Outbid notifications
- Atomicity of rejected bids
- Item state reads and transient errors
"""

import sys
import os
from contextlib import contextmanager
from unittest.mock import patch

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest
from auction.bidding import NS_PER_SECOND
from auction.errors import (
    BidTooLow,
    ContractYearsInvalid,
    InsufficientBudget,
    ItemNotFound,
    ItemUnavailable,
    NoRosterSpots,
    RoomNotOpen,
    TeamNotFound,
    Transient,
)
from auction.models import BidStatus, ItemStatus, RoomStatus
from auction.notifications import NotificationSink, NotificationType
from auction.store import TransientStoreError

TIERED_SETTINGS = {
    "contractLogic": {
        "enabled": True,
        "rules": [
            {"minBid": 1, "maxBid": 9, "durationType": "any"},
            {"minBid": 10, "maxBid": 49, "durationType": "min-2"},
            {"minBid": 50, "durationType": "fixed", "years": 4},
        ],
    },
    "minIncrement": 1,
    "maxContractYears": 4,
}

NO_TIMER_SETTINGS = {
    "minIncrement": 0.15,
    "contractLogic": {"enabled": False, "rules": []},
    "timerSeconds": None,
}


class TestIncrementRule:
    """Test the minimum increment on placement"""

    def test_fifteen_percent_increment(self, harness):
        """A opens at 100; B at 110 is below ceil(100 * 1.15) = 115"""
        room = harness.open_room(teams=[("A", 1000, 5), ("B", 1000, 5)], items=["X"])

        first = harness.bid(room, "X", "A", 100)
        second = harness.bid(room, "X", "B", 110)

        assert first.ok
        assert isinstance(second.error, BidTooLow)
        assert second.error.to_dict() == {
            "code": "BID_TOO_LOW",
            "message": "Minimum bid is 115 (current: 100)",
            "min": 115,
            "current": 100,
        }

        third = harness.bid(room, "X", "B", 115)
        assert third.ok
        assert third.ack.leader_team_id == room.teams["B"]

    def test_opening_bid_floor(self, harness):
        settings = {"minIncrement": 5, "openingBid": 10, "contractLogic": {"enabled": False}}
        room = harness.open_room(settings=settings, teams=[("A", 1000, 5)], items=["X"])

        low = harness.bid(room, "X", "A", 9)
        ok = harness.bid(room, "X", "A", 10)

        assert isinstance(low.error, BidTooLow)
        assert low.error.min_bid == 10
        assert ok.ok


class TestContractTiers:
    """Test contract-duration tiers on placement"""

    def test_fixed_tier(self, harness):
        """Amount 60 sits in the fixed-4 tier"""
        room = harness.open_room(
            settings=TIERED_SETTINGS, teams=[("A", 1000, 5)], items=["X"]
        )

        rejected = harness.bid(room, "X", "A", 60, years=3)
        accepted = harness.bid(room, "X", "A", 60, years=4)

        assert isinstance(rejected.error, ContractYearsInvalid)
        assert rejected.error.to_dict()["tier_range"] == "50+"
        assert accepted.ok
        assert accepted.ack.contract_years == 4

    def test_min_years_tier(self, harness):
        room = harness.open_room(
            settings=TIERED_SETTINGS, teams=[("A", 1000, 5)], items=["X"]
        )

        assert isinstance(harness.bid(room, "X", "A", 20, years=1).error, ContractYearsInvalid)
        assert harness.bid(room, "X", "A", 20, years=3).ok

    def test_tiers_apply_without_enabled_flag(self, harness):
        """A contractLogic block that only lists rules still enforces them"""
        settings = {
            "minIncrement": 0.15,
            "contractLogic": {"rules": TIERED_SETTINGS["contractLogic"]["rules"]},
        }
        room = harness.open_room(settings=settings, teams=[("A", 1000, 5)], items=["X"])

        result = harness.bid(room, "X", "A", 60, years=3)

        assert isinstance(result.error, ContractYearsInvalid)
        assert harness.bid(room, "X", "A", 60, years=4).ok

    def test_contract_years_follow_the_leader(self, harness):
        room = harness.open_room(
            settings=TIERED_SETTINGS, teams=[("A", 1000, 5), ("B", 1000, 5)], items=["X"]
        )

        harness.bid(room, "X", "A", 5, years=1)
        harness.bid(room, "X", "B", 20, years=2)

        state = harness.processor.get_item_state(room.items["X"])
        assert state.winning_team_id == room.teams["B"]
        assert state.contract_years == 2


class TestBudget:
    """Test budget checks on placement"""

    def test_spent_and_locked_reduce_available(self, harness):
        """Budget 200, won Y at 40, leading X at 150: Z at 20 exceeds the 10 left"""
        room = harness.open_room(teams=[("T", 200, 5)], items=["X", "Y", "Z"])

        assert harness.bid(room, "Y", "T", 40).ok
        assert harness.processor.finalize_item(room.room_id, room.items["Y"], force=True).ok
        assert harness.bid(room, "X", "T", 150).ok

        result = harness.bid(room, "Z", "T", 20)

        assert isinstance(result.error, InsufficientBudget)
        assert result.error.to_dict()["available"] == 10
        assert result.error.to_dict()["requested"] == 20

    def test_raising_own_bid_replaces_commitment(self, harness):
        """A leader raising its own bid is not charged twice"""
        room = harness.open_room(teams=[("A", 120, 5)], items=["X"])

        assert harness.bid(room, "X", "A", 100).ok
        raised = harness.bid(room, "X", "A", 115)

        assert raised.ok
        assert raised.ack.amount == 115

    def test_outbid_team_gets_budget_back(self, harness):
        room = harness.open_room(teams=[("A", 100, 5), ("B", 1000, 5)], items=["X", "Y"])

        harness.bid(room, "X", "A", 100)
        harness.bid(room, "X", "B", 115)

        assert harness.bid(room, "Y", "A", 100).ok

    def test_exact_budget_accepted(self, harness):
        room = harness.open_room(teams=[("A", 100, 5)], items=["X"])

        assert harness.bid(room, "X", "A", 100).ok


class TestRoster:
    """Test roster capacity on placement"""

    def test_no_roster_spots(self, harness):
        room = harness.open_room(teams=[("A", 1000, 1)], items=["X", "Y"])

        assert harness.bid(room, "X", "A", 10).ok
        result = harness.bid(room, "Y", "A", 10)

        assert isinstance(result.error, NoRosterSpots)

    def test_leader_can_raise_with_full_roster(self, harness):
        room = harness.open_room(teams=[("A", 1000, 1)], items=["X"])

        harness.bid(room, "X", "A", 10)

        assert harness.bid(room, "X", "A", 20).ok

    def test_budget_checked_before_roster(self, harness):
        room = harness.open_room(teams=[("A", 5, 0)], items=["X"])

        result = harness.bid(room, "X", "A", 10)

        assert isinstance(result.error, InsufficientBudget)


class TestPreconditions:
    """Test room, item and team preconditions"""

    def test_room_not_open(self, harness):
        room = harness.open_room(
            teams=[("A", 1000, 5)], items=["X"], status=RoomStatus.PAUSED
        )

        result = harness.bid(room, "X", "A", 10)

        assert isinstance(result.error, RoomNotOpen)
        assert result.error.status == "PAUSED"

    def test_draft_room_not_open(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5)], items=["X"], status=RoomStatus.DRAFT)

        assert isinstance(harness.bid(room, "X", "A", 10).error, RoomNotOpen)

    def test_unknown_room(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5)], items=["X"])

        result = harness.processor.place_bid(
            "missing-room", room.items["X"], room.teams["A"], 10, 1
        )

        assert isinstance(result.error, RoomNotOpen)

    def test_unknown_item(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5)], items=["X"])

        result = harness.processor.place_bid(room.room_id, "missing", room.teams["A"], 10, 1)

        assert isinstance(result.error, ItemNotFound)

    def test_item_from_another_room(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5)], items=["X"])
        other = harness.open_room(teams=[("B", 1000, 5)], items=["Other"])

        result = harness.processor.place_bid(
            room.room_id, other.items["Other"], room.teams["A"], 10, 1
        )

        assert isinstance(result.error, ItemNotFound)

    def test_sold_item_unavailable(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5), ("B", 1000, 5)], items=["X"])
        harness.bid(room, "X", "A", 10)
        harness.processor.finalize_item(room.room_id, room.items["X"], force=True)

        result = harness.bid(room, "X", "B", 100)

        assert isinstance(result.error, ItemUnavailable)

    def test_unknown_team(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5)], items=["X"])

        result = harness.processor.place_bid(room.room_id, room.items["X"], "ghost", 10, 1)

        assert isinstance(result.error, TeamNotFound)

    def test_team_from_another_room(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5)], items=["X"])
        other = harness.open_room(teams=[("B", 1000, 5)], items=["Other"])

        result = harness.processor.place_bid(
            room.room_id, room.items["X"], other.teams["B"], 10, 1
        )

        assert isinstance(result.error, TeamNotFound)

    def test_non_integer_amount_rejected(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5)], items=["X"])

        with pytest.raises(ValueError):
            harness.bid(room, "X", "A", 10.5)
        with pytest.raises(ValueError):
            harness.bid(room, "X", "A", 10, years="2")


class TestAcceptedBid:
    """Test the state committed by an accepted bid"""

    def test_item_nominated_with_countdown(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5)], items=["X"])

        result = harness.bid(room, "X", "A", 100, years=2)

        bid = harness.store.get_bid(result.ack.bid_id)
        assert bid.status == BidStatus.VALID
        assert result.ack.item_status == ItemStatus.NOMINATED
        assert result.ack.expires_at == bid.timestamp + 30 * NS_PER_SECOND

        item = harness.store.get_item(room.items["X"])
        assert item.status == ItemStatus.NOMINATED
        assert item.winning_bid_id == bid.bid_id
        assert item.winning_team_id == room.teams["A"]
        assert item.contract_years == 2

    def test_new_bid_resets_countdown(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5), ("B", 1000, 5)], items=["X"])

        first = harness.bid(room, "X", "A", 100)
        harness.clock.advance(20)
        second = harness.bid(room, "X", "B", 115)

        assert second.ack.expires_at > first.ack.expires_at + 19 * NS_PER_SECOND

    def test_room_without_timer_uses_engine_default(self, harness):
        room = harness.open_room(settings=NO_TIMER_SETTINGS, teams=[("A", 1000, 5)], items=["X"])

        result = harness.bid(room, "X", "A", 100)

        bid = harness.store.get_bid(result.ack.bid_id)
        assert result.ack.expires_at == bid.timestamp + 43200 * NS_PER_SECOND

    def test_version_increments(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5), ("B", 1000, 5)], items=["X"])
        before = harness.processor.get_item_state(room.items["X"]).version

        harness.bid(room, "X", "A", 100)
        harness.bid(room, "X", "B", 115)

        assert harness.processor.get_item_state(room.items["X"]).version == before + 2

    def test_result_to_dict(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5)], items=["X"])

        data = harness.bid(room, "X", "A", 100).to_dict()

        assert data["success"] is True
        assert data["item_status"] == "NOMINATED"
        assert data["amount"] == 100

    def test_rejected_bid_persists_nothing(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5), ("B", 10, 5)], items=["X"])
        harness.bid(room, "X", "A", 100)
        version = harness.processor.get_item_state(room.items["X"]).version

        result = harness.bid(room, "X", "B", 200)

        assert isinstance(result.error, InsufficientBudget)
        assert len(harness.store.bids_for_item(room.items["X"])) == 1
        state = harness.processor.get_item_state(room.items["X"])
        assert state.version == version
        assert state.winning_team_id == room.teams["A"]


class TestOutbidNotifications:
    """Test notifications sent on placement"""

    def test_previous_leader_notified(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5), ("B", 1000, 5)], items=["X"])

        harness.bid(room, "X", "A", 100)
        harness.bid(room, "X", "B", 115)

        outbid = harness.sink.delivered(room.teams["A"], NotificationType.OUTBID)
        assert len(outbid) == 1
        assert outbid[0].amount == 115
        assert outbid[0].leader_team_id == room.teams["B"]
        assert "B" in outbid[0].message
        assert harness.sink.delivered(room.teams["B"]) == []

    def test_no_notification_when_raising_own_bid(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5)], items=["X"])

        harness.bid(room, "X", "A", 100)
        harness.bid(room, "X", "A", 115)

        assert harness.sink.delivered() == []

    def test_no_notification_for_rejected_bid(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5), ("B", 1000, 5)], items=["X"])

        harness.bid(room, "X", "A", 100)
        harness.bid(room, "X", "B", 101)

        assert harness.sink.delivered() == []

    def test_sink_failure_does_not_undo_bid(self, harness):
        class BrokenSink(NotificationSink):
            def send(self, notification):
                raise ConnectionError("push service down")

        harness.processor.sink = BrokenSink()
        room = harness.open_room(teams=[("A", 1000, 5), ("B", 1000, 5)], items=["X"])

        harness.bid(room, "X", "A", 100)
        result = harness.bid(room, "X", "B", 115)

        assert result.ok
        assert harness.processor.get_item_state(room.items["X"]).winning_team_id == room.teams["B"]


class TestItemState:
    """Test item state reads"""

    def test_unbid_item(self, harness):
        room = harness.open_room(items=["X"])

        state = harness.processor.get_item_state(room.items["X"])

        assert state.status == ItemStatus.PENDING
        assert state.winning_team_id is None
        assert state.winning_bid_amount is None
        assert state.expires_at is None

    def test_leading_bid(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5)], items=["X"])
        ack = harness.bid(room, "X", "A", 100, years=3).ack

        state = harness.processor.get_item_state(room.items["X"])

        assert state.to_dict() == {
            "item_id": room.items["X"],
            "status": "NOMINATED",
            "winning_team_id": room.teams["A"],
            "winning_bid_amount": 100,
            "contract_years": 3,
            "expires_at": ack.expires_at,
            "version": state.version,
        }

    def test_unknown_item(self, harness):
        with pytest.raises(ItemNotFound):
            harness.processor.get_item_state("missing")

    def test_transient_read_retried(self, harness):
        room = harness.open_room(items=["X"])
        real_snapshot = harness.store.snapshot
        failures = [TransientStoreError("database is locked")]

        @contextmanager
        def flaky_snapshot():
            if failures:
                raise failures.pop()
            with real_snapshot() as uow:
                yield uow

        with patch.object(harness.store, "snapshot", flaky_snapshot):
            state = harness.processor.get_item_state(room.items["X"])

        assert state.status == ItemStatus.PENDING
        assert len(harness.sleeps) == 1

    def test_transient_read_gives_up(self, harness):
        room = harness.open_room(items=["X"])

        with patch.object(
            harness.store, "snapshot", side_effect=TransientStoreError("disk I/O error")
        ):
            with pytest.raises(Transient):
                harness.processor.get_item_state(room.items["X"])

        assert len(harness.sleeps) == harness.config.state_read_retries


class TestTransientPlacement:
    """Test store failures during placement"""

    def test_transient_error_reported_not_raised(self, harness):
        room = harness.open_room(teams=[("A", 1000, 5)], items=["X"])

        with patch.object(
            harness.store, "transaction", side_effect=TransientStoreError("database is locked")
        ):
            result = harness.bid(room, "X", "A", 100)

        assert isinstance(result.error, Transient)
        assert result.error.code == "TRANSIENT"
        assert harness.processor.get_item_state(room.items["X"]).status == ItemStatus.PENDING
