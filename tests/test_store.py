"""
Unit tests for the SQLite Auction Store.

Tests unit-of-work commit/rollback, transient error translation, bid status
transitions and the admin and notification writes.
"""

import sys
import os
import sqlite3
import tempfile
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest
from auction.models import BidStatus, ItemStatus, RoomStatus
from auction.store import AuctionStore, StoreError, TransientStoreError


def seeded_store(busy_timeout=5.0):
    """Store with one OPEN room, one team and two items"""
    store = AuctionStore(Path(tempfile.mktemp(suffix=".db")), busy_timeout=busy_timeout)
    room = store.create_room("League", "owner-1", "{}")
    store.set_room_status(room.room_id, RoomStatus.OPEN)
    team = store.create_team(room.room_id, "Team A", 1000, 5)
    items = store.insert_items(room.room_id, [{"name": "X"}, {"name": "Y", "position": "FW"}])
    return store, room, team, items


class TestUnitOfWork:
    """Test transaction boundaries"""

    def test_commit_on_success(self):
        store, room, team, items = seeded_store()

        with store.transaction() as uow:
            bid = uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=1)
            uow.set_leader(items[0].item_id, bid, expires_at=99)

        item = store.get_item(items[0].item_id)
        assert item.status == ItemStatus.NOMINATED
        assert item.winning_bid_id == bid.bid_id
        assert item.expires_at == 99
        assert item.version == 1

    def test_rollback_on_exception(self):
        store, room, team, items = seeded_store()

        with pytest.raises(RuntimeError):
            with store.transaction() as uow:
                bid = uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=1)
                uow.set_leader(items[0].item_id, bid, expires_at=99)
                raise RuntimeError("abort")

        assert store.bids_for_item(items[0].item_id) == []
        assert store.get_item(items[0].item_id).status == ItemStatus.PENDING

    def test_store_usable_after_rollback(self):
        store, room, team, items = seeded_store()

        with pytest.raises(RuntimeError):
            with store.transaction():
                raise RuntimeError("abort")

        with store.transaction() as uow:
            uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=1)
        assert len(store.bids_for_item(items[0].item_id)) == 1

    def test_locked_database_is_transient(self):
        store, room, team, items = seeded_store(busy_timeout=0.05)
        other = sqlite3.connect(str(store.db_path), isolation_level=None)
        other.execute("BEGIN IMMEDIATE")
        try:
            with pytest.raises(TransientStoreError):
                with store.transaction() as uow:
                    uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=1)
        finally:
            other.rollback()
            other.close()

        # Lock released: the store recovers
        with store.transaction() as uow:
            uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=1)

    def test_non_positive_amount_rejected_by_schema(self):
        store, room, team, items = seeded_store()

        with pytest.raises(sqlite3.IntegrityError):
            with store.transaction() as uow:
                uow.insert_bid(items[0].item_id, team.team_id, 0, 1, timestamp=1)


class TestBidStatus:
    """Test bid status transitions"""

    def test_valid_to_retracted(self):
        store, room, team, items = seeded_store()
        with store.transaction() as uow:
            bid = uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=1)
            uow.set_bid_status(bid.bid_id, BidStatus.RETRACTED)

        assert store.get_bid(bid.bid_id).status == BidStatus.RETRACTED

    def test_terminal_status_is_final(self):
        store, room, team, items = seeded_store()
        with store.transaction() as uow:
            bid = uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=1)
            uow.set_bid_status(bid.bid_id, BidStatus.VOID)

        with pytest.raises(StoreError):
            with store.transaction() as uow:
                uow.set_bid_status(bid.bid_id, BidStatus.RETRACTED)
        with pytest.raises(StoreError):
            with store.transaction() as uow:
                uow.set_bid_status(bid.bid_id, BidStatus.VALID)

        assert store.get_bid(bid.bid_id).status == BidStatus.VOID


class TestBidSequence:
    """Test insertion order of bids"""

    def test_sequence_increases_across_items(self):
        store, room, team, items = seeded_store()

        with store.transaction() as uow:
            first = uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=5)
            second = uow.insert_bid(items[1].item_id, team.team_id, 100, 1, timestamp=5)
            third = uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=5)

        assert first.sequence < second.sequence < third.sequence
        assert [b.bid_id for b in store.bids_for_item(items[0].item_id)] == [
            first.bid_id,
            third.bid_id,
        ]
        assert store.get_bid(third.bid_id).sequence == third.sequence


class TestQueries:
    """Test aggregate reads"""

    def test_team_holdings(self):
        store, room, team, items = seeded_store()
        with store.transaction() as uow:
            x_bid = uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=1)
            uow.set_leader(items[0].item_id, x_bid, expires_at=10)
            y_bid = uow.insert_bid(items[1].item_id, team.team_id, 40, 1, timestamp=2)
            uow.set_leader(items[1].item_id, y_bid, expires_at=10)
            uow.set_item_status(items[1].item_id, ItemStatus.SOLD)

        with store.snapshot() as uow:
            holdings = {h.item_id: h for h in uow.team_holdings(team.team_id)}

        assert holdings[items[0].item_id].amount == 100
        assert holdings[items[0].item_id].sold is False
        assert holdings[items[1].item_id].sold is True

    def test_list_items_filters_and_pages(self):
        store, room, team, items = seeded_store()

        with store.snapshot() as uow:
            forwards, total = uow.list_items(room.room_id, position="FW")
            page, all_total = uow.list_items(room.room_id, limit=1, offset=1)
            searched, _ = uow.list_items(room.room_id, search="X")

        assert total == 1 and forwards[0].name == "Y"
        assert all_total == 2 and len(page) == 1
        assert [i.name for i in searched] == ["X"]

    def test_expired_items_only_in_open_rooms(self):
        store, room, team, items = seeded_store()
        with store.transaction() as uow:
            bid = uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=1)
            uow.set_leader(items[0].item_id, bid, expires_at=50)

        with store.snapshot() as uow:
            assert uow.expired_items(now=49) == []
            assert uow.expired_items(now=50) == [(room.room_id, items[0].item_id)]

        store.set_room_status(room.room_id, RoomStatus.PAUSED)
        with store.snapshot() as uow:
            assert uow.expired_items(now=100) == []


class TestAdminWrites:
    """Test room, team and item administration writes"""

    def test_delete_item_only_without_bids(self):
        store, room, team, items = seeded_store()
        with store.transaction() as uow:
            uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=1)

        assert store.delete_item(items[0].item_id) is False
        assert store.delete_item(items[1].item_id) is True
        assert store.get_item(items[1].item_id) is None

    def test_delete_pending_items(self):
        store, room, team, items = seeded_store()
        with store.transaction() as uow:
            uow.insert_bid(items[0].item_id, team.team_id, 100, 1, timestamp=1)

        assert store.delete_pending_items(room.room_id) == 1
        assert store.get_item(items[0].item_id) is not None

    def test_update_team(self):
        store, room, team, items = seeded_store()

        store.update_team(team.team_id, "Renamed", 500, 3)

        updated = store.get_team(team.team_id)
        assert (updated.name, updated.budget, updated.roster_spots) == ("Renamed", 500, 3)


class TestNotifications:
    """Test the notification inbox"""

    def test_insert_list_and_mark_read(self):
        store, room, team, items = seeded_store()
        store.insert_notification(room.room_id, team.team_id, "OUTBID", "outbid", None, 1)
        store.insert_notification(room.room_id, team.team_id, "ITEM_WON", "won", None, 2)

        inbox = store.list_notifications(team.team_id)
        assert [n["type"] for n in inbox] == ["ITEM_WON", "OUTBID"]
        assert all(not n["read"] for n in inbox)

        assert store.mark_notifications_read(team.team_id) == 2
        assert store.list_notifications(team.team_id, unread_only=True) == []
        assert store.mark_notifications_read(team.team_id) == 0
