"""
Auction Store: rooms, teams, items, bids and notifications in SQLite.

Tables:
- rooms: auction instances and their settings blob
- teams: participants per room
- items: players with the current leader denormalized on the row
- bids: append-only bid history (only status changes)
- notifications: per-team inbox written by the store-backed sink

Every mutation of an item runs inside one unit of work opened with
BEGIN IMMEDIATE under the store lock, so the read of the current leader and
the write of the new one cannot interleave with another writer.
"""

import sqlite3
import threading
import time
import uuid
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Any

from auction.models import (
    Bid,
    BidStatus,
    Item,
    ItemStatus,
    Room,
    RoomStatus,
    Team,
)
from economics.ledger import Holding

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised for invalid store usage (missing rows, constraint violations)"""


class TransientStoreError(Exception):
    """Raised when the database is busy, locked or unreachable"""


_SCHEMA = """
CREATE TABLE IF NOT EXISTS rooms (
    room_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'DRAFT',
    settings_json TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS teams (
    team_id TEXT PRIMARY KEY,
    room_id TEXT NOT NULL REFERENCES rooms(room_id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    owner_name TEXT,
    budget INTEGER NOT NULL CHECK(budget >= 0),
    roster_spots INTEGER NOT NULL CHECK(roster_spots >= 0),
    pin_hash TEXT
);

CREATE TABLE IF NOT EXISTS items (
    item_id TEXT PRIMARY KEY,
    room_id TEXT NOT NULL REFERENCES rooms(room_id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    position TEXT,
    club TEXT,
    status TEXT NOT NULL DEFAULT 'PENDING',
    winning_bid_id TEXT UNIQUE,
    winning_team_id TEXT,
    contract_years INTEGER,
    expires_at INTEGER,
    version INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS bids (
    bid_id TEXT PRIMARY KEY,
    item_id TEXT NOT NULL REFERENCES items(item_id) ON DELETE CASCADE,
    team_id TEXT NOT NULL REFERENCES teams(team_id) ON DELETE CASCADE,
    amount INTEGER NOT NULL CHECK(amount > 0),
    contract_years INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'VALID',
    timestamp INTEGER NOT NULL,
    sequence INTEGER NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS notifications (
    notification_id TEXT PRIMARY KEY,
    room_id TEXT NOT NULL,
    team_id TEXT NOT NULL,
    type TEXT NOT NULL,
    message TEXT NOT NULL,
    item_id TEXT,
    created_at INTEGER NOT NULL,
    read INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_teams_room ON teams(room_id);
CREATE INDEX IF NOT EXISTS idx_items_room_status ON items(room_id, status);
CREATE INDEX IF NOT EXISTS idx_items_winner ON items(winning_team_id, status);
CREATE INDEX IF NOT EXISTS idx_bids_item ON bids(item_id, status);
CREATE INDEX IF NOT EXISTS idx_bids_team ON bids(team_id);
CREATE INDEX IF NOT EXISTS idx_notifications_team ON notifications(team_id, read);
"""

_ITEM_COLUMNS = (
    "item_id, room_id, name, status, position, club, winning_bid_id, "
    "winning_team_id, contract_years, expires_at, version"
)
_BID_COLUMNS = "bid_id, item_id, team_id, amount, contract_years, status, timestamp, sequence"
_TEAM_COLUMNS = "team_id, room_id, name, budget, roster_spots, owner_name, pin_hash"
_ROOM_COLUMNS = "room_id, name, owner_id, status, settings_json, created_at"


def _room(row) -> Room:
    return Room(
        room_id=row[0], name=row[1], owner_id=row[2],
        status=RoomStatus(row[3]), settings_json=row[4], created_at=row[5],
    )


def _team(row) -> Team:
    return Team(
        team_id=row[0], room_id=row[1], name=row[2], budget=row[3],
        roster_spots=row[4], owner_name=row[5], pin_hash=row[6],
    )


def _item(row) -> Item:
    return Item(
        item_id=row[0], room_id=row[1], name=row[2], status=ItemStatus(row[3]),
        position=row[4], club=row[5], winning_bid_id=row[6],
        winning_team_id=row[7], contract_years=row[8], expires_at=row[9],
        version=row[10],
    )


def _bid(row) -> Bid:
    return Bid(
        bid_id=row[0], item_id=row[1], team_id=row[2], amount=row[3],
        contract_years=row[4], status=BidStatus(row[5]), timestamp=row[6],
        sequence=row[7],
    )


class UnitOfWork:
    """
    Queries and writes bound to one open transaction.

    Obtained from AuctionStore.transaction() or AuctionStore.snapshot();
    never shared across threads.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_room(self, room_id: str) -> Optional[Room]:
        row = self.conn.execute(
            f"SELECT {_ROOM_COLUMNS} FROM rooms WHERE room_id = ?", (room_id,)
        ).fetchone()
        return _room(row) if row else None

    def get_team(self, team_id: str) -> Optional[Team]:
        row = self.conn.execute(
            f"SELECT {_TEAM_COLUMNS} FROM teams WHERE team_id = ?", (team_id,)
        ).fetchone()
        return _team(row) if row else None

    def get_item(self, item_id: str) -> Optional[Item]:
        row = self.conn.execute(
            f"SELECT {_ITEM_COLUMNS} FROM items WHERE item_id = ?", (item_id,)
        ).fetchone()
        return _item(row) if row else None

    def get_bid(self, bid_id: str) -> Optional[Bid]:
        row = self.conn.execute(
            f"SELECT {_BID_COLUMNS} FROM bids WHERE bid_id = ?", (bid_id,)
        ).fetchone()
        return _bid(row) if row else None

    def list_teams(self, room_id: str) -> List[Team]:
        rows = self.conn.execute(
            f"SELECT {_TEAM_COLUMNS} FROM teams WHERE room_id = ? ORDER BY name",
            (room_id,),
        ).fetchall()
        return [_team(r) for r in rows]

    def bids_for_item(self, item_id: str, status: Optional[BidStatus] = None) -> List[Bid]:
        if status is None:
            rows = self.conn.execute(
                f"SELECT {_BID_COLUMNS} FROM bids WHERE item_id = ? ORDER BY timestamp, sequence",
                (item_id,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                f"SELECT {_BID_COLUMNS} FROM bids WHERE item_id = ? AND status = ? "
                "ORDER BY timestamp, sequence",
                (item_id, status.value),
            ).fetchall()
        return [_bid(r) for r in rows]

    def team_holdings(self, team_id: str) -> List[Holding]:
        """Items the team leads (SOLD or NOMINATED) with the leading amount"""
        rows = self.conn.execute(
            """
            SELECT i.item_id, i.status, b.amount
            FROM items i JOIN bids b ON b.bid_id = i.winning_bid_id
            WHERE i.winning_team_id = ? AND i.status IN ('SOLD', 'NOMINATED')
            """,
            (team_id,),
        ).fetchall()
        return [
            Holding(item_id=r[0], amount=r[2], sold=r[1] == ItemStatus.SOLD.value) for r in rows
        ]

    def team_active_item_ids(self, team_id: str) -> List[str]:
        """NOMINATED items on which the team holds any VALID bid, leading or not"""
        rows = self.conn.execute(
            """
            SELECT DISTINCT b.item_id
            FROM bids b JOIN items i ON i.item_id = b.item_id
            WHERE b.team_id = ? AND b.status = 'VALID' AND i.status = 'NOMINATED'
            ORDER BY b.item_id
            """,
            (team_id,),
        ).fetchall()
        return [r[0] for r in rows]

    def leading_amount(self, item: Item) -> int:
        if not item.winning_bid_id:
            return 0
        row = self.conn.execute(
            "SELECT amount FROM bids WHERE bid_id = ?", (item.winning_bid_id,)
        ).fetchone()
        return row[0] if row else 0

    def list_items(
        self,
        room_id: str,
        status: Optional[ItemStatus] = None,
        search: Optional[str] = None,
        position: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[Item], int]:
        """
        Filtered, paginated item listing.

        Ordered by expiry (soonest first, unset last) then name.

        Returns:
            (items on this page, total matching items)
        """
        clauses = ["room_id = ?"]
        params: List[Any] = [room_id]
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if search:
            clauses.append("name LIKE ?")
            params.append(f"%{search}%")
        if position:
            clauses.append("position = ?")
            params.append(position)
        where = " AND ".join(clauses)

        total = self.conn.execute(
            f"SELECT COUNT(*) FROM items WHERE {where}", params
        ).fetchone()[0]

        query = (
            f"SELECT {_ITEM_COLUMNS} FROM items WHERE {where} "
            "ORDER BY expires_at IS NULL, expires_at, name"
        )
        page_params = list(params)
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            page_params.extend([limit, offset])
        rows = self.conn.execute(query, page_params).fetchall()
        return [_item(r) for r in rows], total

    def expired_items(self, now: int, room_id: Optional[str] = None) -> List[Tuple[str, str]]:
        """(room_id, item_id) of NOMINATED items past their deadline in OPEN rooms"""
        query = """
            SELECT i.room_id, i.item_id
            FROM items i JOIN rooms r ON r.room_id = i.room_id
            WHERE i.status = 'NOMINATED' AND i.expires_at <= ? AND r.status = 'OPEN'
        """
        params: List[Any] = [now]
        if room_id is not None:
            query += " AND i.room_id = ?"
            params.append(room_id)
        query += " ORDER BY i.expires_at"
        rows = self.conn.execute(query, params).fetchall()
        return [(r[0], r[1]) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_bid(
        self, item_id: str, team_id: str, amount: int, contract_years: int, timestamp: int
    ) -> Bid:
        # Writers are serialized, so MAX + 1 is the insertion order even when
        # two bids share a clock reading
        (sequence,) = self.conn.execute(
            "SELECT COALESCE(MAX(sequence), 0) + 1 FROM bids"
        ).fetchone()
        bid = Bid(
            bid_id=str(uuid.uuid4()),
            item_id=item_id,
            team_id=team_id,
            amount=amount,
            contract_years=contract_years,
            status=BidStatus.VALID,
            timestamp=timestamp,
            sequence=sequence,
        )
        self.conn.execute(
            f"INSERT INTO bids ({_BID_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                bid.bid_id, bid.item_id, bid.team_id, bid.amount,
                bid.contract_years, bid.status.value, bid.timestamp, bid.sequence,
            ),
        )
        return bid

    def set_bid_status(self, bid_id: str, status: BidStatus) -> None:
        """Move a VALID bid to a terminal status; bids never return to VALID."""
        if status == BidStatus.VALID:
            raise StoreError("Bids cannot transition back to VALID")
        cursor = self.conn.execute(
            "UPDATE bids SET status = ? WHERE bid_id = ? AND status = 'VALID'",
            (status.value, bid_id),
        )
        if cursor.rowcount != 1:
            raise StoreError(f"Bid {bid_id} is not VALID")

    def set_leader(self, item_id: str, bid: Bid, expires_at: int) -> None:
        """Point the item at bid; leader team and contract years move with it."""
        self.conn.execute(
            """
            UPDATE items
            SET status = 'NOMINATED', winning_bid_id = ?, winning_team_id = ?,
                contract_years = ?, expires_at = ?, version = version + 1
            WHERE item_id = ?
            """,
            (bid.bid_id, bid.team_id, bid.contract_years, expires_at, item_id),
        )

    def reset_item(self, item_id: str) -> None:
        """Return the item to PENDING with no leader."""
        self.conn.execute(
            """
            UPDATE items
            SET status = 'PENDING', winning_bid_id = NULL, winning_team_id = NULL,
                contract_years = NULL, expires_at = NULL, version = version + 1
            WHERE item_id = ?
            """,
            (item_id,),
        )

    def set_item_status(self, item_id: str, status: ItemStatus) -> None:
        self.conn.execute(
            "UPDATE items SET status = ?, version = version + 1 WHERE item_id = ?",
            (status.value, item_id),
        )


class AuctionStore:
    """
    SQLite persistence for the bidding engine.

    One connection guarded by a re-entrant lock; all writes go through
    transaction(), multi-query reads through snapshot().
    """

    def __init__(self, db_path: Path, busy_timeout: float = 5.0):
        self.db_path = db_path
        self.conn = sqlite3.connect(
            str(db_path),
            check_same_thread=False,
            timeout=busy_timeout,
            isolation_level=None,   # Transactions are opened explicitly
        )
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.lock = threading.RLock()
        self._init_schema()

    def _init_schema(self):
        with self.lock:
            self.conn.executescript(_SCHEMA)

    def close(self) -> None:
        with self.lock:
            self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        """
        Open a write unit of work.

        Commits when the block exits normally and rolls back on any
        exception, which is re-raised. Database busy/locked/I-O failures
        are re-raised as TransientStoreError.
        """
        with self.lock:
            with self._translate_errors():
                self.conn.execute("BEGIN IMMEDIATE")
                try:
                    yield UnitOfWork(self.conn)
                except BaseException:
                    if self.conn.in_transaction:
                        self.conn.rollback()
                    raise
                self.conn.commit()

    @contextmanager
    def snapshot(self) -> Iterator[UnitOfWork]:
        """Open a read-only unit of work; always rolled back."""
        with self.lock:
            with self._translate_errors():
                self.conn.execute("BEGIN")
                try:
                    yield UnitOfWork(self.conn)
                finally:
                    if self.conn.in_transaction:
                        self.conn.rollback()

    @contextmanager
    def _translate_errors(self):
        try:
            yield
        except sqlite3.OperationalError as e:
            if self.conn.in_transaction:
                self.conn.rollback()
            logger.error(f"[STORE] Transient database error: {e}", exc_info=True)
            raise TransientStoreError(str(e)) from e

    # ------------------------------------------------------------------
    # Single-query reads
    # ------------------------------------------------------------------

    def get_room(self, room_id: str) -> Optional[Room]:
        with self.snapshot() as uow:
            return uow.get_room(room_id)

    def get_team(self, team_id: str) -> Optional[Team]:
        with self.snapshot() as uow:
            return uow.get_team(team_id)

    def get_item(self, item_id: str) -> Optional[Item]:
        with self.snapshot() as uow:
            return uow.get_item(item_id)

    def get_bid(self, bid_id: str) -> Optional[Bid]:
        with self.snapshot() as uow:
            return uow.get_bid(bid_id)

    def bids_for_item(self, item_id: str) -> List[Bid]:
        with self.snapshot() as uow:
            return uow.bids_for_item(item_id)

    # ------------------------------------------------------------------
    # Room administration writes
    # ------------------------------------------------------------------

    def create_room(self, name: str, owner_id: str, settings_json: str) -> Room:
        room = Room(
            room_id=str(uuid.uuid4()),
            name=name,
            owner_id=owner_id,
            status=RoomStatus.DRAFT,
            settings_json=settings_json,
            created_at=time.time_ns(),
        )
        with self.transaction() as uow:
            uow.conn.execute(
                f"INSERT INTO rooms ({_ROOM_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    room.room_id, room.name, room.owner_id, room.status.value,
                    room.settings_json, room.created_at,
                ),
            )
        return room

    def set_room_status(self, room_id: str, status: RoomStatus) -> None:
        with self.transaction() as uow:
            uow.conn.execute(
                "UPDATE rooms SET status = ? WHERE room_id = ?", (status.value, room_id)
            )

    def set_room_settings(self, room_id: str, settings_json: str) -> None:
        with self.transaction() as uow:
            uow.conn.execute(
                "UPDATE rooms SET settings_json = ? WHERE room_id = ?",
                (settings_json, room_id),
            )

    def create_team(
        self,
        room_id: str,
        name: str,
        budget: int,
        roster_spots: int,
        owner_name: Optional[str] = None,
    ) -> Team:
        team = Team(
            team_id=str(uuid.uuid4()),
            room_id=room_id,
            name=name,
            budget=budget,
            roster_spots=roster_spots,
            owner_name=owner_name,
        )
        with self.transaction() as uow:
            uow.conn.execute(
                f"INSERT INTO teams ({_TEAM_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    team.team_id, team.room_id, team.name, team.budget,
                    team.roster_spots, team.owner_name, team.pin_hash,
                ),
            )
        return team

    def update_team(self, team_id: str, name: str, budget: int, roster_spots: int) -> None:
        with self.transaction() as uow:
            uow.conn.execute(
                "UPDATE teams SET name = ?, budget = ?, roster_spots = ? WHERE team_id = ?",
                (name, budget, roster_spots, team_id),
            )

    def insert_items(self, room_id: str, records: List[Dict[str, Any]]) -> List[Item]:
        """Create PENDING items from parsed records in one transaction."""
        items = [
            Item(
                item_id=str(uuid.uuid4()),
                room_id=room_id,
                name=record["name"],
                status=ItemStatus.PENDING,
                position=record.get("position"),
                club=record.get("club"),
            )
            for record in records
        ]
        with self.transaction() as uow:
            uow.conn.executemany(
                "INSERT INTO items (item_id, room_id, name, status, position, club) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (i.item_id, i.room_id, i.name, i.status.value, i.position, i.club)
                    for i in items
                ],
            )
        return items

    def delete_item(self, item_id: str) -> bool:
        """Delete a PENDING item that never received a bid."""
        with self.transaction() as uow:
            cursor = uow.conn.execute(
                """
                DELETE FROM items
                WHERE item_id = ? AND status = 'PENDING'
                AND NOT EXISTS (SELECT 1 FROM bids WHERE bids.item_id = items.item_id)
                """,
                (item_id,),
            )
            return cursor.rowcount == 1

    def delete_pending_items(self, room_id: str) -> int:
        with self.transaction() as uow:
            cursor = uow.conn.execute(
                """
                DELETE FROM items
                WHERE room_id = ? AND status = 'PENDING'
                AND NOT EXISTS (SELECT 1 FROM bids WHERE bids.item_id = items.item_id)
                """,
                (room_id,),
            )
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def insert_notification(
        self,
        room_id: str,
        team_id: str,
        notification_type: str,
        message: str,
        item_id: Optional[str],
        created_at: int,
    ) -> str:
        notification_id = str(uuid.uuid4())
        with self.transaction() as uow:
            uow.conn.execute(
                """
                INSERT INTO notifications
                (notification_id, room_id, team_id, type, message, item_id, created_at, read)
                VALUES (?, ?, ?, ?, ?, ?, ?, 0)
                """,
                (notification_id, room_id, team_id, notification_type, message, item_id, created_at),
            )
        return notification_id

    def list_notifications(self, team_id: str, unread_only: bool = False) -> List[Dict[str, Any]]:
        query = (
            "SELECT notification_id, room_id, team_id, type, message, item_id, created_at, read "
            "FROM notifications WHERE team_id = ?"
        )
        if unread_only:
            query += " AND read = 0"
        query += " ORDER BY created_at DESC"
        with self.snapshot() as uow:
            rows = uow.conn.execute(query, (team_id,)).fetchall()
        return [
            {
                "notification_id": r[0],
                "room_id": r[1],
                "team_id": r[2],
                "type": r[3],
                "message": r[4],
                "item_id": r[5],
                "created_at": r[6],
                "read": bool(r[7]),
            }
            for r in rows
        ]

    def mark_notifications_read(self, team_id: str) -> int:
        with self.transaction() as uow:
            cursor = uow.conn.execute(
                "UPDATE notifications SET read = 1 WHERE team_id = ? AND read = 0", (team_id,)
            )
            return cursor.rowcount
