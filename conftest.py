"""
Pytest configuration for the auction engine tests.

Adds --stress flag for running the concurrency and property tests with
more threads and longer random sequences, and the shared engine fixtures.
"""

import os
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))

from auction.admin import RoomAdmin
from auction.bidding import BidProcessor
from auction.config import EngineConfig
from auction.models import RoomStatus
from auction.notifications import InMemoryNotificationSink
from auction.store import AuctionStore
from auction.views import SyncView

OWNER_ID = "owner-1"

# Small-number room used by most tests: 15% increments, no contract tiers
SIMPLE_SETTINGS = {
    "minIncrement": 0.15,
    "openingBid": 1,
    "contractLogic": {"enabled": False, "rules": []},
    "timerSeconds": 30,
}


def pytest_addoption(parser):
    """Add custom command line options"""
    parser.addoption(
        "--stress",
        action="store_true",
        default=False,
        help="Run concurrency and property tests with heavier load",
    )


def pytest_configure(config):
    """Configure pytest based on command line options"""
    config.addinivalue_line("markers", "stress: heavier concurrency and property runs")
    if config.getoption("--stress"):
        print("\nSTRESS MODE ENABLED - more threads, longer bid sequences\n")


@pytest.fixture(scope="session")
def stress_mode(request):
    """Fixture that provides stress mode status"""
    return request.config.getoption("--stress")


class FakeClock:
    """Nanosecond clock that ticks once per reading and can be advanced."""

    def __init__(self, start: int = 1_700_000_000_000_000_000):
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1_000_000_000)


@dataclass
class RoomFixture:
    room_id: str
    teams: Dict[str, str] = field(default_factory=dict)     # name -> team_id
    items: Dict[str, str] = field(default_factory=dict)     # name -> item_id


class AuctionHarness:
    """Store, processor, admin and views wired to one temporary database."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.db_path = Path(tempfile.mktemp(suffix=".db"))
        self.config = config or EngineConfig(db_path=self.db_path)
        self.store = AuctionStore(self.db_path)
        self.clock = FakeClock()
        self.sink = InMemoryNotificationSink()
        self.sleeps = []
        self.processor = BidProcessor(
            self.store,
            sink=self.sink,
            config=self.config,
            clock=self.clock,
            sleep=self.sleeps.append,
        )
        self.admin = RoomAdmin(self.store)
        self.views = SyncView(self.store, clock=self.clock)

    def open_room(
        self,
        settings: Optional[dict] = None,
        teams: Iterable[Tuple[str, int, int]] = (),
        items: Iterable[str] = (),
        status: RoomStatus = RoomStatus.OPEN,
    ) -> RoomFixture:
        """
        Create a room with teams and items, then move it to status.

        Args:
            settings: Partial settings (SIMPLE_SETTINGS if None)
            teams: (name, budget, roster_spots) tuples
            items: Item names
            status: Status the room ends up in
        """
        room = self.admin.create_room(
            "Test League", OWNER_ID, SIMPLE_SETTINGS if settings is None else settings
        )
        fixture = RoomFixture(room_id=room.room_id)
        for name, budget, spots in teams:
            team = self.admin.create_team(room.room_id, OWNER_ID, name, budget, spots)
            fixture.teams[name] = team.team_id
        created = self.admin.import_items(
            room.room_id, OWNER_ID, [{"name": name} for name in items]
        )
        for item in created:
            fixture.items[item.name] = item.item_id
        if status != RoomStatus.DRAFT:
            self.store.set_room_status(room.room_id, status)
        return fixture

    def bid(self, room: RoomFixture, item: str, team: str, amount: int, years: int = 1):
        return self.processor.place_bid(
            room.room_id, room.items[item], room.teams[team], amount, years
        )

    def close(self):
        self.store.close()
        if self.db_path.exists():
            self.db_path.unlink()


@pytest.fixture
def harness():
    """Fresh engine on a temporary SQLite file"""
    h = AuctionHarness()
    yield h
    h.close()
