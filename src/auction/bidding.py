"""
Auction Bidding: bid placement, retraction cascade and item finalization.

Each operation runs as one store unit of work. Rule violations are raised
as BidError inside the unit of work (rolling it back) and returned to the
caller in a BidResult; notifications go out only after commit.
"""

import time
import logging
from typing import Callable, List, Optional, Tuple
from dataclasses import dataclass

from auction.backoff import RandomizedBackoff
from auction.config import EngineConfig
from auction.errors import (
    BidError,
    InsufficientBudget,
    ItemNotFound,
    ItemUnavailable,
    NoRosterSpots,
    RoomNotOpen,
    TeamNotFound,
    Transient,
)
from auction.models import (
    BIDDABLE_STATUSES,
    Bid,
    BidStatus,
    Item,
    ItemState,
    ItemStatus,
    Room,
    RoomStatus,
)
from auction.notifications import Notification, NotificationSink, NotificationType
from auction.rules import RuleEvaluator
from auction.selection import resolve_next_leader
from auction.settings import AuctionSettings
from auction.store import AuctionStore, TransientStoreError, UnitOfWork
from economics.ledger import compute_ledger
from observability.metrics import bid_latency, metrics_collector
from observability.tracing import engine_span, set_outcome

logger = logging.getLogger(__name__)

NS_PER_SECOND = 1_000_000_000


@dataclass
class Ack:
    """Item state committed by a successful operation"""
    item_id: str
    item_status: ItemStatus
    bid_id: Optional[str] = None
    leader_team_id: Optional[str] = None
    amount: Optional[int] = None
    contract_years: Optional[int] = None
    expires_at: Optional[int] = None
    retracted_bid_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_status": self.item_status.value,
            "bid_id": self.bid_id,
            "leader_team_id": self.leader_team_id,
            "amount": self.amount,
            "contract_years": self.contract_years,
            "expires_at": self.expires_at,
            "retracted_bid_id": self.retracted_bid_id,
        }


@dataclass
class BidResult:
    """Either an Ack or the BidError that rejected the operation"""
    ack: Optional[Ack] = None
    error: Optional[BidError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        if self.error is not None:
            return {"success": False, "error": self.error.to_dict()}
        return {"success": True, **self.ack.to_dict()}


class BidProcessor:
    """
    Transactional core of the auction.

    Responsibilities:
    - Validate and commit bids (room, item, team, increment, contract,
      budget and roster checks, in that order)
    - Retract the leading bid and restore the next leader or reset the item
    - Finalize expired items
    - Serve item state to readers
    """

    def __init__(
        self,
        store: AuctionStore,
        sink: Optional[NotificationSink] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], int] = time.time_ns,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the processor.

        Args:
            store: Persistence with per-transaction atomicity
            sink: Receiver of OUTBID / WINNER_RESTORED / ITEM_WON events
            config: Engine configuration (defaults if None)
            clock: Current time in nanoseconds
            sleep: Used between item state read retries
        """
        self.store = store
        self.sink = sink
        self.config = config or EngineConfig()
        self.clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    @bid_latency.time()
    def place_bid(
        self, room_id: str, item_id: str, team_id: str, amount: int, contract_years: int
    ) -> BidResult:
        """
        Place a bid and make it the item's leader.

        Args:
            room_id: Room the item belongs to
            item_id: Item being bid on
            team_id: Bidding team (already resolved by the caller)
            amount: Bid amount
            contract_years: Proposed contract length

        Returns:
            BidResult with the new leader, or the violated rule

        Raises:
            ValueError: If amount or contract_years is not an integer
        """
        _require_int("amount", amount)
        _require_int("contract_years", contract_years)

        with engine_span(
            "place_bid",
            room_id=room_id,
            item_id=item_id,
            team_id=team_id,
            amount=amount,
            contract_years=contract_years,
        ) as span:
            try:
                with self.store.transaction() as uow:
                    ack, events = self._place_bid(
                        uow, room_id, item_id, team_id, amount, contract_years
                    )
            except BidError as e:
                set_outcome(span, e.code)
                metrics_collector.record_bid(e.code.lower())
                logger.info(
                    f"[AUCTION] Rejected bid from {team_id} on {item_id} ({amount}): {e.message}"
                )
                return BidResult(error=e)
            except TransientStoreError as e:
                set_outcome(span, Transient.code)
                metrics_collector.record_transient("place_bid")
                return BidResult(error=Transient(f"Bid not confirmed, check item state: {e}"))

            set_outcome(span, "accepted")

        metrics_collector.record_bid("accepted")
        logger.info(
            f"[AUCTION] Accepted bid from {team_id} on {item_id} "
            f"(amount: {amount}, years: {contract_years})"
        )
        self._dispatch(events)
        return BidResult(ack=ack)

    def _place_bid(
        self,
        uow: UnitOfWork,
        room_id: str,
        item_id: str,
        team_id: str,
        amount: int,
        contract_years: int,
    ) -> Tuple[Ack, List[Notification]]:
        room = uow.get_room(room_id)
        if room is None:
            raise RoomNotOpen(room_id)
        if room.status != RoomStatus.OPEN:
            raise RoomNotOpen(room_id, room.status.value)

        item = self._load_item(uow, room_id, item_id)
        if item.status not in BIDDABLE_STATUSES:
            raise ItemUnavailable(item_id, f"status is {item.status.value}")

        team = uow.get_team(team_id)
        if team is None or team.room_id != room_id:
            raise TeamNotFound(team_id)

        settings = AuctionSettings.from_json(room.settings_json)
        current_high_bid = uow.leading_amount(item)
        RuleEvaluator(settings).check(amount, contract_years, current_high_bid)

        ledger = compute_ledger(
            team.budget, team.roster_spots, uow.team_holdings(team_id), exclude_item_id=item_id
        )
        if ledger.available_budget < amount:
            raise InsufficientBudget(available=ledger.available_budget, requested=amount)

        already_leading = item.winning_team_id == team_id
        if not already_leading and ledger.spots_used + 1 > team.roster_spots:
            raise NoRosterSpots(team.roster_spots)

        now = self.clock()
        expires_at = now + self._timer_ns(settings)
        bid = uow.insert_bid(item_id, team_id, amount, contract_years, timestamp=now)
        uow.set_leader(item_id, bid, expires_at)

        events = []
        previous_leader = item.winning_team_id
        if previous_leader and previous_leader != team_id:
            events.append(
                Notification(
                    notification_type=NotificationType.OUTBID,
                    room_id=room_id,
                    team_id=previous_leader,
                    item_id=item_id,
                    amount=amount,
                    leader_team_id=team_id,
                    created_at=now,
                    item_name=item.name,
                    leader_team_name=team.name,
                )
            )

        ack = Ack(
            item_id=item_id,
            item_status=ItemStatus.NOMINATED,
            bid_id=bid.bid_id,
            leader_team_id=team_id,
            amount=amount,
            contract_years=contract_years,
            expires_at=expires_at,
        )
        return ack, events

    # ------------------------------------------------------------------
    # Retraction
    # ------------------------------------------------------------------

    def retract_bid(
        self, room_id: str, item_id: str, expected_bid_id: Optional[str] = None
    ) -> BidResult:
        """
        Retract the item's leading bid (admin action).

        The strongest remaining valid bid becomes leader with a fresh
        countdown; bids whose team can no longer cover them are voided on
        the way. With no bid left the item returns to PENDING.

        Args:
            room_id: Room the item belongs to
            item_id: Item whose leading bid is retracted
            expected_bid_id: If given, only retract when this bid still leads

        Returns:
            BidResult with the restored leader (or the reset item)
        """
        with engine_span("retract_bid", room_id=room_id, item_id=item_id) as span:
            try:
                with self.store.transaction() as uow:
                    ack, events = self._retract_bid(uow, room_id, item_id, expected_bid_id)
            except BidError as e:
                set_outcome(span, e.code)
                metrics_collector.record_retraction(e.code.lower())
                logger.info(f"[AUCTION] Retraction on {item_id} rejected: {e.message}")
                return BidResult(error=e)
            except TransientStoreError as e:
                metrics_collector.record_transient("retract_bid")
                return BidResult(error=Transient(f"Retraction not confirmed, check item state: {e}"))

            outcome = "restored" if ack.bid_id else "reset"
            set_outcome(span, outcome)

        metrics_collector.record_retraction(outcome)
        logger.info(
            f"[AUCTION] Retracted bid {ack.retracted_bid_id} on {item_id} "
            f"(item {outcome}, leader: {ack.leader_team_id})"
        )
        self._dispatch(events)
        return BidResult(ack=ack)

    def _retract_bid(
        self, uow: UnitOfWork, room_id: str, item_id: str, expected_bid_id: Optional[str]
    ) -> Tuple[Ack, List[Notification]]:
        room = self._load_active_room(uow, room_id)
        item = self._load_item(uow, room_id, item_id)
        if item.status != ItemStatus.NOMINATED or not item.winning_bid_id:
            raise ItemUnavailable(item_id, "no active bid to retract")
        if expected_bid_id is not None and expected_bid_id != item.winning_bid_id:
            raise ItemUnavailable(item_id, f"bid {expected_bid_id} is not the current leader")

        retracted_id = item.winning_bid_id
        uow.set_bid_status(retracted_id, BidStatus.RETRACTED)

        remaining = uow.bids_for_item(item_id, BidStatus.VALID)
        leader = self._next_affordable_leader(uow, item, remaining)

        if leader is None:
            uow.reset_item(item_id)
            ack = Ack(item_id=item_id, item_status=ItemStatus.PENDING, retracted_bid_id=retracted_id)
            return ack, []

        now = self.clock()
        settings = AuctionSettings.from_json(room.settings_json)
        expires_at = now + self._timer_ns(settings)
        uow.set_leader(item_id, leader, expires_at)

        restored = Notification(
            notification_type=NotificationType.WINNER_RESTORED,
            room_id=room_id,
            team_id=leader.team_id,
            item_id=item_id,
            amount=leader.amount,
            leader_team_id=leader.team_id,
            created_at=now,
            item_name=item.name,
        )
        ack = Ack(
            item_id=item_id,
            item_status=ItemStatus.NOMINATED,
            bid_id=leader.bid_id,
            leader_team_id=leader.team_id,
            amount=leader.amount,
            contract_years=leader.contract_years,
            expires_at=expires_at,
            retracted_bid_id=retracted_id,
        )
        return ack, [restored]

    def _next_affordable_leader(
        self, uow: UnitOfWork, item: Item, remaining: List[Bid]
    ) -> Optional[Bid]:
        """
        Walk candidates strongest-first, voiding those whose team cannot
        hold the item any more (budget or roster spent elsewhere since).
        """
        candidates = list(remaining)
        while candidates:
            candidate = resolve_next_leader(candidates)
            if candidate is None:
                return None

            team = uow.get_team(candidate.team_id)
            if team is not None:
                ledger = compute_ledger(
                    team.budget,
                    team.roster_spots,
                    uow.team_holdings(team.team_id),
                    exclude_item_id=item.item_id,
                )
                if (
                    ledger.available_budget >= candidate.amount
                    and ledger.spots_used + 1 <= team.roster_spots
                ):
                    return candidate

            logger.info(
                f"[AUCTION] Voiding bid {candidate.bid_id} on {item.item_id}: "
                f"team {candidate.team_id} can no longer hold it"
            )
            uow.set_bid_status(candidate.bid_id, BidStatus.VOID)
            candidates = [b for b in candidates if b.bid_id != candidate.bid_id]
        return None

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def finalize_item(self, room_id: str, item_id: str, force: bool = False) -> BidResult:
        """
        Sell a NOMINATED item to its leader.

        Args:
            room_id: Room the item belongs to
            item_id: Item to finalize
            force: Sell even if the countdown has not expired (owner action)

        Returns:
            BidResult with the SOLD item
        """
        with engine_span("finalize_item", room_id=room_id, item_id=item_id, forced=force):
            try:
                with self.store.transaction() as uow:
                    ack, events = self._finalize_item(uow, room_id, item_id, force)
            except BidError as e:
                logger.debug(f"[AUCTION] Finalization of {item_id} skipped: {e.message}")
                return BidResult(error=e)
            except TransientStoreError as e:
                metrics_collector.record_transient("finalize_item")
                return BidResult(error=Transient(str(e)))

        metrics_collector.record_finalized(ItemStatus.SOLD.value)
        logger.info(
            f"[AUCTION] Sold {item_id} to {ack.leader_team_id} "
            f"(amount: {ack.amount}, years: {ack.contract_years})"
        )
        self._dispatch(events)
        return BidResult(ack=ack)

    def _finalize_item(
        self, uow: UnitOfWork, room_id: str, item_id: str, force: bool
    ) -> Tuple[Ack, List[Notification]]:
        room = self._load_active_room(uow, room_id)
        item = self._load_item(uow, room_id, item_id)
        if item.status != ItemStatus.NOMINATED:
            raise ItemUnavailable(item_id, f"status is {item.status.value}")

        now = self.clock()
        if not force and item.expires_at is not None and item.expires_at > now:
            raise ItemUnavailable(item_id, "countdown has not expired")

        uow.set_item_status(item_id, ItemStatus.SOLD)
        amount = uow.leading_amount(item)

        won = Notification(
            notification_type=NotificationType.ITEM_WON,
            room_id=room.room_id,
            team_id=item.winning_team_id,
            item_id=item_id,
            amount=amount,
            leader_team_id=item.winning_team_id,
            created_at=now,
            item_name=item.name,
        )
        ack = Ack(
            item_id=item_id,
            item_status=ItemStatus.SOLD,
            bid_id=item.winning_bid_id,
            leader_team_id=item.winning_team_id,
            amount=amount,
            contract_years=item.contract_years,
            expires_at=item.expires_at,
        )
        return ack, [won]

    def mark_unsold(self, room_id: str, item_id: str) -> BidResult:
        """Withdraw a PENDING item from the market (owner action)."""
        try:
            with self.store.transaction() as uow:
                self._load_active_room(uow, room_id)
                item = self._load_item(uow, room_id, item_id)
                if item.status != ItemStatus.PENDING:
                    raise ItemUnavailable(item_id, f"status is {item.status.value}")
                uow.set_item_status(item_id, ItemStatus.UNSOLD)
        except BidError as e:
            return BidResult(error=e)
        except TransientStoreError as e:
            metrics_collector.record_transient("mark_unsold")
            return BidResult(error=Transient(str(e)))

        metrics_collector.record_finalized(ItemStatus.UNSOLD.value)
        logger.info(f"[AUCTION] Marked {item_id} unsold")
        return BidResult(ack=Ack(item_id=item_id, item_status=ItemStatus.UNSOLD))

    def finalize_expired(self, room_id: Optional[str] = None) -> List[str]:
        """
        Sell every NOMINATED item whose countdown has passed.

        Each item is finalized in its own unit of work; an item re-bid
        between the scan and its finalization is left alone.

        Args:
            room_id: Restrict the sweep to one room (all OPEN rooms if None)

        Returns:
            Ids of the items sold
        """
        with self.store.snapshot() as uow:
            expired = uow.expired_items(self.clock(), room_id)

        sold = []
        for item_room_id, item_id in expired:
            result = self.finalize_item(item_room_id, item_id)
            if result.ok:
                sold.append(item_id)
        return sold

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_item_state(self, item_id: str) -> ItemState:
        """
        Read the current state of an item.

        Retried with randomized backoff on transient store errors.

        Raises:
            ItemNotFound: If the item does not exist
            Transient: If the store stays unavailable after all retries
        """
        backoff = RandomizedBackoff(max_attempts=self.config.state_read_retries)
        while True:
            try:
                with self.store.snapshot() as uow:
                    item = uow.get_item(item_id)
                    if item is None:
                        raise ItemNotFound(item_id)
                    amount = uow.leading_amount(item) if item.winning_bid_id else None
                return ItemState(
                    item_id=item.item_id,
                    status=item.status,
                    winning_team_id=item.winning_team_id,
                    winning_bid_amount=amount,
                    contract_years=item.contract_years,
                    expires_at=item.expires_at,
                    version=item.version,
                )
            except TransientStoreError as e:
                if backoff.exhausted:
                    metrics_collector.record_transient("get_item_state")
                    raise Transient(f"Item state unavailable: {e}") from e
                delay = backoff.next()
                logger.warning(
                    f"[AUCTION] Item state read failed ({e}), retry {backoff.attempt} in {delay:.3f}s"
                )
                self._sleep(delay)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_item(self, uow: UnitOfWork, room_id: str, item_id: str) -> Item:
        item = uow.get_item(item_id)
        if item is None or item.room_id != room_id:
            raise ItemNotFound(item_id)
        return item

    def _load_active_room(self, uow: UnitOfWork, room_id: str) -> Room:
        room = uow.get_room(room_id)
        if room is None:
            raise RoomNotOpen(room_id)
        if room.status not in (RoomStatus.OPEN, RoomStatus.PAUSED):
            raise RoomNotOpen(room_id, room.status.value)
        return room

    def _timer_ns(self, settings: AuctionSettings) -> int:
        seconds = settings.timer_seconds or self.config.default_timer_seconds
        return int(seconds * NS_PER_SECOND)

    def _dispatch(self, events: List[Notification]) -> None:
        """Hand committed events to the sink; failures are logged, not raised."""
        if self.sink is None:
            return
        for event in events:
            kind = event.notification_type.value
            try:
                self.sink.send(event)
                metrics_collector.record_notification(kind, "delivered")
            except Exception as e:
                metrics_collector.record_notification(kind, "failed")
                logger.warning(
                    f"[NOTIFY] Failed to deliver {kind} to team {event.team_id}: {e}"
                )


def _require_int(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
