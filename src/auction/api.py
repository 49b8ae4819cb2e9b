"""
FastAPI endpoints for the auction engine.

Thin action layer: callers supply team_id / owner_id (resolved by the
authentication layer in front of this service) and every rule is enforced by
BidProcessor and RoomAdmin.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from auction.admin import AdminError, InvalidStatusTransition, NotRoomOwner, RoomAdmin, RoomNotFound
from auction.bidding import BidProcessor, BidResult
from auction.config import EngineConfig
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
from auction.notifications import StoreNotificationSink
from auction.store import AuctionStore, TransientStoreError
from auction.views import SyncView, ViewNotFound
from observability.metrics import register_metrics_route

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    RoomNotOpen.code: 409,
    ItemUnavailable.code: 409,
    ItemNotFound.code: 404,
    TeamNotFound.code: 404,
    BidTooLow.code: 422,
    ContractYearsInvalid.code: 422,
    InsufficientBudget.code: 422,
    NoRosterSpots.code: 422,
    Transient.code: 503,
}


# Request models


class PlaceBidRequest(BaseModel):
    """Bid on an item"""

    team_id: str = Field(..., description="Bidding team")
    amount: int = Field(..., description="Bid amount")
    contract_years: int = Field(1, description="Proposed contract length in years")


class OwnerRequest(BaseModel):
    owner_id: str = Field(..., description="Room owner id")


class CreateRoomRequest(OwnerRequest):
    name: str = Field(..., description="Room display name")
    settings: Optional[Dict[str, Any]] = Field(None, description="Partial settings")


class UpdateSettingsRequest(OwnerRequest):
    settings: Dict[str, Any] = Field(..., description="Settings keys to replace")


class CreateTeamRequest(OwnerRequest):
    name: str
    budget: Optional[int] = Field(None, ge=0)
    roster_spots: Optional[int] = Field(None, ge=0)
    owner_name: Optional[str] = None


class ItemRecord(BaseModel):
    name: str
    position: Optional[str] = None
    club: Optional[str] = None


class ImportItemsRequest(OwnerRequest):
    items: List[ItemRecord]


class FinalizeRequest(OwnerRequest):
    force: bool = Field(False, description="Sell before the countdown ends")


def _result_response(result: BidResult, success_status: int = 200) -> JSONResponse:
    if result.ok:
        return JSONResponse(status_code=success_status, content=result.to_dict())
    status = STATUS_BY_CODE.get(result.error.code, 400)
    return JSONResponse(status_code=status, content=result.to_dict())


def _admin_error(e: Exception) -> HTTPException:
    if isinstance(e, RoomNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, NotRoomOwner):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, InvalidStatusTransition):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def create_app(processor: BidProcessor, admin: RoomAdmin, views: SyncView) -> FastAPI:
    """
    Build the HTTP application around engine components.

    Args:
        processor: Bid processor (its store also serves notifications)
        admin: Room administration
        views: Read model for polling endpoints
    """
    app = FastAPI(title="Auction Engine API", version="1.0.0")
    store = processor.store

    # Room administration

    @app.post("/rooms", status_code=201)
    def create_room(request: CreateRoomRequest):
        try:
            room = admin.create_room(request.name, request.owner_id, request.settings)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"room_id": room.room_id, "status": room.status.value}

    @app.post("/rooms/{room_id}/status/toggle")
    def toggle_status(room_id: str, request: OwnerRequest):
        try:
            status = admin.toggle_room_status(room_id, request.owner_id)
        except AdminError as e:
            raise _admin_error(e)
        return {"room_id": room_id, "status": status.value}

    @app.patch("/rooms/{room_id}/settings")
    def update_settings(room_id: str, request: UpdateSettingsRequest):
        try:
            settings = admin.update_room_settings(room_id, request.owner_id, request.settings)
        except (AdminError, ValueError) as e:
            raise _admin_error(e)
        return settings.to_dict()

    @app.post("/rooms/{room_id}/teams", status_code=201)
    def create_team(room_id: str, request: CreateTeamRequest):
        try:
            team = admin.create_team(
                room_id,
                request.owner_id,
                request.name,
                budget=request.budget,
                roster_spots=request.roster_spots,
                owner_name=request.owner_name,
            )
        except (AdminError, ValueError) as e:
            raise _admin_error(e)
        return {"team_id": team.team_id, "budget": team.budget, "roster_spots": team.roster_spots}

    @app.post("/rooms/{room_id}/items/import", status_code=201)
    def import_items(room_id: str, request: ImportItemsRequest):
        try:
            items = admin.import_items(
                room_id, request.owner_id, [record.model_dump() for record in request.items]
            )
        except (AdminError, ValueError) as e:
            raise _admin_error(e)
        return {"item_ids": [item.item_id for item in items]}

    # Bidding

    @app.post("/rooms/{room_id}/items/{item_id}/bids")
    def place_bid(room_id: str, item_id: str, request: PlaceBidRequest):
        result = processor.place_bid(
            room_id, item_id, request.team_id, request.amount, request.contract_years
        )
        return _result_response(result, success_status=201)

    @app.delete("/rooms/{room_id}/items/{item_id}/bids/current")
    def retract_bid(
        room_id: str,
        item_id: str,
        owner_id: str = Query(..., description="Room owner id"),
        expected_bid_id: Optional[str] = Query(None, description="Bid the owner saw leading"),
    ):
        try:
            admin.verify_ownership(room_id, owner_id)
        except AdminError as e:
            raise _admin_error(e)
        return _result_response(processor.retract_bid(room_id, item_id, expected_bid_id))

    @app.post("/rooms/{room_id}/items/{item_id}/finalize")
    def finalize_item(room_id: str, item_id: str, request: FinalizeRequest):
        try:
            admin.verify_ownership(room_id, request.owner_id)
        except AdminError as e:
            raise _admin_error(e)
        return _result_response(processor.finalize_item(room_id, item_id, force=request.force))

    # Reads

    @app.get("/items/{item_id}/state")
    def item_state(item_id: str):
        try:
            return processor.get_item_state(item_id).to_dict()
        except ItemNotFound as e:
            raise HTTPException(status_code=404, detail=e.message)
        except Transient as e:
            raise HTTPException(status_code=503, detail=e.message)

    @app.get("/rooms/{room_id}/sync")
    def sync(room_id: str, team_id: str = Query(...)):
        try:
            return views.snapshot(room_id, team_id)
        except ViewNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except TransientStoreError as e:
            raise HTTPException(status_code=503, detail=str(e))

    @app.get("/rooms/{room_id}/items")
    def list_items(
        room_id: str,
        page: int = Query(1, ge=1),
        limit: int = Query(50, ge=1, le=500),
        search: str = Query(""),
        position: str = Query("ALL"),
        status: str = Query("ALL"),
    ):
        try:
            return views.list_items(room_id, page, limit, search, position, status)
        except ViewNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except TransientStoreError as e:
            raise HTTPException(status_code=503, detail=str(e))

    @app.get("/rooms/{room_id}/active-items")
    def active_items(room_id: str):
        try:
            return {"active_items": views.active_items(room_id)}
        except ViewNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.get("/teams/{team_id}/notifications")
    def notifications(team_id: str, unread_only: bool = Query(False)):
        return {"notifications": store.list_notifications(team_id, unread_only=unread_only)}

    @app.post("/teams/{team_id}/notifications/read")
    def mark_read(team_id: str):
        return {"marked": store.mark_notifications_read(team_id)}

    register_metrics_route(app)
    return app


def build_app(config: Optional[EngineConfig] = None) -> FastAPI:
    """Wire store, sink, processor, admin and views from configuration."""
    config = config or EngineConfig.from_env()
    config.db_path.parent.mkdir(parents=True, exist_ok=True)

    store = AuctionStore(config.db_path, busy_timeout=config.busy_timeout_seconds)
    processor = BidProcessor(store, sink=StoreNotificationSink(store), config=config)
    app = create_app(processor, RoomAdmin(store), SyncView(store))
    app.state.processor = processor
    return app


if __name__ == "__main__":
    import uvicorn

    from daemons.expiry_monitor import ExpiryMonitor
    from observability.tracing import setup_tracing

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    engine_config = EngineConfig.from_env()
    setup_tracing(
        engine_config.service_name,
        otlp_endpoint=engine_config.otlp_endpoint,
        console_export=engine_config.console_traces,
    )
    application = build_app(engine_config)
    monitor = ExpiryMonitor(application.state.processor)
    monitor.start()
    try:
        uvicorn.run(application, host="0.0.0.0", port=8000)
    finally:
        monitor.stop()
