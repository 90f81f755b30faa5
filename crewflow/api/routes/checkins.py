"""
crewflow.api.routes.checkins — Crew check-ins & locate pings (JWT-protected)
============================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel

from crewflow.api.deps import get_config, get_current_user, get_dispatcher, get_store, respond
from crewflow.config import CrewflowConfig
from crewflow.database.store import DataStore
from crewflow.services import checkin_service
from crewflow.services.dispatcher import ChannelDispatcher
from crewflow.services.notification_service import notify_checkin

router = APIRouter(prefix="/crews/{group_id}", tags=["checkins"])


class CheckinBody(BaseModel):
    venue_name: str


@router.post("/checkins", status_code=201)
def checkin(
    group_id: str,
    body: CheckinBody,
    background: BackgroundTasks,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
    dispatcher: ChannelDispatcher = Depends(get_dispatcher),
    cfg: CrewflowConfig = Depends(get_config),
):
    outcome = checkin_service.checkin(store, user_id, group_id, body.venue_name, cfg=cfg)
    if outcome.ok:
        background.add_task(
            notify_checkin, store, dispatcher, user_id, group_id,
            outcome.data["checkin"]["venue_name"],
        )
    return respond(outcome)


@router.get("/checkins")
def locations(
    group_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(checkin_service.crew_locations(store, user_id, group_id))


@router.post("/locate")
def locate(
    group_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
    dispatcher: ChannelDispatcher = Depends(get_dispatcher),
):
    return respond(checkin_service.locate(store, dispatcher, user_id, group_id))
