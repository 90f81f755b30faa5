"""
crewflow.api.routes.crews — Crew management endpoints (JWT-protected)
=====================================================================

Joins (direct or by approval) schedule the crew-join fan-out as a
background task so the response returns before any message goes out.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel

from crewflow.api.deps import get_config, get_current_user, get_dispatcher, get_store, respond
from crewflow.config import CrewflowConfig
from crewflow.database.models import JoinMode
from crewflow.database.store import DataStore
from crewflow.services import crew_service
from crewflow.services.dispatcher import ChannelDispatcher
from crewflow.services.notification_service import notify_crew_join

router = APIRouter(prefix="/crews", tags=["crews"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class CrewCreate(BaseModel):
    name: str
    is_public: bool = False
    is_temporary: bool = False
    expires_at: datetime | None = None


class CrewJoin(BaseModel):
    code: str


class CrewSettings(BaseModel):
    is_public: bool | None = None
    join_mode: JoinMode | None = None


# ---------------------------------------------------------------------------
# Crews
# ---------------------------------------------------------------------------
@router.get("")
def my_crews(
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(crew_service.list_crews(store, user_id))


@router.post("", status_code=201)
def create_crew(
    body: CrewCreate,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
    cfg: CrewflowConfig = Depends(get_config),
):
    return respond(crew_service.create(
        store, user_id, body.name, cfg=cfg,
        is_public=body.is_public, is_temporary=body.is_temporary, expires_at=body.expires_at,
    ))


@router.get("/public")
def browse_public(
    limit: int = Query(crew_service.BROWSE_LIMIT, ge=1, le=100),
    store: DataStore = Depends(get_store),
):
    return respond(crew_service.browse_public(store, limit))


@router.post("/join")
def join_crew(
    body: CrewJoin,
    background: BackgroundTasks,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
    dispatcher: ChannelDispatcher = Depends(get_dispatcher),
):
    outcome = crew_service.join(store, user_id, body.code.strip())
    if outcome.ok and outcome.data.get("joined"):
        background.add_task(notify_crew_join, store, dispatcher, user_id, outcome.data["group_id"])
    return respond(outcome)


@router.get("/{group_id}/members")
def members(
    group_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(crew_service.crew_members(store, user_id, group_id))


@router.patch("/{group_id}")
def update_settings(
    group_id: str,
    body: CrewSettings,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    join_mode = body.join_mode.value if body.join_mode else None
    return respond(crew_service.settings(
        store, user_id, group_id, is_public=body.is_public, join_mode=join_mode,
    ))


@router.post("/{group_id}/invite")
def personal_invite(
    group_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
    cfg: CrewflowConfig = Depends(get_config),
):
    return respond(crew_service.personal_invite(store, user_id, group_id, cfg=cfg))


@router.post("/{group_id}/leave")
def leave(
    group_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(crew_service.leave(store, user_id, group_id))


@router.post("/{group_id}/mute")
def mute(
    group_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(crew_service.mute_crew(store, user_id, group_id))


# ---------------------------------------------------------------------------
# Roles & membership
# ---------------------------------------------------------------------------
@router.post("/{group_id}/members/{target_id}/promote")
def promote(
    group_id: str,
    target_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(crew_service.promote(store, user_id, group_id, target_id))


@router.post("/{group_id}/members/{target_id}/demote")
def demote(
    group_id: str,
    target_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(crew_service.demote(store, user_id, group_id, target_id))


@router.delete("/{group_id}/members/{target_id}")
def remove_member(
    group_id: str,
    target_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(crew_service.remove_member(store, user_id, group_id, target_id))


# ---------------------------------------------------------------------------
# Join requests
# ---------------------------------------------------------------------------
@router.get("/{group_id}/requests")
def pending_requests(
    group_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(crew_service.pending_requests(store, user_id, group_id))


@router.post("/requests/{request_id}/approve")
def approve(
    request_id: int,
    background: BackgroundTasks,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
    dispatcher: ChannelDispatcher = Depends(get_dispatcher),
):
    outcome = crew_service.approve(store, user_id, request_id)
    if outcome.ok and outcome.data.get("status") == "approved":
        background.add_task(
            notify_crew_join, store, dispatcher, outcome.data["user_id"], outcome.data["group_id"],
        )
    return respond(outcome)


@router.post("/requests/{request_id}/deny")
def deny(
    request_id: int,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(crew_service.deny(store, user_id, request_id))
