"""
crewflow.api.routes.flow — Friend graph endpoints (JWT-protected)
=================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from crewflow.api.deps import get_config, get_current_user, get_store, respond
from crewflow.config import CrewflowConfig
from crewflow.database.store import DataStore
from crewflow.services import connection_service

router = APIRouter(prefix="/flow", tags=["flow"])


class AcceptInvite(BaseModel):
    code: str


@router.get("")
def list_flow(
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(connection_service.list_flow(store, user_id))


@router.post("/invite")
def invite(
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
    cfg: CrewflowConfig = Depends(get_config),
):
    return respond(connection_service.invite(store, user_id, cfg=cfg))


@router.post("/accept")
def accept_invite(
    body: AcceptInvite,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(connection_service.accept_invite(store, user_id, body.code.strip()))


@router.delete("/{friend_id}")
def remove_friend(
    friend_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(connection_service.remove(store, user_id, friend_id))


@router.post("/{friend_id}/mute")
def toggle_mute(
    friend_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(connection_service.mute(store, user_id, friend_id))
