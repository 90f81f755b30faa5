"""
crewflow.api.routes.preferences — Notification settings (JWT-protected)
=======================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from crewflow.api.deps import get_current_user, get_store, respond
from crewflow.database.store import DataStore
from crewflow.services import preference_service

router = APIRouter(prefix="/me/preferences", tags=["preferences"])


class PreferencesUpdate(BaseModel):
    notify_crew_checkins: bool | None = None
    notify_friend_rsvps: bool | None = None
    notify_crew_rsvps: bool | None = None
    notify_event_reminders: bool | None = None
    notify_daily_digest: bool | None = None
    daily_notification_limit: int | None = None
    quiet_hours_enabled: bool | None = None
    quiet_hours_start: int | None = None
    quiet_hours_end: int | None = None
    timezone: str | None = None
    reminder_defaults: list[int] | None = None


@router.get("")
def get_preferences(
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(preference_service.get_preferences(store, user_id))


@router.patch("")
def update_preferences(
    body: PreferencesUpdate,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(preference_service.update_preferences(
        store, user_id, body.model_dump(exclude_none=True),
    ))
