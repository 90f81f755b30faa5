"""
crewflow.api.routes.events — RSVPs, "who's going" & reminders (JWT-protected)
=============================================================================
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, Field

from crewflow.api.deps import get_current_user, get_dispatcher, get_store, respond
from crewflow.database.models import RsvpStatus
from crewflow.database.store import DataStore
from crewflow.services import attendance_service
from crewflow.services.dispatcher import ChannelDispatcher
from crewflow.services.notification_service import notify_rsvp

router = APIRouter(tags=["events"])


class RsvpBody(BaseModel):
    status: RsvpStatus = RsvpStatus.GOING
    event_name: str | None = None
    event_date: datetime | None = None
    event_venue: str | None = None


class ReminderBody(BaseModel):
    minutes: list[int] = Field(default_factory=list)


@router.post("/events/{event_id}/rsvp")
def rsvp(
    event_id: str,
    body: RsvpBody,
    background: BackgroundTasks,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
    dispatcher: ChannelDispatcher = Depends(get_dispatcher),
):
    outcome = attendance_service.rsvp(
        store, user_id, event_id, body.status.value,
        event_name=body.event_name, event_date=body.event_date, event_venue=body.event_venue,
    )
    if outcome.ok and body.status == RsvpStatus.GOING:
        attendance = outcome.data.get("attendance") or {}
        title = attendance.get("event_name") or body.event_name or event_id
        background.add_task(notify_rsvp, store, dispatcher, user_id, event_id, title)
    return respond(outcome)


@router.delete("/events/{event_id}/rsvp")
def cancel_rsvp(
    event_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(attendance_service.cancel(store, user_id, event_id))


@router.get("/events/upcoming")
def upcoming(
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(attendance_service.upcoming_for_flow(store, user_id))


@router.get("/events/{event_id}/going")
def whos_going(
    event_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(attendance_service.who_is_going(store, user_id, event_id))


@router.get("/events/{event_id}/reminders")
def get_reminders(
    event_id: str,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(attendance_service.get_reminders(store, user_id, event_id))


@router.put("/events/{event_id}/reminders")
def set_reminders(
    event_id: str,
    body: ReminderBody,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(attendance_service.set_reminders(store, user_id, event_id, body.minutes))


@router.get("/me/schedule")
def my_schedule(
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    return respond(attendance_service.my_schedule(store, user_id))
