"""
crewflow.api.routes.tokens — Farcaster push-token registration (JWT-protected)
==============================================================================

The mini-app hands us the push ``token``/``url`` pair once the user enables
notifications.  Only a ``farcaster_<fid>`` caller may register a token, and
only for its own fid.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from crewflow.api.deps import get_current_user, get_store
from crewflow.constants import detect_platform, strip_platform
from crewflow.database.store import DataStore
from crewflow.services.dispatcher import save_notification_token

router = APIRouter(prefix="/notifications/farcaster", tags=["notifications"])


class TokenBody(BaseModel):
    token: str
    url: str


def _caller_fid(user_id: str) -> int:
    if detect_platform(user_id) != "farcaster":
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Farcaster account required")
    try:
        return int(strip_platform(user_id))
    except ValueError:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Malformed Farcaster id")


@router.put("/token")
def register_token(
    body: TokenBody,
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    fid = _caller_fid(user_id)
    if not body.url.startswith("https://"):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Notification URL must be https")
    save_notification_token(store, fid, body.token, body.url)
    return {"ok": True, "fid": fid}


@router.delete("/token")
def disable_token(
    user_id: str = Depends(get_current_user),
    store: DataStore = Depends(get_store),
):
    fid = _caller_fid(user_id)
    store.patch("notification_tokens", {"fid": fid}, {"enabled": False})
    return {"ok": True, "fid": fid}
