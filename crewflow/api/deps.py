"""
crewflow.api.deps — FastAPI dependency injection
=================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated, Any

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError

from crewflow.config import CrewflowConfig, load_config
from crewflow.database.engine import create_store
from crewflow.database.store import DataStore
from crewflow.engine.outcome import Outcome, OutcomeKind
from crewflow.services.dispatcher import ChannelDispatcher, build_dispatcher
from crewflow.services.federation import FederationLookup, PrivyFederation
from crewflow.services.identity_service import resolve_canonical_id

_WEAK_SECRETS = frozenset({
    "crewflow-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_store() -> DataStore:
    return create_store()


@lru_cache(maxsize=1)
def get_config() -> CrewflowConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_federation() -> FederationLookup | None:
    return PrivyFederation.from_env()


def get_dispatcher(
    store: Annotated[DataStore, Depends(get_store)],
    cfg: Annotated[CrewflowConfig, Depends(get_config)],
) -> ChannelDispatcher:
    return _dispatcher_for(store, cfg.farcaster_app_url)


@lru_cache(maxsize=4)
def _dispatcher_for(store: DataStore, farcaster_app_url: str) -> ChannelDispatcher:
    return build_dispatcher(store, farcaster_app_url=farcaster_app_url)


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    store: DataStore = Depends(get_store),
    federation: FederationLookup | None = Depends(get_federation),
) -> str:
    """Validate the bearer JWT and return its ``sub`` (a platform user id).

    The caller's identity row is created on first sight, best-effort.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    user_id = payload.get("sub")
    if not user_id or not isinstance(user_id, str):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    resolve_canonical_id(
        store, user_id, federation=federation, display_name=payload.get("name"),
    )
    return user_id


# ---------------------------------------------------------------------------
# Outcome → HTTP
# ---------------------------------------------------------------------------
_KIND_STATUS: dict[OutcomeKind, int] = {
    OutcomeKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    OutcomeKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    OutcomeKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    OutcomeKind.FAILURE: status.HTTP_502_BAD_GATEWAY,
}


def respond(outcome: Outcome) -> dict[str, Any]:
    """Body for a successful outcome; ``HTTPException`` for a refused one."""
    if not outcome.ok:
        raise HTTPException(
            _KIND_STATUS.get(outcome.kind, status.HTTP_400_BAD_REQUEST), outcome.message,
        )
    return {"ok": True, "kind": outcome.kind.value, "message": outcome.message, **outcome.data}
