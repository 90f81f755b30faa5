"""
crewflow.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for soft settings (community identity, link domain,
crew defaults, sweep cadence).  Secrets and connection strings live in the
environment (``.env``), never in this file.

Usage::

    from crewflow.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "Flow Crew"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

DEFAULT_FARCASTER_APP_URL = "https://flowb-farcaster.netlify.app"


@dataclass(frozen=True, slots=True)
class CrewflowConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Bots
    bot_prefix: str
    bot_username: str  # Telegram bot used for t.me deep links

    # API
    api_port: int = 8000

    # Links
    link_domain: str | None = None  # e.g. "flowb.me" → https://flowb.me/g/<code>
    farcaster_app_url: str = DEFAULT_FARCASTER_APP_URL

    # Crews & check-ins
    default_max_members: int = 50
    checkin_ttl_minutes: int = 120

    # Scheduling
    reminder_sweep_minutes: int = 10


def load_config(path: str | Path = "config.yaml") -> CrewflowConfig:
    """Read *path* and return a :class:`CrewflowConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return CrewflowConfig(
        community_name=raw["community_name"],
        bot_prefix=raw["bot_prefix"],
        bot_username=raw["bot_username"],
        api_port=int(raw.get("api_port", 8000)),
        link_domain=raw.get("link_domain") or None,
        farcaster_app_url=raw.get("farcaster_app_url", DEFAULT_FARCASTER_APP_URL),
        default_max_members=int(raw.get("default_max_members", 50)),
        checkin_ttl_minutes=int(raw.get("checkin_ttl_minutes", 120)),
        reminder_sweep_minutes=int(raw.get("reminder_sweep_minutes", 10)),
    )


# Used when a caller has no config.yaml at hand (tests, one-off scripts).
DEFAULT_CONFIG = CrewflowConfig(
    community_name="Crewflow",
    bot_prefix="!",
    bot_username="flow_b_bot",
)
