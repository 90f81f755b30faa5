"""
crewflow.services.embeds — Discord embed builders for command replies
======================================================================

Cogs hand over an :class:`Outcome`; the colour follows its kind so users
can tell a refusal from a friendly no-op at a glance.
"""

from __future__ import annotations

import discord

from crewflow.engine.outcome import Outcome, OutcomeKind

_KIND_COLORS: dict[OutcomeKind, discord.Color] = {
    OutcomeKind.OK: discord.Color.green(),
    OutcomeKind.CONFLICT: discord.Color.blurple(),
    OutcomeKind.VALIDATION: discord.Color.orange(),
    OutcomeKind.NOT_FOUND: discord.Color.orange(),
    OutcomeKind.FORBIDDEN: discord.Color.red(),
    OutcomeKind.FAILURE: discord.Color.red(),
}

# Discord caps embed descriptions at 4096 characters.
_DESCRIPTION_LIMIT = 4096


def discord_user_id(user: discord.abc.User) -> str:
    """Platform-scoped id for a Discord account (``discord_<snowflake>``)."""
    return f"discord_{user.id}"


def build_outcome_embed(outcome: Outcome, title: str | None = None) -> discord.Embed:
    description = outcome.message
    if not outcome.ok:
        description = f"❌ {description}"
    if len(description) > _DESCRIPTION_LIMIT:
        description = description[: _DESCRIPTION_LIMIT - 1] + "…"
    return discord.Embed(
        title=title,
        description=description,
        color=_KIND_COLORS.get(outcome.kind, discord.Color.default()),
    )
