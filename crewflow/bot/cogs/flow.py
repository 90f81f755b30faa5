"""
crewflow.bot.cogs.flow — Friends, RSVPs & Notification Settings
================================================================

Hybrid commands for the personal side of Crewflow:
- /share, /connect, /flow, /unfriend, /mute-friend — the friend graph
- /going, /maybe, /cancel-rsvp — attendance (going/maybe fans out to the flow)
- /whos-going, /upcoming, /schedule — what the flow is doing
- /reminders — per-event reminder offsets
- /notifications — view or change notification preferences

Every command resolves the caller's identity first, then runs the service
call on a worker thread via ``run_db``.  RSVP fan-out happens after the
reply so the user never waits on DMs going out.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from crewflow.database.engine import run_db
from crewflow.database.models import RsvpStatus
from crewflow.engine.outcome import Outcome
from crewflow.services import attendance_service, connection_service, preference_service
from crewflow.services.embeds import build_outcome_embed, discord_user_id
from crewflow.services.notification_service import notify_rsvp

if TYPE_CHECKING:
    from crewflow.bot.core import CrewflowBot

logger = logging.getLogger(__name__)

_TRUE_WORDS = {"on", "true", "yes", "1", "enable", "enabled"}
_FALSE_WORDS = {"off", "false", "no", "0", "disable", "disabled"}


def _parse_when(raw: str | None) -> datetime | None:
    """ISO-8601 start time; naive values are taken as UTC."""
    if not raw:
        return None
    parsed = datetime.fromisoformat(raw.strip())
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _parse_setting(setting: str, value: str) -> object:
    if setting in ("daily_notification_limit", "quiet_hours_start", "quiet_hours_end"):
        return int(value)
    if setting == "timezone":
        return value.strip()
    if setting == "reminder_defaults":
        return [int(v) for v in value.replace(" ", "").split(",") if v]
    word = value.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ValueError(f"Expected on/off, got {value!r}")


class Flow(commands.Cog, name="Flow"):
    """Friend graph, RSVPs, and notification preferences."""

    def __init__(self, bot: CrewflowBot) -> None:
        self.bot = bot

    async def _reply(self, ctx: commands.Context, outcome: Outcome, title: str | None = None) -> None:
        await ctx.send(embed=build_outcome_embed(outcome, title), ephemeral=True)

    # -------------------------------------------------------------------
    # Friend graph
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="share",
        description="Get your personal flow link to connect with friends.",
    )
    async def share(self, ctx: commands.Context) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(connection_service.invite, self.bot.store, me, cfg=self.bot.cfg)
        await self._reply(ctx, outcome)

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="connect",
        description="Join a friend's flow with their invite code.",
    )
    @app_commands.describe(code="The code from your friend's flow link")
    async def connect(self, ctx: commands.Context, code: str) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(connection_service.accept_invite, self.bot.store, me, code.strip())
        await self._reply(ctx, outcome)

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="flow",
        description="List your friends and crews.",
    )
    async def flow(self, ctx: commands.Context) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(connection_service.list_flow, self.bot.store, me)
        await self._reply(ctx, outcome)

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="unfriend",
        description="Remove someone from your flow (both directions).",
    )
    @app_commands.describe(member="The friend to remove")
    async def unfriend(self, ctx: commands.Context, member: discord.User) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(
            connection_service.remove, self.bot.store, me, discord_user_id(member),
        )
        await self._reply(ctx, outcome)

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="mute-friend",
        description="Mute or unmute notifications about a friend.",
    )
    @app_commands.describe(member="The friend to mute or unmute")
    async def mute_friend(self, ctx: commands.Context, member: discord.User) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(connection_service.mute, self.bot.store, me, discord_user_id(member))
        await self._reply(ctx, outcome)

    # -------------------------------------------------------------------
    # RSVPs
    # -------------------------------------------------------------------
    async def _rsvp(
        self,
        ctx: commands.Context,
        status: RsvpStatus,
        event_id: str,
        name: str | None,
        starts: str | None,
        venue: str | None,
    ) -> None:
        try:
            event_date = _parse_when(starts)
        except ValueError:
            await ctx.send(
                "❌ Start time must look like `2026-11-03T19:30` (UTC) or include an offset.",
                ephemeral=True,
            )
            return

        me = await self.bot.identify(ctx.author)
        outcome = await run_db(
            attendance_service.rsvp,
            self.bot.store,
            me,
            event_id.strip(),
            status,
            event_name=name,
            event_date=event_date,
            event_venue=venue,
        )
        await self._reply(ctx, outcome)

        if outcome.ok and status == RsvpStatus.GOING:
            attendance = outcome.data.get("attendance") or {}
            title = attendance.get("event_name") or name or event_id
            try:
                report = await run_db(
                    notify_rsvp, self.bot.store, self.bot.dispatcher, me, event_id.strip(), title,
                )
                logger.info("RSVP fan-out for %s: %d sent", event_id, report.sent_count)
            except Exception:
                logger.exception("RSVP fan-out failed for %s", event_id)

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="going",
        description="RSVP going to an event; your flow hears about it.",
    )
    @app_commands.describe(
        event_id="Event ID",
        name="Event name (optional)",
        starts="Start time, ISO-8601 (optional; enables reminders)",
        venue="Venue (optional)",
    )
    async def going(
        self,
        ctx: commands.Context,
        event_id: str,
        name: str | None = None,
        starts: str | None = None,
        venue: str | None = None,
    ) -> None:
        await self._rsvp(ctx, RsvpStatus.GOING, event_id, name, starts, venue)

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="maybe",
        description="Mark yourself as maybe for an event.",
    )
    @app_commands.describe(
        event_id="Event ID",
        name="Event name (optional)",
        starts="Start time, ISO-8601 (optional)",
        venue="Venue (optional)",
    )
    async def maybe(
        self,
        ctx: commands.Context,
        event_id: str,
        name: str | None = None,
        starts: str | None = None,
        venue: str | None = None,
    ) -> None:
        await self._rsvp(ctx, RsvpStatus.MAYBE, event_id, name, starts, venue)

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="cancel-rsvp",
        description="Cancel your RSVP for an event.",
    )
    @app_commands.describe(event_id="Event ID")
    async def cancel_rsvp(self, ctx: commands.Context, event_id: str) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(attendance_service.cancel, self.bot.store, me, event_id.strip())
        await self._reply(ctx, outcome)

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="whos-going",
        description="See who from your flow is going to an event.",
    )
    @app_commands.describe(event_id="Event ID")
    async def whos_going(self, ctx: commands.Context, event_id: str) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(attendance_service.who_is_going, self.bot.store, me, event_id.strip())
        await self._reply(ctx, outcome, title=f"Who's going · {event_id}")

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="upcoming",
        description="Upcoming events your flow is attending.",
    )
    async def upcoming(self, ctx: commands.Context) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(attendance_service.upcoming_for_flow, self.bot.store, me)
        await self._reply(ctx, outcome, title="Your flow's plans")

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="schedule",
        description="Your own upcoming RSVPs.",
    )
    async def schedule(self, ctx: commands.Context) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(attendance_service.my_schedule, self.bot.store, me)
        await self._reply(ctx, outcome, title="Your schedule")

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="reminders",
        description="Set reminder times for an event (minutes before, comma separated).",
    )
    @app_commands.describe(
        event_id="Event ID",
        minutes="e.g. 30,120 — leave empty to see current, 0 to clear",
    )
    async def reminders(self, ctx: commands.Context, event_id: str, minutes: str | None = None) -> None:
        me = await self.bot.identify(ctx.author)
        if minutes is None:
            outcome = await run_db(attendance_service.get_reminders, self.bot.store, me, event_id)
        else:
            try:
                offsets = [int(m) for m in minutes.replace(" ", "").split(",") if m]
            except ValueError:
                await ctx.send("❌ Minutes must be numbers, like `30,120`.", ephemeral=True)
                return
            outcome = await run_db(
                attendance_service.set_reminders, self.bot.store, me, event_id, offsets,
            )
        await self._reply(ctx, outcome)

    # -------------------------------------------------------------------
    # /notifications
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="notifications",
        description="View or change your notification settings.",
    )
    @app_commands.describe(
        setting="Which setting to change (omit to view)",
        value="on/off, a number, a timezone, or minutes like 30,60",
    )
    @app_commands.choices(setting=[
        app_commands.Choice(name="Crew check-ins", value="notify_crew_checkins"),
        app_commands.Choice(name="Friend RSVPs", value="notify_friend_rsvps"),
        app_commands.Choice(name="Crew RSVPs", value="notify_crew_rsvps"),
        app_commands.Choice(name="Event reminders", value="notify_event_reminders"),
        app_commands.Choice(name="Daily digest", value="notify_daily_digest"),
        app_commands.Choice(name="Daily limit", value="daily_notification_limit"),
        app_commands.Choice(name="Quiet hours on/off", value="quiet_hours_enabled"),
        app_commands.Choice(name="Quiet hours start", value="quiet_hours_start"),
        app_commands.Choice(name="Quiet hours end", value="quiet_hours_end"),
        app_commands.Choice(name="Timezone", value="timezone"),
        app_commands.Choice(name="Default reminders", value="reminder_defaults"),
    ])
    async def notifications(
        self,
        ctx: commands.Context,
        setting: str | None = None,
        value: str | None = None,
    ) -> None:
        me = await self.bot.identify(ctx.author)
        if setting is None or value is None:
            outcome = await run_db(preference_service.get_preferences, self.bot.store, me)
            await self._reply(ctx, outcome)
            return
        try:
            parsed = _parse_setting(setting, value)
        except ValueError as exc:
            await ctx.send(f"❌ {exc}", ephemeral=True)
            return
        outcome = await run_db(
            preference_service.update_preferences, self.bot.store, me, {setting: parsed},
        )
        await self._reply(ctx, outcome)


async def setup(bot: CrewflowBot) -> None:
    await bot.add_cog(Flow(bot))
