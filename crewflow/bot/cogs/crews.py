"""
crewflow.bot.cogs.crews — Crew Management, Check-ins & Locate
==============================================================

``/crew`` hybrid group:
- create, join, list, members, browse, invite, leave, mute
- settings, promote, demote, remove (admin/creator)
- requests, approve, deny (approval-mode crews)

Plus the "at the event" commands:
- /checkin — tell a crew where you are
- /where   — see where crew-mates checked in
- /locate  — ping crew-mates who haven't checked in

Crews are referred to by name or by the short id shown in ``/crew list``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from crewflow.database.engine import run_db
from crewflow.engine.outcome import Outcome
from crewflow.services import checkin_service, crew_service
from crewflow.services.embeds import build_outcome_embed, discord_user_id
from crewflow.services.notification_service import notify_checkin, notify_crew_join

if TYPE_CHECKING:
    from crewflow.bot.core import CrewflowBot

logger = logging.getLogger(__name__)


class Crews(commands.Cog, name="Crews"):
    """Crew lifecycle, roles, and live check-ins."""

    def __init__(self, bot: CrewflowBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    async def _reply(self, ctx: commands.Context, outcome: Outcome, title: str | None = None) -> None:
        await ctx.send(embed=build_outcome_embed(outcome, title), ephemeral=True)

    async def _crew_id(self, ctx: commands.Context, me: str, ref: str) -> str | None:
        crew = await run_db(crew_service.find_user_crew, self.bot.store, me, ref)
        if crew is None:
            await ctx.send(
                f"❌ No crew of yours matches `{ref}`. Use `/crew list` to see them.",
                ephemeral=True,
            )
            return None
        return crew["group_id"]

    async def _announce_join(self, user_id: str, group_id: str) -> None:
        try:
            await run_db(notify_crew_join, self.bot.store, self.bot.dispatcher, user_id, group_id)
        except Exception:
            logger.exception("Crew-join fan-out failed for %s in %s", user_id, group_id)

    # -------------------------------------------------------------------
    # /crew
    # -------------------------------------------------------------------
    @commands.hybrid_group(name="crew", fallback="list", description="Your crews.")  # type: ignore[arg-type]
    async def crew(self, ctx: commands.Context) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(crew_service.list_crews, self.bot.store, me)
        await self._reply(ctx, outcome)

    @crew.command(name="create", description="Create a crew (start the name with an emoji to set it).")
    @app_commands.describe(name="Crew name, e.g. '🐺 Salsa Wolves'", public="List it in /crew browse")
    async def crew_create(self, ctx: commands.Context, name: str, public: bool = False) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(
            crew_service.create, self.bot.store, me, name, cfg=self.bot.cfg, is_public=public,
        )
        await self._reply(ctx, outcome)

    @crew.command(name="join", description="Join a crew with its code or a member's invite code.")
    @app_commands.describe(code="Crew join code or personal invite code")
    async def crew_join(self, ctx: commands.Context, code: str) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(crew_service.join, self.bot.store, me, code.strip())
        await self._reply(ctx, outcome)
        if outcome.ok and outcome.data.get("joined"):
            await self._announce_join(me, outcome.data["group_id"])

    @crew.command(name="browse", description="Browse public crews.")
    async def crew_browse(self, ctx: commands.Context) -> None:
        outcome = await run_db(crew_service.browse_public, self.bot.store)
        await self._reply(ctx, outcome, title="Public crews")

    @crew.command(name="members", description="List a crew's members.")
    @app_commands.describe(crew="Crew name or short id")
    async def crew_members(self, ctx: commands.Context, crew: str) -> None:
        me = await self.bot.identify(ctx.author)
        group_id = await self._crew_id(ctx, me, crew)
        if group_id is None:
            return
        outcome = await run_db(crew_service.crew_members, self.bot.store, me, group_id)
        await self._reply(ctx, outcome)

    @crew.command(name="invite", description="Get your personal invite link for a crew.")
    @app_commands.describe(crew="Crew name or short id")
    async def crew_invite(self, ctx: commands.Context, crew: str) -> None:
        me = await self.bot.identify(ctx.author)
        group_id = await self._crew_id(ctx, me, crew)
        if group_id is None:
            return
        outcome = await run_db(
            crew_service.personal_invite, self.bot.store, me, group_id, cfg=self.bot.cfg,
        )
        await self._reply(ctx, outcome)

    @crew.command(name="leave", description="Leave a crew.")
    @app_commands.describe(crew="Crew name or short id")
    async def crew_leave(self, ctx: commands.Context, crew: str) -> None:
        me = await self.bot.identify(ctx.author)
        group_id = await self._crew_id(ctx, me, crew)
        if group_id is None:
            return
        outcome = await run_db(crew_service.leave, self.bot.store, me, group_id)
        await self._reply(ctx, outcome)

    @crew.command(name="mute", description="Mute or unmute a crew's notifications.")
    @app_commands.describe(crew="Crew name or short id")
    async def crew_mute(self, ctx: commands.Context, crew: str) -> None:
        me = await self.bot.identify(ctx.author)
        group_id = await self._crew_id(ctx, me, crew)
        if group_id is None:
            return
        outcome = await run_db(crew_service.mute_crew, self.bot.store, me, group_id)
        await self._reply(ctx, outcome)

    @crew.command(name="settings", description="Change a crew's visibility or join mode.")
    @app_commands.describe(
        crew="Crew name or short id",
        public="Show in /crew browse",
        join_mode="open, approval, or closed",
    )
    @app_commands.choices(join_mode=[
        app_commands.Choice(name="Open", value="open"),
        app_commands.Choice(name="Approval", value="approval"),
        app_commands.Choice(name="Closed", value="closed"),
    ])
    async def crew_settings(
        self,
        ctx: commands.Context,
        crew: str,
        public: bool | None = None,
        join_mode: str | None = None,
    ) -> None:
        me = await self.bot.identify(ctx.author)
        group_id = await self._crew_id(ctx, me, crew)
        if group_id is None:
            return
        outcome = await run_db(
            crew_service.settings, self.bot.store, me, group_id,
            is_public=public, join_mode=join_mode,
        )
        await self._reply(ctx, outcome)

    @crew.command(name="promote", description="Make a member a crew admin (creator only).")
    @app_commands.describe(crew="Crew name or short id", member="Member to promote")
    async def crew_promote(self, ctx: commands.Context, crew: str, member: discord.User) -> None:
        me = await self.bot.identify(ctx.author)
        group_id = await self._crew_id(ctx, me, crew)
        if group_id is None:
            return
        outcome = await run_db(
            crew_service.promote, self.bot.store, me, group_id, discord_user_id(member),
        )
        await self._reply(ctx, outcome)

    @crew.command(name="demote", description="Make an admin a regular member (creator only).")
    @app_commands.describe(crew="Crew name or short id", member="Admin to demote")
    async def crew_demote(self, ctx: commands.Context, crew: str, member: discord.User) -> None:
        me = await self.bot.identify(ctx.author)
        group_id = await self._crew_id(ctx, me, crew)
        if group_id is None:
            return
        outcome = await run_db(
            crew_service.demote, self.bot.store, me, group_id, discord_user_id(member),
        )
        await self._reply(ctx, outcome)

    @crew.command(name="remove", description="Remove a member from a crew (admin).")
    @app_commands.describe(crew="Crew name or short id", member="Member to remove")
    async def crew_remove(self, ctx: commands.Context, crew: str, member: discord.User) -> None:
        me = await self.bot.identify(ctx.author)
        group_id = await self._crew_id(ctx, me, crew)
        if group_id is None:
            return
        outcome = await run_db(
            crew_service.remove_member, self.bot.store, me, group_id, discord_user_id(member),
        )
        await self._reply(ctx, outcome)

    @crew.command(name="requests", description="Pending join requests for a crew (admin).")
    @app_commands.describe(crew="Crew name or short id")
    async def crew_requests(self, ctx: commands.Context, crew: str) -> None:
        me = await self.bot.identify(ctx.author)
        group_id = await self._crew_id(ctx, me, crew)
        if group_id is None:
            return
        outcome = await run_db(crew_service.pending_requests, self.bot.store, me, group_id)
        await self._reply(ctx, outcome, title="Join requests")

    @crew.command(name="approve", description="Approve a join request by its number.")
    @app_commands.describe(request_id="Request number from /crew requests")
    async def crew_approve(self, ctx: commands.Context, request_id: int) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(crew_service.approve, self.bot.store, me, request_id)
        await self._reply(ctx, outcome)
        if outcome.ok and outcome.data.get("status") == "approved":
            await self._announce_join(outcome.data["user_id"], outcome.data["group_id"])

    @crew.command(name="deny", description="Deny a join request by its number.")
    @app_commands.describe(request_id="Request number from /crew requests")
    async def crew_deny(self, ctx: commands.Context, request_id: int) -> None:
        me = await self.bot.identify(ctx.author)
        outcome = await run_db(crew_service.deny, self.bot.store, me, request_id)
        await self._reply(ctx, outcome)

    # -------------------------------------------------------------------
    # Check-ins
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="checkin",
        description="Tell a crew where you are.",
    )
    @app_commands.describe(crew="Crew name or short id", venue="Where you are")
    async def checkin(self, ctx: commands.Context, crew: str, *, venue: str) -> None:
        me = await self.bot.identify(ctx.author)
        group_id = await self._crew_id(ctx, me, crew)
        if group_id is None:
            return
        outcome = await run_db(
            checkin_service.checkin, self.bot.store, me, group_id, venue, cfg=self.bot.cfg,
        )
        await self._reply(ctx, outcome)
        if not outcome.ok:
            return
        try:
            await run_db(
                notify_checkin, self.bot.store, self.bot.dispatcher,
                me, group_id, outcome.data["checkin"]["venue_name"],
            )
        except Exception:
            logger.exception("Check-in fan-out failed for %s in %s", me, group_id)

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="where",
        description="See where your crew-mates have checked in.",
    )
    @app_commands.describe(crew="Crew name or short id")
    async def where(self, ctx: commands.Context, crew: str) -> None:
        me = await self.bot.identify(ctx.author)
        group_id = await self._crew_id(ctx, me, crew)
        if group_id is None:
            return
        outcome = await run_db(checkin_service.crew_locations, self.bot.store, me, group_id)
        await self._reply(ctx, outcome, title="Crew locations")

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="locate",
        description="Ping crew-mates who haven't checked in yet.",
    )
    @app_commands.describe(crew="Crew name or short id")
    async def locate(self, ctx: commands.Context, crew: str) -> None:
        me = await self.bot.identify(ctx.author)
        group_id = await self._crew_id(ctx, me, crew)
        if group_id is None:
            return
        # Locate sends DMs inline; defer so the interaction doesn't time out.
        await ctx.defer(ephemeral=True)
        outcome = await run_db(
            checkin_service.locate, self.bot.store, self.bot.dispatcher, me, group_id,
        )
        await self._reply(ctx, outcome)


async def setup(bot: CrewflowBot) -> None:
    await bot.add_cog(Crews(bot))
