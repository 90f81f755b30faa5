"""
crewflow.bot.core — Bot Instance, Cog Loader & Discord DM Sender
=================================================================

:class:`CrewflowBot` is a ``commands.Bot`` subclass that carries the shared
state every cog needs:

* ``bot.cfg``        — the parsed :class:`CrewflowConfig`.
* ``bot.store``      — the :class:`DataStore` all services run against.
* ``bot.dispatcher`` — the :class:`ChannelDispatcher` used for fan-out,
  with a :class:`DiscordSender` registered on top of whatever senders the
  environment configured.
* ``bot.federation`` — the optional identity-federation collaborator.

Services are synchronous and run on worker threads via ``run_db``.  The
Discord sender therefore has to hop back onto the bot's event loop to DM a
user; it does so with ``asyncio.run_coroutine_threadsafe`` and waits for
the result with a bounded timeout.
"""

from __future__ import annotations

import asyncio
import logging
import os

import discord
from discord.ext import commands

from crewflow.config import CrewflowConfig
from crewflow.constants import strip_platform
from crewflow.database.engine import run_db
from crewflow.database.store import DataStore
from crewflow.services.dispatcher import SEND_TIMEOUT, ChannelDispatcher
from crewflow.services.embeds import discord_user_id
from crewflow.services.federation import FederationLookup
from crewflow.services.identity_service import resolve_canonical_id

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "crewflow.bot.cogs.flow",
    "crewflow.bot.cogs.crews",
    "crewflow.bot.cogs.tasks",
]


class DiscordSender:
    """DM a ``discord_<snowflake>`` recipient from a worker thread."""

    platform = "discord"

    def __init__(self, bot: commands.Bot, *, timeout: float = SEND_TIMEOUT) -> None:
        self._bot = bot
        self._timeout = timeout

    async def _dm(self, user_id: int, text: str) -> bool:
        try:
            user = self._bot.get_user(user_id) or await self._bot.fetch_user(user_id)
            await user.send(text)
        except (discord.Forbidden, discord.NotFound):
            logger.info("Discord user %d can't receive DMs", user_id)
            return False
        except discord.HTTPException:
            logger.warning("Discord DM to %d failed", user_id, exc_info=True)
            return False
        return True

    def send(self, user_id: str, text: str) -> bool:
        try:
            snowflake = int(strip_platform(user_id))
        except ValueError:
            return False
        if self._bot.loop is None or self._bot.is_closed():
            return False
        future = asyncio.run_coroutine_threadsafe(self._dm(snowflake, text), self._bot.loop)
        try:
            return future.result(timeout=self._timeout)
        except TimeoutError:
            future.cancel()
            logger.warning("Discord DM to %s timed out", user_id)
            return False


class CrewflowBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`CrewflowConfig` from ``config.yaml``.
    store:
        The data store every service call runs against.
    dispatcher:
        Channel dispatcher for notification fan-out.
    federation:
        Optional cross-platform identity lookup.
    """

    def __init__(
        self,
        cfg: CrewflowConfig,
        store: DataStore,
        dispatcher: ChannelDispatcher,
        federation: FederationLookup | None = None,
    ) -> None:
        # Slash and prefix commands only; no privileged intents needed.
        intents = discord.Intents.default()

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} — see who's going, with your crew",
        )

        # Attach shared state so Cogs can read it via self.bot.*
        self.cfg = cfg
        self.store = store
        self.dispatcher = dispatcher
        self.federation = federation
        self.dispatcher.register(DiscordSender(self))

    async def identify(self, user: discord.abc.User) -> str:
        """Platform id for *user*, making sure an identity row exists for it."""
        user_id = discord_user_id(user)
        await run_db(
            resolve_canonical_id,
            self.store,
            user_id,
            federation=self.federation,
            display_name=user.display_name,
            avatar_url=user.display_avatar.url,
        )
        return user_id

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load every cog; a broken one is logged and skipped."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        # --- Slash-command sync ---------------------------------------------
        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        logger.info("Bot shutting down…")
        await super().close()
