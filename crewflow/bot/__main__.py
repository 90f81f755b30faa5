"""
crewflow.bot.__main__ — Entry point for ``python -m crewflow.bot``
===================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Open the data store (SQL or PostgREST, chosen from the environment).
4. Build the channel dispatcher and the optional federation lookup.
5. Create the CrewflowBot and hand it config + store + dispatcher.
6. Start the bot (blocking — runs the asyncio event loop).

Run with::

    python -m crewflow.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from crewflow.bot.core import CrewflowBot
from crewflow.config import load_config
from crewflow.database.engine import create_store
from crewflow.services.dispatcher import build_dispatcher
from crewflow.services.federation import PrivyFederation

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("crewflow")


def main() -> None:
    """Bootstrap and run the Crewflow bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Soft configuration.
    cfg = load_config()
    logger.info("Config loaded — Community: %s", cfg.community_name)

    # 3. Data store.
    store = create_store()

    # 4. Outbound channels and identity federation.
    dispatcher = build_dispatcher(store, farcaster_app_url=cfg.farcaster_app_url)
    federation = PrivyFederation.from_env()
    if federation is None:
        logger.info("PRIVY_APP_ID/PRIVY_APP_SECRET not set — cross-platform linking disabled")

    # 5. Bot.
    bot = CrewflowBot(cfg=cfg, store=store, dispatcher=dispatcher, federation=federation)

    # 6. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Crewflow bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
