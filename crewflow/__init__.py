"""
Crewflow — Cross-Platform Crews, Friends & Notification Fan-out
================================================================
Merges a person's accounts across messaging platforms into one canonical
identity, keeps a friend graph and role-based crews, records event RSVPs,
and decides who hears about each check-in, RSVP, join or locate ping.

Package layout::

    crewflow/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Codes, links, emoji parsing, role ranks
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper + store factory
    │   ├── models.py      # All tables (13)
    │   ├── store.py       # DataStore contract + SqlStore
    │   └── rest_store.py  # DataStore over a PostgREST endpoint
    ├── engine/
    │   ├── outcome.py     # Outcome result type
    │   ├── preferences.py # NotificationPreferences with defaults
    │   ├── quiet_hours.py # Timezone-local quiet hours
    │   └── reminders.py   # Reminder window maths
    ├── services/
    │   ├── identity_service.py      # Canonical id resolution
    │   ├── federation.py            # Linked-account lookup (Privy)
    │   ├── connection_service.py    # Friends ("flow")
    │   ├── crew_service.py          # Crews, roles, join policy
    │   ├── attendance_service.py    # RSVPs + who's going
    │   ├── checkin_service.py       # Venue check-ins + locate pings
    │   ├── notification_service.py  # Targeting + dispatch + dedup ledger
    │   ├── reminder_service.py      # Periodic reminder sweep
    │   └── dispatcher.py            # Channel senders by platform prefix
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader, Discord DM sender
    │   └── cogs/          # Slash commands + reminder loop
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Flow, crew, RSVP, preference endpoints
"""

__version__ = "0.1.0"
