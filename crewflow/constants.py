"""
crewflow.constants — Shared Constants & Helpers
================================================

Single source of truth for invite codes, share links, crew emoji parsing,
role ranking, and platform prefixes.  Import from here instead of
duplicating in services, cogs, and routes.
"""

from __future__ import annotations

import re
import secrets

# ---------------------------------------------------------------------------
# Codes (no 0, o, 1, i or l)
# ---------------------------------------------------------------------------
CODE_ALPHABET = "abcdefghjkmnpqrstuvwxyz23456789"
CREW_CODE_LENGTH = 6
INVITE_CODE_LENGTH = 8


def generate_code(length: int = INVITE_CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


# ---------------------------------------------------------------------------
# Share links
# ---------------------------------------------------------------------------
LINK_FLOW = "f"          # personal "join my flow"
LINK_CREW = "g"          # crew public join code
LINK_CREW_INVITE = "gi"  # personal tracked crew invite


def build_link(prefix: str, code: str, *, domain: str | None, bot_username: str) -> str:
    """Short link via *domain* when set, otherwise a Telegram deep link."""
    if domain:
        return f"https://{domain}/{prefix}/{code}"
    return f"https://t.me/{bot_username}?start={prefix}_{code}"


# ---------------------------------------------------------------------------
# Crew emoji
# ---------------------------------------------------------------------------
DEFAULT_CREW_EMOJI = "\U0001f525"  # 🔥

# One pictographic code point, optionally followed by VS16, skin tone,
# or ZWJ-joined continuations.
_PICTOGRAPH = (
    "[\U0001f000-\U0001faff"
    "\u2600-\u27bf"
    "\u2b00-\u2bff"
    "\u2300-\u23ff"
    "\U0001f1e6-\U0001f1ff]"
)
_MODIFIERS = "[\ufe0f\U0001f3fb-\U0001f3ff]*"
_LEADING_EMOJI_RE = re.compile(
    "^(" + _PICTOGRAPH + _MODIFIERS
    + "(?:\u200d" + _PICTOGRAPH + _MODIFIERS + ")*)\\s*"
)


def split_leading_emoji(name: str) -> tuple[str | None, str]:
    """Return ``(emoji, rest)``; *emoji* is ``None`` when *name* has none."""
    match = _LEADING_EMOJI_RE.match(name)
    if not match:
        return None, name.strip()
    return match.group(1), name[match.end():].strip()


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------
ROLE_RANK: dict[str, int] = {
    "member": 1,
    "admin": 2,
    "creator": 3,
}


def role_rank(role: str | None) -> int:
    """Numeric rank of *role*; no membership ranks 0."""
    return ROLE_RANK.get(role or "", 0)


# ---------------------------------------------------------------------------
# Platforms
# ---------------------------------------------------------------------------
PLATFORMS: tuple[str, ...] = ("telegram", "farcaster", "discord", "web")
DEFAULT_PLATFORM = "web"

_HANDLE_PREFIX_RE = re.compile(r"^(telegram_|farcaster_|discord_)")


def detect_platform(platform_user_id: str) -> str:
    """``telegram_123`` → ``telegram``; unknown prefixes fall back to web."""
    for platform in PLATFORMS:
        if platform_user_id.startswith(f"{platform}_"):
            return platform
    return DEFAULT_PLATFORM


def strip_platform(platform_user_id: str) -> str:
    """``telegram_123`` → ``123``."""
    platform = detect_platform(platform_user_id)
    prefix = f"{platform}_"
    if platform_user_id.startswith(prefix):
        return platform_user_id[len(prefix):]
    return platform_user_id


def display_handle(user_id: str) -> str:
    """``telegram_alice`` → ``@alice`` for message framing."""
    return _HANDLE_PREFIX_RE.sub("@", user_id)
