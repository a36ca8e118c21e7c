from __future__ import annotations

TICKET_STATUS_OPEN = "open"
TICKET_STATUS_CLOSED = "closed"

PRIORITY_LOW = "low"
PRIORITY_NORMAL = "normal"
PRIORITY_HIGH = "high"
PRIORITY_URGENT = "urgent"
PRIORITY_RESET = "reset"

PRIORITY_LEVELS = (PRIORITY_LOW, PRIORITY_NORMAL, PRIORITY_HIGH, PRIORITY_URGENT)
PRIORITY_CHOICES = (*PRIORITY_LEVELS, PRIORITY_RESET)
SCHEDULED_PRIORITIES = frozenset({PRIORITY_LOW, PRIORITY_HIGH, PRIORITY_URGENT})
IMMEDIATE_PING_PRIORITIES = frozenset({PRIORITY_HIGH, PRIORITY_URGENT})

PRIORITY_LABELS = {
    PRIORITY_URGENT: "URGENT",
    PRIORITY_HIGH: "High priority",
    PRIORITY_LOW: "Low priority",
    PRIORITY_NORMAL: "Normal priority",
}

BLACKLIST_USER = "user"
BLACKLIST_GUILD = "guild"

PRIORITY_LEASE_PREFIX = "priority_ping"
EDIT_SESSION_PREFIX = "panel_edit_session"
TICKET_COOLDOWN_PREFIX = "ticket_cooldown"


def priority_lease_key(ticket_id: str) -> str:
    return f"{PRIORITY_LEASE_PREFIX}:{ticket_id}"


def edit_session_key(operator_id: int) -> str:
    return f"{EDIT_SESSION_PREFIX}:{operator_id}"


def ticket_cooldown_key(guild_id: int, user_id: int) -> str:
    return f"{TICKET_COOLDOWN_PREFIX}:{guild_id}:{user_id}"


def jump_url(guild_id: int | None, channel_id: int, message_id: int) -> str:
    guild_part = guild_id if guild_id is not None else "@me"
    return f"https://discord.com/channels/{guild_part}/{channel_id}/{message_id}"
