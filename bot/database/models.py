from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class GuildSettings:
    guild_id: int
    ticket_category_id: int | None = None
    log_channel_id: int | None = None
    transcript_channel_id: int | None = None
    ping_role_id: int | None = None
    ticket_limit_per_user: int | None = None
    ticket_cooldown_seconds: int | None = None
    auto_close_hours: int | None = None
    panel_title: str | None = None
    panel_description: str | None = None
    panel_color: str | None = None
    panel_footer: str | None = None


@dataclass(slots=True)
class TicketRecord:
    id: str
    guild_id: int
    channel_id: int
    ticket_number: int
    owner_id: int
    created_at: str
    last_activity: str
    category_id: int | None = None
    claimed_by: int | None = None
    assigned_to: int | None = None
    status: str = "open"
    priority: str | None = None
    closed_at: str | None = None
    opening_message_id: int | None = None
    has_messages: bool = False
    category_name: str | None = None

    @property
    def is_claimed(self) -> bool:
        return self.claimed_by is not None


@dataclass(slots=True)
class TicketMessageRecord:
    id: str
    ticket_id: str
    message_id: int
    author_id: int
    author_name: str
    content: str
    created_at: str
    attachments: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TicketNote:
    id: str
    ticket_id: str
    author_id: int
    note: str
    created_at: str


@dataclass(slots=True)
class EscalationRecord:
    ticket_id: str
    requester_id: int
    active: bool
    last_ping_at: str
    created_at: str


@dataclass(slots=True)
class ReminderRecord:
    id: str
    user_id: int
    channel_id: int
    reason: str
    remind_at: str
    created_at: str
    guild_id: int | None = None
    message_id: int | None = None
    completed: bool = False


@dataclass(slots=True)
class InactiveTicket:
    ticket: TicketRecord
    auto_close_hours: int


@dataclass(slots=True)
class TicketCategory:
    id: str
    guild_id: int
    name: str
    created_at: str
    description: str | None = None
    emoji: str | None = None

    @property
    def label(self) -> str:
        return f"{self.emoji} {self.name}" if self.emoji else self.name


@dataclass(slots=True)
class TicketStats:
    """Counts over the tickets still stored for a guild. Closed tickets are deleted."""

    open_tickets: int = 0
    claimed: int = 0
    escalated: int = 0
    messages: int = 0
    by_priority: dict[str, int] = field(default_factory=dict)
    by_category: dict[str, int] = field(default_factory=dict)
    top_claimers: list[tuple[int, int]] = field(default_factory=list)
    oldest_created_at: str | None = None

    @property
    def unclaimed(self) -> int:
        return self.open_tickets - self.claimed


@dataclass(slots=True)
class Tag:
    id: str
    guild_id: int
    name: str
    content: str
    creator_id: int
    created_at: str
    updated_at: str
    uses: int = 0
