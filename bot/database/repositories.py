from __future__ import annotations

import json
from typing import Any
from uuid import uuid4

from database.base import Database
from database.models import (
    EscalationRecord,
    GuildSettings,
    InactiveTicket,
    ReminderRecord,
    Tag,
    TicketCategory,
    TicketMessageRecord,
    TicketNote,
    TicketRecord,
    TicketStats,
)
from utils.time import to_iso, utc_now


def _json_load(value: str | None, default: Any) -> Any:
    if value is None:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _json_dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True, separators=(",", ":"))


def _now_iso() -> str:
    return to_iso(utc_now())  # type: ignore[return-value]


def _opt_int(value: Any) -> int | None:
    return int(value) if value is not None else None


class GuildRepository:
    SETTINGS_COLUMNS = frozenset(
        {
            "ticket_category_id",
            "log_channel_id",
            "transcript_channel_id",
            "ping_role_id",
            "ticket_limit_per_user",
            "ticket_cooldown_seconds",
            "auto_close_hours",
            "panel_title",
            "panel_description",
            "panel_color",
            "panel_footer",
        }
    )

    def __init__(self, db: Database) -> None:
        self.db = db

    async def ensure_guild(self, guild_id: int) -> None:
        now = _now_iso()
        await self.db.execute(
            """
            INSERT INTO guild_settings(guild_id, created_at, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(guild_id) DO NOTHING;
            """,
            [guild_id, now, now],
        )

    async def get_settings(self, guild_id: int) -> GuildSettings:
        await self.ensure_guild(guild_id)
        row = await self.db.fetchone("SELECT * FROM guild_settings WHERE guild_id = ?;", [guild_id])
        if not row:
            return GuildSettings(guild_id=guild_id)
        return GuildSettings(
            guild_id=int(row["guild_id"]),
            ticket_category_id=_opt_int(row["ticket_category_id"]),
            log_channel_id=_opt_int(row["log_channel_id"]),
            transcript_channel_id=_opt_int(row["transcript_channel_id"]),
            ping_role_id=_opt_int(row["ping_role_id"]),
            ticket_limit_per_user=_opt_int(row["ticket_limit_per_user"]),
            ticket_cooldown_seconds=_opt_int(row["ticket_cooldown_seconds"]),
            auto_close_hours=_opt_int(row["auto_close_hours"]),
            panel_title=row["panel_title"],
            panel_description=row["panel_description"],
            panel_color=row["panel_color"],
            panel_footer=row["panel_footer"],
        )

    async def update_settings(self, guild_id: int, **values: Any) -> None:
        unknown = set(values) - self.SETTINGS_COLUMNS
        if unknown:
            raise ValueError(f"Unknown guild settings: {', '.join(sorted(unknown))}")
        if not values:
            return
        await self.ensure_guild(guild_id)
        columns = sorted(values)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        await self.db.execute(
            f"UPDATE guild_settings SET {assignments}, updated_at = ? WHERE guild_id = ?;",
            [*(values[column] for column in columns), _now_iso(), guild_id],
        )


class SupportRoleRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, guild_id: int, role_id: int) -> None:
        await self.db.execute(
            """
            INSERT INTO support_roles(guild_id, role_id, created_at)
            VALUES (?, ?, ?)
            ON CONFLICT(guild_id, role_id) DO NOTHING;
            """,
            [guild_id, role_id, _now_iso()],
        )

    async def remove(self, guild_id: int, role_id: int) -> bool:
        deleted = await self.db.execute(
            "DELETE FROM support_roles WHERE guild_id = ? AND role_id = ?;",
            [guild_id, role_id],
        )
        return deleted > 0

    async def list_role_ids(self, guild_id: int) -> list[int]:
        rows = await self.db.fetchall(
            "SELECT role_id FROM support_roles WHERE guild_id = ? ORDER BY created_at ASC;",
            [guild_id],
        )
        return [int(row["role_id"]) for row in rows]


class CategoryRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(
        self, guild_id: int, name: str, description: str | None = None, emoji: str | None = None
    ) -> TicketCategory:
        category = TicketCategory(
            id=str(uuid4()),
            guild_id=guild_id,
            name=name,
            description=description,
            emoji=emoji,
            created_at=_now_iso(),
        )
        await self.db.execute(
            """
            INSERT INTO ticket_categories(id, guild_id, name, description, emoji, created_at)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            [
                category.id,
                category.guild_id,
                category.name,
                category.description,
                category.emoji,
                category.created_at,
            ],
        )
        return category

    async def get_by_name(self, guild_id: int, name: str) -> TicketCategory | None:
        row = await self.db.fetchone(
            "SELECT * FROM ticket_categories WHERE guild_id = ? AND LOWER(name) = LOWER(?);",
            [guild_id, name],
        )
        if not row:
            return None
        return self._row_to_category(row)

    async def list_for_guild(self, guild_id: int) -> list[TicketCategory]:
        rows = await self.db.fetchall(
            "SELECT * FROM ticket_categories WHERE guild_id = ? ORDER BY created_at ASC, name ASC;",
            [guild_id],
        )
        return [self._row_to_category(row) for row in rows]

    async def remove(self, guild_id: int, category_id: str) -> bool:
        deleted = await self.db.execute(
            "DELETE FROM ticket_categories WHERE guild_id = ? AND id = ?;",
            [guild_id, category_id],
        )
        return deleted > 0

    @staticmethod
    def _row_to_category(row: dict[str, Any]) -> TicketCategory:
        return TicketCategory(
            id=row["id"],
            guild_id=int(row["guild_id"]),
            name=row["name"],
            description=row["description"],
            emoji=row["emoji"],
            created_at=row["created_at"],
        )


class TicketRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def next_ticket_number(self, guild_id: int) -> int:
        # Read-then-insert; two concurrent creations can observe the same maximum.
        value = await self.db.fetchval(
            "SELECT COALESCE(MAX(ticket_number), 0) AS current FROM tickets WHERE guild_id = ?;",
            [guild_id],
        )
        return int(value or 0) + 1

    async def create(self, ticket: TicketRecord) -> None:
        await self.db.execute(
            """
            INSERT INTO tickets(
                id, guild_id, channel_id, ticket_number, owner_id, category_id,
                claimed_by, assigned_to, status, priority, created_at, closed_at,
                last_activity, opening_message_id, has_messages, category_name
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                ticket.id,
                ticket.guild_id,
                ticket.channel_id,
                ticket.ticket_number,
                ticket.owner_id,
                ticket.category_id,
                ticket.claimed_by,
                ticket.assigned_to,
                ticket.status,
                ticket.priority,
                ticket.created_at,
                ticket.closed_at,
                ticket.last_activity,
                ticket.opening_message_id,
                ticket.has_messages,
                ticket.category_name,
            ],
        )

    async def get_by_channel(self, channel_id: int) -> TicketRecord | None:
        row = await self.db.fetchone("SELECT * FROM tickets WHERE channel_id = ?;", [channel_id])
        if not row:
            return None
        return self._row_to_ticket(row)

    async def get_by_id(self, ticket_id: str) -> TicketRecord | None:
        row = await self.db.fetchone("SELECT * FROM tickets WHERE id = ?;", [ticket_id])
        if not row:
            return None
        return self._row_to_ticket(row)

    async def count_open_by_owner(self, guild_id: int, owner_id: int) -> int:
        value = await self.db.fetchval(
            """
            SELECT COUNT(*) AS total FROM tickets
            WHERE guild_id = ? AND owner_id = ? AND status = 'open';
            """,
            [guild_id, owner_id],
        )
        return int(value or 0)

    async def list_open(self, guild_id: int, limit: int = 100) -> list[TicketRecord]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM tickets
            WHERE guild_id = ? AND status = 'open'
            ORDER BY ticket_number ASC
            LIMIT ?;
            """,
            [guild_id, limit],
        )
        return [self._row_to_ticket(row) for row in rows]

    async def list_with_scheduled_priority(self) -> list[TicketRecord]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM tickets
            WHERE status = 'open' AND priority IN ('low', 'high', 'urgent');
            """
        )
        return [self._row_to_ticket(row) for row in rows]

    async def claim(self, ticket_id: str, staff_id: int) -> None:
        await self.db.execute("UPDATE tickets SET claimed_by = ? WHERE id = ?;", [staff_id, ticket_id])

    async def unclaim(self, ticket_id: str) -> None:
        await self.db.execute("UPDATE tickets SET claimed_by = NULL WHERE id = ?;", [ticket_id])

    async def assign(self, ticket_id: str, assignee_id: int) -> None:
        await self.db.execute("UPDATE tickets SET assigned_to = ? WHERE id = ?;", [assignee_id, ticket_id])

    async def set_priority(self, ticket_id: str, priority: str) -> None:
        await self.db.execute("UPDATE tickets SET priority = ? WHERE id = ?;", [priority, ticket_id])

    async def set_opening_message(self, ticket_id: str, message_id: int) -> None:
        await self.db.execute(
            "UPDATE tickets SET opening_message_id = ? WHERE id = ?;",
            [message_id, ticket_id],
        )

    async def mark_has_messages(self, ticket_id: str) -> None:
        await self.db.execute("UPDATE tickets SET has_messages = ? WHERE id = ?;", [True, ticket_id])

    async def touch_activity(self, ticket_id: str, at_iso: str) -> None:
        await self.db.execute("UPDATE tickets SET last_activity = ? WHERE id = ?;", [at_iso, ticket_id])

    async def delete(self, ticket_id: str) -> bool:
        deleted = await self.db.execute("DELETE FROM tickets WHERE id = ?;", [ticket_id])
        return deleted > 0

    async def list_auto_close_candidates(self) -> list[InactiveTicket]:
        rows = await self.db.fetchall(
            """
            SELECT t.*, g.auto_close_hours AS guild_auto_close_hours
            FROM tickets t
            JOIN guild_settings g ON g.guild_id = t.guild_id
            WHERE t.status = 'open' AND g.auto_close_hours IS NOT NULL AND g.auto_close_hours > 0
            ORDER BY t.last_activity ASC;
            """
        )
        return [
            InactiveTicket(ticket=self._row_to_ticket(row), auto_close_hours=int(row["guild_auto_close_hours"]))
            for row in rows
        ]

    async def stats(self, guild_id: int, top_limit: int = 5) -> TicketStats:
        totals = await self.db.fetchone(
            """
            SELECT COUNT(*) AS total, COUNT(claimed_by) AS claimed, MIN(created_at) AS oldest
            FROM tickets
            WHERE guild_id = ? AND status = 'open';
            """,
            [guild_id],
        )
        priority_rows = await self.db.fetchall(
            """
            SELECT COALESCE(priority, 'normal') AS priority, COUNT(*) AS total
            FROM tickets
            WHERE guild_id = ? AND status = 'open'
            GROUP BY COALESCE(priority, 'normal');
            """,
            [guild_id],
        )
        category_rows = await self.db.fetchall(
            """
            SELECT category_name, COUNT(*) AS total
            FROM tickets
            WHERE guild_id = ? AND status = 'open' AND category_name IS NOT NULL
            GROUP BY category_name;
            """,
            [guild_id],
        )
        claimer_rows = await self.db.fetchall(
            """
            SELECT claimed_by, COUNT(*) AS total
            FROM tickets
            WHERE guild_id = ? AND status = 'open' AND claimed_by IS NOT NULL
            GROUP BY claimed_by
            ORDER BY total DESC, claimed_by ASC
            LIMIT ?;
            """,
            [guild_id, top_limit],
        )
        messages = await self.db.fetchval(
            """
            SELECT COUNT(*) AS total
            FROM ticket_messages m
            JOIN tickets t ON t.id = m.ticket_id
            WHERE t.guild_id = ?;
            """,
            [guild_id],
        )
        escalated = await self.db.fetchval(
            """
            SELECT COUNT(*) AS total
            FROM escalations e
            JOIN tickets t ON t.id = e.ticket_id
            WHERE t.guild_id = ? AND e.active = ?;
            """,
            [guild_id, True],
        )
        totals = totals or {}
        return TicketStats(
            open_tickets=int(totals.get("total") or 0),
            claimed=int(totals.get("claimed") or 0),
            escalated=int(escalated or 0),
            messages=int(messages or 0),
            by_priority={row["priority"]: int(row["total"]) for row in priority_rows},
            by_category={row["category_name"]: int(row["total"]) for row in category_rows},
            top_claimers=[(int(row["claimed_by"]), int(row["total"])) for row in claimer_rows],
            oldest_created_at=totals.get("oldest"),
        )

    def _row_to_ticket(self, row: dict[str, Any]) -> TicketRecord:
        return TicketRecord(
            id=row["id"],
            guild_id=int(row["guild_id"]),
            channel_id=int(row["channel_id"]),
            ticket_number=int(row["ticket_number"]),
            owner_id=int(row["owner_id"]),
            created_at=row["created_at"],
            last_activity=row["last_activity"],
            category_id=_opt_int(row["category_id"]),
            claimed_by=_opt_int(row["claimed_by"]),
            assigned_to=_opt_int(row["assigned_to"]),
            status=row["status"],
            priority=row["priority"],
            closed_at=row["closed_at"],
            opening_message_id=_opt_int(row["opening_message_id"]),
            has_messages=bool(row["has_messages"]),
            category_name=row["category_name"],
        )


class MessageRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, message: TicketMessageRecord) -> None:
        await self.db.execute(
            """
            INSERT INTO ticket_messages(
                id, ticket_id, message_id, author_id, author_name, content, attachments_json, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                message.id,
                message.ticket_id,
                message.message_id,
                message.author_id,
                message.author_name,
                message.content,
                _json_dump(message.attachments),
                message.created_at,
            ],
        )

    async def list_for_ticket(self, ticket_id: str) -> list[TicketMessageRecord]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM ticket_messages
            WHERE ticket_id = ?
            ORDER BY created_at ASC;
            """,
            [ticket_id],
        )
        return [
            TicketMessageRecord(
                id=row["id"],
                ticket_id=row["ticket_id"],
                message_id=int(row["message_id"]),
                author_id=int(row["author_id"]),
                author_name=row["author_name"],
                content=row["content"],
                created_at=row["created_at"],
                attachments=[str(url) for url in _json_load(row["attachments_json"], [])],
            )
            for row in rows
        ]

    async def delete_for_ticket(self, ticket_id: str) -> int:
        return await self.db.execute("DELETE FROM ticket_messages WHERE ticket_id = ?;", [ticket_id])


class NoteRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, ticket_id: str, author_id: int, note: str, created_at: str) -> TicketNote:
        record = TicketNote(
            id=str(uuid4()),
            ticket_id=ticket_id,
            author_id=author_id,
            note=note,
            created_at=created_at,
        )
        await self.db.execute(
            """
            INSERT INTO ticket_notes(id, ticket_id, author_id, note, created_at)
            VALUES (?, ?, ?, ?, ?);
            """,
            [record.id, record.ticket_id, record.author_id, record.note, record.created_at],
        )
        return record

    async def list_for_ticket(self, ticket_id: str) -> list[TicketNote]:
        rows = await self.db.fetchall(
            "SELECT * FROM ticket_notes WHERE ticket_id = ? ORDER BY created_at ASC;",
            [ticket_id],
        )
        return [
            TicketNote(
                id=row["id"],
                ticket_id=row["ticket_id"],
                author_id=int(row["author_id"]),
                note=row["note"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def delete_for_ticket(self, ticket_id: str) -> int:
        return await self.db.execute("DELETE FROM ticket_notes WHERE ticket_id = ?;", [ticket_id])


class EscalationRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, ticket_id: str, requester_id: int, at_iso: str) -> None:
        await self.db.execute(
            """
            INSERT INTO escalations(ticket_id, requester_id, active, last_ping_at, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(ticket_id) DO UPDATE SET
                requester_id = excluded.requester_id,
                active = excluded.active,
                last_ping_at = excluded.last_ping_at;
            """,
            [ticket_id, requester_id, True, at_iso, at_iso],
        )

    async def get(self, ticket_id: str) -> EscalationRecord | None:
        row = await self.db.fetchone("SELECT * FROM escalations WHERE ticket_id = ?;", [ticket_id])
        if not row:
            return None
        return self._row_to_escalation(row)

    async def deactivate(self, ticket_id: str) -> None:
        await self.db.execute(
            "UPDATE escalations SET active = ? WHERE ticket_id = ?;",
            [False, ticket_id],
        )

    async def list_active(self) -> list[EscalationRecord]:
        rows = await self.db.fetchall(
            "SELECT * FROM escalations WHERE active = ? ORDER BY last_ping_at ASC;",
            [True],
        )
        return [self._row_to_escalation(row) for row in rows]

    async def update_ping_time(self, ticket_id: str, at_iso: str) -> None:
        await self.db.execute(
            "UPDATE escalations SET last_ping_at = ? WHERE ticket_id = ?;",
            [at_iso, ticket_id],
        )

    @staticmethod
    def _row_to_escalation(row: dict[str, Any]) -> EscalationRecord:
        return EscalationRecord(
            ticket_id=row["ticket_id"],
            requester_id=int(row["requester_id"]),
            active=bool(row["active"]),
            last_ping_at=row["last_ping_at"],
            created_at=row["created_at"],
        )


class ReminderRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, reminder: ReminderRecord) -> None:
        await self.db.execute(
            """
            INSERT INTO reminders(
                id, user_id, channel_id, guild_id, message_id, reason, remind_at, created_at, completed
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                reminder.id,
                reminder.user_id,
                reminder.channel_id,
                reminder.guild_id,
                reminder.message_id,
                reminder.reason,
                reminder.remind_at,
                reminder.created_at,
                reminder.completed,
            ],
        )

    async def list_due(self, now_iso: str) -> list[ReminderRecord]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM reminders
            WHERE completed = ? AND remind_at <= ?
            ORDER BY remind_at ASC;
            """,
            [False, now_iso],
        )
        return [self._row_to_reminder(row) for row in rows]

    async def list_pending_for_user(self, user_id: int) -> list[ReminderRecord]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM reminders
            WHERE completed = ? AND user_id = ?
            ORDER BY remind_at ASC;
            """,
            [False, user_id],
        )
        return [self._row_to_reminder(row) for row in rows]

    async def mark_complete(self, reminder_id: str) -> None:
        await self.db.execute("UPDATE reminders SET completed = ? WHERE id = ?;", [True, reminder_id])

    @staticmethod
    def _row_to_reminder(row: dict[str, Any]) -> ReminderRecord:
        return ReminderRecord(
            id=row["id"],
            user_id=int(row["user_id"]),
            channel_id=int(row["channel_id"]),
            reason=row["reason"],
            remind_at=row["remind_at"],
            created_at=row["created_at"],
            guild_id=_opt_int(row["guild_id"]),
            message_id=_opt_int(row["message_id"]),
            completed=bool(row["completed"]),
        )


class BlacklistRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, target_id: int, target_type: str, reason: str | None, blacklisted_by: int) -> None:
        await self.db.execute(
            """
            INSERT INTO blacklist(target_id, target_type, reason, blacklisted_by, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(target_id, target_type) DO UPDATE SET
                reason = excluded.reason,
                blacklisted_by = excluded.blacklisted_by;
            """,
            [target_id, target_type, reason, blacklisted_by, _now_iso()],
        )

    async def remove(self, target_id: int, target_type: str) -> bool:
        deleted = await self.db.execute(
            "DELETE FROM blacklist WHERE target_id = ? AND target_type = ?;",
            [target_id, target_type],
        )
        return deleted > 0

    async def is_blacklisted(self, target_id: int, target_type: str) -> bool:
        row = await self.db.fetchone(
            "SELECT 1 AS hit FROM blacklist WHERE target_id = ? AND target_type = ?;",
            [target_id, target_type],
        )
        return row is not None


class TagRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, tag: Tag) -> None:
        await self.db.execute(
            """
            INSERT INTO tags(id, guild_id, name, content, creator_id, uses, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [tag.id, tag.guild_id, tag.name, tag.content, tag.creator_id, tag.uses, tag.created_at, tag.updated_at],
        )

    async def get(self, guild_id: int, name: str) -> Tag | None:
        row = await self.db.fetchone(
            "SELECT * FROM tags WHERE guild_id = ? AND LOWER(name) = LOWER(?);",
            [guild_id, name],
        )
        if not row:
            return None
        return self._row_to_tag(row)

    async def update_content(self, tag_id: str, content: str, at_iso: str) -> None:
        await self.db.execute(
            "UPDATE tags SET content = ?, updated_at = ? WHERE id = ?;",
            [content, at_iso, tag_id],
        )

    async def rename(self, tag_id: str, new_name: str, at_iso: str) -> None:
        await self.db.execute(
            "UPDATE tags SET name = ?, updated_at = ? WHERE id = ?;",
            [new_name, at_iso, tag_id],
        )

    async def delete(self, tag_id: str) -> bool:
        deleted = await self.db.execute("DELETE FROM tags WHERE id = ?;", [tag_id])
        return deleted > 0

    async def increment_uses(self, tag_id: str) -> None:
        await self.db.execute("UPDATE tags SET uses = uses + 1 WHERE id = ?;", [tag_id])

    async def list_for_guild(self, guild_id: int) -> list[Tag]:
        rows = await self.db.fetchall("SELECT * FROM tags WHERE guild_id = ? ORDER BY name ASC;", [guild_id])
        return [self._row_to_tag(row) for row in rows]

    async def search(self, guild_id: int, query: str, limit: int = 25) -> list[Tag]:
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped.lower()}%"
        rows = await self.db.fetchall(
            """
            SELECT * FROM tags
            WHERE guild_id = ?
              AND (LOWER(name) LIKE ? ESCAPE '\\' OR LOWER(content) LIKE ? ESCAPE '\\')
            ORDER BY name ASC
            LIMIT ?;
            """,
            [guild_id, pattern, pattern, limit],
        )
        return [self._row_to_tag(row) for row in rows]

    async def popular(self, guild_id: int, limit: int = 10) -> list[Tag]:
        rows = await self.db.fetchall(
            "SELECT * FROM tags WHERE guild_id = ? ORDER BY uses DESC, name ASC LIMIT ?;",
            [guild_id, limit],
        )
        return [self._row_to_tag(row) for row in rows]

    @staticmethod
    def _row_to_tag(row: dict[str, Any]) -> Tag:
        return Tag(
            id=row["id"],
            guild_id=int(row["guild_id"]),
            name=row["name"],
            content=row["content"],
            creator_id=int(row["creator_id"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            uses=int(row["uses"]),
        )
