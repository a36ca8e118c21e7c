from __future__ import annotations

import html
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from core.config import TranscriptConfig
from database.models import TicketMessageRecord, TicketRecord

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TranscriptArtifacts:
    html_path: Path | None
    txt_path: Path | None

    @property
    def paths(self) -> list[Path]:
        return [path for path in (self.html_path, self.txt_path) if path is not None]


class TranscriptService:
    """Renders stored ticket history into text and HTML files."""

    def __init__(self, config: TranscriptConfig) -> None:
        self.config = config
        self.base_dir = Path(config.storage_directory)

    def generate(self, ticket: TicketRecord, messages: Sequence[TicketMessageRecord]) -> TranscriptArtifacts:
        ticket_dir = self.base_dir / str(ticket.guild_id)
        ticket_dir.mkdir(parents=True, exist_ok=True)
        stem = f"ticket-{ticket.ticket_number}-{ticket.id[:8]}"

        html_path: Path | None = None
        txt_path: Path | None = None

        if self.config.html_enabled:
            html_path = ticket_dir / f"{stem}.html"
            html_path.write_text(self._build_html(ticket, messages), encoding="utf-8")

        if self.config.txt_enabled:
            txt_path = ticket_dir / f"{stem}.txt"
            txt_path.write_text(self._build_text(ticket, messages), encoding="utf-8")

        return TranscriptArtifacts(html_path=html_path, txt_path=txt_path)

    def cleanup(self, artifacts: TranscriptArtifacts) -> None:
        for path in artifacts.paths:
            try:
                path.unlink(missing_ok=True)
            except OSError:
                LOGGER.warning("Could not remove transcript file %s", path, exc_info=True)

    @staticmethod
    def _build_text(ticket: TicketRecord, messages: Sequence[TicketMessageRecord]) -> str:
        lines = [f"Transcript for ticket #{ticket.ticket_number} ({ticket.id})", ""]
        for msg in messages:
            lines.append(f"[{msg.created_at}] {msg.author_name} ({msg.author_id}): {msg.content}")
            for url in msg.attachments:
                lines.append(f"  attachment: {url}")
        if not messages:
            lines.append("No messages were recorded.")
        return "\n".join(lines)

    @staticmethod
    def _build_html(ticket: TicketRecord, messages: Sequence[TicketMessageRecord]) -> str:
        rows: list[str] = []
        for msg in messages:
            attachment_html = ""
            if msg.attachments:
                links = "".join(
                    f'<li><a href="{html.escape(url)}">{html.escape(url.rsplit("/", 1)[-1])}</a></li>'
                    for url in msg.attachments
                )
                attachment_html = f"<ul>{links}</ul>"
            rows.append(
                "<div class='msg'>"
                f"<div class='meta'>{html.escape(msg.author_name)} | {html.escape(msg.created_at)}</div>"
                f"<div class='content'>{html.escape(msg.content)}</div>"
                f"{attachment_html}"
                "</div>"
            )

        return (
            "<!doctype html><html><head><meta charset='utf-8'>"
            "<style>"
            "body{font-family:Arial,sans-serif;background:#f5f7fb;color:#1f2937;padding:16px;}"
            ".msg{background:white;border:1px solid #e5e7eb;border-radius:8px;padding:10px;margin-bottom:8px;}"
            ".meta{font-size:12px;color:#6b7280;margin-bottom:6px;}"
            ".content{white-space:pre-wrap;}"
            "</style></head><body>"
            f"<h1>Ticket #{ticket.ticket_number}</h1>"
            + ("".join(rows) or "<p>No messages were recorded.</p>")
            + "</body></html>"
        )
