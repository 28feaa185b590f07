"""
Chat log export for admins.

Renders a list of messages (deleted ones included) as a JSON document or
as CSV. Messages are expected oldest first.
"""

import csv
import io
import json
from datetime import datetime

from globalchat.database.models import ChatMessage
from globalchat.services.policy import as_utc

EXPORT_FORMATS = ("json", "csv")
CSV_HEADER = ["Date", "User", "Message", "Reactions", "Is Deleted"]


def export_messages_json(messages: list[ChatMessage], now: datetime) -> str:
    document = {
        "exportDate": now.isoformat(),
        "totalMessages": len(messages),
        "messages": [
            {
                "id": message.id,
                "date": as_utc(message.created_at).isoformat(),
                "user": {"id": message.user_id, "name": message.username},
                "text": message.text,
                "reactions": len(message.reactions),
                "isDeleted": message.is_deleted,
                "replyTo": message.reply_to_message_id,
            }
            for message in messages
        ],
    }
    return json.dumps(document, ensure_ascii=False, indent=2)


def export_messages_csv(messages: list[ChatMessage]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for message in messages:
        writer.writerow([
            as_utc(message.created_at).isoformat(),
            message.username or "Unknown",
            message.text or "",
            len(message.reactions),
            "Yes" if message.is_deleted else "No",
        ])
    return buffer.getvalue()


def export_messages(messages: list[ChatMessage], fmt: str, now: datetime) -> str:
    """
    Render messages in the requested export format.

    Args:
        messages: Messages to export, oldest first.
        fmt: "json" or "csv".
        now: Export timestamp.

    Returns:
        str: The rendered document.

    Raises:
        ValueError: If the format is not supported.
    """
    if fmt == "csv":
        return export_messages_csv(messages)
    if fmt == "json":
        return export_messages_json(messages, now)
    raise ValueError(f"Unsupported export format: {fmt!r}")
