"""
Conversation export to Markdown, plain text and JSON.
Works on local records only.
"""
import json
import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from nanochat.schemas import ConversationResponse, MessageResponse

FORMATS = {
    "markdown": ("md", "text/markdown"),
    "text": ("txt", "text/plain"),
    "json": ("json", "application/json"),
}

_INVALID_FILENAME_CHARS = re.compile(r'[:/\\?*|<>"]')


def format_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%b %d, %Y %H:%M UTC")


def _role_label(role: str) -> str:
    return "You" if role == "user" else "Assistant"


def export_conversation_markdown(
        conversation: ConversationResponse,
        messages: Sequence[MessageResponse],
        now: Optional[datetime] = None
) -> str:
    now = now or datetime.now(timezone.utc)
    lines = [
        f"# {conversation.title}",
        "",
        f"**Exported on:** {format_date(now)}",
        f"**Last updated:** {format_date(conversation.updated_at)}",
    ]
    if conversation.project_id:
        lines.append(f"**Project ID:** {conversation.project_id}")
    lines += ["", "---", ""]

    for message in messages:
        header = f"### **{_role_label(message.role)}**"
        if message.model_id:
            header += f" *({message.model_id})*"
        lines += [header, "", f"*{format_date(message.created_at)}*", ""]

        for image in message.images or []:
            lines += [f"![{image.file_name or 'image'}]({image.url})", ""]

        if message.reasoning:
            lines += ["<details>", "<summary>Reasoning</summary>", "", message.reasoning, "", "</details>", ""]

        lines += [message.content, ""]

        if message.documents:
            lines.append("**Attachments:**")
            for document in message.documents:
                lines.append(f"- [{document.file_name or 'document'}]({document.url})")
            lines.append("")

        lines += ["---", ""]

    return "\n".join(lines)


def export_conversations_markdown(
        items: Iterable[Tuple[ConversationResponse, Sequence[MessageResponse]]],
        now: Optional[datetime] = None
) -> str:
    """Several conversations in one document, numbered"""
    now = now or datetime.now(timezone.utc)
    items = list(items)
    parts = [
        "# NanoChat Export\n\n"
        f"**Exported on:** {format_date(now)}\n"
        f"**Conversations:** {len(items)}\n\n"
        "---\n\n"
    ]
    for index, (conversation, messages) in enumerate(items, start=1):
        parts.append(f"## {index}. {conversation.title}\n\n")
        parts.append(export_conversation_markdown(conversation, messages, now=now))
    return "".join(parts)


def export_conversation_text(
        conversation: ConversationResponse,
        messages: Sequence[MessageResponse],
        now: Optional[datetime] = None
) -> str:
    now = now or datetime.now(timezone.utc)
    text = f"{conversation.title}\n{'=' * len(conversation.title)}\n\n"
    text += f"Exported: {format_date(now)}\n\n"
    for message in messages:
        text += f"[{_role_label(message.role)}]:\n{message.content}\n\n"
    return text


def _wire(model, shape) -> dict:
    # Records carry local bookkeeping fields that do not belong in an export
    return model.model_dump(mode="json", by_alias=True, exclude_none=True, include=set(shape.model_fields))


def export_conversation_json(conversation: ConversationResponse, messages: Sequence[MessageResponse]) -> str:
    """Wire-shaped JSON document: the conversation with its messages"""
    document = _wire(conversation, ConversationResponse)
    document["messages"] = [_wire(message, MessageResponse) for message in messages]
    return json.dumps(document, indent=2, ensure_ascii=False)


def sanitize_filename(title: str) -> str:
    cleaned = _INVALID_FILENAME_CHARS.sub("", title).strip()
    return cleaned.replace(" ", "-").lower()[:50]


def export_filename(title: str, fmt: str) -> str:
    extension, _ = FORMATS[fmt]
    return f"{sanitize_filename(title) or 'conversation'}.{extension}"


def render(fmt: str, conversation: ConversationResponse, messages: List[MessageResponse]) -> str:
    if fmt == "markdown":
        return export_conversation_markdown(conversation, messages)
    if fmt == "text":
        return export_conversation_text(conversation, messages)
    if fmt == "json":
        return export_conversation_json(conversation, messages)
    raise ValueError(f"Unknown export format: {fmt}")
