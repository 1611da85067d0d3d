"""Summary: Normalization of raw IMAP messages into MessageRecord objects.

Importance: Gives every downstream stage one clean, predictable record shape.
Alternatives: Store raw MIME and parse lazily at query time.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from email import message_from_bytes
from email.header import decode_header
from email.message import Message
from email.utils import getaddresses, parsedate_to_datetime

from onebox.exceptions import NormalizationError
from onebox.models import UNCATEGORIZED, MessageRecord, RawMessage

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_SCRIPT_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_ANGLE_RE = re.compile(r"<([^<>]*)>")
_WHITESPACE_RE = re.compile(r"\s+")
_ENTITIES = {
    "&nbsp;": " ",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    # Decoded last so "&amp;lt;" stays literal "&lt;".
    "&amp;": "&",
}


def normalize_message(raw: RawMessage, account_id: str, folder: str) -> MessageRecord | None:
    """Summary: Convert raw message bytes and envelope attributes into a record.

    Importance: Is the only place protocol data becomes a MessageRecord.
    Alternatives: Build records inside the connection while fetching.

    Returns None when the message has no resolvable sender or no body text.
    Raises NormalizationError when the bytes cannot be parsed at all.
    """

    uid = raw.attributes.uid
    if uid <= 0:
        raise NormalizationError(f"Invalid server UID {uid!r} for {account_id}")
    if not isinstance(raw.content, (bytes, bytearray)):
        raise NormalizationError(f"Message {uid} for {account_id} has no raw content")
    try:
        message = message_from_bytes(bytes(raw.content))
        subject = _decode_header_value(message.get("Subject", ""))
        from_header = message.get("From")
        to_header = message.get("To")
        sender = (
            format_address(_decode_header_value(from_header))
            if from_header is not None
            else _default_sender(account_id)
        )
        recipients = (
            parse_recipients(_decode_header_value(to_header))
            if to_header is not None
            else (account_id,)
        )
        body = extract_body(message)
    except (LookupError, UnicodeError, ValueError, TypeError) as exc:
        raise NormalizationError(f"Message {uid} for {account_id} is malformed: {exc}") from exc

    if not sender:
        logger.warning("Skipping message %s for %s: no resolvable sender", uid, account_id)
        return None
    if not body:
        logger.warning("Skipping message %s for %s: empty body", uid, account_id)
        return None

    return MessageRecord(
        id=MessageRecord.make_id(account_id, uid),
        account_id=account_id,
        folder=folder,
        subject=subject,
        body=body,
        sender=sender,
        recipients=recipients,
        date=_resolve_date(message.get("Date"), raw.attributes.internal_date),
        server_uid=uid,
        flags=tuple(raw.attributes.flags),
        size=raw.attributes.size if raw.attributes.size is not None else len(raw.content),
        category=UNCATEGORIZED,
    )


def clean_text(text: str, strip_markup: bool = True) -> str:
    """Summary: Reduce message text to readable plain text.

    Importance: Keeps stored bodies searchable and classifier prompts compact.
    Alternatives: Use a full HTML parser such as BeautifulSoup.
    """

    if strip_markup:
        text = _SCRIPT_RE.sub(" ", text)
        text = _TAG_RE.sub(" ", text)
    for entity, replacement in _ENTITIES.items():
        text = text.replace(entity, replacement)
    return _WHITESPACE_RE.sub(" ", text).strip()


def format_address(value: str) -> str:
    """Summary: Normalize a single address header value.

    Importance: Stores senders as bare addresses regardless of display names.
    Alternatives: Keep the display name and address together.
    """

    value = value.strip()
    match = _ANGLE_RE.search(value)
    if match:
        return match.group(1).strip()
    return value


def parse_recipients(value: str) -> tuple[str, ...]:
    """Summary: Split a recipient header into ordered bare addresses.

    Importance: Preserves recipient order while dropping display names.
    Alternatives: Store recipients as a single comma-separated string.
    """

    recipients: list[str] = []
    for name, address in getaddresses([value]):
        entry = address or name
        if entry:
            recipients.append(entry.strip())
    return tuple(recipients)


def extract_body(message: Message) -> str:
    """Summary: Extract a plain text body, falling back to the HTML part.

    Markup is stripped from both kinds of part.

    Importance: Provides content for classification and search.
    Alternatives: Store only the HTML part without conversion.
    """

    plain_parts: list[str] = []
    html_parts: list[str] = []
    for part in message.walk():
        if part.is_multipart():
            continue
        if part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type == "text/plain":
            plain_parts.append(_decode_payload(part))
        elif content_type == "text/html":
            html_parts.append(_decode_payload(part))
    if plain_parts:
        text = clean_text("\n".join(plain_parts))
        if text:
            return text
    if html_parts:
        return clean_text("\n".join(html_parts))
    return ""


def _decode_payload(part: Message) -> str:
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _decode_header_value(value: str) -> str:
    """Summary: Decode RFC 2047 encoded header values.

    Importance: Ensures subjects and names are readable in storage and UI.
    Alternatives: Store raw header values and decode at display time.
    """

    fragments: list[str] = []
    for part, encoding in decode_header(str(value)):
        if isinstance(part, bytes):
            fragments.append(part.decode(encoding or "utf-8", errors="replace"))
        else:
            fragments.append(part)
    return "".join(fragments).strip()


def _resolve_date(header: str | None, internal_date: datetime | None) -> datetime:
    if header:
        try:
            parsed = parsedate_to_datetime(str(header))
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if internal_date is not None:
        # imapclient reports naive INTERNALDATE values in local time.
        return internal_date.astimezone(timezone.utc)
    return datetime.now(timezone.utc)


def _default_sender(account_id: str) -> str:
    _, _, domain = account_id.partition("@")
    return f"unknown-sender@{domain or 'unknown'}"
