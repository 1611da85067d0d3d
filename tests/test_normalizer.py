"""Summary: Tests for raw message normalization.

Importance: Ensures every stored record has a stable id and clean text.
Alternatives: Validate normalization only through end-to-end sync tests.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

import pytest

from onebox.exceptions import NormalizationError
from onebox.models import UNCATEGORIZED, EnvelopeAttributes, RawMessage
from onebox.normalizer import clean_text, format_address, normalize_message, parse_recipients


def _raw(content: bytes, uid: int = 42, **attributes) -> RawMessage:
    return RawMessage(content=content, attributes=EnvelopeAttributes(uid=uid, **attributes))


def test_normalize_builds_composite_id(raw_email: Callable[..., bytes]) -> None:
    """Summary: Verify the record id combines account id and server UID.

    Importance: Confirms repeated normalization maps to the same record.
    Alternatives: Use the Message-Id header as the key.
    """

    raw = _raw(raw_email(subject="Pricing question", body="What does it cost?"), flags=("\\Seen",), size=512)
    first = normalize_message(raw, "sales@acme.test", "INBOX")
    second = normalize_message(raw, "sales@acme.test", "INBOX")
    assert first is not None
    assert first.id == "sales@acme.test-42"
    assert first == second
    assert first.subject == "Pricing question"
    assert first.body == "What does it cost?"
    assert first.sender == "lead@example.com"
    assert first.recipients == ("sales@acme.test",)
    assert first.flags == ("\\Seen",)
    assert first.size == 512
    assert first.category == UNCATEGORIZED
    assert first.date == datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)


def test_normalize_falls_back_to_html_body(raw_email: Callable[..., bytes]) -> None:
    """Summary: Verify HTML-only messages are reduced to plain text.

    Importance: Confirms markup, scripts, and entities do not reach storage.
    Alternatives: Store the raw HTML part.
    """

    html = "<html><script>track()</script><p>Book&nbsp;a <b>demo</b> &amp; call</p></html>"
    record = normalize_message(_raw(raw_email(body="", html=html)), "sales@acme.test", "INBOX")
    assert record is not None
    assert record.body == "Book a demo & call"


def test_normalize_strips_markup_from_plain_text(raw_email: Callable[..., bytes]) -> None:
    """Summary: Verify tags inside text/plain parts are removed too.

    Importance: Confirms stored bodies never carry markup whatever the part type.
    Alternatives: Trust senders to keep plain parts free of tags.
    """

    record = normalize_message(
        _raw(raw_email(body="Hello <b>there</b>,\n<p>send pricing</p> &amp; terms")),
        "sales@acme.test",
        "INBOX",
    )
    assert record is not None
    assert record.body == "Hello there , send pricing & terms"


def test_normalize_defaults_missing_headers(raw_email: Callable[..., bytes]) -> None:
    """Summary: Verify absent From and To headers get defaults.

    Importance: Confirms messages without headers are still indexed.
    Alternatives: Skip messages missing address headers.
    """

    record = normalize_message(_raw(raw_email(sender="", to="")), "sales@acme.test", "INBOX")
    assert record is not None
    assert record.sender == "unknown-sender@acme.test"
    assert record.recipients == ("sales@acme.test",)


def test_normalize_skips_empty_body(raw_email: Callable[..., bytes]) -> None:
    """Summary: Verify messages without body text are dropped.

    Importance: Confirms empty records never reach classification.
    Alternatives: Store records with empty bodies.
    """

    assert normalize_message(_raw(raw_email(body="")), "sales@acme.test", "INBOX") is None


def test_normalize_uses_internal_date_without_date_header(raw_email: Callable[..., bytes]) -> None:
    """Summary: Verify INTERNALDATE is used when the Date header is absent.

    Importance: Keeps newest-first ordering meaningful for odd senders.
    Alternatives: Use the ingestion time for every message.
    """

    internal = datetime(2026, 2, 1, 9, 30, tzinfo=timezone.utc)
    raw = _raw(raw_email(date=""), internal_date=internal)
    record = normalize_message(raw, "sales@acme.test", "INBOX")
    assert record is not None
    assert record.date == internal


def test_normalize_rejects_invalid_uid(raw_email: Callable[..., bytes]) -> None:
    """Summary: Verify a non-positive UID is a normalization error.

    Importance: Guards the composite id against invalid server data.
    Alternatives: Assign a synthetic UID.
    """

    with pytest.raises(NormalizationError):
        normalize_message(_raw(raw_email(), uid=0), "sales@acme.test", "INBOX")


def test_clean_text_collapses_whitespace_and_entities() -> None:
    """Summary: Verify text cleanup for bodies.

    Importance: Confirms search and prompts see compact text.
    Alternatives: Keep original whitespace.
    """

    assert clean_text("  <div>Hi&nbsp;&lt;there&gt;</div>\n\n  &quot;ok&quot; ") == 'Hi <there> "ok"'
    assert clean_text("Contact <lead@example.com>", strip_markup=False) == "Contact <lead@example.com>"


def test_address_helpers() -> None:
    """Summary: Verify address formatting and recipient parsing.

    Importance: Confirms senders and recipients are stored as bare addresses.
    Alternatives: Keep display names in stored fields.
    """

    assert format_address("Jane Lead <jane@example.com>") == "jane@example.com"
    assert format_address(" jane@example.com ") == "jane@example.com"
    assert parse_recipients("A <a@example.com>, b@example.com") == ("a@example.com", "b@example.com")
