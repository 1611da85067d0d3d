"""Summary: Suggested replies for stored messages.

Importance: Drafts an answer to a lead so the sales team can respond quickly.
Alternatives: Keep a shared library of canned responses outside the app.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from onebox.ai import AiProvider
from onebox.models import (
    INTERESTED,
    MEETING_BOOKED,
    NOT_INTERESTED,
    OUT_OF_OFFICE,
    MessageRecord,
)

logger = logging.getLogger(__name__)

TONES = ("formal", "casual", "urgent", "friendly", "professional", "neutral")
DEFAULT_TONE = "neutral"
URGENT_KEYWORDS = ("urgent", "asap", "immediately", "as soon as possible")

_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)

# Middle paragraph of the template reply, by category.
TEMPLATE_LINES = {
    INTERESTED: "Thanks for your interest. I would be glad to walk you through the details on a short call.",
    MEETING_BOOKED: "Thanks for booking a time. I look forward to speaking with you.",
    NOT_INTERESTED: "Thanks for letting me know. I will not follow up on this again.",
    OUT_OF_OFFICE: "Thanks for the note. I will follow up once you are back.",
}
GENERIC_LINE = "I have received your message and will get back to you shortly."


@dataclass(frozen=True)
class SuggestedReply:
    """Summary: A drafted reply together with the detected tone of the original.

    Importance: Tells the caller whether the draft came from the model or a template.
    Alternatives: Return the reply text alone.
    """

    text: str
    tone: str
    source: str

    def to_dict(self) -> dict[str, Any]:
        return {"suggestedReply": self.text, "tone": self.tone, "source": self.source}


@dataclass(frozen=True)
class ReplySuggester:
    """Summary: Drafts replies with the configured AI provider or category templates.

    Importance: Always returns a usable draft, even when no model is configured.
    Alternatives: Fail the request when the provider is unavailable.
    """

    ai_provider: AiProvider | None
    booking_url: str | None = None
    product_context: str | None = None
    max_body_chars: int = 1000

    def suggest(self, record: MessageRecord, context: str | None = None) -> SuggestedReply:
        """Summary: Draft a reply to one stored message.

        Importance: Provider failures and unusable answers fall back to a template.
        Alternatives: Retry the provider until it returns a draft.
        """

        if self.ai_provider is not None:
            try:
                return self._suggest_with_ai(record, context)
            except Exception as exc:
                logger.warning("AI reply for %s failed: %s; using template", record.id, exc)
        return SuggestedReply(
            text=template_reply(record, self.booking_url),
            tone=detect_tone(record),
            source="template",
        )

    def _suggest_with_ai(self, record: MessageRecord, context: str | None) -> SuggestedReply:
        prompt = build_reply_prompt(
            record,
            context=context,
            product_context=self.product_context,
            booking_url=self.booking_url,
            max_body_chars=self.max_body_chars,
        )
        completion = self.ai_provider.complete(prompt)
        text, tone = parse_reply_response(completion.text)
        logger.info("Drafted reply for %s with %s in %sms", record.id, completion.model, completion.latency_ms)
        return SuggestedReply(text=text, tone=tone or detect_tone(record), source="ai")


def build_reply_prompt(
    record: MessageRecord,
    context: str | None = None,
    product_context: str | None = None,
    booking_url: str | None = None,
    max_body_chars: int = 1000,
) -> str:
    """Summary: Build the reply-drafting prompt for one message.

    Importance: Grounds the draft in the operator's product description and booking link.
    Alternatives: Retrieve context from a vector store of past replies.
    """

    body = record.body
    if len(body) > max_body_chars:
        body = body[:max_body_chars] + "..."
    sections = [
        "Draft a concise, professional reply to the email below on behalf of the sales team.",
    ]
    if product_context:
        sections.append(f"About our product: {product_context}")
    if booking_url:
        sections.append(f"If the sender is interested, invite them to book a call at {booking_url}")
    sections.append(
        f"Subject: {record.subject or 'No subject'}\n"
        f"From: {record.sender or 'Unknown sender'}\n"
        f"Category: {record.category}\n"
        f"Body: {body}"
    )
    if context:
        sections.append(f"Additional context: {context}")
    sections.append(
        "Also classify the tone of the original email as one of: "
        f"{', '.join(TONES)}.\n"
        'Answer with JSON only, for example {"reply": "Hi Jane, ...", "tone": "friendly"}.'
    )
    return "\n\n".join(sections)


def parse_reply_response(text: str) -> tuple[str, str | None]:
    """Summary: Extract the drafted reply and tone from a provider answer.

    Importance: Accepts plain-text drafts from models that ignore the JSON instruction.
    Alternatives: Reject every answer that is not valid JSON.

    Raises ValueError when the answer holds no reply text.
    """

    if not isinstance(text, str) or not text.strip():
        raise ValueError("provider returned no reply text")
    match = _JSON_RE.search(text)
    if match:
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            reply = payload.get("reply")
            if not isinstance(reply, str) or not reply.strip():
                raise ValueError("provider answer has no reply field")
            tone = str(payload.get("tone", "")).strip().lower()
            return reply.strip(), tone if tone in TONES else None
    return text.strip(), None


def detect_tone(record: MessageRecord) -> str:
    text = f"{record.subject} {record.body}".lower()
    if any(keyword in text for keyword in URGENT_KEYWORDS):
        return "urgent"
    return DEFAULT_TONE


def template_reply(record: MessageRecord, booking_url: str | None = None) -> str:
    """Summary: Build a reply from the template for the record's category.

    Importance: Keeps the endpoint useful with the rules-only configuration.
    Alternatives: Return the same generic acknowledgement for every category.
    """

    line = TEMPLATE_LINES.get(record.category, GENERIC_LINE)
    paragraphs = [
        f"Hi {sender_name(record.sender)},",
        f'Thank you for your email regarding "{record.subject or "your inquiry"}".',
        line,
    ]
    if record.category == INTERESTED and booking_url:
        paragraphs.append(f"You can pick a time that works for you here: {booking_url}")
    paragraphs.append("Best regards")
    return "\n\n".join(paragraphs)


def sender_name(sender: str) -> str:
    """Derive a greeting name from an address like jane.doe@example.com."""

    match = re.match(r"^\s*(.+?)\s*<.+>\s*$", sender or "")
    if match:
        return match.group(1).strip("\"' ")
    local, at, _ = (sender or "").partition("@")
    if not at or not local:
        return "there"
    return re.sub(r"[._+-]+", " ", local).strip().title() or "there"
