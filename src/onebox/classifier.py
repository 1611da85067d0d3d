"""Summary: Lead intent classification for incoming messages.

Importance: Assigns every message one of the fixed outreach categories.
Alternatives: Train a supervised classifier on labelled replies.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field

from onebox.ai import AiProvider
from onebox.exceptions import ClassificationError
from onebox.models import (
    CATEGORIES,
    INTERESTED,
    MEETING_BOOKED,
    NOT_INTERESTED,
    OUT_OF_OFFICE,
    SPAM,
    ClassificationResult,
    MessageRecord,
)

logger = logging.getLogger(__name__)

RULE_CONFIDENCE = 0.6
DEFAULT_CONFIDENCE = 0.3
BARE_ANSWER_CONFIDENCE = 0.7

# Checked in order; the first rule whose text or sender keywords match wins.
RULES: tuple[tuple[str, tuple[str, ...], tuple[str, ...]], ...] = (
    (OUT_OF_OFFICE, ("out of office", "vacation", "auto-reply", "automatic reply"), ()),
    (SPAM, ("unsubscribe", "newsletter"), ("noreply", "no-reply")),
    (NOT_INTERESTED, ("not interested", "remove", "decline"), ()),
    (MEETING_BOOKED, ("meeting", "schedule", "calendar"), ()),
    (INTERESTED, ("interested", "demo", "pricing", "?"), ()),
)

_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


@dataclass(frozen=True)
class RuleBasedClassifier:
    """Summary: Deterministic keyword classifier with a fixed precedence.

    Importance: Guarantees a valid category when the AI path is unavailable.
    Alternatives: Drop messages that the AI provider cannot classify.
    """

    def classify(self, subject: str, body: str, sender: str) -> ClassificationResult:
        """Summary: Classify by keyword rules against subject, body, and sender.

        Importance: Provides the fallback category that the pipeline relies on.
        Alternatives: Score every rule and pick the highest count.
        """

        text = f"{subject} {body}".lower()
        sender = sender.lower()
        for category, keywords, sender_keywords in RULES:
            matched = next((keyword for keyword in keywords if keyword in text), None)
            if matched is None:
                matched = next((keyword for keyword in sender_keywords if keyword in sender), None)
            if matched is not None:
                return ClassificationResult(
                    category=category,
                    confidence=RULE_CONFIDENCE,
                    reasoning=f"matched keyword {matched!r}",
                    source="rules",
                )
        return ClassificationResult(
            category=SPAM,
            confidence=DEFAULT_CONFIDENCE,
            reasoning="no rule matched",
            source="rules",
        )

    def categorize(self, record: MessageRecord) -> ClassificationResult:
        return self.classify(record.subject, record.body, record.sender)


@dataclass(frozen=True)
class AiClassifier:
    """Summary: AI-backed classifier that falls back to keyword rules.

    Importance: Never raises, so the pipeline always gets a category.
    Alternatives: Retry the AI provider until it answers.
    """

    ai_provider: AiProvider | None
    fallback: RuleBasedClassifier = field(default_factory=RuleBasedClassifier)
    max_body_chars: int = 800

    def categorize(self, record: MessageRecord) -> ClassificationResult:
        """Summary: Categorize a record, using rules when the AI path fails.

        Importance: Absorbs every provider error inside classification.
        Alternatives: Surface provider failures to the caller.
        """

        if self.ai_provider is None:
            return self.fallback.categorize(record)
        try:
            return self._categorize_with_ai(record)
        except ClassificationError as exc:
            logger.warning("AI categorization failed for %s: %s; using rules", record.id, exc)
        except Exception:
            logger.exception("Unexpected error categorizing %s; using rules", record.id)
        return self.fallback.categorize(record)

    def _categorize_with_ai(self, record: MessageRecord) -> ClassificationResult:
        prompt = build_prompt(record, self.max_body_chars)
        try:
            completion = self.ai_provider.complete(prompt)
        except Exception as exc:
            raise ClassificationError(str(exc)) from exc
        result = parse_category_response(completion.text)
        logger.debug(
            "Categorized %s as %s with %s in %sms",
            record.id,
            result.category,
            completion.model,
            completion.latency_ms,
        )
        return result


def build_prompt(record: MessageRecord, max_body_chars: int = 800) -> str:
    """Summary: Build the categorization prompt for one message.

    Importance: Keeps category definitions identical across providers.
    Alternatives: Use provider-specific function calling schemas.
    """

    body = record.body
    if len(body) > max_body_chars:
        body = body[:max_body_chars] + "..."
    return (
        "You are an expert email classifier for a sales outreach platform. Analyze the "
        "email below and categorize it into exactly ONE of these categories:\n"
        '1. "Interested" - shows interest, asks questions, or wants to learn more\n'
        '2. "Meeting Booked" - has scheduled or confirmed a meeting or call\n'
        '3. "Not Interested" - explicitly declines or is not interested\n'
        '4. "Spam" - promotional emails, newsletters, or irrelevant content\n'
        '5. "Out of Office" - automated out-of-office or vacation replies\n\n'
        f"Subject: {record.subject or 'No subject'}\n"
        f"From: {record.sender or 'Unknown sender'}\n"
        f"To: {', '.join(record.recipients)}\n"
        f"Body: {body}\n\n"
        "Answer with JSON only, for example "
        '{"category": "Interested", "confidence": 0.9, "reasoning": "asks for pricing"}.'
    )


def parse_category_response(text: str) -> ClassificationResult:
    """Summary: Parse a provider answer into a validated ClassificationResult.

    Importance: Rejects anything outside the fixed category set.
    Alternatives: Trust the provider's answer verbatim.
    """

    if not isinstance(text, str) or not text.strip():
        raise ClassificationError("Provider returned no answer text")
    match = _JSON_RE.search(text)
    if match:
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            category = _match_category(str(payload.get("category", "")))
            if category is None:
                raise ClassificationError(f"Invalid category received: {payload.get('category')!r}")
            try:
                confidence = float(payload.get("confidence", BARE_ANSWER_CONFIDENCE))
            except (TypeError, ValueError):
                confidence = BARE_ANSWER_CONFIDENCE
            reasoning = payload.get("reasoning")
            return ClassificationResult(
                category=category,
                confidence=min(1.0, max(0.0, confidence)),
                reasoning=str(reasoning) if reasoning else None,
                source="ai",
            )
    category = _match_category(text)
    if category is None:
        raise ClassificationError(f"Invalid category received: {text[:80]!r}")
    return ClassificationResult(category=category, confidence=BARE_ANSWER_CONFIDENCE, source="ai")


def _match_category(value: str) -> str | None:
    cleaned = value.strip().strip("\"'.").lower()
    for category in CATEGORIES:
        if cleaned == category.lower():
            return category
    return None
