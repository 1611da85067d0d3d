"""Summary: Tests for suggested replies.

Importance: Ensures every stored message can get a usable draft reply.
Alternatives: Review generated replies manually.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from onebox.ai import AiProvider, MockAiProvider
from onebox.exceptions import AiProviderError
from onebox.models import INTERESTED, NOT_INTERESTED, SPAM, MessageRecord
from onebox.replies import ReplySuggester, parse_reply_response, sender_name


class _RecordingProvider(AiProvider):
    name = "recording"

    def __init__(self, reply: str) -> None:
        super().__init__(model="recording")
        self.reply = reply
        self.prompts: list[str] = []

    def _generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.reply


class _FailingProvider(AiProvider):
    name = "failing"

    def __init__(self) -> None:
        super().__init__(model="failing")

    def _generate(self, prompt: str) -> str:
        raise AiProviderError(self.name, "HTTP 503")


def _record(category: str, subject: str = "Interested in your platform", body: str = "Send pricing") -> MessageRecord:
    return MessageRecord(
        id="sales@acme.test-1",
        account_id="sales@acme.test",
        folder="INBOX",
        subject=subject,
        body=body,
        sender="jane.doe@example.com",
        recipients=("sales@acme.test",),
        date=datetime(2026, 1, 15, tzinfo=timezone.utc),
        server_uid=1,
        category=category,
    )


def test_template_reply_follows_category_and_booking_link() -> None:
    """Summary: Verify the rules-only setup drafts a category-specific reply.

    Importance: The endpoint stays useful without any AI provider.
    Alternatives: Return an error when no provider is configured.
    """

    suggester = ReplySuggester(ai_provider=None, booking_url="https://cal.test/acme")
    reply = suggester.suggest(_record(INTERESTED))
    assert reply.source == "template"
    assert reply.tone == "neutral"
    assert reply.text.startswith("Hi Jane Doe,")
    assert '"Interested in your platform"' in reply.text
    assert "https://cal.test/acme" in reply.text

    declined = suggester.suggest(_record(NOT_INTERESTED, subject="Re: intro", body="Please remove me"))
    assert "will not follow up" in declined.text
    assert "https://cal.test/acme" not in declined.text

    generic = suggester.suggest(_record(SPAM, subject="", body="URGENT: reply asap"))
    assert '"your inquiry"' in generic.text
    assert generic.tone == "urgent"


def test_ai_reply_uses_provider_answer_and_context() -> None:
    """Summary: Verify the provider's JSON answer becomes the draft and tone.

    Importance: Confirms product context and caller guidance reach the model.
    Alternatives: Send only the email body to the model.
    """

    provider = _RecordingProvider('{"reply": "Hi Jane, pricing is attached.", "tone": "Friendly"}')
    suggester = ReplySuggester(provider, booking_url="https://cal.test/acme", product_context="Acme CRM")
    reply = suggester.suggest(_record(INTERESTED), context="Offer the annual discount")

    assert reply.to_dict() == {
        "suggestedReply": "Hi Jane, pricing is attached.",
        "tone": "friendly",
        "source": "ai",
    }
    prompt = provider.prompts[0]
    assert "About our product: Acme CRM" in prompt
    assert "https://cal.test/acme" in prompt
    assert "Additional context: Offer the annual discount" in prompt
    assert "Category: Interested" in prompt


def test_ai_reply_falls_back_to_template() -> None:
    """Summary: Verify provider errors and empty answers produce a template draft.

    Importance: A suggest-reply request never fails because of the model.
    Alternatives: Surface the provider error to the caller.
    """

    for provider in (_FailingProvider(), MockAiProvider('{"tone": "formal"}'), _RecordingProvider("")):
        reply = ReplySuggester(provider).suggest(_record(INTERESTED))
        assert reply.source == "template"
        assert reply.text.startswith("Hi Jane Doe,")


def test_parse_reply_response_accepts_plain_text() -> None:
    """Summary: Verify answers that ignore the JSON instruction are still usable.

    Importance: Local models often answer with the reply text alone.
    Alternatives: Treat every non-JSON answer as a failure.
    """

    assert parse_reply_response("  Hi Jane, thanks!  ") == ("Hi Jane, thanks!", None)
    assert parse_reply_response('{"reply": "Hello", "tone": "sarcastic"}') == ("Hello", None)
    with pytest.raises(ValueError):
        parse_reply_response('{"reply": ""}')


def test_sender_name_handles_display_names_and_blanks() -> None:
    """Summary: Verify greeting names are derived from sender strings.

    Importance: Keeps template greetings readable.
    Alternatives: Always greet with "Hi there".
    """

    assert sender_name("Jane Doe <jane@example.com>") == "Jane Doe"
    assert sender_name("j_smith@example.com") == "J Smith"
    assert sender_name("") == "there"
    assert sender_name("not-an-address") == "there"
