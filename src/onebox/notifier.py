"""Summary: Lead notification channels and concurrent fan-out.

Importance: Alerts people and automation when an Interested lead arrives.
Alternatives: Queue notifications in the database and deliver them in a worker.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Any, Callable

from onebox.exceptions import NotificationError
from onebox.models import LeadEvent

logger = logging.getLogger(__name__)

PostJson = Callable[[str, dict[str, Any], float], None]

PREVIEW_CHARS = 200


def post_json(url: str, payload: dict[str, Any], timeout: float) -> None:
    """Summary: POST a JSON payload and require a 2xx answer.

    Importance: Shared HTTP transport for every notification channel.
    Alternatives: Use a third-party HTTP client such as requests.
    """

    request = urllib.request.Request(
        url=url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            status = response.status
    except (urllib.error.URLError, OSError) as exc:
        raise NotificationError(url, f"request failed: {exc}") from exc
    if not 200 <= status < 300:
        raise NotificationError(url, f"unexpected status {status}")


class NotificationChannel(ABC):
    """Summary: Abstract destination for lead events.

    Importance: Lets the notifier fan out without knowing payload formats.
    Alternatives: Hardcode each destination in the pipeline.
    """

    name: str

    def __init__(self, url: str, timeout: float = 10.0, transport: PostJson = post_json) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    def send(self, lead: LeadEvent) -> bool:
        """Summary: Deliver a lead event.

        Importance: Reports delivery as a boolean so one channel never breaks another.
        Alternatives: Raise and let the caller decide.
        """

        if not self._post(self.build_payload(lead)):
            return False
        logger.info("%s notification sent for %s", self.name, lead.record.id)
        return True

    def send_test(self) -> bool:
        """Summary: Deliver a connectivity test payload.

        Importance: Verifies channel configuration without a real lead.
        Alternatives: Require operators to wait for an Interested message.
        """

        if not self._post(self.build_test_payload()):
            return False
        logger.info("%s test notification sent", self.name)
        return True

    @abstractmethod
    def build_payload(self, lead: LeadEvent) -> dict[str, Any]:
        """Build the channel-specific body for a lead event."""

    @abstractmethod
    def build_test_payload(self) -> dict[str, Any]:
        """Build the channel-specific body for a test delivery."""

    def _post(self, payload: dict[str, Any]) -> bool:
        try:
            self._transport(self._url, payload, self._timeout)
        except NotificationError as exc:
            logger.warning("%s notification failed: %s", self.name, exc)
            return False
        return True


class SlackChannel(NotificationChannel):
    """Summary: Slack incoming-webhook channel.

    Importance: Puts new leads in front of the sales team immediately.
    Alternatives: Use the Slack Web API with a bot token.
    """

    name = "slack"

    def build_payload(self, lead: LeadEvent) -> dict[str, Any]:
        record = lead.record
        preview = f"{record.body[:PREVIEW_CHARS]}..." if record.body else "No content"
        return {
            "text": "New Interested Lead Detected!",
            "attachments": [
                {
                    "color": "good",
                    "fields": [
                        {"title": "Email Subject", "value": record.subject or "No Subject", "short": True},
                        {"title": "From", "value": record.sender or "Unknown Sender", "short": True},
                        {"title": "Account", "value": record.account_id, "short": True},
                        {"title": "Date", "value": record.date.isoformat(), "short": True},
                        {"title": "Email Preview", "value": preview, "short": False},
                    ],
                    "footer": "Onebox",
                    "ts": int(record.date.timestamp()),
                }
            ],
        }

    def build_test_payload(self) -> dict[str, Any]:
        return {
            "text": "Onebox - Webhook Test",
            "attachments": [
                {
                    "color": "warning",
                    "fields": [
                        {
                            "title": "Test Message",
                            "value": "This is a test message to verify webhook connectivity.",
                            "short": False,
                        }
                    ],
                    "footer": "Onebox Test",
                    "ts": int(datetime.now(timezone.utc).timestamp()),
                }
            ],
        }


class WebhookChannel(NotificationChannel):
    """Summary: Generic JSON webhook for external automation.

    Importance: Lets tools such as Zapier or n8n react to leads.
    Alternatives: Publish lead events to a message broker.
    """

    name = "webhook"

    def build_payload(self, lead: LeadEvent) -> dict[str, Any]:
        return lead.to_payload()

    def build_test_payload(self) -> dict[str, Any]:
        return {
            "event": "TestWebhook",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": "This is a test webhook from Onebox",
            "metadata": {"source": "Onebox", "action": "test"},
        }


class Notifier:
    """Summary: Concurrent fan-out of lead events to every channel.

    Importance: A slow or failing channel never delays or breaks the others.
    Alternatives: Send to channels sequentially.
    """

    def __init__(self, channels: list[NotificationChannel], timeout: float = 10.0) -> None:
        self._channels = list(channels)
        self._timeout = timeout

    @property
    def channel_names(self) -> list[str]:
        return [channel.name for channel in self._channels]

    def notify(self, lead: LeadEvent) -> dict[str, bool]:
        """Summary: Deliver a lead event to all channels concurrently.

        Importance: Never raises; each channel reports its own success.
        Alternatives: Stop at the first failing channel.
        """

        logger.info("Triggering notifications for interested lead %s", lead.record.id)
        return self._fan_out(lambda channel: channel.send(lead))

    def test_channels(self) -> dict[str, bool]:
        """Summary: Send a test payload to every channel.

        Importance: Backs the webhook test endpoint and CLI command.
        Alternatives: Validate URLs without sending anything.
        """

        return self._fan_out(lambda channel: channel.send_test())

    def _fan_out(self, action: Callable[[NotificationChannel], bool]) -> dict[str, bool]:
        if not self._channels:
            return {}
        results: dict[str, bool] = {}
        with ThreadPoolExecutor(max_workers=len(self._channels)) as executor:
            futures = {channel.name: executor.submit(action, channel) for channel in self._channels}
            for name, future in futures.items():
                try:
                    results[name] = bool(future.result(timeout=self._timeout + 1))
                except NotificationError as exc:
                    logger.warning("Notification channel %s failed: %s", name, exc)
                    results[name] = False
                except FutureTimeoutError:
                    logger.warning("Notification channel %s timed out", name)
                    results[name] = False
                except Exception:
                    logger.exception("Notification channel %s raised unexpectedly", name)
                    results[name] = False
        return results


def build_channels(
    slack_webhook_url: str | None,
    webhook_url: str | None,
    timeout: float,
    transport: PostJson = post_json,
) -> list[NotificationChannel]:
    """Summary: Build channels for every configured destination.

    Importance: Unconfigured destinations are simply absent from the fan-out.
    Alternatives: Keep disabled channels and report them as failed.
    """

    channels: list[NotificationChannel] = []
    if slack_webhook_url:
        channels.append(SlackChannel(slack_webhook_url, timeout, transport))
    if webhook_url:
        channels.append(WebhookChannel(webhook_url, timeout, transport))
    return channels
