"""Summary: FastAPI application for Onebox.

Importance: Exposes mirrored mail, categories, and account health over HTTP.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from pydantic import BaseModel, Field

from onebox.app import build_services
from onebox.config import AppConfig
from onebox.exceptions import PersistenceError
from onebox.orchestrator import SyncManager
from onebox.storage.sqlite_store import SearchResult

logger = logging.getLogger(__name__)


class CategorizeRequest(BaseModel):
    """Summary: Request payload for re-classifying stored messages.

    Importance: Keeps the id list explicit for API clients.
    Alternatives: Re-classify one message per request.
    """

    email_ids: list[str] = Field(alias="emailIds", min_length=1)

    model_config = {"populate_by_name": True}


class SuggestReplyRequest(BaseModel):
    """Summary: Optional extra guidance for a suggested reply.

    Importance: Lets the caller steer the draft without changing configuration.
    Alternatives: Accept free text in a query parameter.
    """

    context: str | None = Field(default=None, max_length=2000)


def _page_payload(result: SearchResult, page: int, limit: int) -> dict[str, Any]:
    return {
        "emails": [record.to_dict() for record in result.records],
        "total": result.total_count,
        "page": page,
        "limit": limit,
    }


def create_app(config: AppConfig, manager: SyncManager | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to Onebox services.

    Importance: Ensures the API layer shares the same configuration and storage.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=getattr(logging, config.log_level.upper(), logging.INFO),
            format="%(levelname)s %(name)s: %(message)s",
        )
    app = FastAPI(title="Onebox API", version="0.1.0")
    services = build_services(config, manager)

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    @app.get("/health")
    def health() -> dict[str, str]:
        """Summary: Health check endpoint.

        Importance: Supports uptime checks in local and cloud deployments.
        Alternatives: Use a metrics endpoint only.
        """

        return {"status": "ok"}

    @app.get("/api/emails", dependencies=[Depends(require_api_key)])
    def list_emails(
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=200),
        category: str | None = None,
        search: str | None = None,
        account: str | None = None,
        folder: str | None = None,
    ) -> dict[str, Any]:
        """Summary: List messages newest first with optional filters.

        Importance: Provides the unified inbox view across accounts.
        Alternatives: Require one request per account.
        """

        result = services.messages.list_messages(
            page=page,
            limit=limit,
            category=category,
            query=search,
            account_id=account,
            folder=folder,
        )
        return _page_payload(result, page, limit)

    @app.get("/api/emails/search", dependencies=[Depends(require_api_key)])
    def search_emails(
        q: str = Query(min_length=1),
        account: str | None = None,
        folder: str | None = None,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=200),
    ) -> dict[str, Any]:
        """Summary: Free-text search over subject, body, sender, and recipients.

        Importance: Finds leads without knowing which account received them.
        Alternatives: Expose only category filters.
        """

        result = services.messages.search(q, page=page, limit=limit, account_id=account, folder=folder)
        return _page_payload(result, page, limit)

    @app.get("/api/emails/accounts/list", dependencies=[Depends(require_api_key)])
    def list_accounts() -> list[dict[str, Any]]:
        """Summary: List configured accounts and their connection state.

        Importance: Shows which mailboxes are syncing or degraded.
        Alternatives: Inspect server logs.
        """

        return services.accounts.list_accounts()

    @app.post("/api/emails/accounts/{account_id}/reconnect", dependencies=[Depends(require_api_key)])
    def reconnect_account(account_id: str) -> dict[str, Any]:
        """Summary: Restart sync for an account that gave up reconnecting.

        Importance: Recovers a failed mailbox without restarting the server.
        Alternatives: Restart the whole process.
        """

        try:
            started = services.accounts.reconnect(account_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Account not found") from exc
        return {"accountId": account_id, "reconnecting": started}

    @app.get("/api/emails/stats/overview", dependencies=[Depends(require_api_key)])
    def stats_overview() -> dict[str, Any]:
        """Summary: Return totals per category and connection counts.

        Importance: Powers the dashboard summary.
        Alternatives: Compute counts on the client.
        """

        return services.stats.snapshot()

    @app.post("/api/emails/categorize", dependencies=[Depends(require_api_key)])
    def categorize_emails(payload: CategorizeRequest) -> dict[str, Any]:
        """Summary: Re-classify stored messages by id.

        Importance: Applies the current classifier to existing mail.
        Alternatives: Re-sync the mailbox.
        """

        try:
            results = services.categories.recategorize(payload.email_ids)
        except PersistenceError as exc:
            logger.error("Re-classification failed: %s", exc)
            raise HTTPException(status_code=500, detail="Failed to categorize emails") from exc
        return {"results": results}

    @app.post("/api/emails/test/webhooks", dependencies=[Depends(require_api_key)])
    def test_webhooks() -> dict[str, bool]:
        """Summary: Send a test payload to every notification channel.

        Importance: Verifies Slack and webhook settings on demand.
        Alternatives: Wait for a real Interested lead.
        """

        return services.notifications.test_channels()

    @app.post("/api/emails/{email_id}/suggest-reply", dependencies=[Depends(require_api_key)])
    def suggest_reply(email_id: str, payload: SuggestReplyRequest | None = None) -> dict[str, Any]:
        """Summary: Draft a reply to a stored message.

        Importance: Gives the sales team a starting point for answering leads.
        Alternatives: Write every reply by hand.
        """

        context = payload.context if payload else None
        reply = services.replies.suggest_reply(email_id, context)
        if reply is None:
            raise HTTPException(status_code=404, detail="Email not found")
        return reply.to_dict()

    @app.get("/api/emails/{email_id}", dependencies=[Depends(require_api_key)])
    def get_email(email_id: str) -> dict[str, Any]:
        """Summary: Fetch a single message by its composite id.

        Importance: Supports detail views and deep links.
        Alternatives: Return messages only through search.
        """

        record = services.messages.get_message(email_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Email not found")
        return record.to_dict()

    @app.delete("/api/emails/{email_id}", dependencies=[Depends(require_api_key)])
    def delete_email(email_id: str) -> dict[str, str]:
        """Summary: Delete a message from the local mirror.

        Importance: Lets operators prune mail without touching the server.
        Alternatives: Mark messages hidden instead of deleting them.
        """

        if not services.messages.delete_message(email_id):
            raise HTTPException(status_code=404, detail="Email not found")
        return {"message": "Email deleted successfully"}

    return app
