"""Summary: Ingestion pipeline: classify, persist, and notify.

Importance: Single hand-off point between sync loops and the rest of the system.
Alternatives: Let each sync loop call the classifier, store, and notifier itself.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Protocol

from onebox.classifier import RuleBasedClassifier
from onebox.exceptions import PersistenceError
from onebox.models import INTERESTED, ClassificationResult, IngestOutcome, LeadEvent, MessageRecord
from onebox.notifier import Notifier
from onebox.storage.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)


class Classifier(Protocol):
    def categorize(self, record: MessageRecord) -> ClassificationResult: ...


class IngestionPipeline:
    """Summary: Classifies each record, upserts it, and alerts on Interested leads.

    Importance: Keeps the order classify -> persist -> notify in one place.
    Alternatives: Publish records to a queue and process stages independently.
    """

    def __init__(
        self,
        classifier: Classifier,
        store: SqliteStore,
        notifier: Notifier,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._classifier = classifier
        self._store = store
        self._notifier = notifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._fallback = RuleBasedClassifier()

    def ingest(self, record: MessageRecord) -> IngestOutcome:
        """Summary: Ingest one normalized record.

        Importance: Notifications are attempted even when persistence fails.
        Alternatives: Skip notifications for records that failed to persist.

        Raises PersistenceError after notifying when the store rejects the record.
        """

        result = self._classify(record)
        categorized = replace(
            record,
            category=result.category,
            confidence=result.confidence,
            indexed_at=self._clock(),
        )
        logger.info(
            "Categorized %s for %s as %s (%s)",
            categorized.id,
            categorized.account_id,
            categorized.category,
            result.source,
        )

        store_error: Exception | None = None
        try:
            self._store.upsert(categorized)
        except Exception as exc:
            logger.error("Failed to persist %s: %s", categorized.id, exc)
            store_error = exc

        notifications: dict[str, bool] = {}
        if categorized.category == INTERESTED:
            notifications = self._notifier.notify(LeadEvent(categorized, detected_at=self._clock()))

        if store_error is not None:
            raise PersistenceError(categorized.id, str(store_error)) from store_error
        return IngestOutcome(record=categorized, persisted=True, notifications=notifications)

    def reclassify(self, record_ids: list[str]) -> dict[str, str | None]:
        """Summary: Re-run classification for stored records.

        Importance: Applies a newly configured provider to existing mail.
        Alternatives: Delete and re-sync the affected accounts.

        Unknown ids map to None. Notifications are not re-sent.
        """

        results: dict[str, str | None] = {}
        for record_id in record_ids:
            record = self._store.get(record_id)
            if record is None:
                logger.warning("Cannot reclassify unknown record %s", record_id)
                results[record_id] = None
                continue
            result = self._classify(record)
            try:
                self._store.patch_category(record_id, result.category, result.confidence, self._clock())
            except Exception as exc:
                raise PersistenceError(record_id, str(exc)) from exc
            results[record_id] = result.category
        return results

    def _classify(self, record: MessageRecord) -> ClassificationResult:
        try:
            return self._classifier.categorize(record)
        except Exception:
            logger.exception("Classifier failed for %s; using keyword rules", record.id)
            return self._fallback.categorize(record)
