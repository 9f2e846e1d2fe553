from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from opportunity_pipeline.index.base import SearchIndex
from opportunity_pipeline.models import RawCandidate, WebhookPayload
from opportunity_pipeline.quality.engine import CandidateRejectedError, QualityEngine
from opportunity_pipeline.quality.validation import CandidateValidationError
from opportunity_pipeline.store.base import OpportunityStore

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_SOURCE = "webhook"


class WebhookOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DELETED = "deleted"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass(slots=True)
class WebhookResult:
    event: str
    outcome: WebhookOutcome
    opportunity_id: str | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is not WebhookOutcome.FAILED


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check a hex HMAC-SHA256 of the raw body, optionally ``sha256=`` prefixed."""
    if not signature:
        return False
    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, provided.lower())


class WebhookProcessor:
    """Applies partner push events to the catalog through the quality gate.

    ``*.created`` and ``*.updated`` events upsert by external URL,
    ``*.deleted`` events soft-deactivate by id. Anything else is ignored.
    A failure is reported in the event's result and never raised.
    """

    def __init__(self, *, store: OpportunityStore, index: SearchIndex, engine: QualityEngine) -> None:
        self.store = store
        self.index = index
        self.engine = engine

    def process(self, payload: WebhookPayload | Mapping[str, Any]) -> WebhookResult:
        if not isinstance(payload, WebhookPayload):
            payload = WebhookPayload.from_mapping(payload)

        action = payload.event.rsplit(".", 1)[-1]
        try:
            if action in {"created", "updated"}:
                return self._upsert(payload)
            if action == "deleted":
                return self._delete(payload)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Webhook event %s from %s failed", payload.event, payload.source)
            return WebhookResult(event=payload.event, outcome=WebhookOutcome.FAILED, message=str(exc))

        logger.info("Ignoring unrecognized webhook event %r from %s", payload.event, payload.source)
        return WebhookResult(event=payload.event, outcome=WebhookOutcome.IGNORED)

    def process_batch(self, payloads: Iterable[WebhookPayload | Mapping[str, Any]]) -> list[WebhookResult]:
        return [self.process(payload) for payload in payloads]

    def _upsert(self, payload: WebhookPayload) -> WebhookResult:
        candidate = RawCandidate.from_mapping(payload.data)
        source_id = payload.source or DEFAULT_WEBHOOK_SOURCE
        try:
            opportunity = self.engine.admit(candidate, source_id=source_id, upsert_key="external_url")
        except (CandidateValidationError, CandidateRejectedError) as exc:
            logger.info("Rejected webhook event %s: %s", payload.event, exc)
            return WebhookResult(
                event=payload.event,
                outcome=WebhookOutcome.REJECTED,
                message=str(exc),
            )

        stored, created = self.store.upsert_by_external_url(opportunity)
        if stored.is_active:
            self.index.index(stored)
        logger.info(
            "%s opportunity %s from webhook %s",
            "Created" if created else "Updated",
            stored.id,
            payload.event,
        )
        return WebhookResult(
            event=payload.event,
            outcome=WebhookOutcome.ACCEPTED,
            opportunity_id=stored.id,
            message="created" if created else "updated",
        )

    def _delete(self, payload: WebhookPayload) -> WebhookResult:
        raw_id = payload.data.get("id") or payload.data.get("opportunityId")
        if not raw_id:
            return WebhookResult(
                event=payload.event,
                outcome=WebhookOutcome.REJECTED,
                message="Deletion event carries no opportunity id",
            )

        opportunity_id = str(raw_id)
        if not self.store.deactivate(opportunity_id):
            return WebhookResult(
                event=payload.event,
                outcome=WebhookOutcome.REJECTED,
                opportunity_id=opportunity_id,
                message="Opportunity not found",
            )

        self.index.remove(opportunity_id)
        logger.info("Deactivated opportunity %s from webhook %s", opportunity_id, payload.event)
        return WebhookResult(
            event=payload.event,
            outcome=WebhookOutcome.DELETED,
            opportunity_id=opportunity_id,
        )
