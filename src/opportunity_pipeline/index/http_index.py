from __future__ import annotations

import json
import logging

import requests

from opportunity_pipeline.models import Opportunity

from .base import BulkIndexResult, SearchIndex

logger = logging.getLogger(__name__)


class HttpSearchIndex(SearchIndex):
    """Search index speaking the Elasticsearch document and bulk REST API."""

    def __init__(self, base_url: str, index_name: str = "opportunities", timeout_seconds: int = 15) -> None:
        self.base_url = base_url.rstrip("/")
        self.index_name = index_name
        self.timeout_seconds = timeout_seconds

    def index(self, opportunity: Opportunity) -> None:
        response = requests.put(
            f"{self.base_url}/{self.index_name}/_doc/{opportunity.id}",
            json=opportunity.to_document(),
            timeout=self.timeout_seconds,
        )
        if response.status_code >= 400:
            raise RuntimeError(
                f"Search index returned {response.status_code}: {response.text}"
            )

    def bulk_index(self, opportunities: list[Opportunity]) -> BulkIndexResult:
        if not opportunities:
            return BulkIndexResult()

        body = build_bulk_body(self.index_name, opportunities)
        response = requests.post(
            f"{self.base_url}/_bulk",
            data=body.encode("utf-8"),
            headers={"Content-Type": "application/x-ndjson"},
            timeout=self.timeout_seconds,
        )
        if response.status_code >= 400:
            message = f"bulk index returned {response.status_code}: {response.text}"
            return BulkIndexResult(indexed_count=0, errors=[message])

        return parse_bulk_response(response.json(), len(opportunities))

    def remove(self, opportunity_id: str) -> None:
        response = requests.delete(
            f"{self.base_url}/{self.index_name}/_doc/{opportunity_id}",
            timeout=self.timeout_seconds,
        )
        if response.status_code == 404:
            logger.debug("Document %s was not indexed", opportunity_id)
            return
        if response.status_code >= 400:
            raise RuntimeError(
                f"Search index returned {response.status_code}: {response.text}"
            )


def build_bulk_body(index_name: str, opportunities: list[Opportunity]) -> str:
    lines: list[str] = []
    for opportunity in opportunities:
        lines.append(json.dumps({"index": {"_index": index_name, "_id": opportunity.id}}))
        lines.append(json.dumps(opportunity.to_document()))
    return "\n".join(lines) + "\n"


def parse_bulk_response(payload: dict, submitted: int) -> BulkIndexResult:
    items = payload.get("items")
    if not isinstance(items, list):
        return BulkIndexResult(indexed_count=submitted if not payload.get("errors") else 0)

    result = BulkIndexResult()
    for item in items:
        action = item.get("index", {}) if isinstance(item, dict) else {}
        error = action.get("error")
        if error:
            reason = error.get("reason") if isinstance(error, dict) else error
            result.errors.append(f"failed to index {action.get('_id')}: {reason}")
        else:
            result.indexed_count += 1
    return result
