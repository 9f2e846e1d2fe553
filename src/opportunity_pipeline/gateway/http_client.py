from __future__ import annotations

import logging
import time
from typing import Any, Callable

import requests

from opportunity_pipeline import __version__
from opportunity_pipeline.config import PartnerApiSettings
from opportunity_pipeline.state import PipelineState

logger = logging.getLogger(__name__)

USER_AGENT = f"opportunity-pipeline/{__version__}"


class RateLimitExceededError(RuntimeError):
    """Raised when a partner API's request window is exhausted."""

    def __init__(self, api_id: str, reset_in_ms: int) -> None:
        super().__init__(f"Rate limit exceeded for {api_id}; resets in {reset_in_ms} ms")
        self.api_id = api_id
        self.reset_in_ms = reset_in_ms


class PartnerApiError(RuntimeError):
    """Raised when a partner API request fails after all retries."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryingHttpClient:
    """HTTP transport for one partner API.

    Every logical request takes one slot in the API's rate-limit window, then
    gets up to ``retry.max_retries`` extra attempts with exponential backoff.
    Each attempt is reported to the health tracker.
    """

    def __init__(
        self,
        settings: PartnerApiSettings,
        state: PipelineState,
        *,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.settings = settings
        self.state = state
        self.session = session or requests.Session()
        self._sleep = sleep
        self._timer = timer

    @property
    def api_id(self) -> str:
        return self.settings.id

    def build_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.settings.base_url.rstrip('/')}/{path.lstrip('/')}"

    def build_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        headers.update(self.settings.headers)
        return headers

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        payload: Any = None,
    ) -> Any:
        limits = self.settings.rate_limit
        decision = self.state.rate_limiter.check(self.api_id, limits.requests, limits.window_ms)
        if not decision.allowed:
            raise RateLimitExceededError(self.api_id, decision.reset_in_ms)

        url = self.build_url(path)
        retry = self.settings.retry
        last_error: Exception | None = None
        last_status: int | None = None

        for attempt in range(retry.max_retries + 1):
            started = self._timer()
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=payload,
                    headers=self.build_headers(),
                    timeout=self.settings.timeout_seconds,
                )
                if response.status_code >= 400:
                    last_status = response.status_code
                    raise PartnerApiError(
                        f"{method} {url} returned {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
            except (requests.RequestException, PartnerApiError) as exc:
                last_error = exc
                self._record(success=False, started=started)
                if attempt < retry.max_retries:
                    delay_ms = retry.backoff_ms * (2**attempt)
                    logger.warning(
                        "Request to %s failed (attempt %d/%d), retrying in %d ms: %s",
                        self.api_id,
                        attempt + 1,
                        retry.max_retries + 1,
                        delay_ms,
                        exc,
                    )
                    self._sleep(delay_ms / 1000.0)
                continue

            self._record(success=True, started=started)
            return _decode_body(response)

        raise PartnerApiError(
            f"{method} {url} failed after {retry.max_retries + 1} attempts: {last_error}",
            status_code=last_status,
        ) from last_error

    def _record(self, *, success: bool, started: float) -> None:
        elapsed_ms = (self._timer() - started) * 1000.0
        self.state.health.record(self.api_id, success=success, response_time_ms=elapsed_ms)


class RestClient:
    def __init__(self, transport: RetryingHttpClient) -> None:
        self.transport = transport

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return self.transport.request("GET", path, params=params)

    def post(self, path: str, payload: Any = None) -> Any:
        return self.transport.request("POST", path, payload=payload)

    def put(self, path: str, payload: Any = None) -> Any:
        return self.transport.request("PUT", path, payload=payload)

    def delete(self, path: str) -> Any:
        return self.transport.request("DELETE", path)


class GraphQLClient:
    def __init__(self, transport: RetryingHttpClient, endpoint: str = "/graphql") -> None:
        self.transport = transport
        self.endpoint = endpoint

    def query(self, query: str, variables: dict[str, Any] | None = None) -> Any:
        return self._execute(query, variables)

    def mutation(self, mutation: str, variables: dict[str, Any] | None = None) -> Any:
        return self._execute(mutation, variables)

    def _execute(self, document: str, variables: dict[str, Any] | None) -> Any:
        body = self.transport.request(
            "POST",
            self.endpoint,
            payload={"query": document, "variables": variables or {}},
        )
        if isinstance(body, dict):
            errors = body.get("errors")
            if errors:
                messages = [
                    str(error.get("message", error)) if isinstance(error, dict) else str(error)
                    for error in errors
                ]
                raise PartnerApiError(
                    f"GraphQL request to {self.transport.api_id} failed: {'; '.join(messages)}"
                )
            return body.get("data")
        return body


def create_rest_client(
    settings: PartnerApiSettings,
    state: PipelineState,
    **transport_options: Any,
) -> RestClient:
    return RestClient(RetryingHttpClient(settings, state, **transport_options))


def create_graphql_client(
    settings: PartnerApiSettings,
    state: PipelineState,
    **transport_options: Any,
) -> GraphQLClient:
    return GraphQLClient(RetryingHttpClient(settings, state, **transport_options))


def _decode_body(response: requests.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
