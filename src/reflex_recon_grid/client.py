"""Async HTTP client for the reconciliation query and mutation endpoints."""

import asyncio
import time
from collections.abc import Callable, Mapping
from typing import Any

import httpx

from reflex_recon_grid.config import GridSettings
from reflex_recon_grid.exceptions import ReconApiError
from reflex_recon_grid.logging_setup import get_logger
from reflex_recon_grid.models import ManualActionRequest

logger = get_logger(__name__)

TRANSACTIONS_ENDPOINT = "recon/total-transactions"
MANUAL_ACTION_ENDPOINT = "recon/{platform}/manual-action"

TokenProvider = Callable[[], str | None]

_DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


def _is_retryable_status(status: int) -> bool:
    return status >= 500 or status == 429


def _error_message(response: httpx.Response, body: Any) -> str:
    if isinstance(body, Mapping):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return response.reason_phrase or "API Error"


class ReconApiClient:
    """Thin wrapper around :class:`httpx.AsyncClient` with retry.

    Retryable failures (HTTP 5xx, 429, timeouts, transport errors) are
    attempted up to ``settings.max_retry_attempts`` times, waiting
    ``retry_delay * attempt`` seconds between attempts.  Other 4xx
    responses fail immediately.  Every failure surfaces as
    :class:`ReconApiError`.

    Args:
        settings: Connection settings.
        token_provider: Returns the bearer token for each request, or
            ``None`` to send no ``Authorization`` header.
        transport: Optional httpx transport (``httpx.MockTransport`` in
            tests).
    """

    def __init__(
        self,
        settings: GridSettings | None = None,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or GridSettings()
        self._token_provider = token_provider
        self._client = httpx.AsyncClient(
            timeout=self.settings.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ReconApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def fetch_transactions(self, params: Mapping[str, str]) -> dict[str, Any]:
        """Run one list query and return the decoded JSON body.

        Raises:
            ReconApiError: On any transport, HTTP or decoding failure.
        """
        body = await self._request("GET", TRANSACTIONS_ENDPOINT, params=dict(params))
        if isinstance(body, list):
            return {"data": body}
        if not isinstance(body, dict):
            raise ReconApiError(
                "Expected a JSON object from the query endpoint",
                status_code=200,
                code="BAD_PAYLOAD",
                details=body,
            )
        return body

    async def manual_action(self, platform: str, request: ManualActionRequest) -> Any:
        """Move rows to a manual category on *platform*.

        Raises:
            ReconApiError: On any transport or HTTP failure.
        """
        endpoint = MANUAL_ACTION_ENDPOINT.format(platform=platform.strip())
        return await self._request("POST", endpoint, json=request.to_json())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = dict(_DEFAULT_HEADERS)
        token = self._token_provider() if self._token_provider is not None else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if self.settings.org_id:
            headers["X-Org-ID"] = self.settings.org_id
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        url = self.settings.api_url(endpoint)
        attempts = max(1, self.settings.max_retry_attempts)
        last_error: ReconApiError | None = None

        for attempt in range(1, attempts + 1):
            t0 = time.perf_counter()
            try:
                response = await self._client.request(
                    method, url, params=params, json=json, headers=self._headers()
                )
            except httpx.TimeoutException as exc:
                last_error = ReconApiError(
                    "Request timeout", status_code=408, code="TIMEOUT", details=str(exc)
                )
            except httpx.TransportError as exc:
                last_error = ReconApiError(
                    str(exc) or "Network error", status_code=0, code="NETWORK_ERROR"
                )
            else:
                elapsed_ms = (time.perf_counter() - t0) * 1000
                logger.debug(
                    "[ReconApi] %s %s -> %d (%.1fms)",
                    method, endpoint, response.status_code, elapsed_ms,
                )
                if response.is_success:
                    return self._decode(response)
                body = self._decode_error_body(response)
                error = ReconApiError(
                    _error_message(response, body),
                    status_code=response.status_code,
                    code="API_ERROR",
                    details=body,
                )
                if not _is_retryable_status(response.status_code):
                    raise error
                last_error = error

            if attempt < attempts:
                delay = self.settings.retry_delay * attempt
                logger.warning(
                    "[ReconApi] %s %s failed (attempt %d/%d): %s; retrying in %.1fs",
                    method, endpoint, attempt, attempts, last_error, delay,
                )
                await asyncio.sleep(delay)

        assert last_error is not None
        raise last_error

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ReconApiError(
                "Response body is not valid JSON",
                status_code=response.status_code,
                code="BAD_PAYLOAD",
                details=response.text[:200],
            ) from exc

    @staticmethod
    def _decode_error_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text or None
