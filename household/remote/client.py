"""
HTTP client for the remote budgeting service (YNAB API v1).

Uses httpx.AsyncClient with a bearer token per call. Any non-2xx response
raises ``UpstreamError`` carrying the status; transport failures raise
``UpstreamError`` with no status.
"""

import logging
from datetime import date
from urllib.parse import quote

import httpx

from household.config import DEFAULT_YNAB_API_BASE
from household.errors import UpstreamError
from household.observability.metrics import upstream_errors

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class BudgetServiceClient:
    """Thin async wrapper over the budgeting service's REST API."""

    def __init__(
        self,
        base_url: str = DEFAULT_YNAB_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        json_data: dict | None = None,
        params: dict | None = None,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                return await client.request(method, url, headers=headers, json=json_data, params=params)
        except httpx.RequestError as e:
            upstream_errors.inc()
            logger.error("Budget service request error: %s %s: %s", method, path, e)
            raise UpstreamError(None, f"Budget service unreachable: {e}") from e

    @staticmethod
    def error_for(response: httpx.Response) -> UpstreamError:
        upstream_errors.inc()
        message = f"Budget service error {response.status_code}"
        try:
            detail = response.json().get("error", {}).get("detail")
            if detail:
                message += f": {detail}"
        except (ValueError, AttributeError):
            message += f": {response.text[:200]}"
        logger.error(message)
        return UpstreamError(response.status_code, message)

    def _json(self, response: httpx.Response) -> dict:
        if not response.is_success:
            raise self.error_for(response)
        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamError(response.status_code, "Budget service returned invalid JSON") from e
        if not isinstance(body, dict):
            raise UpstreamError(response.status_code, "Budget service returned an unexpected body")
        return body

    async def get_categories(self, token: str, budget_id: str) -> dict:
        response = await self._request("GET", f"/budgets/{_segment(budget_id)}/categories", token)
        return self._json(response)

    async def get_account_transactions(
        self, token: str, budget_id: str, account_id: str, since_date: date | None = None
    ) -> dict:
        params = {"since_date": since_date.isoformat()} if since_date else None
        response = await self._request(
            "GET",
            f"/budgets/{_segment(budget_id)}/accounts/{_segment(account_id)}/transactions",
            token,
            params=params,
        )
        return self._json(response)

    async def create_transaction(self, token: str, budget_id: str, payload: dict) -> httpx.Response:
        """POST a transaction; the caller decides which statuses count as success."""
        return await self._request(
            "POST", f"/budgets/{_segment(budget_id)}/transactions", token, json_data=payload
        )
