import logging
from typing import Any, Dict, Optional, Union

from fintrack.api_client import ApiClient, ApiResponse
from fintrack.domain import Transaction, TransactionPage
from fintrack.errors import ApiError
from fintrack.filters import TransactionFilter
from fintrack.schemas import Meta, TransactionPayload
from fintrack.storage import AUTH_TOKEN_KEY, REFRESH_TOKEN_KEY
from fintrack.transforms import to_transaction, to_transactions

logger = logging.getLogger(__name__)

ENDPOINTS = {
    "transactions": "/api/v1/transactions",
    "transaction": "/api/v1/transactions/{id}",
    "summary": "/api/v1/statistics/summary",
    "budget_comparison": "/api/v1/statistics/budget-comparison",
    "spending_by_category": "/api/v1/statistics/spending-by-category",
    "monthly_trends": "/api/v1/statistics/monthly-trends",
    "savings_progress": "/api/v1/statistics/savings-progress",
    "login": "/auth/login",
    "register": "/auth/register",
    "logout": "/auth/logout",
}

Payload = Union[TransactionPayload, Dict[str, Any]]


def _body(payload: Payload) -> dict:
    if isinstance(payload, TransactionPayload):
        return payload.to_json()
    return TransactionPayload.model_validate(payload).to_json()


def _record(data: Any) -> Any:
    if isinstance(data, dict) and isinstance(data.get("transaction"), dict):
        return data["transaction"]
    return data


def _page_parts(response: ApiResponse):
    """Find the record list and meta whether the server nests them or not."""
    data = response.data
    meta = response.meta
    if isinstance(data, list):
        return data, meta
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        nested = data.get("meta") or data.get("pagination")
        if isinstance(nested, dict):
            meta = Meta.model_validate(nested)
        return data["data"], meta
    if data is None:
        return [], meta
    return [data], meta


class TransactionService:
    """CRUD facade over the transactions endpoints."""

    def __init__(self, client: ApiClient):
        self.client = client

    async def list_transactions(
        self, filters: Optional[TransactionFilter] = None, page: int = 1, page_size: int = 10
    ) -> TransactionPage:
        params = {"page": str(page), "pageSize": str(page_size)}
        if filters:
            params.update(filters.to_params())

        response = await self.client.get(ENDPOINTS["transactions"], params=params)
        records, meta = _page_parts(response)
        transactions = to_transactions(records, skip_invalid=True)

        total = None
        if meta is not None:
            total = meta.count if meta.count is not None else meta.total_count
        if meta is not None and meta.has_more is not None:
            has_more = meta.has_more
        elif total is not None:
            has_more = page * page_size < total
        else:
            has_more = len(records) >= page_size
        logger.debug(f"Fetched {len(transactions)} transactions (page {page}, total {total})")
        return TransactionPage(
            transactions=transactions,
            page=page,
            page_size=page_size,
            total_count=total,
            has_more=has_more,
        )

    async def get_transaction(self, transaction_id: str) -> Transaction:
        response = await self.client.get(ENDPOINTS["transaction"].format(id=transaction_id))
        return to_transaction(_record(response.data))

    async def create_transaction(self, payload: Payload) -> Transaction:
        response = await self.client.post(ENDPOINTS["transactions"], _body(payload))
        return to_transaction(_record(response.data))

    async def update_transaction(self, transaction_id: str, payload: Payload) -> Transaction:
        response = await self.client.put(ENDPOINTS["transaction"].format(id=transaction_id), _body(payload))
        return to_transaction(_record(response.data))

    async def delete_transaction(self, transaction_id: str) -> bool:
        response = await self.client.delete(ENDPOINTS["transaction"].format(id=transaction_id))
        return response.success


class StatisticsService:
    """Server side summaries, returned as the `data` part of the envelope."""

    def __init__(self, client: ApiClient):
        self.client = client

    async def _data(self, key: str, params: Optional[dict] = None) -> Dict[str, Any]:
        response = await self.client.get(ENDPOINTS[key], params=params)
        return response.data or {}

    async def summary(self) -> Dict[str, Any]:
        return await self._data("summary")

    async def budget_comparison(self) -> Dict[str, Any]:
        return await self._data("budget_comparison")

    async def spending_by_category(self, start_date=None, end_date=None) -> Dict[str, Any]:
        params = {}
        if start_date:
            params["startDate"] = str(start_date)
        if end_date:
            params["endDate"] = str(end_date)
        return await self._data("spending_by_category", params or None)

    async def monthly_trends(self, months: Optional[int] = None) -> Dict[str, Any]:
        return await self._data("monthly_trends", {"months": str(months)} if months else None)

    async def savings_progress(self) -> Dict[str, Any]:
        return await self._data("savings_progress")


class AuthService:
    def __init__(self, client: ApiClient):
        self.client = client

    async def _store_tokens(self, response: ApiResponse) -> Dict[str, Any]:
        data = response.data if isinstance(response.data, dict) else {}
        if data.get("token"):
            await self.client.storage.set_item(AUTH_TOKEN_KEY, data["token"])
        if data.get("refreshToken"):
            await self.client.storage.set_item(REFRESH_TOKEN_KEY, data["refreshToken"])
        return data

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        response = await self.client.auth_post(ENDPOINTS["login"], {"email": email, "password": password})
        return await self._store_tokens(response)

    async def register(self, email: str, password: str, name: str) -> Dict[str, Any]:
        response = await self.client.auth_post(
            ENDPOINTS["register"], {"email": email, "password": password, "name": name}
        )
        return await self._store_tokens(response)

    async def logout(self) -> None:
        try:
            await self.client.auth_post(ENDPOINTS["logout"])
        except ApiError as e:
            # local credentials are cleared regardless
            logger.warning(f"Logout request failed: {e.message}")
        await self.client.storage.remove_item(AUTH_TOKEN_KEY)
        await self.client.storage.remove_item(REFRESH_TOKEN_KEY)
