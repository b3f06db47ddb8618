"""Single gateway for outbound HTTP traffic.

Attaches the bearer token, refreshes an expired token once per expiry no
matter how many requests notice it, retries rate-limited and 5xx responses on
a fixed delay table, and turns every failure into an `ApiError`.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx
from pydantic import ValidationError

from fintrack.config import Settings, load_settings
from fintrack.errors import ApiError, ErrorCode, error_from_payload
from fintrack.events import SESSION_EXPIRED, TOKENS_REFRESHED, EventBus, event_bus
from fintrack.schemas import Envelope, Meta
from fintrack.storage import (
    AUTH_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    JsonFileTokenStorage,
    MemoryTokenStorage,
    TokenStorage,
)

logger = logging.getLogger(__name__)

AUTH_PATH_PREFIX = "/auth/"
REFRESH_PATH = "/auth/refresh"
RETRY_DELAYS = (1.0, 2.0, 5.0, 10.0, 30.0)  # seconds, indexed by retry attempt
SESSION_EXPIRED_MESSAGE = "Your session has expired. Please log in again."


@dataclass(frozen=True)
class ApiResponse:
    success: bool
    data: Any = None
    meta: Optional[Meta] = None


def is_auth_path(path: str) -> bool:
    return AUTH_PATH_PREFIX in path


def _payload(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def classify_response(response: httpx.Response) -> ApiResponse:
    """Return the parsed envelope for a success, raise ApiError for anything else.

    A 2xx whose envelope says `success: false` is a failure too; that is how
    some endpoints report an expired session.
    """
    payload = _payload(response)
    status = response.status_code

    if 200 <= status < 300:
        if isinstance(payload, dict) and "success" in payload:
            if not payload["success"]:
                raise error_from_payload(payload, status)
            try:
                envelope = Envelope.model_validate(payload)
            except ValidationError:
                return ApiResponse(True, payload.get("data"))
            return ApiResponse(True, envelope.data, envelope.meta)
        return ApiResponse(True, payload)

    raise error_from_payload(payload, status)


class ApiClient:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        storage: Optional[TokenStorage] = None,
        events: Optional[EventBus] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delays: Sequence[float] = RETRY_DELAYS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or load_settings()
        if storage is None:
            if self.settings.token_file:
                storage = JsonFileTokenStorage(self.settings.token_file)
            else:
                storage = MemoryTokenStorage()
        self.storage = storage
        self.events = events or event_bus
        self.retry_delays = tuple(retry_delays)
        self._sleep = sleep
        # the only shared mutable state: the refresh currently in flight, if any
        self._refresh_task: Optional[asyncio.Task] = None
        self._http = httpx.AsyncClient(
            base_url=self.settings.api_url,
            timeout=self.settings.timeout,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport,
        )
        logger.info(f"API client initialized with URL: {self.settings.api_url}")

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        base = self.settings.auth_api_url if is_auth_path(path) else self.settings.api_url
        return base.rstrip("/") + "/" + path.lstrip("/")

    async def _send(self, method: str, path: str, token: Optional[str], **kwargs) -> httpx.Response:
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        logger.debug(f"API Request: {method} {path}")
        try:
            response = await self._http.request(method, self._url(path), headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Request timed out: {method} {path}")
            raise ApiError(
                ErrorCode.NETWORK_ERROR,
                "Request timed out. The server is taking too long to respond.",
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Network error for {method} {path}: {e}")
            raise ApiError(ErrorCode.NETWORK_ERROR) from e
        logger.debug(f"API Response: {response.status_code} for {path}")
        return response

    async def request(self, method: str, path: str, **kwargs) -> ApiResponse:
        method = method.upper()
        auth_request = is_auth_path(path)
        refreshed = False
        attempt = 0

        while True:
            token = await self.storage.get_item(AUTH_TOKEN_KEY)
            response = await self._send(method, path, token, **kwargs)
            try:
                return classify_response(response)
            except ApiError as error:
                if error.code is ErrorCode.AUTH_EXPIRED:
                    if auth_request:
                        raise
                    if not refreshed:
                        refreshed = True
                        if await self._ensure_fresh_token(token):
                            logger.info(f"Retrying {method} {path} with refreshed token")
                            continue
                        raise
                    # still unauthorized with a fresh token
                    await self._logout()
                    raise

                if error.retryable and attempt < len(self.retry_delays):
                    delay = self.retry_delays[attempt]
                    attempt += 1
                    logger.warning(
                        f"{error.code.value} for {method} {path}. "
                        f"Retrying in {delay}s (attempt {attempt}/{len(self.retry_delays)})"
                    )
                    await self._sleep(delay)
                    continue

                logger.error(f"API Error for {method} {path}: {error!r}")
                raise

    async def _ensure_fresh_token(self, stale_token: Optional[str]) -> bool:
        """Make sure storage holds a token newer than `stale_token`.

        Concurrent callers share one refresh; a caller that arrives after the
        refresh already replaced the token just uses the new one.
        """
        current = await self.storage.get_item(AUTH_TOKEN_KEY)
        if current and current != stale_token:
            return True
        if stale_token and not current and self._refresh_task is None:
            # session already cleared by a failed refresh
            return False

        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._refresh())
        new_token = await asyncio.shield(self._refresh_task)
        return new_token is not None

    async def _refresh(self) -> Optional[str]:
        try:
            new_token = await self._request_new_token()
            if new_token is None:
                await self._logout()
            return new_token
        finally:
            self._refresh_task = None

    async def _request_new_token(self) -> Optional[str]:
        refresh_token = await self.storage.get_item(REFRESH_TOKEN_KEY)
        if not refresh_token:
            logger.info("Token expired and no refresh token is stored")
            return None

        logger.info("Refreshing access token")
        try:
            response = await self._http.post(
                self._url(REFRESH_PATH),
                json={"refreshToken": refresh_token},
                timeout=self.settings.refresh_timeout,
            )
            result = classify_response(response)
        except (httpx.HTTPError, ApiError) as e:
            logger.error(f"Token refresh failed: {e}")
            return None

        data = result.data if isinstance(result.data, dict) else {}
        token = data.get("token")
        if not token:
            logger.error("Token refresh response carried no token")
            return None

        await self.storage.set_item(AUTH_TOKEN_KEY, token)
        if data.get("refreshToken"):
            await self.storage.set_item(REFRESH_TOKEN_KEY, data["refreshToken"])
        self.events.publish(TOKENS_REFRESHED, {})
        return token

    async def _logout(self) -> None:
        logger.warning("Authentication failed. Clearing credentials and redirecting to entry screen")
        await self.storage.remove_item(AUTH_TOKEN_KEY)
        await self.storage.remove_item(REFRESH_TOKEN_KEY)
        self.events.publish(SESSION_EXPIRED, {
            "message": SESSION_EXPIRED_MESSAGE,
            "redirect_to": self.settings.entry_route,
        })

    async def get(self, path: str, params: Optional[dict] = None) -> ApiResponse:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, data: Any = None) -> ApiResponse:
        return await self.request("POST", path, json=data)

    async def put(self, path: str, data: Any = None) -> ApiResponse:
        return await self.request("PUT", path, json=data)

    async def delete(self, path: str) -> ApiResponse:
        return await self.request("DELETE", path)

    async def auth_post(self, path: str, data: Any = None) -> ApiResponse:
        if not path.startswith(AUTH_PATH_PREFIX):
            path = "/auth/" + path.lstrip("/")
        return await self.request("POST", path, json=data)
