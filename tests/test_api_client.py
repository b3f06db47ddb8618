import asyncio

import httpx
import pytest

from fintrack.api_client import RETRY_DELAYS, ApiClient, ApiResponse, classify_response
from fintrack.config import Settings
from fintrack.errors import ApiError, ErrorCode
from fintrack.events import SESSION_EXPIRED, EventBus
from fintrack.storage import AUTH_TOKEN_KEY, REFRESH_TOKEN_KEY, MemoryTokenStorage

SETTINGS = Settings(api_url="http://api.test", auth_api_url="http://auth.test")


def ok(data=None, meta=None):
    body = {"success": True, "data": data}
    if meta is not None:
        body["meta"] = meta
    return httpx.Response(200, json=body)


def expired():
    return httpx.Response(401, json={"success": False, "error": {"code": "TOKEN_EXPIRED", "message": "Token expired"}})


def make_client(handler, tokens=None, delays=RETRY_DELAYS):
    storage = MemoryTokenStorage(tokens or {})
    events = EventBus()
    expired_events = []
    events.subscribe(SESSION_EXPIRED, expired_events.append)
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    client = ApiClient(
        settings=SETTINGS,
        storage=storage,
        events=events,
        transport=httpx.MockTransport(handler),
        retry_delays=delays,
        sleep=fake_sleep,
    )
    return client, storage, sleeps, expired_events


@pytest.mark.asyncio
async def test_attaches_bearer_token_when_stored():
    seen = []

    def handler(request):
        seen.append(request.headers.get("Authorization"))
        return ok({"x": 1})

    client, _, _, _ = make_client(handler, {AUTH_TOKEN_KEY: "abc"})
    response = await client.get("/api/v1/statistics/summary")
    await client.aclose()

    assert response.success
    assert response.data == {"x": 1}
    assert seen == ["Bearer abc"]


@pytest.mark.asyncio
async def test_no_authorization_header_without_token():
    seen = []

    def handler(request):
        seen.append(request.headers.get("Authorization"))
        return ok()

    async with make_client(handler)[0] as client:
        await client.get("/api/v1/transactions")

    assert seen == [None]


@pytest.mark.asyncio
async def test_auth_paths_use_auth_base_url():
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        return ok({"token": "t"})

    client, _, _, _ = make_client(handler)
    await client.auth_post("login", {"email": "a@b.c", "password": "pw"})
    await client.get("/api/v1/transactions")
    await client.aclose()

    assert hosts == ["auth.test", "api.test"]


@pytest.mark.asyncio
async def test_meta_is_parsed():
    client, _, _, _ = make_client(lambda request: ok([], {"count": 12, "page": 2, "pageSize": 5}))
    response = await client.get("/api/v1/transactions")
    await client.aclose()

    assert response.meta.count == 12
    assert response.meta.page_size == 5


@pytest.mark.asyncio
async def test_server_error_retried_exactly_schedule_length_then_fatal():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="Service Unavailable")

    client, _, sleeps, _ = make_client(handler)
    with pytest.raises(ApiError) as exc:
        await client.get("/api/v1/statistics/summary")
    await client.aclose()

    assert exc.value.code is ErrorCode.SERVER_ERROR
    assert exc.value.status == 503
    assert len(calls) == 1 + len(RETRY_DELAYS)
    assert sleeps == list(RETRY_DELAYS)


@pytest.mark.asyncio
async def test_rate_limit_backs_off_then_succeeds():
    responses = iter([
        httpx.Response(429, json={"success": False, "error": {"code": "RATE_LIMIT_EXCEEDED", "message": "slow down"}}),
        httpx.Response(400, json={"success": False, "error": {"code": "RATE_LIMIT_EXCEEDED", "message": "slow down"}}),
        ok({"done": True}),
    ])
    client, _, sleeps, _ = make_client(lambda request: next(responses))

    response = await client.get("/api/v1/transactions")
    await client.aclose()

    assert response.data == {"done": True}
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_network_error_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client, _, sleeps, _ = make_client(handler)
    with pytest.raises(ApiError) as exc:
        await client.get("/api/v1/transactions")
    await client.aclose()

    assert exc.value.code is ErrorCode.NETWORK_ERROR
    assert len(calls) == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_timeout_is_a_network_error():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    client, _, _, _ = make_client(handler)
    with pytest.raises(ApiError) as exc:
        await client.get("/api/v1/transactions")
    await client.aclose()

    assert exc.value.code is ErrorCode.NETWORK_ERROR
    assert "timed out" in exc.value.message


@pytest.mark.asyncio
async def test_undecodable_body_is_a_network_error():
    def handler(request):
        return httpx.Response(200, headers={"content-encoding": "gzip"}, stream=httpx.ByteStream(b"not gzip"))

    client, _, sleeps, _ = make_client(handler)
    with pytest.raises(ApiError) as exc:
        await client.get("/api/v1/transactions")
    await client.aclose()

    assert exc.value.code is ErrorCode.NETWORK_ERROR
    assert isinstance(exc.value.__cause__, httpx.DecodingError)
    assert sleeps == []


@pytest.mark.asyncio
async def test_validation_error_surfaces_immediately():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(422, json={"detail": [{"msg": "amount is required"}]})

    client, _, sleeps, _ = make_client(handler)
    with pytest.raises(ApiError) as exc:
        await client.post("/api/v1/transactions", {"type": "expense"})
    await client.aclose()

    assert exc.value.code is ErrorCode.VALIDATION_ERROR
    assert exc.value.message == "amount is required"
    assert exc.value.to_dict()["status"] == 422
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_request_retried():
    refreshes = []

    def handler(request):
        if request.url.path == "/auth/refresh":
            refreshes.append(request.url.host)
            return ok({"token": "new", "refreshToken": "r2"})
        if request.headers.get("Authorization") == "Bearer new":
            return ok({"ok": True})
        return expired()

    client, storage, _, expired_events = make_client(handler, {AUTH_TOKEN_KEY: "old", REFRESH_TOKEN_KEY: "r1"})
    response = await client.get("/api/v1/transactions")
    await client.aclose()

    assert response.data == {"ok": True}
    assert refreshes == ["auth.test"]
    assert await storage.get_item(AUTH_TOKEN_KEY) == "new"
    assert await storage.get_item(REFRESH_TOKEN_KEY) == "r2"
    assert expired_events == []
    assert client._refresh_task is None


@pytest.mark.asyncio
async def test_concurrent_expiry_issues_exactly_one_refresh():
    refreshes = []

    async def handler(request):
        if request.url.path == "/auth/refresh":
            refreshes.append(request)
            await asyncio.sleep(0.01)
            return ok({"token": "new"})
        if request.headers.get("Authorization") == "Bearer new":
            return ok({"path": request.url.path})
        return expired()

    client, _, _, _ = make_client(handler, {AUTH_TOKEN_KEY: "old", REFRESH_TOKEN_KEY: "r1"})
    results = await asyncio.gather(*(client.get(f"/api/v1/transactions/{i}") for i in range(5)))
    await client.aclose()

    assert len(refreshes) == 1
    assert [r.data["path"] for r in results] == [f"/api/v1/transactions/{i}" for i in range(5)]
    assert client._refresh_task is None


@pytest.mark.asyncio
async def test_concurrent_expiry_with_failed_refresh_fails_all_identically():
    refreshes = []

    async def handler(request):
        if request.url.path == "/auth/refresh":
            refreshes.append(request)
            await asyncio.sleep(0.01)
            return httpx.Response(401, json={"success": False, "error": {"code": "INVALID_REFRESH_TOKEN"}})
        return expired()

    client, storage, _, expired_events = make_client(handler, {AUTH_TOKEN_KEY: "old", REFRESH_TOKEN_KEY: "r1"})
    results = await asyncio.gather(
        *(client.get("/api/v1/transactions") for _ in range(5)), return_exceptions=True
    )
    await client.aclose()

    assert len(refreshes) == 1
    assert all(isinstance(r, ApiError) for r in results)
    assert all(r == results[0] for r in results)
    assert results[0].code is ErrorCode.AUTH_EXPIRED
    assert len(expired_events) == 1
    assert expired_events[0].payload["redirect_to"] == "/"
    assert await storage.get_item(AUTH_TOKEN_KEY) is None
    assert await storage.get_item(REFRESH_TOKEN_KEY) is None
    assert client._refresh_task is None


@pytest.mark.asyncio
async def test_unauthorized_payload_in_200_is_treated_like_401():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": {"code": 401, "message": "Unauthorized"}})

    client, storage, _, expired_events = make_client(handler, {AUTH_TOKEN_KEY: "old"})
    with pytest.raises(ApiError) as exc:
        await client.get("/api/v1/statistics/summary")
    await client.aclose()

    assert exc.value.code is ErrorCode.AUTH_EXPIRED
    assert exc.value.status == 401
    assert len(expired_events) == 1
    assert await storage.get_item(AUTH_TOKEN_KEY) is None


@pytest.mark.asyncio
async def test_still_unauthorized_after_refresh_logs_out():
    refreshes = []

    def handler(request):
        if request.url.path == "/auth/refresh":
            refreshes.append(request)
            return ok({"token": "new"})
        return expired()

    client, storage, _, expired_events = make_client(handler, {AUTH_TOKEN_KEY: "old", REFRESH_TOKEN_KEY: "r1"})
    with pytest.raises(ApiError) as exc:
        await client.get("/api/v1/transactions")
    await client.aclose()

    assert exc.value.code is ErrorCode.AUTH_EXPIRED
    assert len(refreshes) == 1
    assert len(expired_events) == 1
    assert await storage.get_item(AUTH_TOKEN_KEY) is None


@pytest.mark.asyncio
async def test_auth_requests_do_not_trigger_refresh_or_logout():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(401, json={"success": False, "error": {"code": "401", "message": "Invalid credentials"}})

    client, storage, _, expired_events = make_client(handler, {AUTH_TOKEN_KEY: "old", REFRESH_TOKEN_KEY: "r1"})
    with pytest.raises(ApiError) as exc:
        await client.auth_post("/auth/login", {"email": "a@b.c", "password": "bad"})
    await client.aclose()

    assert exc.value.code is ErrorCode.AUTH_EXPIRED
    assert paths == ["/auth/login"]
    assert expired_events == []
    assert await storage.get_item(AUTH_TOKEN_KEY) == "old"


def test_classify_response_plain_json_and_empty_body():
    plain = classify_response(httpx.Response(200, json=[1, 2]))
    empty = classify_response(httpx.Response(204))

    assert plain.success and plain.data == [1, 2]
    assert empty.success and empty.data is None


def test_classify_response_raises_instead_of_returning_errors():
    envelope = classify_response(httpx.Response(200, json={"success": True, "data": {"a": 1}, "meta": {"count": 1}}))

    assert envelope == ApiResponse(True, {"a": 1}, envelope.meta)
    assert envelope.meta.count == 1
    with pytest.raises(ApiError) as exc:
        classify_response(httpx.Response(200, json={"success": False, "error": {"code": "VALIDATION_ERROR", "message": "bad"}}))
    assert exc.value.code is ErrorCode.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_token_file_setting_selects_file_storage(tmp_path):
    settings = Settings(api_url="http://api.test", auth_api_url="http://api.test",
                        token_file=tmp_path / "tokens.json")
    client = ApiClient(settings=settings, events=EventBus(), transport=httpx.MockTransport(lambda r: ok()))
    await client.storage.set_item(AUTH_TOKEN_KEY, "persisted")
    await client.aclose()

    assert (tmp_path / "tokens.json").exists()


@pytest.mark.asyncio
async def test_each_expiry_gets_its_own_refresh():
    refreshes = []
    server = {"valid": None}

    def handler(request):
        if request.url.path == "/auth/refresh":
            refreshes.append(request)
            server["valid"] = f"t{len(refreshes)}"
            return ok({"token": server["valid"]})
        if request.headers.get("Authorization") == f"Bearer {server['valid']}":
            return ok({"ok": True})
        return expired()

    client, storage, _, expired_events = make_client(handler, {AUTH_TOKEN_KEY: "old", REFRESH_TOKEN_KEY: "r1"})
    first = await client.get("/api/v1/transactions")
    server["valid"] = "rotated"
    second = await client.get("/api/v1/transactions")
    await client.aclose()

    assert first.data == second.data == {"ok": True}
    assert len(refreshes) == 2
    assert await storage.get_item(AUTH_TOKEN_KEY) == "t2"
    assert expired_events == []
    assert client._refresh_task is None


@pytest.mark.asyncio
async def test_late_expiry_reuses_token_refreshed_by_another_request():
    refreshes = []
    seen = []
    first_done = asyncio.Event()

    async def handler(request):
        auth = request.headers.get("Authorization")
        if request.url.path == "/auth/refresh":
            refreshes.append(request)
            return ok({"token": "new"})
        seen.append((request.url.path, auth))
        if auth == "Bearer new":
            return ok({"path": request.url.path})
        if request.url.path == "/api/v1/slow":
            await first_done.wait()
        return expired()

    client, _, _, _ = make_client(handler, {AUTH_TOKEN_KEY: "old", REFRESH_TOKEN_KEY: "r1"})

    async def fast():
        try:
            return await client.get("/api/v1/fast")
        finally:
            first_done.set()

    fast_result, slow_result = await asyncio.gather(fast(), client.get("/api/v1/slow"))
    await client.aclose()

    assert len(refreshes) == 1
    assert fast_result.data == {"path": "/api/v1/fast"}
    assert slow_result.data == {"path": "/api/v1/slow"}
    assert seen.count(("/api/v1/slow", "Bearer new")) == 1
