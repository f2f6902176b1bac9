import httpx
import pytest
from aiohttp.test_utils import TestClient, TestServer

CRED = "sk-live-0123456789abcdef"


@pytest.mark.asyncio
async def test_health_reports_masked_snapshot(build):
    app, pool, _ = build([CRED, "tiny"], lambda r: httpx.Response(200))
    pool.report_failure(pool.get("002"), "401 Unauthorized", permanent=True)
    async with TestClient(TestServer(app)) as client:
        resp = await client.get("/health")
        assert resp.status == 200  # noqa: PLR2004
        text = await resp.text()
        body = await resp.json()

    assert CRED not in text
    assert body["upstream"] == "https://api.siliconflow.cn/v1/"
    assert body["total_keys"] == 2  # noqa: PLR2004
    assert body["usable_keys"] == 1
    assert [k["key_masked"] for k in body["keys"]] == ["sk-l...cdef", "***"]
    assert body["keys"][1]["disabled_reason"] == "401 Unauthorized"


@pytest.mark.asyncio
async def test_stats_records_each_attempt(build):
    def respond(request):
        if request.headers["authorization"].endswith(CRED):
            return httpx.Response(500)
        return httpx.Response(200, json={})

    app, pool, _ = build([CRED, "sk-second-key-000001"], respond)
    async with TestClient(TestServer(app)) as client:
        assert (await client.get("/v1/models")).status == 200  # noqa: PLR2004
        resp = await client.get("/stats", params={"limit": "10"})
        body = await resp.json()
        bad = await client.get("/stats", params={"limit": "many"})
        assert bad.status == 400  # noqa: PLR2004

    assert body["summary"]["001"]["errors"] == 1
    assert body["summary"]["001"]["last_status"] == 500  # noqa: PLR2004
    assert body["summary"]["002"]["errors"] == 0
    assert [r["key_id"] for r in body["recent"]] == ["001", "002"]


@pytest.mark.asyncio
async def test_custom_prefix_is_stripped(build):
    app, _, upstream = build(
        [CRED], lambda r: httpx.Response(200), path_prefix="/proxy",
        upstream_base_url="http://upstream.test/api/",
    )
    async with TestClient(TestServer(app)) as client:
        assert (await client.delete("/proxy/files/42")).status == 200  # noqa: PLR2004
        assert (await client.get("/v1/models")).status == 404  # noqa: PLR2004

    assert [str(r.url) for r in upstream.requests] == ["http://upstream.test/api/files/42"]


ORIGIN = "http://localhost:3000"


@pytest.mark.asyncio
async def test_preflight_is_answered_without_calling_upstream(build):
    app, pool, upstream = build([CRED], lambda r: httpx.Response(200))
    async with TestClient(TestServer(app)) as client:
        resp = await client.options(
            "/v1/chat/completions",
            headers={
                "Origin": ORIGIN,
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )
        assert resp.status == 200  # noqa: PLR2004
        assert resp.headers["Access-Control-Allow-Origin"] in {ORIGIN, "*"}
        assert "POST" in resp.headers["Access-Control-Allow-Methods"]

    assert upstream.requests == []
    assert pool.get("001").stats.ok == 0


@pytest.mark.asyncio
async def test_cross_origin_responses_carry_local_cors_headers(build):
    app, _, _ = build(
        [CRED],
        lambda r: httpx.Response(
            200, json={}, headers={"Access-Control-Allow-Origin": "https://other.example"}
        ),
    )
    async with TestClient(TestServer(app)) as client:
        health = await client.get("/health", headers={"Origin": ORIGIN})
        proxied = await client.get("/v1/models", headers={"Origin": ORIGIN})
        assert health.status == 200  # noqa: PLR2004
        assert proxied.status == 200  # noqa: PLR2004

    for resp in (health, proxied):
        assert resp.headers["Access-Control-Allow-Origin"] in {ORIGIN, "*"}
    assert len(proxied.headers.getall("Access-Control-Allow-Origin")) == 1
    assert proxied.headers["X-Rotator-Key-Id"] == "001"
