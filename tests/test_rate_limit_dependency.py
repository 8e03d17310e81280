"""Tests for the enforce_rate_limit FastAPI dependency."""

from typing import Annotated

import httpx
import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from abuse_guard.adapters.rate_limit.base import Algorithm, RateLimitConfig, RateLimitResult
from abuse_guard.core.rate_limit import (
    EMAIL_HEADER,
    WALLET_HEADER,
    enforce_rate_limit,
    get_rate_limit_engine,
    set_rate_limit_engine,
    shutdown_rate_limiting,
)
from abuse_guard.services.endpoint_limits import RATE_LIMITS
from abuse_guard.services.rate_limit_engine import RateLimitEngine

WALLET = "0xAbC0000000000000000000000000000000000001"

DECRYPT = RATE_LIMITS["decrypt_mnemonic"]
STORE_KEY = RateLimitConfig("store-key", 10, 3600, Algorithm.SLIDING)


def _build_app(engine) -> FastAPI:
    app = FastAPI()

    @app.post("/wallet/decrypt-mnemonic", dependencies=[Depends(enforce_rate_limit(DECRYPT))])
    async def decrypt(request: Request) -> dict:
        return {"remaining": request.state.rate_limit.remaining}

    @app.post("/wallet/store-key")
    async def store_key(
        result: Annotated[RateLimitResult, Depends(enforce_rate_limit(STORE_KEY, multi_factor=True))],
    ) -> dict:
        return {"remaining": result.remaining}

    @app.post("/wallet/associate")
    async def associate(
        result: Annotated[
            RateLimitResult,
            Depends(enforce_rate_limit(RATE_LIMITS["associate_wallet"], identifier_header=WALLET_HEADER)),
        ],
    ) -> dict:
        return {"remaining": result.remaining}

    app.dependency_overrides[get_rate_limit_engine] = lambda: engine
    return app


@pytest.fixture
def client(engine) -> TestClient:
    return TestClient(_build_app(engine))


def test_allowed_requests_carry_rate_limit_headers(client: TestClient) -> None:
    resp = client.post("/wallet/decrypt-mnemonic")

    assert resp.status_code == 200
    assert resp.json() == {"remaining": 2}
    assert resp.headers["X-RateLimit-Limit"] == "3"
    assert resp.headers["X-RateLimit-Remaining"] == "2"
    assert "X-RateLimit-Reset" in resp.headers
    assert "Retry-After" not in resp.headers


def test_exhausted_limit_returns_429(client: TestClient) -> None:
    for _ in range(3):
        assert client.post("/wallet/decrypt-mnemonic").status_code == 200

    resp = client.post("/wallet/decrypt-mnemonic")

    assert resp.status_code == 429
    detail = resp.json()["detail"]
    assert detail["message"] == "Rate limit exceeded. Try again later."
    assert detail["requires_captcha"] is False
    assert 0 < detail["retry_after"] <= 3600
    assert resp.headers["Retry-After"] == str(detail["retry_after"])
    assert resp.headers["X-RateLimit-Remaining"] == "0"


def test_identifier_header_limits_the_wallet_across_ips(client: TestClient) -> None:
    for i in range(10):
        resp = client.post(
            "/wallet/associate",
            headers={WALLET_HEADER: WALLET, "X-Forwarded-For": f"198.51.100.{i}"},
        )
        assert resp.status_code == 200

    resp = client.post("/wallet/associate", headers={WALLET_HEADER: WALLET, "X-Forwarded-For": "198.51.100.99"})

    assert resp.status_code == 429


def _async_client(engine) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=_build_app(engine))
    return httpx.AsyncClient(transport=transport, base_url="http://testserver")


async def _escalate_wallet(client: httpx.AsyncClient, engine) -> list[httpx.Response]:
    headers = {WALLET_HEADER: WALLET}
    for _ in range(10):
        assert (await client.post("/wallet/associate", headers=headers)).status_code == 200

    denials = []
    for _ in range(3):
        denials.append(await client.post("/wallet/associate", headers=headers))
        await engine.drain_tracking()
    return denials


@pytest.mark.asyncio
async def test_repeated_wallet_denials_signal_captcha(engine) -> None:
    async with _async_client(engine) as client:
        denials = await _escalate_wallet(client, engine)
        resp = await client.post("/wallet/associate", headers={WALLET_HEADER: WALLET})
        await engine.drain_tracking()

    assert [r.status_code for r in denials] == [429, 429, 429]
    assert resp.status_code == 429
    assert resp.json()["detail"]["requires_captcha"] is True
    assert resp.headers["X-Captcha-Required"] == "true"
    assert resp.headers["X-Captcha-Provider"] == "hcaptcha"


@pytest.mark.asyncio
async def test_captcha_header_on_allowed_request_after_window(engine, clock) -> None:
    async with _async_client(engine) as client:
        headers = {WALLET_HEADER: WALLET}
        for _ in range(10):
            await client.post("/wallet/associate", headers=headers)

        # Escalate halfway through the hour so the flag outlives the counted requests
        clock.advance(1800)
        for _ in range(3):
            await client.post("/wallet/associate", headers=headers)
            await engine.drain_tracking()

        clock.advance(1801)
        resp = await client.post("/wallet/associate", headers=headers)

    assert resp.status_code == 200
    assert resp.headers["X-Captcha-Required"] == "true"
    assert resp.headers["X-Captcha-Provider"] == "hcaptcha"


def test_multi_factor_blocks_on_wallet_budget(client: TestClient) -> None:
    statuses = [
        client.post(
            "/wallet/store-key",
            headers={WALLET_HEADER: WALLET, EMAIL_HEADER: f"user{i}@example.com", "X-Forwarded-For": f"198.51.100.{i}"},
        ).status_code
        for i in range(8)
    ]

    assert statuses == [200] * 7 + [429]


def test_store_outage_fails_open(unavailable_store, clock) -> None:
    client = TestClient(_build_app(RateLimitEngine(unavailable_store, clock=clock)))

    statuses = {client.post("/wallet/decrypt-mnemonic").status_code for _ in range(10)}

    assert statuses == {200}


@pytest.mark.asyncio
async def test_shutdown_finishes_pending_tracking(engine) -> None:
    set_rate_limit_engine(engine)
    try:
        for _ in range(DECRYPT.max_requests + 1):
            await engine.check_rate_limit(None, DECRYPT)

        await shutdown_rate_limiting()
    finally:
        set_rate_limit_engine(None)

    violations = await engine.get_rate_limit_violations("decrypt-mnemonic")
    assert len(violations) == 1
