from types import SimpleNamespace
from typing import Any, Dict, Optional

import httpx
import pytest
from xrpl.wallet import Wallet

from external_signer.api import create_app
from external_signer.config import ConfigMissing, SignerSettings
from external_signer.processor import PayoutProcessor


@pytest.fixture()
def anyio_backend():
    return "asyncio"


class FakeProcessor:
    def __init__(self, health_error: Optional[Exception] = None) -> None:
        self.health_error = health_error
        self.poll_calls = 0

    def health(self) -> Dict[str, Any]:
        if self.health_error is not None:
            raise self.health_error
        return {"ok": True, "xrpl_connected": True, "hot_wallet": "rHOT", "inflight": 1}

    def poll_once(self) -> int:
        self.poll_calls += 1
        return 0


class FakeConnector:
    def __init__(self) -> None:
        self.connected = False
        self.connect_calls = 0

    def is_connected(self) -> bool:
        return self.connected

    def ensure_connected(self) -> None:
        self.connect_calls += 1
        self.connected = True

    def close(self) -> None:
        self.connected = False


def build_settings(**overrides):
    defaults = dict(control_bearer_token=None)
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


async def request(app, method: str, path: str, **kwargs) -> httpx.Response:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, path, **kwargs)


@pytest.mark.anyio("asyncio")
async def test_health_reports_snapshot():
    app = create_app(FakeProcessor(), build_settings())

    response = await request(app, "GET", "/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "xrpl_connected": True, "hot_wallet": "rHOT", "inflight": 1}


@pytest.mark.anyio("asyncio")
async def test_health_reports_missing_configuration():
    app = create_app(FakeProcessor(health_error=ConfigMissing("SUPABASE_URL missing")), build_settings())

    response = await request(app, "GET", "/health")

    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "SUPABASE_URL missing"}


@pytest.mark.anyio("asyncio")
async def test_health_derives_wallet_from_seed_and_connects():
    seed = Wallet.create().seed
    settings = SignerSettings(
        _env_file=None,
        supabase_url="https://backend.example",
        supabase_service_role_key="service-key",
        supabase_webhook_url="https://backend.example/hook",
        xrp_hot_wallet_seed=seed,
    )
    connector = FakeConnector()
    processor = PayoutProcessor(settings, connector=connector)
    app = create_app(processor, settings)

    try:
        response = await request(app, "GET", "/health")
    finally:
        processor.shutdown()

    assert response.status_code == 200
    body = response.json()
    assert body["xrpl_connected"] is True
    assert body["hot_wallet"] == Wallet.from_seed(seed).classic_address
    assert body["inflight"] == 0
    assert connector.connect_calls == 1


@pytest.mark.anyio("asyncio")
async def test_process_without_token_configured_starts_poll():
    processor = FakeProcessor()
    app = create_app(processor, build_settings())

    response = await request(app, "POST", "/process")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "started": True}
    assert processor.poll_calls == 1


@pytest.mark.anyio("asyncio")
async def test_process_rejects_missing_or_wrong_token():
    processor = FakeProcessor()
    app = create_app(processor, build_settings(control_bearer_token="secret"))

    missing = await request(app, "POST", "/process")
    wrong = await request(app, "POST", "/process", headers={"Authorization": "Bearer nope"})
    lowercase = await request(app, "POST", "/process", headers={"Authorization": "bearer secret"})

    for response in (missing, wrong, lowercase):
        assert response.status_code == 401
        assert response.json() == {"ok": False, "error": "Unauthorized"}
    assert processor.poll_calls == 0


@pytest.mark.anyio("asyncio")
async def test_process_accepts_exact_token():
    processor = FakeProcessor()
    app = create_app(processor, build_settings(control_bearer_token="secret"))

    response = await request(app, "POST", "/process", headers={"Authorization": "Bearer secret"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "started": True}
    assert processor.poll_calls == 1
