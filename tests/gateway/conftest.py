from __future__ import annotations

from typing import Callable

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from shotpix.gateway.config import GatewayConfig
from tests.gateway.helpers import FakeAssetStore, FakeCache

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture(scope="session")
def private_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture
def config(private_key_pem: str) -> GatewayConfig:
    return GatewayConfig(
        _env_file=None,
        google_vertex_project_id="test-project",
        google_vertex_location="us-central1",
        google_service_account_email="gateway@test-project.iam.gserviceaccount.com",
        google_service_account_private_key=private_key_pem,
        google_vision_api_key="vision-key",
        wavespeed_api_key="wavespeed-key",
    )


@pytest.fixture
def make_http_client() -> Callable[[Handler], httpx.AsyncClient]:
    def _factory(handler: Handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _factory


@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def fake_store() -> FakeAssetStore:
    return FakeAssetStore()
