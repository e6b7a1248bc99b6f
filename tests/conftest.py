"""Shared fixtures: an in-memory cart store and a scripted upstream."""

from typing import Any

import httpx
import pytest

from storefront_server.cache import ProductCache
from storefront_server.coalesce import RequestCoalescer
from storefront_server.config import Settings
from storefront_server.cookies import CartIdStore
from storefront_server.storefront_client import StorefrontClient

from .payloads import DOMAIN, PROXY_HOST, FakeUpstream


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def settings() -> Settings:
    """Direct channel only."""
    return Settings(domain_name=DOMAIN)


@pytest.fixture
def proxy_settings() -> Settings:
    """Proxy channel first, direct channel as fallback."""
    return Settings(domain_name=DOMAIN, proxy_url=f"http://{PROXY_HOST}/api", env="development")


@pytest.fixture
def cart_store() -> CartIdStore:
    return CartIdStore(persist=False)


@pytest.fixture
def make_client(upstream, cart_store):
    def make(app_settings: Settings, **kwargs: Any) -> StorefrontClient:
        kwargs.setdefault("cache", ProductCache())
        kwargs.setdefault("coalescer", RequestCoalescer(grace_period=0.05))
        client = StorefrontClient(app_settings, cart_store, transport=httpx.MockTransport(upstream), **kwargs)
        return client

    return make


@pytest.fixture
def client(make_client, settings) -> StorefrontClient:
    return make_client(settings)
