from storefront_server.cache import DEFAULT_FRESHNESS_WINDOW, ProductCache
from storefront_server.models import Product

from .payloads import product_payload


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_product(product_id: str = "p1", variant_ids: tuple[str, ...] = ("v1", "v2")) -> Product:
    return Product.model_validate(product_payload(product_id, list(variant_ids)))


def test_lookup_miss_returns_none():
    cache = ProductCache(clock=FakeClock())
    assert cache.lookup("missing") is None


def test_populate_from_list_resolves_product_and_variants_to_same_record():
    clock = FakeClock()
    cache = ProductCache(clock=clock)
    first = make_product("p1", ("v1", "v2"))
    second = make_product("p2", ("v3",))

    written = cache.populate_from_list([first, second])

    assert written == 5
    assert cache.lookup("p1") is first
    assert cache.lookup("v1") is first
    assert cache.lookup("v2") is first
    assert cache.lookup("p2") is second
    assert cache.lookup("v3") is second


def test_entry_expires_exactly_at_window_edge():
    clock = FakeClock(now=0.0)
    cache = ProductCache(freshness_window=300, clock=clock)
    product = make_product()
    cache.put("p1", product)

    clock.now = 299.999
    assert cache.lookup("p1") is product

    clock.now = 300.0
    assert cache.lookup("p1") is None


def test_default_window_is_five_minutes():
    assert DEFAULT_FRESHNESS_WINDOW == 300
    clock = FakeClock(now=0.0)
    cache = ProductCache(clock=clock)
    cache.put("p1", make_product())
    clock.now = 301
    assert "p1" not in cache


def test_put_overwrites_wholesale_last_write_wins():
    clock = FakeClock(now=10.0)
    cache = ProductCache(freshness_window=100, clock=clock)
    old = make_product("p1", ("v1",))
    new = Product.model_validate(product_payload("p1", ["v1"], name="Vitamin C 1000mg"))

    cache.put("p1", old, now=50.0)
    cache.put("p1", new, now=20.0)

    assert cache.lookup("p1") is new
    # The older timestamp of the last write is what counts
    clock.now = 120.0
    assert cache.lookup("p1") is None


def test_populate_with_explicit_timestamp():
    clock = FakeClock(now=1000.0)
    cache = ProductCache(freshness_window=300, clock=clock)
    cache.populate_from_list([make_product()], now=800.0)

    assert cache.lookup("v1") is not None
    clock.now = 1100.0
    assert cache.lookup("v1") is None


def test_invalidate_and_clear():
    cache = ProductCache(clock=FakeClock())
    cache.populate_from_list([make_product()])

    assert cache.invalidate("v1") is True
    assert cache.invalidate("v1") is False
    assert cache.lookup("v1") is None
    assert cache.lookup("p1") is not None

    cache.clear()
    assert len(cache) == 0
