"""
Response shape extraction.

The storefront API and the webhook backend wrap the same entities
differently: sometimes directly, sometimes under ``payload`` and sometimes
under ``payload.checkout``. Each extractor below is a pure function that
returns the entity or None; ``first_match`` tries them in priority order.
"""

from typing import Any, Callable, Iterable, Optional, Sequence

Extractor = Callable[[Any], Optional[Any]]


def dig(data: Any, *path: str) -> Optional[Any]:
    """Follow dict keys along path, returning None at the first miss."""
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
        if data is None:
            return None
    return data


def at(*path: str) -> Extractor:
    """Extractor for a fixed nesting path."""

    def extract(data: Any) -> Optional[Any]:
        return dig(data, *path)

    extract.__name__ = "at_" + "_".join(path)
    return extract


def first_match(data: Any, extractors: Sequence[Extractor]) -> Optional[Any]:
    """Return the first non-None extraction, or None."""
    for extractor in extractors:
        found = extractor(data)
        if found is not None:
            return found
    return None


def product_itself(data: Any) -> Optional[dict]:
    """A bare product object carries its own product_id."""
    if isinstance(data, dict) and data.get("product_id"):
        return data
    return None


def list_itself(data: Any) -> Optional[list]:
    return data if isinstance(data, list) else None


def cart_itself(data: Any) -> Optional[dict]:
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return data
    return None


def checkout_itself(data: Any) -> Optional[dict]:
    if isinstance(data, dict) and ("address_detail" in data or "order" in data):
        return data
    return None


PRODUCT_LIST: tuple[Extractor, ...] = (at("payload", "products"), at("products"), list_itself)
PRODUCT_DETAIL: tuple[Extractor, ...] = (at("payload", "product"), at("product"), product_itself)
CURRENCY_CODE: tuple[Extractor, ...] = (at("payload", "currency", "code"), at("currency", "code"))
CART_ID: tuple[Extractor, ...] = (at("cart_id"), at("payload", "cart_id"))
CART: tuple[Extractor, ...] = (at("payload", "cart"), at("cart"), at("payload"), cart_itself)
CHECKOUT: tuple[Extractor, ...] = (at("payload", "checkout"), at("checkout"), checkout_itself)
COUNTRIES: tuple[Extractor, ...] = (
    at("payload", "checkout", "address_detail", "countries"),
    at("address_detail", "countries"),
    at("payload", "address_detail", "countries"),
)
SHIPPING_METHODS: tuple[Extractor, ...] = (
    at("payload", "checkout_shipping_methods", "shipping_methods"),
    at("checkout_shipping_methods", "shipping_methods"),
    at("payload", "shipping_methods"),
)


def normalize_cart_items(items: Iterable[dict]) -> list[dict]:
    """Map upstream cart line items onto CartItem fields."""
    normalized = []
    for item in items:
        normalized.append(
            {
                "product_id": item.get("product_id") or "",
                "variant_id": item.get("product_variant_id") or item.get("variant_id") or "",
                "quantity": item.get("quantity") or 1,
                "name": item.get("name") or item.get("product_name") or "Product",
                "price": item.get("price") or item.get("selling_price") or 0,
                "image": item.get("image") or item.get("image_url") or None,
            }
        )
    return normalized
