"""Upstream payload builders and a scripted upstream for httpx.MockTransport."""

import json
from typing import Any, Callable, Optional

import httpx

DOMAIN = "shop.example.com"
PROXY_HOST = "proxy.test"


def product_payload(product_id: str, variant_ids: list[str], name: str = "Vitamin C", price: float = 12.5) -> dict:
    return {
        "product_id": product_id,
        "name": name,
        "selling_price": price,
        "label_price": price,
        "currency_code": "USD",
        "images": [{"id": "img1", "url": "/images/vit-c.png", "is_featured": True, "order": 0}],
        "variants": [
            {"variant_id": variant_id, "selling_price": price, "stock_available": 10, "sku": f"SKU-{variant_id}"}
            for variant_id in variant_ids
        ],
        "seo": {"title": name, "description": ""},
    }


def products_response(*products: dict) -> dict:
    return {
        "status_code": "0",
        "status_message": "success",
        "payload": {
            "products": list(products),
            "currency": {"code": "CAD", "symbol": "$"},
            "pagination": {"current_page": 1, "has_more_page": False},
        },
    }


def cart_response(cart_id: str, items: list[dict]) -> dict:
    return {"status_code": "0", "status_message": "success", "payload": {"cart_id": cart_id, "items": items}}


class FakeUpstream:
    """Scripted upstream for httpx.MockTransport; records every request it sees."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: list[tuple[str, str, Optional[str], Callable[[httpx.Request], httpx.Response]]] = []

    def add(
        self,
        method: str,
        path: str,
        response: Any = None,
        status: int = 200,
        host: Optional[str] = None,
        handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    ) -> None:
        """Answer METHOD path (optionally only on host) with JSON response, or via handler."""
        if handler is None:
            body = response

            def handler(request: httpx.Request) -> httpx.Response:
                return httpx.Response(status, json=body)

        # Later registrations win
        self._routes.insert(0, (method, path, host, handler))

    def calls(self, method: Optional[str] = None, path: Optional[str] = None, host: Optional[str] = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if (method is None or r.method == method)
            and (path is None or r.url.path == path)
            and (host is None or r.url.host == host)
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, path, host, handler in self._routes:
            if request.method == method and request.url.path == path and (host is None or request.url.host == host):
                return handler(request)
        return httpx.Response(404, text=f"no route for {request.method} {request.url.path}")

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None
