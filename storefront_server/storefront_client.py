"""Storefront API client."""

import logging
from typing import Any, NamedTuple, Optional, Sequence, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from . import extract
from .cache import ProductCache
from .coalesce import RequestCoalescer
from .config import Backend, Settings
from .cookies import CartIdStore
from .errors import (
    ResponseShapeError,
    StorefrontError,
    StorefrontNetworkError,
    StorefrontRejectedError,
    StorefrontStatusError,
)
from .models import (
    AddToCartResult,
    Cart,
    CartItem,
    CheckoutAddressRequest,
    CheckoutData,
    Country,
    Product,
    ProductList,
    ShippingMethod,
    StatusResponse,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

PRODUCTS_KEY = "products"
DEFAULT_PAYMENT_MODE = "cash_on_delivery"


class NoCartError(StorefrontError):
    def __init__(self) -> None:
        super().__init__("No cart found. Please add items to cart first.")


class Route(NamedTuple):
    """One upstream call, independent of the channel it goes through."""

    method: str
    path: str
    params: dict[str, str]
    body: Optional[dict[str, Any]]


class Channel(NamedTuple):
    name: str
    base_url: str
    headers: dict[str, str]


class StorefrontClient:
    """
    Client for the storefront API (or the webhook backend standing in for it).

    Every operation tries the proxy channel first when one is configured
    and falls back to the direct channel.
    """

    def __init__(
        self,
        settings: Settings,
        cart_store: CartIdStore,
        cache: Optional[ProductCache] = None,
        coalescer: Optional[RequestCoalescer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the storefront client.

        Args:
            settings: Storefront settings
            cart_store: Cart identity store
            cache: Product cache shared with the rest of the application
            coalescer: In-flight request guard for product list and cart reads
            transport: Optional httpx transport (used by tests)
        """
        self.settings = settings
        self.cart_store = cart_store
        self.cache = cache if cache is not None else ProductCache()
        self.coalescer = coalescer if coalescer is not None else RequestCoalescer()
        self.client = httpx.AsyncClient(
            timeout=settings.timeout,
            follow_redirects=True,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "StorefrontClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Clean up resources."""
        await self.client.aclose()

    # Transport

    def _channels(self) -> list[Channel]:
        """Channels to try, in order."""
        if self.settings.backend == Backend.WEBHOOK:
            # The proxy injects the key itself
            proxy_headers: dict[str, str] = {}
            direct_headers = {"key": self.settings.webhook_auth_key} if self.settings.webhook_auth_key else {}
        else:
            proxy_headers = {"domain-name": self.settings.domain_name}
            direct_headers = proxy_headers

        channels = []
        if self.settings.primary_base_url:
            channels.append(Channel("proxy", self.settings.primary_base_url, proxy_headers))
        channels.append(Channel("direct", self.settings.direct_base_url, direct_headers))
        return channels

    def _route(
        self,
        function: str,
        method: str,
        path: str,
        params: Optional[dict[str, str]] = None,
        body: Optional[dict[str, Any]] = None,
        webhook_fields: Optional[dict[str, Any]] = None,
    ) -> Route:
        """
        Build the route for an operation on the configured backend.

        The webhook backend takes every call as a POST to one endpoint, with
        the operation named by the ``function`` field of the body.
        """
        if self.settings.backend == Backend.WEBHOOK:
            fields = {"function": function, **(webhook_fields or {}), **(body or {})}
            return Route("POST", "", params or {}, fields)
        return Route(method, path, params or {}, body)

    @staticmethod
    def _decode(response: httpx.Response, operation: str, expect: Sequence[extract.Extractor]) -> Any:
        try:
            data = response.json()
        except ValueError as e:
            raise ResponseShapeError(operation, "response is not valid JSON") from e
        if expect and extract.first_match(data, expect) is None:
            raise ResponseShapeError(operation)
        return data

    async def _request(
        self, operation: str, route: Route, expect: Sequence[extract.Extractor] = ()
    ) -> Any:
        """
        Perform one logical call with proxy → direct fallback.

        A channel counts as failed when it cannot be reached, answers with a
        non-2xx status, or answers 2xx with a body that is not JSON or that
        none of the ``expect`` extractors recognise.

        Args:
            operation: Human readable operation name for errors and logs
            route: The call to make
            expect: Extractors of which at least one must match the body

        Returns:
            Decoded JSON body of the first successful response
        """
        answered_error: Optional[StorefrontError] = None
        network_detail: Optional[str] = None

        for channel in self._channels():
            url = f"{channel.base_url}{route.path}"
            logger.debug(f"{operation}: {route.method} {url} via {channel.name}")
            try:
                response = await self.client.request(
                    route.method,
                    url,
                    params=route.params or None,
                    json=route.body,
                    headers=channel.headers,
                )
            except httpx.TransportError as e:
                logger.warning(f"{channel.name} channel failed to {operation}: {e!r}")
                network_detail = str(e) or type(e).__name__
                continue

            if response.is_success:
                try:
                    return self._decode(response, operation, expect)
                except ResponseShapeError as e:
                    # e.g. a dev server answering with its HTML index page
                    logger.warning(f"{channel.name} channel gave an unusable response to {operation}: {e}")
                    answered_error = e
                    continue

            answered_error = StorefrontStatusError(operation, response.status_code, response.text)
            logger.warning(f"{channel.name} channel returned {response.status_code} for {operation}")

        # An upstream that answered tells more than one that could not be reached
        if answered_error is not None:
            raise answered_error
        raise StorefrontNetworkError(operation, network_detail)

    @staticmethod
    def _extract(data: Any, extractors: Sequence[extract.Extractor], operation: str) -> Any:
        found = extract.first_match(data, extractors)
        if found is None:
            raise ResponseShapeError(operation)
        return found

    @staticmethod
    def _parse(model: type[M], data: Any, operation: str) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ResponseShapeError(operation, f"invalid {model.__name__}: {e.error_count()} error(s)") from e

    @staticmethod
    def _ensure_ok(data: Any, fallback: str, required: bool = True) -> StatusResponse:
        """
        Check the status envelope of a write.

        With required=False a body without any envelope is accepted.
        """
        status = StatusResponse.model_validate(data if isinstance(data, dict) else {})
        if status.ok:
            return status
        if not required and status.status_code is None and status.status_message is None:
            return status
        raise StorefrontRejectedError(status.status_message or fallback, status.status_code)

    # Products

    async def list_products(self, fresh: bool = False) -> ProductList:
        """
        Fetch the product listing.

        Concurrent calls share one request unless fresh is set.
        """
        if fresh:
            return await self._fetch_products()
        return await self.coalescer.run(PRODUCTS_KEY, self._fetch_products)

    async def _fetch_products(self) -> ProductList:
        operation = "fetch products"
        logger.info("=== LIST PRODUCTS ===")
        data = await self._request(
            operation, self._route("get_products", "GET", "/products"), expect=extract.PRODUCT_LIST
        )
        raw_products = self._extract(data, extract.PRODUCT_LIST, operation)
        result = self._parse(ProductList, {"products": raw_products}, operation)
        currency = extract.first_match(data, extract.CURRENCY_CODE)
        if currency:
            result = result.model_copy(update={"currency_code": currency})

        try:
            self.cache.populate_from_list(result.products)
        except Exception as e:
            logger.error(f"Could not populate product cache: {e}", exc_info=True)

        logger.info(f"Found {len(result.products)} products")
        return result

    async def get_product(self, product_id: str) -> Product:
        """
        Get one product by product or variant ID, from cache when fresh.

        Args:
            product_id: Product ID or variant ID

        Returns:
            Product record
        """
        cached = self.cache.lookup(product_id)
        if cached is not None:
            logger.debug(f"Product {product_id} served from cache")
            return cached

        operation = "fetch product"
        logger.info(f"=== GET PRODUCT: id={product_id} ===")
        data = await self._request(
            operation,
            self._route(
                "get_product", "GET", f"/products/{product_id}", webhook_fields={"product_id": product_id}
            ),
            expect=extract.PRODUCT_DETAIL,
        )
        product = self._parse(Product, self._extract(data, extract.PRODUCT_DETAIL, operation), operation)

        try:
            self.cache.put(product_id, product)
            self.cache.populate_from_list([product])
        except Exception as e:
            logger.error(f"Could not cache product {product_id}: {e}", exc_info=True)
        return product

    def product_image_url(self, image_url: str) -> str:
        """Resolve a possibly relative image URL against the storefront domain."""
        if image_url.startswith("http"):
            return image_url
        if image_url.startswith("/"):
            return f"https://{self.settings.domain_name}{image_url}"
        return f"https://{self.settings.domain_name}/{image_url}"

    # Cart

    def _remember_cart_id(self, data: Any, known: Optional[str]) -> Optional[str]:
        cart_id = extract.first_match(data, extract.CART_ID)
        if cart_id and cart_id != known:
            self.cart_store.set_cart_id(cart_id)
        return cart_id or known

    def _require_cart_id(self, cart_id: Optional[str] = None) -> str:
        cart_id = cart_id or self.cart_store.get_cart_id()
        if not cart_id:
            raise NoCartError()
        return cart_id

    async def add_to_cart(self, variant_id: str, quantity: int = 1) -> AddToCartResult:
        """
        Add a variant to the cart, creating the cart on first use.

        Args:
            variant_id: Product variant ID
            quantity: Quantity to add

        Returns:
            Result with the (possibly new) cart ID
        """
        operation = "add to cart"
        logger.info(f"=== ADD TO CART: variant_id={variant_id}, quantity={quantity} ===")
        existing = self.cart_store.get_cart_id()
        body: dict[str, Any] = {"product_variant_id": variant_id, "quantity": quantity}
        if existing:
            body["cart_id"] = existing

        data = await self._request(operation, self._route("add_to_cart", "POST", "/cart", body=body))
        status = self._ensure_ok(data, "Failed to add to cart", required=False)
        cart_id = self._remember_cart_id(data, existing)
        if existing:
            # Any reader coalesced on the old contents is stale now
            self.coalescer.clear(f"cart:{existing}")

        logger.info("ADD TO CART SUCCESS")
        return AddToCartResult(
            cart_id=cart_id, status_code=status.status_code, status_message=status.status_message
        )

    async def get_cart(self, cart_id: Optional[str] = None, fresh: bool = False) -> Cart:
        """
        Get cart contents.

        Without a cart ID (argument or stored) the cart is empty and no
        request is made. Concurrent reads of the same cart share one request
        unless fresh is set.
        """
        cart_id = cart_id or self.cart_store.get_cart_id()
        if not cart_id:
            return Cart()
        if fresh:
            return await self._fetch_cart(cart_id)
        return await self.coalescer.run(f"cart:{cart_id}", lambda: self._fetch_cart(cart_id))

    async def _fetch_cart(self, cart_id: str) -> Cart:
        operation = "get cart items"
        logger.info(f"=== GET CART: cart_id={cart_id} ===")
        data = await self._request(
            operation, self._route("get_cart", "GET", "/cart", params={"cart_id": cart_id}), expect=extract.CART
        )
        raw_cart = self._extract(data, extract.CART, operation)
        raw_items = (raw_cart.get("items") or []) if isinstance(raw_cart, dict) else []
        if not isinstance(raw_items, list):
            raise ResponseShapeError(operation, "cart items is not a list")
        items = [self._parse(CartItem, item, operation) for item in extract.normalize_cart_items(raw_items)]

        stored = self.cart_store.get_cart_id()
        if not items:
            # An empty cart is not worth resuming; a cart read by explicit ID may not be ours
            if stored == cart_id:
                self.cart_store.delete_cart_id()
            return Cart(cart_id=cart_id)

        current = self._remember_cart_id(data, stored) or cart_id
        return Cart(cart_id=current, items=items)

    async def update_cart_item(self, variant_id: str, quantity: int) -> Cart:
        """
        Set the quantity of a cart line. Quantity 0 removes it.

        Returns:
            The cart as it is after the update
        """
        if quantity <= 0:
            return await self.remove_from_cart(variant_id)

        operation = "update cart item"
        logger.info(f"=== UPDATE CART: variant_id={variant_id}, quantity={quantity} ===")
        cart_id = self._require_cart_id()
        body = {"cart_id": cart_id, "product_variant_id": variant_id, "quantity": quantity}
        data = await self._request(operation, self._route("update_cart_item", "PUT", "/cart", body=body))
        self._ensure_ok(data, "Failed to update cart item", required=False)
        self.coalescer.clear(f"cart:{cart_id}")
        return await self.get_cart(cart_id, fresh=True)

    async def remove_from_cart(self, variant_id: str) -> Cart:
        """
        Remove a variant from the cart.

        Returns:
            The cart as it is after the removal
        """
        operation = "remove cart item"
        logger.info(f"=== REMOVE FROM CART: variant_id={variant_id} ===")
        cart_id = self._require_cart_id()
        body = {"cart_id": cart_id, "product_variant_id": variant_id}
        data = await self._request(operation, self._route("remove_from_cart", "DELETE", "/cart", body=body))
        self._ensure_ok(data, "Failed to remove cart item", required=False)
        self.coalescer.clear(f"cart:{cart_id}")
        return await self.get_cart(cart_id, fresh=True)

    # Checkout

    async def _fetch_checkout(self, cart_id: str, expect: Sequence[extract.Extractor]) -> Any:
        return await self._request(
            "get checkout data",
            self._route("get_checkout", "GET", "/checkout", params={"checkout_id": cart_id}),
            expect=expect,
        )

    async def get_checkout(self, cart_id: str) -> CheckoutData:
        """Get the checkout resource (addresses and order summary)."""
        operation = "get checkout data"
        data = await self._fetch_checkout(cart_id, extract.CHECKOUT)
        return self._parse(CheckoutData, self._extract(data, extract.CHECKOUT, operation), operation)

    async def get_countries(self, cart_id: str) -> list[Country]:
        """Countries (with states) the checkout can ship to."""
        operation = "get checkout data"
        data = await self._fetch_checkout(cart_id, extract.COUNTRIES)
        raw = self._extract(data, extract.COUNTRIES, operation)
        return [self._parse(Country, country, operation) for country in raw]

    async def submit_address(self, cart_id: str, request: CheckoutAddressRequest) -> list[ShippingMethod]:
        """
        Submit shipping and billing addresses.

        Returns:
            Shipping methods offered for the address (possibly empty)
        """
        operation = "submit checkout address"
        logger.info(f"=== SUBMIT ADDRESS: checkout_id={cart_id} ===")
        data = await self._request(
            operation,
            self._route(
                "submit_address",
                "POST",
                "/checkout/address",
                params={"checkout_id": cart_id},
                body=request.model_dump(),
            ),
        )
        self._ensure_ok(data, "Failed to submit address")
        raw_methods = extract.first_match(data, extract.SHIPPING_METHODS) or []
        if not isinstance(raw_methods, list):
            raise ResponseShapeError(operation, "shipping_methods is not a list")
        return [self._parse(ShippingMethod, method, operation) for method in raw_methods]

    async def submit_shipping_method(self, cart_id: str, shipping_method_id: str) -> StatusResponse:
        operation = "submit shipping method"
        logger.info(f"=== SUBMIT SHIPPING: checkout_id={cart_id}, method={shipping_method_id} ===")
        data = await self._request(
            operation,
            self._route(
                "submit_shipping_method",
                "POST",
                "/checkout/shipping-methods",
                params={"checkout_id": cart_id},
                body={"shipping": shipping_method_id},
            ),
        )
        return self._ensure_ok(data, "Failed to submit shipping method")

    async def place_order(self, cart_id: str, payment_mode: str = DEFAULT_PAYMENT_MODE) -> StatusResponse:
        """
        Place the order with an offline payment mode.

        The stored cart ID is cleared once the order is accepted.
        """
        operation = "process payment"
        logger.info(f"=== PLACE ORDER: checkout_id={cart_id}, payment_mode={payment_mode} ===")
        data = await self._request(
            operation,
            self._route(
                "process_offline_payment",
                "POST",
                "/checkout/process-offline-payment",
                params={"checkout_id": cart_id, "payment_mode": payment_mode},
            ),
        )
        status = self._ensure_ok(data, "Failed to place order")
        self.cart_store.delete_cart_id()
        self.coalescer.clear(f"cart:{cart_id}")
        logger.info("PLACE ORDER SUCCESS")
        return status
