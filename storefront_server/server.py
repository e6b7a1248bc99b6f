"""MCP Server for the storefront: browsing, cart and checkout as tools."""

import asyncio
import json
import logging
from typing import Any, Optional

from mcp.server import Server
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl

from .cache import ProductCache
from .checkout import CheckoutFlow, CheckoutStage
from .coalesce import RequestCoalescer
from .config import Settings, get_settings
from .cookies import CartIdStore
from .models import AddressForm, Cart, Product
from .storefront_client import StorefrontClient

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("storefront-mcp-server")

# Initialize server
app = Server("storefront-mcp-server")

# Global state
settings: Settings
client: StorefrontClient
checkout: Optional[CheckoutFlow] = None

ADDRESS_PROPERTIES = {name: {"type": "string"} for name in AddressForm.model_fields if name != "same_billing_address"}


def format_price(amount: Any, currency: str = "") -> str:
    text = f"{amount:,.2f}" if amount is not None else "-"
    return f"{text} {currency}".strip()


def format_product(product: Product, index: Optional[int] = None) -> list[str]:
    prefix = f"{index}. " if index is not None else ""
    lines = [f"{prefix}{product.name}", f"   Product ID: {product.product_id}"]
    if product.variant_ids:
        lines.append(f"   Variant IDs: {', '.join(product.variant_ids)}")
    lines.append(f"   Price: {format_price(product.selling_price, product.currency_code or '')}")
    if product.label_price and product.label_price > product.selling_price:
        lines.append(f"   List price: {format_price(product.label_price, product.currency_code or '')} (ON SALE)")
    lines.append(f"   Available: {'No' if product.is_out_of_stock else 'Yes'}")
    if product.brand:
        lines.append(f"   Brand: {product.brand}")
    if product.images:
        lines.append(f"   Image: {client.product_image_url(product.images[0].url)}")
    return lines


def format_cart(cart: Cart) -> str:
    if cart.is_empty:
        return "Your cart is empty"
    lines = [f"Shopping Cart ({cart.total_items} items):"]
    for item in cart.items:
        lines.append(
            f"  - {item.name} (variant {item.variant_id}): {item.quantity} x {format_price(item.price)}"
            f" = {format_price(item.subtotal)}"
        )
    lines.append(f"Total: {format_price(cart.total_price)}")
    return "\n".join(lines)


def format_checkout(flow: CheckoutFlow) -> str:
    lines = [f"Checkout stage: {flow.stage.value}"]
    if flow.error:
        lines.append(f"Error: {flow.error}")
    if flow.notice:
        lines.append(flow.notice)

    if flow.stage == CheckoutStage.ADDRESS:
        shipping = flow.shipping_address
        lines.append(
            f"Shipping address: {shipping.first_name} {shipping.last_name}, {shipping.address}, "
            f"{shipping.city} {shipping.postal_code}, {shipping.state} {shipping.country}"
        )
        lines.append(f"Billing same as shipping: {'Yes' if flow.same_billing_address else 'No'}")
        if flow.countries:
            lines.append(f"Countries: {', '.join(c.code for c in flow.countries)}")
    elif flow.stage == CheckoutStage.SHIPPING:
        lines.append("Shipping methods:")
        for method in flow.shipping_methods:
            marker = "*" if method.id == flow.selected_shipping_method_id else " "
            lines.append(
                f" {marker} {method.name} (id {method.id}): {format_price(method.rate)}"
                f"{', ' + method.delivery_time if method.delivery_time else ''}"
            )
    elif flow.stage == CheckoutStage.CONFIRMATION and flow.confirmation:
        snapshot = flow.confirmation
        if snapshot.shipping_address:
            a = snapshot.shipping_address
            lines.append(f"Ship to: {a.full_name or a.first_name + ' ' + a.last_name}, {a.address}, {a.city}")
        if snapshot.billing_address:
            a = snapshot.billing_address
            lines.append(f"Bill to: {a.full_name or a.first_name + ' ' + a.last_name}, {a.address}, {a.city}")
        if snapshot.shipping:
            lines.append(f"Shipping: {snapshot.shipping.name} ({format_price(snapshot.shipping.rate)})")
        lines.append(f"Total: {format_price(snapshot.total)}")
        lines.append("Payment: cash on delivery")
    return "\n".join(lines)


def text(message: str) -> list[TextContent]:
    return [TextContent(type="text", text=message)]


def require_checkout() -> CheckoutFlow:
    if checkout is None:
        raise ValueError("No checkout in progress. Use storefront_checkout_start first.")
    return checkout


@app.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    return [
        Resource(
            uri=AnyUrl("storefront://products"),
            name="Products",
            mimeType="application/json",
            description="Product catalog",
        ),
        Resource(
            uri=AnyUrl("storefront://cart"),
            name="Shopping Cart",
            mimeType="application/json",
            description="Current shopping cart contents",
        ),
    ]


@app.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource by URI."""
    uri_str = str(uri)

    if uri_str == "storefront://cart":
        cart = await client.get_cart()
        return cart.model_dump_json(indent=2)

    elif uri_str == "storefront://products":
        products = await client.list_products()
        return json.dumps(products.model_dump(), indent=2, default=str)

    raise ValueError(f"Unknown resource: {uri}")


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="storefront_list_products",
            description="List the products in the store catalog",
            inputSchema={
                "type": "object",
                "properties": {
                    "refresh": {
                        "type": "boolean",
                        "description": "Bypass any in-flight request and fetch again (default: false)",
                        "default": False,
                    },
                },
            },
        ),
        Tool(
            name="storefront_get_product",
            description="Get product details by product ID or variant ID",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "string", "description": "Product ID or variant ID"},
                },
                "required": ["product_id"],
            },
        ),
        Tool(
            name="storefront_add_to_cart",
            description="Add a product variant to the shopping cart",
            inputSchema={
                "type": "object",
                "properties": {
                    "variant_id": {"type": "string", "description": "Variant ID to add"},
                    "quantity": {"type": "integer", "description": "Quantity to add (default: 1)", "default": 1},
                },
                "required": ["variant_id"],
            },
        ),
        Tool(
            name="storefront_get_cart",
            description="Get current shopping cart contents with all items and total",
            inputSchema={
                "type": "object",
                "properties": {
                    "refresh": {"type": "boolean", "description": "Force a fresh read", "default": False},
                },
            },
        ),
        Tool(
            name="storefront_update_cart_quantity",
            description="Set the quantity of a variant in the cart (0 removes it)",
            inputSchema={
                "type": "object",
                "properties": {
                    "variant_id": {"type": "string", "description": "Variant ID to update"},
                    "quantity": {"type": "integer", "description": "New quantity"},
                },
                "required": ["variant_id", "quantity"],
            },
        ),
        Tool(
            name="storefront_remove_from_cart",
            description="Remove a variant from the shopping cart",
            inputSchema={
                "type": "object",
                "properties": {
                    "variant_id": {"type": "string", "description": "Variant ID to remove"},
                },
                "required": ["variant_id"],
            },
        ),
        Tool(
            name="storefront_checkout_start",
            description="Start a checkout for the current cart and load the available countries",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="storefront_checkout_set_address",
            description="Fill in shipping and/or billing address fields",
            inputSchema={
                "type": "object",
                "properties": {
                    "shipping": {"type": "object", "properties": ADDRESS_PROPERTIES},
                    "billing": {"type": "object", "properties": ADDRESS_PROPERTIES},
                    "same_billing_address": {
                        "type": "boolean",
                        "description": "Use the shipping address for billing",
                    },
                },
            },
        ),
        Tool(
            name="storefront_checkout_submit_address",
            description="Submit the addresses and get the shipping methods",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="storefront_checkout_select_shipping",
            description="Choose one of the offered shipping methods",
            inputSchema={
                "type": "object",
                "properties": {
                    "shipping_method_id": {"type": "string", "description": "Shipping method ID"},
                },
                "required": ["shipping_method_id"],
            },
        ),
        Tool(
            name="storefront_checkout_submit_shipping",
            description="Submit the selected shipping method and show the order confirmation",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="storefront_checkout_back",
            description="Go back to the previous checkout step",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="storefront_checkout_status",
            description="Show the current checkout step and its data",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="storefront_place_order",
            description="Place the order (cash on delivery) from the confirmation step",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle tool calls."""
    global checkout
    arguments = arguments or {}

    try:
        if name == "storefront_list_products":
            result = await client.list_products(fresh=bool(arguments.get("refresh")))
            if not result.products:
                return text("No products found")

            result_lines = [f"Found {len(result.products)} product(s) (currency {result.currency_code}):\n"]
            for i, product in enumerate(result.products, 1):
                result_lines.extend(format_product(product, i))
            return text("\n".join(result_lines))

        elif name == "storefront_get_product":
            product = await client.get_product(arguments["product_id"])
            lines = format_product(product)
            if product.short_description:
                lines.append(f"   {product.short_description}")
            return text("\n".join(lines))

        elif name == "storefront_add_to_cart":
            variant_id = arguments["variant_id"]
            quantity = int(arguments.get("quantity", 1))
            if quantity < 1:
                return text("Error: Quantity must be at least 1")

            result = await client.add_to_cart(variant_id, quantity)
            return text(
                f"Added variant {variant_id} (quantity: {quantity}) to cart\nCart ID: {result.cart_id or 'unknown'}"
            )

        elif name == "storefront_get_cart":
            cart = await client.get_cart(fresh=bool(arguments.get("refresh")))
            return text(format_cart(cart))

        elif name == "storefront_update_cart_quantity":
            cart = await client.update_cart_item(arguments["variant_id"], int(arguments["quantity"]))
            return text(f"Cart updated\n{format_cart(cart)}")

        elif name == "storefront_remove_from_cart":
            cart = await client.remove_from_cart(arguments["variant_id"])
            return text(f"Removed variant {arguments['variant_id']}\n{format_cart(cart)}")

        elif name == "storefront_checkout_start":
            if not client.cart_store.get_cart_id():
                return text("Error: No cart found. Please add items to cart first.")
            checkout = CheckoutFlow(client, empty_shipping=settings.empty_shipping)
            await checkout.load_address_details()
            return text(format_checkout(checkout))

        elif name == "storefront_checkout_set_address":
            flow = require_checkout()
            if "same_billing_address" in arguments:
                flow.set_same_billing_address(bool(arguments["same_billing_address"]))
            if arguments.get("shipping"):
                flow.update_shipping(**arguments["shipping"])
            if arguments.get("billing"):
                flow.update_billing(**arguments["billing"])
            return text(format_checkout(flow))

        elif name == "storefront_checkout_submit_address":
            flow = require_checkout()
            await flow.submit_address()
            return text(format_checkout(flow))

        elif name == "storefront_checkout_select_shipping":
            flow = require_checkout()
            flow.select_shipping_method(arguments["shipping_method_id"])
            return text(format_checkout(flow))

        elif name == "storefront_checkout_submit_shipping":
            flow = require_checkout()
            await flow.submit_shipping_method()
            return text(format_checkout(flow))

        elif name == "storefront_checkout_back":
            flow = require_checkout()
            flow.back()
            return text(format_checkout(flow))

        elif name == "storefront_checkout_status":
            return text(format_checkout(require_checkout()))

        elif name == "storefront_place_order":
            flow = require_checkout()
            placed = await flow.place_order()
            message = format_checkout(flow)
            if placed:
                # The session ends with the order
                checkout = None
            return text(message)

        else:
            return text(f"Unknown tool: {name}")

    except Exception as e:
        logger.error(f"Error executing tool {name}: {e}", exc_info=True)
        return text(f"Error: {str(e)}")


def create_client(app_settings: Settings) -> StorefrontClient:
    """Wire the client with its cache, request guard and cart store."""
    cart_store = CartIdStore(session_file=app_settings.session_file)
    return StorefrontClient(app_settings, cart_store, cache=ProductCache(), coalescer=RequestCoalescer())


async def main() -> None:
    """Main entry point."""
    global settings, client

    settings = get_settings()
    client = create_client(settings)

    logger.info(f"Storefront domain: {settings.domain_name} (backend: {settings.backend.value})")
    if settings.primary_base_url:
        logger.info(f"Proxy channel: {settings.primary_base_url}")
    else:
        logger.info("No proxy channel configured, using direct requests only")

    logger.info("Starting Storefront MCP Server...")

    # Import and run the server
    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        await client.close()


if __name__ == "__main__":
    asyncio.run(main())
