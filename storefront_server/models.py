"""Data models for storefront entities."""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class UpstreamModel(BaseModel):
    """Base for payloads echoed by the API; null or blank fields fall back to defaults."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_blanks(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None and value != ""}
        return data


class ProductImage(UpstreamModel):
    """Represents a product or variant image."""

    model_config = ConfigDict(extra="allow", frozen=True)

    id: Optional[str] = None
    url: str = ""
    title: Optional[str] = None
    alternate_text: Optional[str] = None
    is_featured: bool = False
    order: int = 0


class ProductVariant(UpstreamModel):
    """Represents a purchasable variant of a product."""

    model_config = ConfigDict(extra="allow", frozen=True)

    variant_id: str = Field(description="Variant ID used for cart operations")
    sku: Optional[str] = Field(None, description="Stock keeping unit")
    selling_price: Decimal = Field(default=Decimal("0"), description="Current price")
    label_price: Optional[Decimal] = Field(None, description="List price before discount")
    stock_available: Optional[float] = Field(None, description="Units in stock")
    is_out_of_stock: bool = False
    is_available_for_purchase: bool = True
    images: list[ProductImage] = Field(default_factory=list)


class Product(UpstreamModel):
    """
    Full product record as returned by the storefront API.

    Records are immutable; a fresher fetch replaces the whole record.
    Fields not modelled here are kept as extras.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    product_id: str = Field(description="Product ID")
    name: str = Field(default="", description="Product name")
    selling_price: Decimal = Field(default=Decimal("0"), description="Product price")
    label_price: Optional[Decimal] = Field(None, description="List price before discount")
    currency_code: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    url: Optional[str] = None
    handle: Optional[str] = None
    is_out_of_stock: bool = False
    on_sale: bool = False
    images: list[ProductImage] = Field(default_factory=list)
    variants: list[ProductVariant] = Field(default_factory=list)

    @property
    def variant_ids(self) -> list[str]:
        """IDs of every variant this product declares."""
        return [variant.variant_id for variant in self.variants if variant.variant_id]

    @property
    def default_variant_id(self) -> Optional[str]:
        """Variant added to the cart when the product itself is picked."""
        ids = self.variant_ids
        return ids[0] if ids else None


class ProductList(BaseModel):
    """A page of products plus the store currency."""

    products: list[Product] = Field(default_factory=list)
    currency_code: str = Field(default="USD", description="Store currency code")


class CartItem(BaseModel):
    """Represents an item in the shopping cart."""

    product_id: str = ""
    variant_id: str = ""
    quantity: int = Field(default=1, description="Quantity of the variant")
    name: str = "Product"
    price: Decimal = Field(default=Decimal("0"), description="Unit price")
    image: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


class Cart(BaseModel):
    """Represents the shopping cart."""

    cart_id: Optional[str] = Field(None, description="Cart identity")
    items: list[CartItem] = Field(default_factory=list, description="Cart items")

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def total_price(self) -> Decimal:
        return sum((item.subtotal for item in self.items), Decimal("0"))


class AddToCartResult(BaseModel):
    """Outcome of an add-to-cart call."""

    cart_id: Optional[str] = None
    status_code: Optional[str] = None
    status_message: Optional[str] = None


class ShippingMethod(UpstreamModel):
    """A shipping option offered after the address step."""

    id: str
    name: str = ""
    rate: Decimal = Decimal("0")
    handling_fees: Decimal = Decimal("0")
    delivery_time: str = ""
    is_default: bool = False


class State(UpstreamModel):
    code: str
    name: str = ""


class Country(UpstreamModel):
    code: str
    name: str = ""
    mobile_code: Optional[str] = None
    states: list[State] = Field(default_factory=list)


class Address(UpstreamModel):
    """An address known to the checkout, as echoed back by the API."""

    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    email_address: str = ""
    address: str = ""
    street2: str = ""
    city: str = ""
    state: str = ""
    state_name: str = ""
    postal_code: str = ""
    country: str = ""
    country_name: str = ""
    telephone: str = ""
    company: str = ""
    is_selected: bool = False
    is_selected_billing_address: bool = False
    same_billing_address: bool = False


class AddressDetail(UpstreamModel):
    """
    Addresses known to the checkout.

    Countries are kept as raw extras here and read through ``Country``
    only when the address form needs them.
    """

    addresses: list[Address] = Field(default_factory=list)


class CheckoutOrder(UpstreamModel):
    shipping: Optional[ShippingMethod] = None
    total: Optional[Decimal] = None


class CheckoutData(UpstreamModel):
    """The checkout resource (addresses, countries, order summary)."""

    address_detail: Optional[AddressDetail] = None
    order: Optional[CheckoutOrder] = None


class AddressForm(BaseModel):
    """Address form state collected during the address stage."""

    first_name: str = ""
    last_name: str = ""
    email_address: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    telephone: str = ""
    country: str = ""
    same_billing_address: bool = True


class CheckoutAddressRequest(BaseModel):
    shipping_address: AddressForm
    billing_address: AddressForm


class CheckoutSnapshot(BaseModel):
    """What the confirmation stage shows before the order is placed."""

    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    shipping: Optional[ShippingMethod] = None
    total: Optional[Decimal] = None


class StatusResponse(UpstreamModel):
    """Bare status envelope returned by checkout writes."""

    status_code: Optional[str] = None
    status_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status_code == "0" or self.status_message == "success"
