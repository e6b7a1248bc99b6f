"""Three-stage checkout: address, shipping method, confirmation."""

import logging
from enum import Enum
from typing import Any, Optional

from .config import EmptyShippingPolicy
from .errors import CheckoutError, StorefrontError
from .models import (
    AddressForm,
    CheckoutAddressRequest,
    CheckoutSnapshot,
    Country,
    ShippingMethod,
    State,
)
from .storefront_client import DEFAULT_PAYMENT_MODE, StorefrontClient

logger = logging.getLogger(__name__)

NO_CART_MESSAGE = "No cart found. Please add items to cart first."


class CheckoutStage(str, Enum):
    ADDRESS = "address"
    SHIPPING = "shipping"
    CONFIRMATION = "confirmation"
    COMPLETE = "complete"


class CheckoutFlow:
    """
    Checkout session for the current cart.

    Stages only move forward on a successful submission; ``back()`` is the
    only way to return to an earlier stage. A failed submission keeps the
    stage, stores the message in ``error`` and may simply be retried.
    """

    def __init__(
        self,
        client: StorefrontClient,
        empty_shipping: EmptyShippingPolicy = EmptyShippingPolicy.ACKNOWLEDGE,
    ) -> None:
        self.client = client
        self.empty_shipping = empty_shipping

        self.stage = CheckoutStage.ADDRESS
        self.shipping_address = AddressForm()
        self.billing_address = AddressForm()
        self.same_billing_address = True
        self.countries: list[Country] = []
        self.shipping_methods: list[ShippingMethod] = []
        self.selected_shipping_method_id: Optional[str] = None
        self.confirmation: Optional[CheckoutSnapshot] = None
        self.address_submitted = False

        self.busy = False
        self.error: Optional[str] = None
        self.notice: Optional[str] = None

    @property
    def cart_id(self) -> Optional[str]:
        return self.client.cart_store.get_cart_id()

    @property
    def selected_shipping_method(self) -> Optional[ShippingMethod]:
        for method in self.shipping_methods:
            if method.id == self.selected_shipping_method_id:
                return method
        return None

    @property
    def can_submit_shipping(self) -> bool:
        return self.stage == CheckoutStage.SHIPPING and bool(self.selected_shipping_method_id) and not self.busy

    # Address form

    async def load_address_details(self) -> bool:
        """
        Load the countries the store ships to and default both addresses
        to the first one.

        Returns:
            True if countries were loaded
        """
        cart_id = self.cart_id
        if not cart_id:
            return False

        try:
            countries = await self.client.get_countries(cart_id)
        except StorefrontError as e:
            logger.error(f"Failed to fetch address details: {e}")
            self.error = "Failed to load address details. Please try again."
            return False

        if not countries:
            self.error = "No countries available. Please check the API response."
            return False

        self.countries = countries
        self.error = None
        default_country = countries[0].code
        if not self.shipping_address.country:
            self.shipping_address = self.shipping_address.model_copy(update={"country": default_country})
        if not self.billing_address.country:
            self.billing_address = self.billing_address.model_copy(update={"country": default_country})
        return True

    def states_for(self, country_code: str) -> list[State]:
        for country in self.countries:
            if country.code == country_code:
                return country.states
        return []

    @staticmethod
    def _address_updates(fields: dict[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - set(AddressForm.model_fields)
        if unknown:
            raise CheckoutError(f"Unknown address field(s): {', '.join(sorted(unknown))}")
        updates = dict(fields)
        # A state only makes sense within its country
        if "country" in updates and "state" not in updates:
            updates["state"] = ""
        return updates

    def update_shipping(self, **fields: Any) -> None:
        """Change shipping address fields, mirrored to billing while they are the same."""
        updates = self._address_updates(fields)
        self.shipping_address = self.shipping_address.model_copy(update=updates)
        if self.same_billing_address:
            self.billing_address = self.billing_address.model_copy(update=updates)

    def update_billing(self, **fields: Any) -> None:
        updates = self._address_updates(fields)
        self.billing_address = self.billing_address.model_copy(update=updates)

    def set_same_billing_address(self, same: bool) -> None:
        self.same_billing_address = same
        self.shipping_address = self.shipping_address.model_copy(update={"same_billing_address": same})
        if same:
            self.billing_address = self.shipping_address.model_copy()
        else:
            self.billing_address = self.billing_address.model_copy(update={"same_billing_address": same})

    # Transitions

    def _begin(self, stage: CheckoutStage) -> Optional[str]:
        """Check preconditions shared by every submission; returns the cart ID."""
        if self.busy:
            raise CheckoutError("A checkout step is already in progress")
        if self.stage != stage:
            raise CheckoutError(f"Checkout is at the {self.stage.value} stage, not {stage.value}")
        cart_id = self.cart_id
        if not cart_id:
            self.error = NO_CART_MESSAGE
            return None
        self.busy = True
        self.error = None
        self.notice = None
        return cart_id

    async def submit_address(self) -> bool:
        """
        Submit both addresses and move to shipping method selection.

        Returns:
            True if the address was accepted (and, when the order is placed
            straight away for lack of shipping methods, the order too)
        """
        cart_id = self._begin(CheckoutStage.ADDRESS)
        if cart_id is None:
            return False

        request = CheckoutAddressRequest(
            shipping_address=self.shipping_address.model_copy(
                update={"same_billing_address": self.same_billing_address}
            ),
            billing_address=self.billing_address.model_copy(
                update={"same_billing_address": self.same_billing_address}
            ),
        )
        try:
            methods = await self.client.submit_address(cart_id, request)
        except StorefrontError as e:
            logger.warning(f"Address submission failed: {e}")
            self.error = str(e) or "Failed to process checkout"
            self.busy = False
            return False

        self.address_submitted = True
        self.busy = False

        if methods:
            self.shipping_methods = methods
            default = next((method for method in methods if method.is_default), methods[0])
            self.selected_shipping_method_id = default.id
            self.stage = CheckoutStage.SHIPPING
            logger.info(f"Address accepted, {len(methods)} shipping method(s), default {default.id}")
            return True

        self.shipping_methods = []
        self.selected_shipping_method_id = None
        if self.empty_shipping == EmptyShippingPolicy.PLACE_ORDER:
            logger.info("No shipping methods offered, placing order directly")
            self.stage = CheckoutStage.CONFIRMATION
            placed = await self.place_order()
            if not placed:
                # Nothing to confirm without a shipping step; let the address be resubmitted
                self.stage = CheckoutStage.ADDRESS
            return placed

        self.notice = "Address submitted successfully!"
        return True

    def select_shipping_method(self, method_id: str) -> None:
        if self.stage != CheckoutStage.SHIPPING:
            raise CheckoutError("Shipping methods can only be chosen at the shipping stage")
        if not any(method.id == method_id for method in self.shipping_methods):
            raise CheckoutError(f"Unknown shipping method: {method_id}")
        self.selected_shipping_method_id = method_id

    async def submit_shipping_method(self) -> bool:
        """
        Submit the selected shipping method and load the confirmation.

        Returns:
            True once the confirmation stage is reached
        """
        if not self.selected_shipping_method_id:
            self.error = "Please select a shipping method"
            return False
        cart_id = self._begin(CheckoutStage.SHIPPING)
        if cart_id is None:
            return False

        try:
            await self.client.submit_shipping_method(cart_id, self.selected_shipping_method_id)
            self.confirmation = await self._fetch_confirmation(cart_id)
        except StorefrontError as e:
            logger.warning(f"Shipping method submission failed: {e}")
            self.error = str(e) or "Failed to process shipping method"
            return False
        finally:
            self.busy = False

        self.stage = CheckoutStage.CONFIRMATION
        return True

    async def _fetch_confirmation(self, cart_id: str) -> CheckoutSnapshot:
        checkout = await self.client.get_checkout(cart_id)
        addresses = checkout.address_detail.addresses if checkout.address_detail else []
        order = checkout.order
        return CheckoutSnapshot(
            shipping_address=next((a for a in addresses if a.is_selected), None),
            billing_address=next((a for a in addresses if a.is_selected_billing_address), None),
            shipping=order.shipping if order else None,
            total=order.total if order else None,
        )

    async def place_order(self, payment_mode: str = DEFAULT_PAYMENT_MODE) -> bool:
        """
        Place the order. On success the cart is gone and the flow is complete.

        Returns:
            True if the order was placed
        """
        cart_id = self._begin(CheckoutStage.CONFIRMATION)
        if cart_id is None:
            return False

        try:
            await self.client.place_order(cart_id, payment_mode)
        except StorefrontError as e:
            logger.warning(f"Order placement failed: {e}")
            self.error = str(e) or "Failed to place order"
            return False
        finally:
            self.busy = False

        self.stage = CheckoutStage.COMPLETE
        self.notice = "Order placed successfully!"
        logger.info("Order placed")
        return True

    def back(self) -> CheckoutStage:
        """Return to the previous stage."""
        if self.busy:
            raise CheckoutError("A checkout step is already in progress")
        if self.stage == CheckoutStage.SHIPPING:
            self.stage = CheckoutStage.ADDRESS
        elif self.stage == CheckoutStage.CONFIRMATION:
            self.stage = CheckoutStage.SHIPPING
        else:
            raise CheckoutError(f"Cannot go back from the {self.stage.value} stage")
        self.error = None
        return self.stage
