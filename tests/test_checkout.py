import pytest

from storefront_server.checkout import NO_CART_MESSAGE, CheckoutFlow, CheckoutStage
from storefront_server.config import API_PREFIX, EmptyShippingPolicy
from storefront_server.errors import CheckoutError

from .payloads import FakeUpstream

CHECKOUT = f"{API_PREFIX}/checkout"
ADDRESS = f"{API_PREFIX}/checkout/address"
SHIPPING = f"{API_PREFIX}/checkout/shipping-methods"
PAYMENT = f"{API_PREFIX}/checkout/process-offline-payment"

COUNTRIES = [
    {"code": "CA", "name": "Canada", "states": [{"code": "ON", "name": "Ontario"}, {"code": "QC", "name": "Quebec"}]},
    {"code": "US", "name": "United States", "states": [{"code": "NY", "name": "New York"}]},
]

CHECKOUT_RESPONSE = {
    "status_code": "0",
    "payload": {
        "checkout": {
            "address_detail": {
                "countries": COUNTRIES,
                "addresses": [
                    {"first_name": "Ada", "last_name": "Lovelace", "address": "1 Main St", "city": "Toronto", "is_selected": True},
                    {"full_name": "Billing Dept", "address": "2 Side St", "city": "Ottawa", "is_selected_billing_address": True},
                ],
            },
            "order": {"shipping": {"id": "s2", "name": "Express", "rate": 15}, "total": 42.5},
        }
    },
}


def methods_response(*methods: dict) -> dict:
    return {
        "status_code": "0",
        "status_message": "success",
        "payload": {"checkout_shipping_methods": {"shipping_methods": list(methods)}},
    }


STANDARD = {"id": "s1", "name": "Standard", "rate": 5, "delivery_time": "3-5 days"}
EXPRESS = {"id": "s2", "name": "Express", "rate": 15, "is_default": True}


@pytest.fixture
def flow(client, cart_store, upstream):
    cart_store.set_cart_id("c1")
    upstream.add("GET", CHECKOUT, CHECKOUT_RESPONSE)
    return CheckoutFlow(client)


async def at_shipping_stage(flow: CheckoutFlow, upstream: FakeUpstream) -> None:
    upstream.add("POST", ADDRESS, methods_response(STANDARD, EXPRESS))
    assert await flow.submit_address()


async def at_confirmation_stage(flow: CheckoutFlow, upstream: FakeUpstream) -> None:
    await at_shipping_stage(flow, upstream)
    upstream.add("POST", SHIPPING, {"status_code": "0", "status_message": "success"})
    assert await flow.submit_shipping_method()


# Address stage


async def test_load_address_details_defaults_country(flow):
    assert await flow.load_address_details()

    assert [c.code for c in flow.countries] == ["CA", "US"]
    assert flow.shipping_address.country == "CA"
    assert flow.billing_address.country == "CA"
    assert [s.code for s in flow.states_for("CA")] == ["ON", "QC"]
    assert flow.states_for("XX") == []


async def test_load_address_details_failure_sets_error(client, cart_store, upstream):
    cart_store.set_cart_id("c1")
    upstream.add("GET", CHECKOUT, {"message": "boom"}, status=500)
    flow = CheckoutFlow(client)

    assert not await flow.load_address_details()
    assert flow.error == "Failed to load address details. Please try again."

    upstream.add("GET", CHECKOUT, CHECKOUT_RESPONSE)
    assert await flow.load_address_details()
    assert flow.error is None



def test_shipping_changes_mirror_to_billing(flow):
    flow.update_shipping(first_name="Ada", city="Toronto")

    assert flow.billing_address.first_name == "Ada"
    assert flow.billing_address.city == "Toronto"

    flow.set_same_billing_address(False)
    flow.update_shipping(city="Ottawa")
    assert flow.billing_address.city == "Toronto"

    flow.update_billing(city="Montreal")
    assert flow.shipping_address.city == "Ottawa"


def test_turning_same_billing_on_copies_shipping(flow):
    flow.set_same_billing_address(False)
    flow.update_shipping(city="Toronto")
    flow.update_billing(city="Montreal")

    flow.set_same_billing_address(True)

    assert flow.billing_address.city == "Toronto"


def test_changing_country_resets_state(flow):
    flow.update_shipping(country="CA", state="ON")
    flow.update_shipping(country="US")

    assert flow.shipping_address.state == ""


def test_unknown_address_field_is_rejected(flow):
    with pytest.raises(CheckoutError, match="planet"):
        flow.update_shipping(planet="Mars")


async def test_submit_address_preselects_default_method(flow, upstream):
    await at_shipping_stage(flow, upstream)

    assert flow.stage == CheckoutStage.SHIPPING
    assert [m.id for m in flow.shipping_methods] == ["s1", "s2"]
    assert flow.selected_shipping_method_id == "s2"
    assert flow.can_submit_shipping
    assert flow.address_submitted


async def test_submit_address_falls_back_to_first_method(flow, upstream):
    upstream.add("POST", ADDRESS, methods_response(STANDARD, {**EXPRESS, "is_default": False}))

    assert await flow.submit_address()

    assert flow.selected_shipping_method_id == "s1"


async def test_submit_address_sends_same_billing_flag(flow, upstream):
    upstream.add("POST", ADDRESS, methods_response(STANDARD))
    flow.set_same_billing_address(False)

    await flow.submit_address()

    body = FakeUpstream.body(upstream.calls("POST", ADDRESS)[0])
    assert body["shipping_address"]["same_billing_address"] is False
    assert body["billing_address"]["same_billing_address"] is False


async def test_rejected_address_stays_on_stage(flow, upstream):
    upstream.add("POST", ADDRESS, {"status_code": "400", "status_message": "Invalid postal code"})

    assert not await flow.submit_address()

    assert flow.stage == CheckoutStage.ADDRESS
    assert flow.error == "Invalid postal code"
    assert not flow.busy


async def test_no_methods_acknowledges_address(flow, upstream):
    upstream.add("POST", ADDRESS, methods_response())

    assert await flow.submit_address()

    assert flow.stage == CheckoutStage.ADDRESS
    assert flow.notice == "Address submitted successfully!"
    assert upstream.calls("POST", PAYMENT) == []


async def test_no_methods_can_place_order_directly(client, cart_store, upstream):
    cart_store.set_cart_id("c1")
    upstream.add("POST", ADDRESS, methods_response())
    upstream.add("POST", PAYMENT, {"status_code": "0", "status_message": "success"})
    flow = CheckoutFlow(client, empty_shipping=EmptyShippingPolicy.PLACE_ORDER)

    assert await flow.submit_address()

    assert flow.stage == CheckoutStage.COMPLETE
    assert cart_store.get_cart_id() is None


async def test_no_methods_failed_order_returns_to_address(client, cart_store, upstream):
    cart_store.set_cart_id("c1")
    upstream.add("POST", ADDRESS, methods_response())
    upstream.add("POST", PAYMENT, {"status_code": "1", "status_message": "Declined"})
    flow = CheckoutFlow(client, empty_shipping=EmptyShippingPolicy.PLACE_ORDER)

    assert not await flow.submit_address()

    assert flow.stage == CheckoutStage.ADDRESS
    assert flow.error == "Declined"


async def test_submission_without_cart(client, upstream):
    flow = CheckoutFlow(client)

    assert not await flow.submit_address()

    assert flow.error == NO_CART_MESSAGE
    assert upstream.requests == []


async def test_submission_at_wrong_stage_is_refused(flow):
    with pytest.raises(CheckoutError):
        await flow.place_order()


# Shipping stage


async def test_select_unknown_method_is_refused(flow, upstream):
    await at_shipping_stage(flow, upstream)

    with pytest.raises(CheckoutError, match="Unknown shipping method"):
        flow.select_shipping_method("nope")

    flow.select_shipping_method("s1")
    assert flow.selected_shipping_method.name == "Standard"


async def test_submit_shipping_loads_confirmation(flow, upstream):
    await at_confirmation_stage(flow, upstream)

    assert flow.stage == CheckoutStage.CONFIRMATION
    assert FakeUpstream.body(upstream.calls("POST", SHIPPING)[0]) == {"shipping": "s2"}
    snapshot = flow.confirmation
    assert snapshot.shipping_address.city == "Toronto"
    assert snapshot.billing_address.full_name == "Billing Dept"
    assert snapshot.shipping.name == "Express"
    assert snapshot.total == 42.5


async def test_confirmation_ignores_malformed_countries(flow, upstream):
    await at_shipping_stage(flow, upstream)
    checkout = CHECKOUT_RESPONSE["payload"]["checkout"]
    upstream.add(
        "GET",
        CHECKOUT,
        {
            "status_code": "0",
            "payload": {
                "checkout": {
                    **checkout,
                    "address_detail": {**checkout["address_detail"], "countries": [{"name": "Nowhere"}]},
                }
            },
        },
    )
    upstream.add("POST", SHIPPING, {"status_code": "0"})

    assert await flow.submit_shipping_method()

    assert flow.stage == CheckoutStage.CONFIRMATION
    assert flow.confirmation.total == 42.5



async def test_submit_shipping_without_selection(flow, upstream):
    await at_shipping_stage(flow, upstream)
    flow.selected_shipping_method_id = None

    assert not await flow.submit_shipping_method()

    assert flow.error == "Please select a shipping method"
    assert flow.stage == CheckoutStage.SHIPPING


async def test_rejected_shipping_method_stays_on_stage(flow, upstream):
    await at_shipping_stage(flow, upstream)
    upstream.add("POST", SHIPPING, {"status_code": "9", "status_message": "Not deliverable"})

    assert not await flow.submit_shipping_method()

    assert flow.stage == CheckoutStage.SHIPPING
    assert flow.error == "Not deliverable"
    assert not flow.busy


# Confirmation stage


async def test_place_order_completes_checkout(flow, upstream, cart_store):
    await at_confirmation_stage(flow, upstream)
    upstream.add("POST", PAYMENT, {"status_code": "0", "status_message": "success"})

    assert await flow.place_order()

    assert flow.stage == CheckoutStage.COMPLETE
    assert flow.notice == "Order placed successfully!"
    assert cart_store.get_cart_id() is None


async def test_failed_order_can_be_retried(flow, upstream, cart_store):
    await at_confirmation_stage(flow, upstream)
    upstream.add("POST", PAYMENT, {"message": "gateway timeout"}, status=504)

    assert not await flow.place_order()
    assert flow.stage == CheckoutStage.CONFIRMATION
    assert flow.error.startswith("Failed to process payment: 504")
    assert cart_store.get_cart_id() == "c1"

    upstream.add("POST", PAYMENT, {"status_code": "0"})
    assert await flow.place_order()
    assert flow.error is None


async def test_back_walks_one_stage_at_a_time(flow, upstream):
    await at_confirmation_stage(flow, upstream)

    assert flow.back() == CheckoutStage.SHIPPING
    assert flow.back() == CheckoutStage.ADDRESS
    with pytest.raises(CheckoutError):
        flow.back()
