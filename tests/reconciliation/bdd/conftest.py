"""Shared BDD fixtures and step definitions for payment reconciliation."""

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then, when

from reconciliation.gateway.fake_adapter import TEST_SIGNATURE
from reconciliation.ledger.processed_event import ProcessedEvent

# Intent status the gateway reports alongside each event type
_INTENT_STATUS = {
    "payment_intent.created": "requires_payment_method",
    "payment_intent.processing": "processing",
    "payment_intent.requires_action": "requires_action",
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "requires_payment_method",
    "payment_intent.canceled": "canceled",
}


class FlakyApplier:
    """Fails a fixed number of attempts, then delegates to the real applier."""

    def __init__(self, applier, failures):
        self.applier = applier
        self.failures = failures
        self.calls = 0

    @property
    def fulfillment(self):
        return self.applier.fulfillment

    def apply(self, event):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"Transient failure on attempt {self.calls}")
        return self.applier.apply(event)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def stock_by_sku():
    return {}


@pytest.fixture()
def deliveries():
    return []


def _deliver(engine, webhook_body, deliveries, event_id, event_type, data_object):
    body = webhook_body(event_id, event_type, data_object)
    deliveries.append(engine.handle(body, TEST_SIGNATURE))


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('product "{slug}" with SKU "{sku}" has {quantity:d} units in stock'))
def _(make_stock, stock_by_sku, slug, sku, quantity):
    stock_by_sku[sku] = {"id": make_stock(slug, quantity, sku=sku), "slug": slug}


@given(
    parsers.cfparse('a {status} order for payment intent "{intent_id}" with {quantity:d} units of SKU "{sku}"'),
    target_fixture="order",
)
def _(make_order, stock_by_sku, status, intent_id, quantity, sku):
    return make_order(
        items=[{"product_slug": stock_by_sku[sku]["slug"], "sku": sku, "quantity": quantity}],
        status=status,
        payment_intent_id=intent_id,
    )


@given(parsers.cfparse("event application fails {failures:d} times before succeeding"), target_fixture="flaky")
def _(engine, failures):
    engine.applier = FlakyApplier(engine.applier, failures)
    return engine.applier


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse('event "{event_id}" of type "{event_type}" for payment intent "{intent_id}" is delivered'))
def _(engine, webhook_body, intent_object, deliveries, event_id, event_type, intent_id):
    intent = intent_object(intent_id, status=_INTENT_STATUS[event_type])
    _deliver(engine, webhook_body, deliveries, event_id, event_type, intent)


@when(
    parsers.cfparse(
        'event "{event_id}" of type "{event_type}" for payment intent "{intent_id}" is delivered {times:d} times'
    )
)
def _(engine, webhook_body, intent_object, deliveries, event_id, event_type, intent_id, times):
    intent = intent_object(intent_id, status=_INTENT_STATUS[event_type])
    for _ in range(times):
        _deliver(engine, webhook_body, deliveries, event_id, event_type, intent)


@when(parsers.cfparse('voucher instructions for payment intent "{intent_id}" arrive in event "{event_id}"'))
def _(engine, webhook_body, intent_object, deliveries, intent_id, event_id):
    intent = intent_object(
        intent_id,
        status="requires_action",
        method_types=("oxxo",),
        next_action={
            "type": "oxxo_display_details",
            "oxxo_display_details": {"hosted_voucher_url": f"https://payments.example.com/voucher/{intent_id}"},
        },
    )
    _deliver(engine, webhook_body, deliveries, event_id, "payment_intent.requires_action", intent)


@when(parsers.cfparse("{seconds:d} seconds pass"))
def _(clock, seconds):
    clock.advance(seconds)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def _(order, reload_order, status):
    assert reload_order(order.id).order_status == status


@then(parsers.cfparse('the stock of SKU "{sku}" is {quantity:d}'))
def _(stock_of, stock_by_sku, sku, quantity):
    assert stock_of(stock_by_sku[sku]["id"]) == quantity


@then(parsers.cfparse('{count:d} email was sent with subject "{subject}"'))
@then(parsers.cfparse('{count:d} emails were sent with subject "{subject}"'))
def _(email, count, subject):
    assert len([sent for sent in email.sent_emails if sent["subject"] == subject]) == count


@then(parsers.cfparse("delivery {number:d} was acknowledged as {outcome}"))
def _(deliveries, number, outcome):
    assert deliveries[number - 1].outcome.value == outcome


@then("every delivery got the same response")
def _(deliveries):
    assert len({tuple(ack.to_response().items()) for ack in deliveries}) == 1


@then(parsers.cfparse("the event was applied on attempt {attempt:d}"))
def _(flaky, attempt):
    assert flaky.calls == attempt


@then(parsers.cfparse("the engine backed off for {first:g} then {second:g} seconds"))
def _(sleeps, first, second):
    assert sleeps == [first, second]


@then(parsers.cfparse('the ledger holds event "{event_id}" exactly once'))
def _(event_id):
    rows = current_domain.repository_for(ProcessedEvent)._dao.query.filter(event_id=event_id).all().items
    assert len(rows) == 1
