import json
from itertools import count

import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture

from reconciliation.channel import reset_email_channel, set_email_channel
from reconciliation.channel.fake_email import FakeEmailAdapter
from reconciliation.gateway import reset_gateway, set_gateway
from reconciliation.gateway.fake_adapter import FakeGateway
from reconciliation.inventory.stock import StockEntry, StockKind
from reconciliation.order.order import Order
from reconciliation.settings import EngineSettings
from reconciliation.webhook import reset_engine, set_engine
from reconciliation.webhook.engine import ReconciliationEngine


@pytest.fixture(scope="session")
def reconciliation_bed():
    from reconciliation.domain import reconciliation

    bed = DomainFixture(reconciliation)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(reconciliation_bed):
    with reconciliation_bed.domain_context():
        yield

        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def gateway():
    fake = FakeGateway()
    set_gateway(fake)
    yield fake
    reset_gateway()


@pytest.fixture(autouse=True)
def email():
    fake = FakeEmailAdapter()
    set_email_channel(fake)
    yield fake
    reset_email_channel()


class Sleeps(list):
    """Stands in for ``time.sleep``: records every requested delay."""

    def __call__(self, seconds):
        self.append(seconds)


class Clock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def sleeps():
    return Sleeps()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def settings():
    return EngineSettings(webhook_secret="whsec_test")


@pytest.fixture
def engine(settings, sleeps, clock):
    instance = ReconciliationEngine(settings=settings, sleep=sleeps, clock=clock)
    set_engine(instance)
    yield instance
    reset_engine()


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------
_sessions = count(1)


@pytest.fixture
def make_order():
    def _make(
        items=None,
        status="pending",
        correlation_id=None,
        payment_intent_id=None,
        customer_email="ana@example.com",
        customer_name="Ana",
    ):
        order = Order.create(
            correlation_id=correlation_id or f"cs_test_{next(_sessions):04d}",
            items_data=items if items is not None else [{"product_slug": "black-tee", "sku": "X", "quantity": 2}],
            total=500.0,
            customer_name=customer_name,
            customer_email=customer_email,
            payment_intent_id=payment_intent_id,
            order_status=status,
        )
        current_domain.repository_for(Order).add(order)
        return current_domain.repository_for(Order).get(order.id)

    return _make


@pytest.fixture
def make_stock():
    def _make(slug, quantity, kind=StockKind.PRODUCT.value, sku=None, units_sold=0):
        entry = StockEntry.create(kind=kind, slug=slug, quantity=quantity, sku=sku, units_sold=units_sold)
        current_domain.repository_for(StockEntry).add(entry)
        return entry.id

    return _make


@pytest.fixture
def stock_of():
    def _quantity(entry_id):
        return current_domain.repository_for(StockEntry).get(entry_id).quantity

    return _quantity


@pytest.fixture
def reload_order():
    def _reload(order_id):
        return current_domain.repository_for(Order).get(order_id)

    return _reload


# ---------------------------------------------------------------------------
# Gateway payloads
# ---------------------------------------------------------------------------
@pytest.fixture
def webhook_body():
    """Build a raw webhook body the way the gateway sends it."""

    def _body(event_id, event_type, data_object, created=1_700_000_000):
        return json.dumps(
            {
                "id": event_id,
                "object": "event",
                "type": event_type,
                "created": created,
                "data": {"object": data_object},
            }
        ).encode()

    return _body


@pytest.fixture
def intent_object():
    def _intent(intent_id="pi_123", status="succeeded", method_types=("card",), **extra):
        return {
            "id": intent_id,
            "object": "payment_intent",
            "status": status,
            "amount": 50000,
            "currency": "mxn",
            "payment_method_types": list(method_types),
            **extra,
        }

    return _intent


@pytest.fixture
def session_object():
    def _session(session_id, payment_intent="pi_123", payment_status="paid", status="complete", **extra):
        return {
            "id": session_id,
            "object": "checkout.session",
            "status": status,
            "payment_status": payment_status,
            "payment_intent": payment_intent,
            "payment_method_types": ["card"],
            "customer_details": {"name": "Ana", "email": "ana@example.com"},
            "amount_total": 50000,
            "currency": "mxn",
            **extra,
        }

    return _session
