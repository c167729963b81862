# Overview: Property-based checks for batch quantities, ledger replay and receipt totals.

from datetime import timedelta

from hypothesis import HealthCheck, given, settings, strategies as st

from medstock.errors import InsufficientStock, OverReceipt
from medstock.extensions import db
from medstock.models import InventoryBatch, Organization
from medstock.services import batch_store, catalog_service, purchase_order_service, reconciliation_service
from medstock.services.purchase_order_service import ExistingProduct, ReceiptLine
from medstock.time_utils import today

PROPERTY_SETTINGS = settings(
    max_examples=30,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)

BATCH_SLOTS = 3

stock_operations = st.lists(
    st.one_of(
        st.tuples(st.just("credit"), st.integers(0, BATCH_SLOTS - 1), st.integers(1, 30)),
        st.tuples(st.just("debit"), st.integers(0, BATCH_SLOTS - 1), st.integers(1, 30)),
        st.tuples(
            st.just("adjust"),
            st.integers(0, BATCH_SLOTS - 1),
            st.integers(-20, 20).filter(lambda n: n != 0),
        ),
    ),
    max_size=25,
)


def _fresh_product():
    """The db_session fixture runs once per test, not per example."""
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    org = Organization(name="City Pharmacy", code="CITY", is_active=True)
    db.session.add(org)
    db.session.commit()
    product = catalog_service.create_product(org_id=org.id, name="Cetirizine 10mg", manufacturer="Acme Pharma")
    return org.id, product.id


@PROPERTY_SETTINGS
@given(operations=stock_operations)
def test_random_operations_keep_quantities_consistent(db_session, operations):
    org_id, product_id = _fresh_product()
    expected = {}
    batch_ids = {}

    for kind, slot, amount in operations:
        if kind == "credit":
            batch = batch_store.credit(
                org_id=org_id,
                product_id=product_id,
                batch_number=f"LOT-{slot}",
                quantity=amount,
                unit_cost_cents=100,
                unit_price_cents=150,
                expiry_date=today() + timedelta(days=30 * (slot + 1)),
            )
            batch_ids[slot] = batch.id
            expected[slot] = expected.get(slot, 0) + amount
            continue

        if slot not in batch_ids:
            continue

        delta = -amount if kind == "debit" else amount
        try:
            if kind == "debit":
                batch_store.debit(org_id=org_id, product_id=product_id, allocations=[(batch_ids[slot], amount)])
            else:
                batch_store.adjust(org_id=org_id, batch_id=batch_ids[slot], quantity_delta=amount)
        except InsufficientStock:
            assert expected[slot] + delta < 0
        else:
            assert expected[slot] + delta >= 0
            expected[slot] += delta

    for slot, batch_id in batch_ids.items():
        quantity = db_session.get(InventoryBatch, batch_id).quantity
        assert quantity >= 0
        assert quantity == expected[slot]
        assert batch_store.replay_quantity(batch_id) == quantity

    on_hand = batch_store.quantity_on_hand(org_id, product_id)
    assert on_hand == sum(expected.values())
    assert batch_store.replay_product_quantity(org_id, product_id) == on_hand
    assert reconciliation_service.ledger_discrepancies(org_id) == []


@PROPERTY_SETTINGS
@given(
    ordered=st.integers(1, 60),
    receipts=st.lists(st.integers(1, 40), min_size=1, max_size=6),
)
def test_receipts_never_exceed_ordered_quantity(db_session, ordered, receipts):
    org_id, product_id = _fresh_product()
    order = purchase_order_service.create(
        org_id=org_id,
        items=[ExistingProduct(product_id=product_id, quantity=ordered, unit_cost_cents=250)],
    )
    purchase_order_service.mark_ordered(org_id=org_id, order_id=order.id)
    item_id = order.items[0].id

    received = 0
    for quantity in receipts:
        if received == ordered:
            break
        try:
            purchase_order_service.receive(
                org_id=org_id,
                order_id=order.id,
                lines=[ReceiptLine(item_id=item_id, quantity=quantity)],
            )
        except OverReceipt:
            assert received + quantity > ordered
        else:
            received += quantity

        order = purchase_order_service.get_order(org_id, order.id)
        assert order.items[0].received_quantity == received <= ordered
        assert (order.status == "received") == (received == ordered)

    assert batch_store.quantity_on_hand(org_id, product_id) == received
