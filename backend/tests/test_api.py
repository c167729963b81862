# Overview: HTTP-level tests for tenant headers, error mapping and the main API flows.

from datetime import timedelta

from medstock.time_utils import today


def test_missing_org_header_is_unauthenticated(client, db_session):
    response = client.get("/api/products")
    assert response.status_code == 401
    assert response.get_json()["code"] == "unauthenticated"


def test_unknown_org_is_forbidden(client, db_session):
    response = client.get("/api/products", headers={"X-Org-Id": "999"})
    assert response.status_code == 403


def test_inactive_org_is_forbidden(client, db_session, org, headers):
    org.is_active = False
    db_session.commit()
    assert client.get("/api/products", headers=headers).status_code == 403


def test_create_and_list_products(client, db_session, headers):
    response = client.post(
        "/api/products",
        json={"name": "Cetirizine 10mg", "manufacturer": "Acme Pharma", "tax_percent": "12"},
        headers=headers,
    )
    assert response.status_code == 201
    product = response.get_json()["product"]
    assert product["tax_percent"] == "12.00"

    listing = client.get("/api/products", headers=headers).get_json()
    assert [p["name"] for p in listing["items"]] == ["Cetirizine 10mg"]


def test_product_create_requires_manufacturer(client, db_session, headers):
    response = client.post("/api/products", json={"name": "Cetirizine 10mg"}, headers=headers)
    assert response.status_code == 400
    assert response.get_json()["code"] == "validation_error"


def test_products_are_tenant_scoped(client, db_session, product, other_org):
    foreign = {"X-Org-Id": str(other_org.id)}
    assert client.get(f"/api/products/{product.id}", headers=foreign).status_code == 404


def test_purchase_order_lifecycle(client, db_session, headers, product):
    created = client.post(
        "/api/purchase-orders",
        json={
            "tax_percent": "10",
            "items": [{"product_id": product.id, "quantity": 100, "unit_cost_cents": 500}],
        },
        headers=headers,
    )
    assert created.status_code == 201
    order = created.get_json()["purchase_order"]
    assert order["status"] == "pending"
    assert (order["subtotal_cents"], order["tax_cents"], order["total_cents"]) == (50000, 5000, 55000)
    order_id = order["id"]
    item_id = order["items"][0]["id"]

    ordered = client.post(f"/api/purchase-orders/{order_id}/ordered", headers=headers)
    assert ordered.get_json()["purchase_order"]["status"] == "ordered"

    expiry = (today() + timedelta(days=400)).isoformat()
    partial = client.post(
        f"/api/purchase-orders/{order_id}/receive",
        json={"lines": [{"item_id": item_id, "quantity": 60, "batch_number": "B-001", "expiry_date": expiry}]},
        headers=headers,
    )
    assert partial.status_code == 200
    assert partial.get_json()["purchase_order"]["status"] == "partially_received"

    over = client.post(
        f"/api/purchase-orders/{order_id}/receive",
        json={"lines": [{"item_id": item_id, "quantity": 41}]},
        headers=headers,
    )
    assert over.status_code == 409
    assert over.get_json()["code"] == "over_receipt"

    rest = client.post(f"/api/purchase-orders/{order_id}/receive", json={"lines": []}, headers=headers)
    body = rest.get_json()["purchase_order"]
    assert body["status"] == "received"
    assert body["total_received"] == 100

    on_hand = client.get(f"/api/inventory/products/{product.id}/on-hand", headers=headers).get_json()
    assert on_hand["quantity_on_hand"] == 100

    history = client.get(f"/api/purchase-orders/{order_id}/history", headers=headers).get_json()
    assert [h["new_status"] for h in history["items"]] == ["pending", "ordered", "partially_received", "received"]
    assert all(h["changed_by"] == 42 for h in history["items"])

    cancel = client.post(f"/api/purchase-orders/{order_id}/cancel", headers=headers)
    assert cancel.status_code == 409
    assert cancel.get_json()["code"] == "invalid_transition"


def test_purchase_order_with_new_product(client, db_session, headers):
    response = client.post(
        "/api/purchase-orders",
        json={"items": [{"name": "Loratadine 10mg", "manufacturer": "Gamma", "quantity": 5, "unit_cost_cents": 80}]},
        headers=headers,
    )
    assert response.status_code == 201
    assert response.get_json()["purchase_order"]["items"][0]["product_name"] == "Loratadine 10mg"


def test_purchase_order_requires_items(client, db_session, headers):
    response = client.post("/api/purchase-orders", json={"notes": "empty"}, headers=headers)
    assert response.status_code == 400


def test_unknown_purchase_order_is_not_found(client, db_session, headers):
    response = client.get("/api/purchase-orders/12345", headers=headers)
    assert response.status_code == 404
    assert response.get_json()["code"] == "not_found"


def test_allocate_then_debit(client, db_session, headers, product, make_batch):
    first = make_batch(product, "A", 20, expiry_days=10)
    second = make_batch(product, "B", 50, expiry_days=100)

    plan = client.post(
        "/api/inventory/allocate",
        json={"product_id": product.id, "quantity": 30},
        headers=headers,
    ).get_json()["allocations"]
    assert [(a["batch_id"], a["quantity"]) for a in plan] == [(first.id, 20), (second.id, 10)]

    response = client.post(
        "/api/inventory/debit",
        json={"product_id": product.id, "allocations": plan, "reference": "S-1"},
        headers=headers,
    )
    assert response.status_code == 201

    batches = client.get(f"/api/inventory/products/{product.id}/batches", headers=headers).get_json()["items"]
    assert [(b["batch_number"], b["quantity"]) for b in batches] == [("A", 0), ("B", 40)]


def test_debit_over_stock_is_conflict(client, db_session, headers, product, make_batch):
    batch = make_batch(product, "A", 3)
    response = client.post(
        "/api/inventory/debit",
        json={"product_id": product.id, "allocations": [{"batch_id": batch.id, "quantity": 4}]},
        headers=headers,
    )
    assert response.status_code == 409
    body = response.get_json()
    assert body["code"] == "insufficient_stock"
    assert body["details"]["shortfall"] == 1


def test_checkout_and_reports(client, db_session, headers, product, make_batch):
    make_batch(product, "A", 12, unit_cost_cents=100, unit_price_cents=200)

    checkout = client.post(
        "/api/inventory/checkout",
        json={"lines": [{"product_id": product.id, "quantity": 4}], "reference": "S-9"},
        headers=headers,
    )
    assert checkout.status_code == 201
    assert checkout.get_json()["checkout"]["subtotal_cents"] == 800

    # threshold 10, 8 left
    low = client.get("/api/reports/low-stock", headers=headers).get_json()
    assert [(i["id"], i["quantity_on_hand"]) for i in low["items"]] == [(product.id, 8)]

    valuation = client.get("/api/reports/valuation", headers=headers).get_json()
    assert valuation["total_value_cents"] == 800

    check = client.get("/api/reports/ledger-check", headers=headers).get_json()
    assert check == {"consistent": True, "discrepancies": []}


def test_batch_lookup_is_tenant_scoped(client, db_session, headers, other_org, product, make_batch):
    batch = make_batch(product, "A", 6)

    own = client.get(f"/api/inventory/batches/{batch.id}", headers=headers)
    assert own.status_code == 200
    assert own.get_json()["batch"]["quantity"] == 6

    foreign = client.get(f"/api/inventory/batches/{batch.id}", headers={"X-Org-Id": str(other_org.id)})
    assert foreign.status_code == 404


def test_deactivate_product_and_update_threshold(client, db_session, headers, product):
    threshold = client.put(
        f"/api/products/{product.id}/low-stock-threshold",
        json={"low_stock_threshold": 25},
        headers=headers,
    )
    assert threshold.status_code == 200
    assert threshold.get_json()["product"]["low_stock_threshold"] == 25

    missing = client.put(f"/api/products/{product.id}/low-stock-threshold", json={}, headers=headers)
    assert missing.status_code == 400

    removed = client.delete(f"/api/products/{product.id}", headers=headers)
    assert removed.get_json()["product"]["is_active"] is False

    active = client.get("/api/products", headers=headers).get_json()["items"]
    assert active == []
    everything = client.get("/api/products?include_inactive=true", headers=headers).get_json()["items"]
    assert [p["id"] for p in everything] == [product.id]


def test_create_and_list_suppliers(client, db_session, headers):
    created = client.post("/api/suppliers", json={"name": "MedSupply Ltd", "code": "MSL"}, headers=headers)
    assert created.status_code == 201
    supplier_id = created.get_json()["supplier"]["id"]

    listing = client.get("/api/suppliers", headers=headers).get_json()
    assert [s["id"] for s in listing["items"]] == [supplier_id]
