from conftest import ADMIN_TOKEN, make_payload


def create_order(client, **kwargs):
    resp = client.post("/api/orders", json=make_payload(**kwargs))
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health(client):
    assert client.get("/api/health").json() == {"ok": True}


def test_create_order_example(client, sql, brevo):
    resp = client.post("/api/orders", json={
        "items": [{"productName": "Monstera", "unitPrice": 3000, "quantity": 2}],
        "customer": {"lastName": "Tanaka", "firstName": "Yui", "email": "y@example.com"},
    })

    assert resp.status_code == 200
    body = resp.json()
    assert body["orderToken"]
    assert body["total"] == 6000
    units = sql("SELECT unit_no FROM order_units WHERE order_token = ?", (body["orderToken"],))
    assert len(units) == 2

    # 注文確認メールはコミット後に送られる
    assert brevo.requests[0]["to"] == [{"email": "y@example.com", "name": "Tanaka Yui"}]
    events = sql("SELECT event_type, status FROM email_events")
    assert events == [{"event_type": "order_confirmed", "status": "sent"}]


def test_create_order_validation(client):
    resp = client.post("/api/orders", json=make_payload(customer={"email": "a@b.c"}))
    assert resp.status_code == 400
    assert resp.json()["error"] == "name required"

    resp = client.post("/api/orders", json=make_payload(items=[]))
    assert resp.status_code == 400
    assert resp.json() == {"error": "items required", "code": "VALIDATION_ERROR", "field": "items"}


def test_create_order_with_overflowing_numbers(client, sql):
    body = (
        '{"items": [{"productName": "Monstera", "unitPrice": 1e400, "quantity": 1},'
        ' {"productName": "Pothos", "unitPrice": 1200, "quantity": 1}],'
        ' "customer": {"name": "Tanaka Yui", "email": "y@example.com"},'
        ' "summary": {"total": "Infinity"}}'
    )

    resp = client.post("/api/orders", content=body, headers={"content-type": "application/json"})

    assert resp.status_code == 200
    assert resp.json()["total"] == 1200
    assert sql("SELECT DISTINCT total FROM orders_all") == [{"total": 1200}]


def test_order_succeeds_when_mail_fails(client, brevo, sql):
    brevo.status_code = 500

    body = create_order(client)

    assert body["total"] == 6000
    row = sql("SELECT status, attempts FROM email_events WHERE order_token = ?", (body["orderToken"],))
    assert row == [{"status": "failed", "attempts": 1}]


def test_admin_paid_with_failing_provider(client, brevo, sql, admin_headers):
    token = create_order(client)["orderToken"]
    brevo.status_code = 500

    resp = client.put(f"/api/admin/orders/{token}/paid", json={"paid": True}, headers=admin_headers)

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert sql("SELECT DISTINCT is_paid, status FROM orders_all WHERE order_token = ?", (token,)) == [
        {"is_paid": 1, "status": "paid"}
    ]
    row = sql(
        "SELECT status, attempts, error FROM email_events WHERE order_token = ? AND event_type = 'paid_notice'",
        (token,),
    )[0]
    assert row["status"] == "failed"
    assert row["attempts"] == 1
    assert "500" in row["error"]


def test_admin_paid_twice_sends_once(client, brevo, admin_headers):
    token = create_order(client)["orderToken"]

    for _ in range(2):
        resp = client.put(f"/api/admin/orders/{token}/paid", json={"paid": True}, headers=admin_headers)
        assert resp.status_code == 200

    paid_mails = [r for r in brevo.requests if r["tags"] == ["paid_notice"]]
    assert len(paid_mails) == 1


def test_admin_unpaid_does_not_notify(client, brevo, sql, admin_headers):
    token = create_order(client)["orderToken"]

    resp = client.put(f"/api/admin/orders/{token}/paid", json={"paid": False}, headers=admin_headers)

    assert resp.status_code == 200
    assert sql("SELECT * FROM email_events WHERE event_type = 'paid_notice'") == []


def test_public_paid_marks_units(client, sql, brevo):
    token = create_order(client)["orderToken"]

    resp = client.put(f"/api/orders/{token}/paid")

    assert resp.json() == {"ok": True}
    assert sql("SELECT is_paid FROM order_units WHERE order_token = ?", (token,)) == [
        {"is_paid": 1}, {"is_paid": 1},
    ]
    assert [r["tags"] for r in brevo.requests] == [["order_confirmed"]]


def test_paid_unknown_order_is_404(client, admin_headers):
    resp = client.put("/api/admin/orders/NOPE/paid", json={"paid": True}, headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["code"] == "ENTITY_NOT_FOUND"


def test_admin_endpoints_require_token(client):
    assert client.get("/api/admin/orders").status_code == 401
    assert client.get("/api/admin/orders", headers={"x-admin-token": "wrong"}).status_code == 401
    assert client.get("/api/view/v_all_total").json() == {"error": "unauthorized", "code": "UNAUTHORIZED"}
    assert client.get(f"/api/admin/orders?token={ADMIN_TOKEN}").status_code == 200


def test_invalid_view_name(client, admin_headers):
    resp = client.get("/api/view/products", headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid view name"


def test_unit_toggle(client, sql, admin_headers):
    token = create_order(client)["orderToken"]
    items = client.get(f"/api/admin/orders/{token}/items", headers=admin_headers).json()
    unit_id = items[0]["units"][1]["id"]

    resp = client.put(f"/api/admin/unit/{unit_id}/paid", json={"paid": True}, headers=admin_headers)

    assert resp.json() == {"ok": True}
    assert sql("SELECT id FROM order_units WHERE is_paid = 1") == [{"id": unit_id}]


def test_tracking_and_shipped_batch(client, brevo, admin_headers):
    token = create_order(client, summary={"shippingMethod": "ヤマト運輸"})["orderToken"]

    resp = client.post(
        "/api/admin/set-tracking",
        json={"order_token": token, "tracking_no": "4444-5555-6666"},
        headers=admin_headers,
    )
    assert resp.json() == {"ok": True, "updated": 1}

    resp = client.post("/api/admin/send/shipped", json={"tokens": [token]}, headers=admin_headers)

    body = resp.json()
    assert (body["sent"], body["skipped"], body["failed"]) == (1, 0, 0)
    shipped = brevo.requests[-1]
    assert shipped["tags"] == ["shipped_notice"]
    assert "4444-5555-6666" in shipped["htmlContent"]
    assert "kuronekoyamato" in shipped["htmlContent"]

    again = client.post("/api/admin/send/shipped", json={"tokens": [token]}, headers=admin_headers)
    assert again.json()["results"][0]["status"] == "skipped"


def test_ship_date_batch_continues_after_failure(client, admin_headers):
    token = create_order(client)["orderToken"]

    resp = client.post(
        "/api/admin/send/ship-date",
        json={"tokens": ["MISSING", token], "ship_date": "10月25日"},
        headers=admin_headers,
    )

    results = {r["order_token"]: r["status"] for r in resp.json()["results"]}
    assert results == {"MISSING": "failed", token: "sent"}


def test_batch_requires_tokens(client, admin_headers):
    resp = client.post("/api/admin/send/shipped", json={"tokens": []}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "tokens required"


def test_manual_retry_after_failure(client, brevo, admin_headers):
    token = create_order(client)["orderToken"]
    brevo.status_code = 500
    client.put(f"/api/admin/orders/{token}/paid", json={"paid": True}, headers=admin_headers)
    brevo.status_code = 201

    resp = client.post(f"/api/admin/orders/{token}/notify/paid_notice", headers=admin_headers)

    assert resp.json()["status"] == "sent"
    events = client.get(
        "/api/admin/email-events", params={"order_token": token}, headers=admin_headers
    ).json()
    paid = [e for e in events if e["event_type"] == "paid_notice"][0]
    assert (paid["status"], paid["attempts"]) == ("sent", 2)


def test_reports(client, admin_headers):
    create_order(client, items=[{"category": "観葉植物", "variety": "モンステラ", "unitPrice": 3000, "quantity": 2}])

    assert client.get("/api/reports/category").json() == [
        {"category": "観葉植物", "total_qty": 2, "total_amount": 6000}
    ]
    assert client.get("/api/reports/all").json() == {"total_amount": 6000, "total_orders": 1}
    summary = client.get("/api/admin/units/summary-product", headers=admin_headers).json()
    assert summary == [{"product_name": "観葉植物 モンステラ", "total_units": 2, "paid_units": 0}]
    assert len(client.get("/api/admin/token-index", headers=admin_headers).json()) == 1
    assert len(client.get("/api/admin/units/summary-token", headers=admin_headers).json()) == 1


def test_products(client, admin_headers):
    assert client.post("/api/products/quick-add", json={"name": "Pothos"}).status_code == 401

    resp = client.post("/api/products/quick-add", json={"name": "Pothos", "price": 1200, "token": ADMIN_TOKEN})
    assert resp.status_code == 200
    assert resp.json()["name"] == "Pothos"

    resp = client.post("/api/products/quick-add", json={"name": "Fern"}, headers=admin_headers)
    assert resp.status_code == 200

    assert [p["name"] for p in client.get("/api/products").json()] == ["Fern", "Pothos"]
