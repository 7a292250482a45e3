from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlalchemy import event, select
from sqlalchemy.exc import OperationalError

from kaskrout import reconcile
from kaskrout.main import app
from kaskrout.models import SessionToken, User


def _create_consumable(client, headers, name="Bread", price=0.5) -> int:
    resp = client.post("/api/v1/consumables", json={"name": name, "price": price}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]["consumable_id"]


def _create_product(client, headers, name="Sandwich", price=4.5) -> int:
    resp = client.post("/api/v1/products", json={"name": name, "category": "sandwich", "price": price}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]["product_id"]


def test_health_and_missing_token(client) -> None:
    assert client.get("/api/v1/health").json()["status"] == "healthy"

    resp = client.get("/api/v1/consumables")
    assert resp.status_code == 401
    assert resp.json()["code"] == "unauthorized"

    resp = client.get("/api/v1/consumables", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


def test_register_login_and_logout(client) -> None:
    resp = client.post("/api/v1/auth/register", json={"name": "sami", "password": "secret1"})
    assert resp.status_code == 200
    assert resp.json()["data"]["role"] == "user"

    assert client.post("/api/v1/auth/register", json={"name": "sami", "password": "other12"}).status_code == 409
    assert client.post("/api/v1/auth/login", json={"name": "sami", "password": "wrong"}).status_code == 401

    token = client.post("/api/v1/auth/login", json={"name": "sami", "password": "secret1"}).json()["data"]["token"]
    headers = {"Authorization": f"Bearer {token}"}
    profile = client.get("/api/v1/auth/profile", headers=headers)
    assert profile.json()["data"]["name"] == "sami"

    assert client.post("/api/v1/auth/logout", headers=headers).status_code == 200
    assert client.get("/api/v1/auth/profile", headers=headers).status_code == 401


def test_login_prunes_dead_sessions(client, session_factory, make_user) -> None:
    headers = make_user("sami", "user")
    other_headers = make_user("nour", "user")
    client.post("/api/v1/auth/logout", headers=headers)

    with session_factory() as session:
        sami = session.execute(select(User).where(User.name == "sami")).scalar_one()
        stamp = datetime.now(timezone.utc) - timedelta(days=30)
        session.add(
            SessionToken(user_id=sami.id, token_hash="stale", created_at=stamp, expires_at=stamp + timedelta(hours=1))
        )
        session.commit()

    client.post("/api/v1/auth/login", json={"name": "sami", "password": "secret1"})

    with session_factory() as session:
        remaining = session.execute(select(SessionToken).join(User).where(User.name == "sami")).scalars().all()
    assert len(remaining) == 1
    assert remaining[0].revoked_at is None
    assert client.get("/api/v1/auth/profile", headers=other_headers).status_code == 200


def test_profile_password_change_requires_current_password(client, user_headers) -> None:
    resp = client.put("/api/v1/auth/profile", json={"new_password": "newpass1"}, headers=user_headers)
    assert resp.status_code == 400

    resp = client.put(
        "/api/v1/auth/profile",
        json={"current_password": "secret1", "new_password": "newpass1"},
        headers=user_headers,
    )
    assert resp.status_code == 200
    assert client.post("/api/v1/auth/login", json={"name": "cashier", "password": "newpass1"}).status_code == 200


def test_catalog_writes_need_privileged_role(client, user_headers, make_user) -> None:
    resp = client.post("/api/v1/consumables", json={"name": "Bread", "price": 0.5}, headers=user_headers)
    assert resp.status_code == 403

    vip_headers = make_user("manager", "vip")
    _create_consumable(client, vip_headers)
    listed = client.get("/api/v1/consumables", headers=user_headers).json()["data"]
    assert [row["name"] for row in listed] == ["Bread"]

    assert client.get("/api/v1/users", headers=user_headers).status_code == 403
    assert client.get("/api/v1/users", headers=vip_headers).status_code == 200


def test_duplicate_names_conflict(client, admin_headers) -> None:
    _create_consumable(client, admin_headers, "Bread")
    eggs_id = _create_consumable(client, admin_headers, "Eggs", 0.25)

    resp = client.post("/api/v1/consumables", json={"name": "Bread", "price": 0.7}, headers=admin_headers)
    assert resp.status_code == 409

    resp = client.put(f"/api/v1/consumables/{eggs_id}", json={"name": "Bread"}, headers=admin_headers)
    assert resp.status_code == 409

    _create_product(client, admin_headers, "Sandwich")
    resp = client.post("/api/v1/products", json={"name": "Sandwich", "price": 3}, headers=admin_headers)
    assert resp.status_code == 409


def test_invalid_catalog_input_is_rejected(client, admin_headers) -> None:
    assert client.post("/api/v1/consumables", json={"name": "", "price": 0.5}, headers=admin_headers).status_code == 422
    assert client.post("/api/v1/consumables", json={"name": "Salt", "price": 0}, headers=admin_headers).status_code == 422
    assert client.put("/api/v1/consumables/999", json={"price": 1}, headers=admin_headers).status_code == 404


def test_consumable_delete_blocked_by_usage(client, admin_headers) -> None:
    bread_id = _create_consumable(client, admin_headers)
    client.post(
        "/api/v1/daily/consumables",
        json={"record_date": "2024-01-10", "consumable_id": bread_id, "start_count": 50, "end_count": 12},
        headers=admin_headers,
    )

    resp = client.delete(f"/api/v1/consumables/{bread_id}", headers=admin_headers)
    assert resp.status_code == 409

    assert len(client.get("/api/v1/consumables", headers=admin_headers).json()["data"]) == 1
    assert len(client.get("/api/v1/daily/consumables/2024-01-10", headers=admin_headers).json()["data"]) == 1

    unused_id = _create_consumable(client, admin_headers, "Salt", 0.1)
    assert client.delete(f"/api/v1/consumables/{unused_id}", headers=admin_headers).status_code == 200


def test_product_delete_blocked_by_sales(client, admin_headers) -> None:
    product_id = _create_product(client, admin_headers)
    client.post("/api/v1/sales", json={"items": [{"product_id": product_id, "quantity": 1}]}, headers=admin_headers)

    assert client.delete(f"/api/v1/products/{product_id}", headers=admin_headers).status_code == 409


def test_product_category_can_be_cleared(client, admin_headers) -> None:
    product_id = _create_product(client, admin_headers)

    resp = client.put(f"/api/v1/products/{product_id}", json={"price": 5.0}, headers=admin_headers)
    assert resp.json()["data"]["category"] == "sandwich"

    resp = client.put(f"/api/v1/products/{product_id}", json={"category": None}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["category"] is None
    assert resp.json()["data"]["price"] == 5.0


def test_bread_scenario_over_http(client, admin_headers, user_headers) -> None:
    bread_id = _create_consumable(client, admin_headers)

    resp = client.post(
        "/api/v1/daily/consumables",
        json={"record_date": "2024-01-10", "consumable_id": bread_id, "start_count": 50, "end_count": 12},
        headers=user_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["data"]["used_count"] == 38
    assert body["meta"]["warnings"] == []

    earnings = client.get("/api/v1/daily/earnings/2024-01-10", headers=user_headers).json()["data"]
    assert earnings["consumables_cost"] == 19.0
    assert earnings["net_profit"] == -19.0

    resp = client.post(
        "/api/v1/daily/earnings",
        json={"record_date": "2024-01-10", "total_earnings": 120.0, "notes": "market day"},
        headers=user_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["net_profit"] == 101.0

    summary = client.get("/api/v1/daily/summary/2024-01-10", headers=user_headers).json()["data"]
    assert summary["summary"]["total_consumables_cost"] == summary["earnings"]["consumables_cost"] == 19.0
    assert summary["earnings"]["notes"] == "market day"


def test_usage_upsert_keeps_second_values(client, admin_headers) -> None:
    bread_id = _create_consumable(client, admin_headers)
    for start, end in ((40, 10), (45, 5)):
        client.post(
            "/api/v1/daily/consumables",
            json={"record_date": "2024-01-10T08:30:00", "consumable_id": bread_id, "start_count": start, "end_count": end},
            headers=admin_headers,
        )

    rows = client.get("/api/v1/daily/consumables/2024-01-10", headers=admin_headers).json()["data"]
    assert len(rows) == 1
    assert (rows[0]["start_count"], rows[0]["end_count"], rows[0]["used_count"]) == (45, 5, 40)


def test_partial_update_and_delete_reconcile(client, admin_headers) -> None:
    bread_id = _create_consumable(client, admin_headers)
    usage_id = client.post(
        "/api/v1/daily/consumables",
        json={"record_date": "2024-01-10", "consumable_id": bread_id, "start_count": 50, "end_count": 12},
        headers=admin_headers,
    ).json()["data"]["usage_id"]

    resp = client.put(f"/api/v1/daily/consumables/{usage_id}", json={"end_count": 30}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["used_count"] == 20
    earnings = client.get("/api/v1/daily/earnings/2024-01-10", headers=admin_headers).json()["data"]
    assert earnings["consumables_cost"] == 10.0

    assert client.put(f"/api/v1/daily/consumables/{usage_id}", json={}, headers=admin_headers).status_code == 400
    assert client.put("/api/v1/daily/consumables/999", json={"end_count": 1}, headers=admin_headers).status_code == 404

    assert client.delete(f"/api/v1/daily/consumables/{usage_id}", headers=admin_headers).status_code == 200
    earnings = client.get("/api/v1/daily/earnings/2024-01-10", headers=admin_headers).json()["data"]
    assert earnings["consumables_cost"] == 0.0


def test_usage_for_unknown_consumable(client, admin_headers) -> None:
    resp = client.post(
        "/api/v1/daily/consumables",
        json={"record_date": "2024-01-10", "consumable_id": 42, "start_count": 1, "end_count": 0},
        headers=admin_headers,
    )
    assert resp.status_code == 404


def test_reconcile_failure_is_reported_as_warning(client, admin_headers, monkeypatch) -> None:
    bread_id = _create_consumable(client, admin_headers)
    with monkeypatch.context() as patch:
        patch.setattr(reconcile, "reconcile_after_usage_change", lambda db, day: False)
        resp = client.post(
            "/api/v1/daily/consumables",
            json={"record_date": "2024-01-10", "consumable_id": bread_id, "start_count": 10, "end_count": 0},
            headers=admin_headers,
        )
    assert resp.status_code == 200
    assert resp.json()["meta"]["warnings"] == ["earnings_not_reconciled"]
    assert client.get("/api/v1/daily/earnings/2024-01-10", headers=admin_headers).json()["data"]["consumables_cost"] == 0.0

    resp = client.post(
        "/api/v1/daily/reconcile",
        json={"from_date": "2024-01-08", "to_date": "2024-01-14"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["days"][0]["consumables_cost"] == 5.0


def test_baguettes_and_earnings_defaults(client, user_headers) -> None:
    baguettes = client.get("/api/v1/daily/baguettes/2024-02-01", headers=user_headers).json()["data"]
    assert baguettes["used_count"] == 0
    earnings = client.get("/api/v1/daily/earnings/2024-02-01", headers=user_headers).json()["data"]
    assert earnings == {
        "record_date": "2024-02-01",
        "total_earnings": 0.0,
        "consumables_cost": 0.0,
        "net_profit": 0.0,
        "notes": "",
    }
    assert client.get("/api/v1/daily/baguettes/not-a-date", headers=user_headers).status_code == 400

    resp = client.post(
        "/api/v1/daily/baguettes",
        json={"record_date": "2024-02-01", "start_count": 30, "end_count": 40},
        headers=user_headers,
    )
    assert resp.json()["data"]["used_count"] == 0


def test_weekly_report_has_seven_days(client, user_headers) -> None:
    resp = client.get("/api/v1/daily/weekly/2024-01-10", headers=user_headers)
    assert resp.status_code == 200
    report = resp.json()["data"]
    assert [day["date"] for day in report["days"]][0] == "2024-01-08"
    assert len(report["days"]) == 7
    assert report["totals"]["total_cost"] == 0.0


def test_purchase_increments_stock(client, admin_headers, user_headers) -> None:
    bread_id = _create_consumable(client, admin_headers)

    resp = client.post(
        "/api/v1/purchases",
        json={"consumable_id": bread_id, "quantity": 40, "cost": 18.0, "purchase_date": "2024-01-10"},
        headers=user_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["current_stock"] == 40

    client.post("/api/v1/purchases", json={"consumable_id": bread_id, "quantity": 10, "cost": 4.5}, headers=user_headers)
    stock = client.get("/api/v1/consumables", headers=user_headers).json()["data"][0]["current_stock"]
    assert stock == 50

    resp = client.post("/api/v1/purchases", json={"consumable_id": 999, "quantity": 1, "cost": 1}, headers=user_headers)
    assert resp.status_code == 404
    purchases = client.get("/api/v1/purchases", headers=user_headers).json()["data"]
    assert len(purchases) == 2
    assert purchases[-1]["purchase_date"] == "2024-01-10"


def test_failed_stock_update_leaves_no_purchase(client, session_factory, admin_headers, user_headers) -> None:
    bread_id = _create_consumable(client, admin_headers)
    engine = session_factory.kw["bind"]

    def fail_stock_update(conn, cursor, statement, parameters, context, executemany):
        if statement.startswith("UPDATE consumable"):
            raise OperationalError(statement, parameters, Exception("database is locked"))

    event.listen(engine, "before_cursor_execute", fail_stock_update)
    try:
        failing_client = TestClient(app, raise_server_exceptions=False)
        resp = failing_client.post(
            "/api/v1/purchases",
            json={"consumable_id": bread_id, "quantity": 40, "cost": 18.0},
            headers=user_headers,
        )
    finally:
        event.remove(engine, "before_cursor_execute", fail_stock_update)

    assert resp.status_code == 500
    assert client.get("/api/v1/purchases", headers=user_headers).json()["data"] == []
    stock = client.get("/api/v1/consumables", headers=user_headers).json()["data"][0]["current_stock"]
    assert stock == 0


def test_sale_batch_is_atomic(client, admin_headers, user_headers) -> None:
    sandwich_id = _create_product(client, admin_headers, "Sandwich", 4.5)
    juice_id = _create_product(client, admin_headers, "Juice", 1.25)

    resp = client.post(
        "/api/v1/sales",
        json={"items": [{"product_id": sandwich_id, "quantity": 2}, {"product_id": 999, "quantity": 1}]},
        headers=user_headers,
    )
    assert resp.status_code == 404
    assert client.get("/api/v1/sales", headers=user_headers).json()["data"] == []

    resp = client.post(
        "/api/v1/sales",
        json={"items": [{"product_id": sandwich_id, "quantity": 2}, {"product_id": juice_id, "quantity": 3}]},
        headers=user_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["total_sale_value"] == 12.75

    today = client.get("/api/v1/sales", params={"date": "today"}, headers=user_headers).json()["data"]
    assert len(today) == 2
    assert client.get("/api/v1/sales", params={"date": "2001-13"}, headers=user_headers).status_code == 400


def test_expenses_filter_by_period(client, user_headers) -> None:
    for expense_date in ("2024-01-10", "2024-01-25", "2024-02-03"):
        resp = client.post(
            "/api/v1/expenses",
            json={"type": "gas", "amount": 25, "expense_date": expense_date},
            headers=user_headers,
        )
        assert resp.status_code == 200

    def count(period: str) -> int:
        return len(client.get("/api/v1/expenses", params={"date": period}, headers=user_headers).json()["data"])

    assert count("2024-01-10") == 1
    assert count("2024-01") == 2
    assert count("2024") == 3
    assert client.post("/api/v1/expenses", json={"type": "gas", "amount": 0}, headers=user_headers).status_code == 422


def test_leftovers_upsert(client, user_headers) -> None:
    resp = client.get("/api/v1/leftovers", params={"date": "2024-01-10"}, headers=user_headers)
    assert resp.json()["data"]["bread_baguettes"] == 0

    for eggs in (3, 5):
        client.post(
            "/api/v1/leftovers",
            json={"record_date": "2024-01-10", "bread_baguettes": 2, "cooked_eggs": eggs},
            headers=user_headers,
        )

    data = client.get("/api/v1/leftovers", params={"date": "2024-01-10"}, headers=user_headers).json()["data"]
    assert data == {
        "record_date": "2024-01-10",
        "bread_baguettes": 2,
        "cooked_eggs": 5,
        "salami_pieces": 0,
        "notes": "",
    }


def test_user_management(client, admin_headers) -> None:
    resp = client.post("/api/v1/users", json={"name": "helper", "password": "secret1", "role": "vip"}, headers=admin_headers)
    assert resp.status_code == 200
    helper_id = resp.json()["data"]["user_id"]

    assert client.post("/api/v1/users", json={"name": "x", "password": "secret1"}, headers=admin_headers).status_code == 422
    resp = client.put(f"/api/v1/users/{helper_id}", json={"role": "user"}, headers=admin_headers)
    assert resp.json()["data"]["role"] == "user"

    me = client.get("/api/v1/auth/profile", headers=admin_headers).json()["data"]["user_id"]
    assert client.delete(f"/api/v1/users/{me}", headers=admin_headers).status_code == 400
    assert client.delete(f"/api/v1/users/{helper_id}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/v1/users/{helper_id}", headers=admin_headers).status_code == 404
