from datetime import datetime, timedelta

import pytest

from conftest import auth_headers
from database import utcnow
from promotions import group_promotions


@pytest.fixture
def admin_headers(make_user):
    return auth_headers(make_user("admin"))


def test_user_listing_hides_secrets(client, admin_headers, make_user):
    make_user("seller")
    users = client.get("/admin/users", headers=admin_headers).json()
    assert len(users) == 2
    assert all("hashed_password" not in u for u in users)

    sellers = client.get("/admin/users", params={"role": "seller"}, headers=admin_headers).json()
    assert [u["role"] for u in sellers] == ["seller"]


def test_role_update_rules(client, db, admin_headers, make_user):
    buyer = make_user()
    res = client.put(f"/admin/users/{buyer['_id']}/role", json={"role": "seller"}, headers=admin_headers)
    assert res.status_code == 200
    assert db["user"].find_one({"_id": buyer["_id"]})["role"] == "seller"

    assert client.put(f"/admin/users/{buyer['_id']}/role", json={"role": "admin"}, headers=admin_headers).status_code == 422

    other_admin = make_user("admin")
    res = client.put(f"/admin/users/{other_admin['_id']}/role", json={"role": "buyer"}, headers=admin_headers)
    assert res.status_code == 403

    res = client.put("/admin/users/64b7f0c2a1b2c3d4e5f60718/role", json={"role": "buyer"}, headers=admin_headers)
    assert res.status_code == 404


def test_delete_user(client, db, admin_headers, make_user):
    buyer = make_user()
    assert client.delete(f"/admin/users/{buyer['_id']}", headers=admin_headers).status_code == 200
    assert db["user"].find_one({"_id": buyer["_id"]}) is None
    assert client.delete(f"/admin/users/{buyer['_id']}", headers=admin_headers).status_code == 404


def test_non_admin_rejected(client, make_user):
    assert client.get("/admin/users", headers=auth_headers(make_user("seller"))).status_code == 403


def promotion(code="SPRING10", **extra):
    now = utcnow()
    data = {
        "code": code,
        "description": "Spring sale",
        "discount_percent": 10,
        "start_date": (now - timedelta(days=1)).isoformat(),
        "end_date": (now + timedelta(days=5)).isoformat(),
    }
    data.update(extra)
    return data


def test_promotion_crud(client, db, admin_headers):
    created = client.post("/admin/promotions", json=promotion(), headers=admin_headers)
    assert created.status_code == 201
    promo_id = created.json()["id"]

    assert client.post("/admin/promotions", json=promotion(), headers=admin_headers).status_code == 400

    updated = client.put(f"/admin/promotions/{promo_id}", json={"discount_percent": 25}, headers=admin_headers)
    assert updated.json()["discount_percent"] == 25
    assert updated.json()["code"] == "SPRING10"

    toggled = client.patch(f"/admin/promotions/{promo_id}/toggle", headers=admin_headers)
    assert toggled.json()["active"] is False

    assert client.delete(f"/admin/promotions/{promo_id}", headers=admin_headers).status_code == 200
    assert client.delete(f"/admin/promotions/{promo_id}", headers=admin_headers).status_code == 404


@pytest.mark.parametrize("extra", [
    {"discount_percent": 120},
    {"discount_percent": -1},
])
def test_promotion_discount_range(client, admin_headers, extra):
    res = client.post("/admin/promotions", json=promotion(**extra), headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["detail"][0]["loc"] == ["discount_percent"]

    created = client.post("/admin/promotions", json=promotion(), headers=admin_headers).json()
    res = client.put(f"/admin/promotions/{created['id']}", json=extra, headers=admin_headers)
    assert res.status_code == 400


def test_promotion_window_must_be_ordered(client, admin_headers):
    now = utcnow()
    bad = promotion(start_date=now.isoformat(), end_date=(now - timedelta(days=1)).isoformat())
    assert client.post("/admin/promotions", json=bad, headers=admin_headers).status_code == 400

    created = client.post("/admin/promotions", json=promotion(), headers=admin_headers).json()
    res = client.put(f"/admin/promotions/{created['id']}", json={"end_date": (now - timedelta(days=3)).isoformat()},
                     headers=admin_headers)
    assert res.status_code == 400


def test_public_promotion_groups():
    now = datetime(2026, 3, 4, 12, 0)
    promos = [
        {"_id": 1, "code": "LIVE", "active": True, "start_date": now - timedelta(days=1), "end_date": now + timedelta(hours=2)},
        {"_id": 2, "code": "SOON", "active": True, "start_date": now + timedelta(days=1), "end_date": now + timedelta(days=3)},
        {"_id": 3, "code": "RECENT", "active": True, "start_date": now - timedelta(days=20), "end_date": now - timedelta(days=10)},
        {"_id": 4, "code": "ANCIENT", "active": True, "start_date": now - timedelta(days=200), "end_date": now - timedelta(days=100)},
        {"_id": 5, "code": "PAUSED", "active": False, "start_date": now - timedelta(days=1), "end_date": now + timedelta(days=1)},
    ]
    groups = group_promotions(promos, now)
    assert [p["code"] for p in groups["active"]] == ["LIVE"]
    assert groups["active"][0]["time_remaining"] == 7200
    assert [p["code"] for p in groups["upcoming"]] == ["SOON"]
    assert groups["upcoming"][0]["time_remaining"] == 86400
    assert [p["code"] for p in groups["expired"]] == ["RECENT"]
    assert groups["expired"][0]["time_remaining"] == 0


def test_public_promotions_endpoint(client, admin_headers):
    client.post("/admin/promotions", json=promotion(), headers=admin_headers)
    res = client.get("/promotions")
    assert res.status_code == 200
    assert [p["code"] for p in res.json()["active"]] == ["SPRING10"]


def test_admin_override_skips_order_but_notifies(client, db, dispatcher, mailer, admin_headers,
                                                 make_user, make_seller, make_order):
    buyer = make_user(email="buyer@x.com")
    order = make_order(buyer, make_seller(), status="Shipped")
    res = client.put(f"/admin/orders/{order['_id']}/status", json={"status": "Waiting_Approval"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["order"]["status"] == "Waiting_Approval"
    dispatcher.join()
    assert mailer.sent[0]["to"] == "buyer@x.com"


def test_admin_override_cannot_leave_terminal(client, db, admin_headers, make_user, make_seller, make_order):
    order = make_order(make_user(), make_seller(), status="Cancelled")
    res = client.put(f"/admin/orders/{order['_id']}/status", json={"status": "Processing"}, headers=admin_headers)
    assert res.status_code == 400
    assert db["order"].find_one({"_id": order["_id"]})["status"] == "Cancelled"


def test_admin_order_listing_joins_buyer(client, admin_headers, make_user, make_seller, make_order):
    buyer = make_user(name="Lan")
    make_order(buyer, make_seller())
    orders = client.get("/admin/orders", headers=admin_headers).json()
    assert orders[0]["user"]["name"] == "Lan"


def test_statistics_endpoint(client, admin_headers, make_user, make_seller, make_order):
    make_order(make_user(), make_seller(), status="Delivered", price=450000, is_paid=True)
    stats = client.get("/admin/statistics", headers=admin_headers).json()
    assert stats["total_revenue"] == 450000
    assert stats["total_sellers"] == 1


def test_seller_revenue_date_filter(client, db, admin_headers, make_user, make_seller, make_order):
    seller = make_seller()
    make_order(make_user(), seller, price=100000, is_paid=True, created_at=datetime(2026, 1, 15, 12, 0))
    make_order(make_user(), seller, price=900000, is_paid=True, created_at=datetime(2026, 2, 15, 12, 0))
    res = client.get("/admin/seller-revenue", params={"start_date": "2026-01-01", "end_date": "2026-01-31"},
                     headers=admin_headers).json()
    assert [r["total_revenue"] for r in res] == [100000]

    weekly = client.get("/admin/seller-revenue/weekly", headers=admin_headers).json()
    assert weekly[0]["seller_id"] == str(seller["_id"])
    assert len(weekly[0]["days"]) == 7
