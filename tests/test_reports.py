from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

import reports
from conftest import auth_headers
from reports import admin_dashboard, day_index, period_starts, seller_dashboard, seller_revenue, weekly_revenue_by_seller

# Wednesday 4 March 2026, 10:30 UTC
NOW = datetime(2026, 3, 4, 10, 30)


def test_week_starts_on_sunday_midnight():
    starts = period_starts(NOW, ZoneInfo("UTC"))
    assert starts["week"] == datetime(2026, 3, 1)
    assert starts["day"] == datetime(2026, 3, 4)
    assert starts["month"] == datetime(2026, 3, 1)
    assert starts["year"] == datetime(2026, 1, 1)


def test_week_start_follows_report_timezone():
    # 23:30 UTC Saturday is already Sunday in Ho Chi Minh City (UTC+7)
    saturday_night = datetime(2026, 3, 7, 23, 30)
    starts = period_starts(saturday_night, ZoneInfo("Asia/Ho_Chi_Minh"))
    assert starts["week"] == datetime(2026, 3, 7, 17, 0)
    assert day_index(saturday_night, ZoneInfo("Asia/Ho_Chi_Minh")) == 0
    assert day_index(saturday_night, ZoneInfo("UTC")) == 6


def test_weekly_buckets_two_days(db, make_user, make_seller, make_order):
    seller = make_seller()
    idle = make_seller()
    buyer = make_user()
    make_order(buyer, seller, price=100000, is_paid=True, created_at=datetime(2026, 3, 2, 9, 0))   # Monday
    make_order(buyer, seller, price=250000, is_paid=True, created_at=datetime(2026, 3, 4, 8, 0))   # Wednesday
    make_order(buyer, seller, price=999999, is_paid=False, created_at=datetime(2026, 3, 3, 8, 0))  # unpaid
    make_order(buyer, seller, price=999999, is_paid=True, created_at=datetime(2026, 2, 27, 8, 0))  # last week

    rows = {r["seller_id"]: r for r in weekly_revenue_by_seller(db, now=NOW)}
    days = rows[str(seller["_id"])]["days"]
    assert len(days) == 7
    assert days == [0, 100000, 0, 250000, 0, 0, 0]
    assert sum(1 for d in days if d) == 2
    assert rows[str(seller["_id"])]["total"] == 350000
    assert rows[str(idle["_id"])]["days"] == [0] * 7


def test_admin_revenue_counts_delivered_orders(db, make_user, make_seller, make_order, make_product):
    seller = make_seller()
    buyer = make_user()
    make_user()
    make_product(seller)
    make_order(buyer, seller, status="Delivered", price=200000, is_paid=True)
    make_order(buyer, seller, status="Delivered", price=300000, is_paid=True)
    make_order(buyer, seller, status="Shipped", price=900000)

    stats = admin_dashboard(db)
    assert stats == {
        "total_users": 2,
        "total_sellers": 1,
        "total_products": 1,
        "total_orders": 3,
        "total_revenue": 500000,
    }


def test_seller_revenue_groups_and_sorts(db, make_user, make_seller, make_order):
    small, big = make_seller(name="Small"), make_seller(name="Big")
    buyer = make_user()
    make_order(buyer, small, price=100000, is_paid=True, created_at=datetime(2026, 1, 10))
    make_order(buyer, big, price=500000, is_paid=True, created_at=datetime(2026, 1, 12))
    make_order(buyer, big, price=200000, is_paid=True, created_at=datetime(2026, 2, 3))
    make_order(buyer, big, price=700000, is_paid=False, created_at=datetime(2026, 2, 3))

    rows = seller_revenue(db)
    assert [(r["seller_name"], r["total_revenue"], r["total_orders"]) for r in rows] == [
        ("Big", 700000, 2),
        ("Small", 100000, 1),
    ]
    assert "hashed_password" not in rows[0]

    january = seller_revenue(db, start=datetime(2026, 1, 1), end=datetime(2026, 1, 31, 23, 59))
    assert [r["total_revenue"] for r in january] == [500000, 100000]

    monthly = seller_revenue(db, group_by="month")
    assert {(r["seller_name"], r["month"]) for r in monthly} == {("Big", 1), ("Big", 2), ("Small", 1)}


def test_seller_dashboard_separates_periods(db, make_user, make_seller, make_order):
    seller = make_seller()
    buyer = make_user()
    make_order(buyer, seller, status="Delivered", price=100000, is_paid=True, created_at=datetime(2026, 3, 4, 9, 0))
    make_order(buyer, seller, status="Delivered", price=200000, is_paid=True, created_at=datetime(2026, 3, 2, 9, 0))
    make_order(buyer, seller, status="Delivered", price=400000, is_paid=True, created_at=datetime(2026, 2, 20, 9, 0))
    make_order(buyer, seller, status="Delivered", price=800000, is_paid=True, created_at=datetime(2025, 12, 20, 9, 0))
    make_order(buyer, seller, status="Waiting_Approval", price=50000, created_at=datetime(2026, 3, 4, 9, 0))

    data = seller_dashboard(db, str(seller["_id"]), now=NOW)
    revenue = data["revenue"]
    assert revenue["today"] == 100000
    assert revenue["week"] == 300000
    assert revenue["month"] == 300000
    assert revenue["total"] == 1500000
    assert revenue["chart_week"] == [0, 200000, 0, 100000, 0, 0, 0]
    assert revenue["chart_month"][1] == 400000
    assert revenue["chart_month"][2] == 300000
    assert len(revenue["chart_month"]) == 12
    assert data["stats"]["total_orders"] == 5
    assert data["stats"]["pending_approval"] == 1


@pytest.mark.parametrize("path", ["/admin/statistics", "/admin/seller-revenue", "/admin/seller-revenue/weekly"])
def test_reports_require_admin(client, make_user, path):
    assert client.get(path, headers=auth_headers(make_user("seller"))).status_code == 403
    assert client.get(path, headers=auth_headers(make_user("admin"))).status_code == 200


def test_report_timezone_setting(monkeypatch):
    monkeypatch.setattr(reports, "REPORT_TIMEZONE", "Asia/Ho_Chi_Minh")
    assert reports.report_zone() == ZoneInfo("Asia/Ho_Chi_Minh")
