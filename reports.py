"""
Read-only revenue and count summaries for the admin and seller dashboards.

Revenue only counts paid orders. Day, week and month boundaries are taken in
REPORT_TIMEZONE; weeks start on Sunday at local midnight and weekly buckets
are indexed Sunday=0 .. Saturday=6.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from database import oid, utcnow
from order_status import OrderStatus

REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "UTC")

# The admin revenue figure counts orders that reached the end of the flow.
COMPLETED_STATUS = OrderStatus.DELIVERED.value


def report_zone():
    return ZoneInfo(REPORT_TIMEZONE)


def _to_local(value: datetime, tz) -> datetime:
    return value.replace(tzinfo=timezone.utc).astimezone(tz)


def _to_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def day_index(created_at: datetime, tz=None) -> int:
    """Sunday=0 weekday of a naive UTC timestamp in the report timezone."""
    local = _to_local(created_at, tz or report_zone())
    return (local.weekday() + 1) % 7


def period_starts(now: Optional[datetime] = None, tz=None) -> dict:
    """Start of the current day, week, month and year as naive UTC."""
    tz = tz or report_zone()
    local = _to_local(now or utcnow(), tz)
    day = local.replace(hour=0, minute=0, second=0, microsecond=0)
    week = day - timedelta(days=(local.weekday() + 1) % 7)
    return {
        "day": _to_utc(day),
        "week": _to_utc(week),
        "month": _to_utc(day.replace(day=1)),
        "year": _to_utc(day.replace(month=1, day=1)),
    }


def admin_dashboard(db) -> dict:
    revenue = db["order"].aggregate([
        {"$match": {"status": COMPLETED_STATUS}},
        {"$group": {"_id": None, "total": {"$sum": "$total_price"}}},
    ])
    total_revenue = 0
    for r in revenue:
        total_revenue = r.get("total", 0)

    return {
        "total_users": db["user"].count_documents({"role": "buyer"}),
        "total_sellers": db["user"].count_documents({"role": "seller"}),
        "total_products": db["product"].count_documents({}),
        "total_orders": db["order"].count_documents({}),
        "total_revenue": total_revenue,
    }


def _seller_directory(db, seller_ids):
    ids = [oid(s) for s in seller_ids if s]
    users = db["user"].find({"_id": {"$in": ids}}, {"name": 1, "email": 1})
    return {str(u["_id"]): u for u in users}


def seller_revenue(db, start: Optional[datetime] = None, end: Optional[datetime] = None, group_by: Optional[str] = None):
    match = {"is_paid": True}
    if start or end:
        match["created_at"] = {}
        if start:
            match["created_at"]["$gte"] = start
        if end:
            match["created_at"]["$lte"] = end

    if group_by == "month":
        group_id = {"seller": "$seller_id", "year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}}
    elif group_by == "year":
        group_id = {"seller": "$seller_id", "year": {"$year": "$created_at"}}
    else:
        group_id = {"seller": "$seller_id"}

    rows = list(db["order"].aggregate([
        {"$match": match},
        {"$group": {"_id": group_id, "total_revenue": {"$sum": "$total_price"}, "total_orders": {"$sum": 1}}},
    ]))
    sellers = _seller_directory(db, {r["_id"]["seller"] for r in rows})

    result = []
    for r in rows:
        seller_id = r["_id"]["seller"]
        seller = sellers.get(seller_id)
        if seller is None:
            continue
        entry = {
            "seller_id": seller_id,
            "seller_name": seller.get("name"),
            "seller_email": seller.get("email"),
            "total_revenue": r["total_revenue"],
            "total_orders": r["total_orders"],
        }
        if group_by in ("month", "year"):
            entry["year"] = r["_id"]["year"]
        if group_by == "month":
            entry["month"] = r["_id"]["month"]
        result.append(entry)
    result.sort(key=lambda e: e["total_revenue"], reverse=True)
    return result


def weekly_revenue_by_seller(db, now: Optional[datetime] = None):
    tz = report_zone()
    week_start = period_starts(now, tz)["week"]
    week_end = week_start + timedelta(days=7)

    buckets = {}
    names = {}
    for seller in db["user"].find({"role": "seller"}, {"name": 1, "email": 1}):
        seller_id = str(seller["_id"])
        buckets[seller_id] = [0] * 7
        names[seller_id] = seller

    orders = db["order"].find({"is_paid": True, "created_at": {"$gte": week_start, "$lt": week_end}})
    for order in orders:
        seller_id = order.get("seller_id")
        days = buckets.setdefault(seller_id, [0] * 7)
        days[day_index(order["created_at"], tz)] += order.get("total_price", 0)

    missing = [s for s in buckets if s not in names]
    if missing:
        names.update(_seller_directory(db, missing))

    return [
        {
            "seller_id": seller_id,
            "seller_name": names.get(seller_id, {}).get("name"),
            "seller_email": names.get(seller_id, {}).get("email"),
            "week_start": week_start,
            "days": days,
            "total": sum(days),
        }
        for seller_id, days in buckets.items()
    ]


def seller_dashboard(db, seller_id: str, now: Optional[datetime] = None) -> dict:
    tz = report_zone()
    starts = period_starts(now, tz)
    orders = list(db["order"].find({"seller_id": seller_id}))

    revenue = {"today": 0, "week": 0, "month": 0, "total": 0}
    chart_week = [0] * 7
    chart_month = [0] * 12

    for order in orders:
        if not order.get("is_paid"):
            continue
        created = order["created_at"]
        price = order.get("total_price", 0)
        revenue["total"] += price
        if created >= starts["day"]:
            revenue["today"] += price
        if starts["week"] <= created < starts["week"] + timedelta(days=7):
            revenue["week"] += price
            chart_week[day_index(created, tz)] += price
        if created >= starts["month"]:
            revenue["month"] += price
        local = _to_local(created, tz)
        if created >= starts["year"] and local.year == _to_local(starts["year"], tz).year:
            chart_month[local.month - 1] += price

    return {
        "stats": {
            "total_products": db["product"].count_documents({"seller_id": seller_id}),
            "total_orders": len(orders),
            "pending_approval": sum(1 for o in orders if o.get("status") == OrderStatus.WAITING_APPROVAL.value),
        },
        "revenue": {**revenue, "chart_week": chart_week, "chart_month": chart_month},
    }
