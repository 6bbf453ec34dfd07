from datetime import timedelta

from fastapi import APIRouter

from database import get_db, serialize, utcnow

router = APIRouter(prefix="/promotions", tags=["promotions"])

EXPIRED_WINDOW_DAYS = 60


def group_promotions(promotions, now):
    """Split promotions into active, upcoming and recently expired buckets."""
    active, upcoming, expired = [], [], []
    expired_after = now - timedelta(days=EXPIRED_WINDOW_DAYS)
    for promo in promotions:
        data = serialize(promo)
        start, end = promo["start_date"], promo["end_date"]
        if promo.get("active", True) and start <= now <= end:
            data["time_remaining"] = int((end - now).total_seconds())
            active.append(data)
        elif start > now:
            data["time_remaining"] = int((start - now).total_seconds())
            upcoming.append(data)
        elif expired_after <= end < now:
            data["time_remaining"] = 0
            expired.append(data)

    active.sort(key=lambda p: p["end_date"])
    upcoming.sort(key=lambda p: p["start_date"])
    expired.sort(key=lambda p: p["end_date"], reverse=True)
    return {"active": active, "upcoming": upcoming, "expired": expired}


@router.get("")
def list_promotions():
    return group_promotions(get_db()["promotion"].find({}), utcnow())
