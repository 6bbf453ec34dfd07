import logging
from datetime import date, datetime, time, timezone
from typing import Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError

from database import create_document, get_db, oid, serialize, to_naive_utc, utcnow
from notifications import NotificationDispatcher, get_dispatcher
from orders import StatusUpdate, apply_status_change, with_buyer
from reports import admin_dashboard, report_zone, seller_revenue, weekly_revenue_by_seller
from schemas import Promotion as PromotionSchema
from security import require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_role("admin"))])


class RoleUpdate(BaseModel):
    role: Literal["buyer", "seller"]


class PromotionPayload(BaseModel):
    code: str
    description: str = ""
    discount_percent: float
    start_date: datetime
    end_date: datetime
    active: bool = True


class PromotionUpdate(BaseModel):
    code: Optional[str] = None
    description: Optional[str] = None
    discount_percent: Optional[float] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    active: Optional[bool] = None


# Dashboard
@router.get("/statistics")
def statistics():
    return admin_dashboard(get_db())


# Users
@router.get("/users")
def list_users(role: Optional[Literal["buyer", "seller", "admin"]] = None):
    filt = {"role": role} if role else {}
    return [serialize(u) for u in get_db()["user"].find(filt).sort("created_at", -1)]


@router.put("/users/{user_id}/role")
def update_user_role(user_id: str, payload: RoleUpdate):
    db = get_db()
    user = db["user"].find_one({"_id": oid(user_id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.get("role") == "admin":
        raise HTTPException(status_code=403, detail="Cannot change the role of an admin")

    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": payload.role, "updated_at": utcnow()}})
    logger.info("User %s role changed from %s to %s", user_id, user.get("role"), payload.role)
    return {"message": "Role updated", "user": serialize(db["user"].find_one({"_id": user["_id"]}))}


@router.delete("/users/{user_id}")
def delete_user(user_id: str):
    result = get_db()["user"].delete_one({"_id": oid(user_id)})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User %s deleted", user_id)
    return {"message": "User deleted"}


# Promotions
def _promotion(db, promotion_id: str) -> dict:
    promotion = db["promotion"].find_one({"_id": oid(promotion_id)})
    if not promotion:
        raise HTTPException(status_code=404, detail="Promotion not found")
    return promotion


def _validated_promotion(data: dict) -> PromotionSchema:
    try:
        return PromotionSchema(**data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False))


@router.get("/promotions")
def list_promotions():
    return [serialize(p) for p in get_db()["promotion"].find({}).sort("created_at", -1)]


@router.post("/promotions", status_code=201)
def create_promotion(payload: PromotionPayload):
    db = get_db()
    promotion = _validated_promotion(payload.model_dump())
    if db["promotion"].find_one({"code": promotion.code}):
        raise HTTPException(status_code=400, detail="Promotion code already exists")
    promotion_id = create_document("promotion", promotion)
    return serialize(db["promotion"].find_one({"_id": ObjectId(promotion_id)}))


@router.put("/promotions/{promotion_id}")
def update_promotion(promotion_id: str, payload: PromotionUpdate):
    db = get_db()
    current = _promotion(db, promotion_id)
    changes = payload.model_dump(exclude_unset=True)
    merged = {k: current.get(k) for k in PromotionSchema.model_fields}
    merged.update(changes)
    promotion = _validated_promotion(merged)
    if promotion.code != current["code"] and db["promotion"].find_one({"code": promotion.code}):
        raise HTTPException(status_code=400, detail="Promotion code already exists")

    update = promotion.model_dump()
    update["updated_at"] = utcnow()
    db["promotion"].update_one({"_id": current["_id"]}, {"$set": update})
    return serialize(db["promotion"].find_one({"_id": current["_id"]}))


@router.patch("/promotions/{promotion_id}/toggle")
def toggle_promotion(promotion_id: str):
    db = get_db()
    promotion = _promotion(db, promotion_id)
    db["promotion"].update_one({"_id": promotion["_id"]}, {"$set": {"active": not promotion.get("active", True), "updated_at": utcnow()}})
    return serialize(db["promotion"].find_one({"_id": promotion["_id"]}))


@router.delete("/promotions/{promotion_id}")
def delete_promotion(promotion_id: str):
    db = get_db()
    promotion = _promotion(db, promotion_id)
    db["promotion"].delete_one({"_id": promotion["_id"]})
    return {"message": "Promotion deleted"}


# Orders
@router.get("/orders")
def list_orders():
    db = get_db()
    return [with_buyer(db, o) for o in db["order"].find({}).sort("created_at", -1)]


@router.put("/orders/{order_id}/status")
def override_order_status(order_id: str, payload: StatusUpdate,
                          notifications: NotificationDispatcher = Depends(get_dispatcher)):
    db = get_db()
    order = db["order"].find_one({"_id": oid(order_id)})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    updated = apply_status_change(db, order, payload, notifications, enforce_order=False)
    return {"message": "Order status updated", "order": serialize(updated)}


# Revenue
def _local_bound(day: Optional[date], at: time) -> Optional[datetime]:
    if day is None:
        return None
    return to_naive_utc(datetime.combine(day, at, tzinfo=report_zone()))


@router.get("/seller-revenue")
def revenue_by_seller(start_date: Optional[date] = None, end_date: Optional[date] = None,
                      group_by: Optional[Literal["month", "year"]] = None):
    start = _local_bound(start_date, time.min)
    end = _local_bound(end_date, time.max)
    return seller_revenue(get_db(), start, end, group_by)


@router.get("/seller-revenue/weekly")
def weekly_revenue():
    rows = weekly_revenue_by_seller(get_db())
    for row in rows:
        row["week_start"] = row["week_start"].replace(tzinfo=timezone.utc)
    return rows
