from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from database import get_db, oid, serialize
from notifications import NotificationDispatcher, get_dispatcher
from order_status import OrderStatus
from orders import StatusUpdate, apply_status_change, with_buyer
from reports import seller_dashboard
from security import require_role

router = APIRouter(prefix="/seller", tags=["seller"])


def seller_order(db, order_id: str, seller: dict) -> dict:
    # Another seller's order looks exactly like a missing one.
    order = db["order"].find_one({"_id": oid(order_id), "seller_id": str(seller["_id"])})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("/orders")
def list_orders(status: Optional[OrderStatus] = None, seller: dict = Depends(require_role("seller"))):
    db = get_db()
    filt = {"seller_id": str(seller["_id"])}
    if status:
        filt["status"] = status.value
    docs = db["order"].find(filt).sort("created_at", -1)
    return {"orders": [with_buyer(db, d) for d in docs]}


@router.get("/orders/{order_id}")
def get_order(order_id: str, seller: dict = Depends(require_role("seller"))):
    db = get_db()
    return {"order": with_buyer(db, seller_order(db, order_id, seller))}


@router.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusUpdate, seller: dict = Depends(require_role("seller")),
                        notifications: NotificationDispatcher = Depends(get_dispatcher)):
    db = get_db()
    order = apply_status_change(db, seller_order(db, order_id, seller), payload, notifications)
    return {"message": "Order status updated", "order": serialize(order)}


@router.get("/dashboard")
def dashboard(seller: dict = Depends(require_role("seller"))):
    db = get_db()
    data = seller_dashboard(db, str(seller["_id"]))
    brand = None
    if seller.get("brand_id"):
        brand = serialize(db["brand"].find_one({"_id": oid(seller["brand_id"])}))
    data["brand"] = brand
    return data
