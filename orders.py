import logging
import os
from datetime import datetime
from typing import Optional, Union

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo import ReturnDocument

from database import create_document, get_db, oid, serialize, to_naive_utc, utcnow
from notifications import NotificationDispatcher, get_dispatcher
from order_status import OrderStatus, build_status_update, check_transition, initial_status
from schemas import Order as OrderSchema, OrderItem, PaymentMethod
from security import get_current_user

logger = logging.getLogger(__name__)

# Treat a delivered order as paid (cash collected on delivery).
DELIVERED_MARKS_PAID = os.getenv("DELIVERED_MARKS_PAID", "true").lower() in ("1", "true", "yes")

BUYER_CANCELLABLE = {OrderStatus.PENDING_PAYMENT.value, OrderStatus.WAITING_APPROVAL.value}

router = APIRouter(prefix="/orders", tags=["orders"])


class StatusUpdate(BaseModel):
    status: OrderStatus
    estimated_delivery_date: Optional[datetime] = None
    seller_note: Optional[str] = None
    cancel_reason: Optional[str] = None


class ShippingInfo(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)

    def as_text(self) -> str:
        return f"Recipient: {self.full_name}, Phone: {self.phone}, Address: {self.address}"


class CheckoutPayload(BaseModel):
    shipping_address: Union[ShippingInfo, str]
    payment_method: PaymentMethod
    notes: Optional[str] = None


class CancelPayload(BaseModel):
    reason: Optional[str] = None


# Lifecycle helpers shared by the buyer, seller and admin routes
def next_order_number(db) -> str:
    counter = db["counter"].find_one_and_update(
        {"_id": "order_number"},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return f"ORD{counter['seq']:05d}"


def with_buyer(db, order: dict) -> dict:
    data = serialize(order)
    buyer = None
    if ObjectId.is_valid(order.get("user_id", "")):
        buyer = db["user"].find_one({"_id": ObjectId(order["user_id"])}, {"name": 1, "email": 1, "phone": 1})
    data["user"] = {"name": buyer.get("name"), "email": buyer.get("email"), "phone": buyer.get("phone")} if buyer else None
    return data


def notify_buyer(db, order: dict, notifications: NotificationDispatcher):
    """Queue the status e-mail. Never fails the caller."""
    try:
        notifications.enqueue(with_buyer(db, order), order["status"])
    except Exception:
        logger.exception("Could not queue notification for order %s", order.get("order_number"))


def apply_status_change(db, order: dict, payload: StatusUpdate, notifications: NotificationDispatcher,
                        enforce_order: bool = True) -> dict:
    update = build_status_update(
        order,
        payload.status,
        now=utcnow(),
        estimated_delivery_date=to_naive_utc(payload.estimated_delivery_date),
        seller_note=payload.seller_note,
        cancel_reason=payload.cancel_reason,
        delivered_marks_paid=DELIVERED_MARKS_PAID,
        enforce_order=enforce_order,
    )
    # Only applies if nobody changed the status since we read it.
    result = db["order"].update_one(
        {"_id": order["_id"], "seller_id": order["seller_id"], "status": order["status"]},
        {"$set": update},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=409, detail="Order was changed by another request, reload and retry")

    updated = db["order"].find_one({"_id": order["_id"]})
    logger.info("Order %s: %s -> %s", updated["order_number"], order["status"], updated["status"])
    notify_buyer(db, updated, notifications)
    return updated


def reserve_stock(db, items) -> list:
    """Decrement stock line by line; on a shortfall undo what was taken and raise."""
    reserved = []
    for item in items:
        variant_id = (item.get("variant") or {}).get("variant_id")
        collection, _id = ("variant", oid(variant_id)) if variant_id else ("product", oid(item["product_id"]))
        result = db[collection].update_one(
            {"_id": _id, "stock": {"$gte": item["quantity"]}},
            {"$inc": {"stock": -item["quantity"]}},
        )
        if result.modified_count == 0:
            release_stock(db, reserved)
            raise HTTPException(status_code=400, detail=f"Insufficient stock for {item['name']}")
        reserved.append((collection, _id, item["quantity"]))
    return reserved


def release_stock(db, reserved):
    for collection, _id, quantity in reserved:
        db[collection].update_one({"_id": _id}, {"$inc": {"stock": quantity}})


def order_seller(db, items) -> str:
    seller_id = None
    for item in items:
        product = db["product"].find_one({"_id": oid(item["product_id"])}, {"seller_id": 1})
        if not product:
            raise HTTPException(status_code=404, detail=f"Product not found: {item['product_id']}")
        if seller_id is None:
            seller_id = product["seller_id"]
        elif seller_id != product["seller_id"]:
            raise HTTPException(status_code=400, detail="All items in an order must come from the same seller")
    return seller_id


# Buyer endpoints
@router.post("", status_code=201)
def checkout(payload: CheckoutPayload, current_user: dict = Depends(get_current_user),
             notifications: NotificationDispatcher = Depends(get_dispatcher)):
    db = get_db()
    user_id = str(current_user["_id"])
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart or not cart.get("items"):
        raise HTTPException(status_code=400, detail="Cart is empty")

    address = payload.shipping_address
    address = address.as_text() if isinstance(address, ShippingInfo) else address.strip()
    if not address:
        raise HTTPException(status_code=400, detail="Shipping address is required")

    items = [OrderItem(**item) for item in cart["items"]]
    seller_id = order_seller(db, cart["items"])
    reserved = reserve_stock(db, cart["items"])
    try:
        order = OrderSchema(
            order_number=next_order_number(db),
            user_id=user_id,
            seller_id=seller_id,
            items=items,
            total_price=round(sum(i.price * i.quantity for i in items), 2),
            status=initial_status(payload.payment_method),
            payment_method=payload.payment_method,
            shipping_address=address,
            notes=payload.notes,
        )
        order_id = create_document("order", order)
    except Exception:
        release_stock(db, reserved)
        raise

    db["cart"].delete_one({"user_id": user_id})
    created = db["order"].find_one({"_id": ObjectId(order_id)})
    logger.info("Order %s placed by %s for seller %s", created["order_number"], user_id, seller_id)
    notify_buyer(db, created, notifications)
    return {"message": "Order created", "order": serialize(created)}


@router.get("")
def my_orders(status: Optional[OrderStatus] = None, page: int = 1, limit: int = 10,
              current_user: dict = Depends(get_current_user)):
    db = get_db()
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    filt = {"user_id": str(current_user["_id"])}
    if status:
        filt["status"] = status.value

    total = db["order"].count_documents(filt)
    docs = db["order"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    pages = (total + limit - 1) // limit
    return {
        "orders": [serialize(d) for d in docs],
        "pagination": {
            "current": page,
            "pages": pages,
            "total": total,
            "has_next": page < pages,
            "has_prev": page > 1,
        },
    }


def buyer_order(db, order_id: str, user: dict) -> dict:
    order = db["order"].find_one({"_id": oid(order_id), "user_id": str(user["_id"])})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("/{order_id}")
def my_order(order_id: str, current_user: dict = Depends(get_current_user)):
    db = get_db()
    order = serialize(buyer_order(db, order_id, current_user))
    seller = db["user"].find_one({"_id": oid(order["seller_id"])}, {"name": 1, "email": 1, "brand_id": 1})
    order["seller"] = serialize(seller)
    return {"order": order}


@router.put("/{order_id}/cancel")
def cancel_order(order_id: str, payload: CancelPayload, current_user: dict = Depends(get_current_user),
                 notifications: NotificationDispatcher = Depends(get_dispatcher)):
    db = get_db()
    order = buyer_order(db, order_id, current_user)
    if order["status"] not in BUYER_CANCELLABLE:
        raise HTTPException(status_code=400, detail="Order cannot be cancelled at this stage")

    cancelled = apply_status_change(
        db,
        order,
        StatusUpdate(status=OrderStatus.CANCELLED, cancel_reason=payload.reason or "Cancelled by buyer"),
        notifications,
    )
    return {"message": "Order cancelled", "order": serialize(cancelled)}


@router.post("/{order_id}/pay")
def confirm_payment(order_id: str, current_user: dict = Depends(get_current_user),
                    notifications: NotificationDispatcher = Depends(get_dispatcher)):
    """Payment confirmation hook; a gateway callback would land here."""
    db = get_db()
    order = buyer_order(db, order_id, current_user)
    if order.get("is_paid"):
        raise HTTPException(status_code=400, detail="Order is already paid")
    if order["status"] != OrderStatus.PENDING_PAYMENT.value:
        raise HTTPException(status_code=400, detail="Order is not awaiting payment")
    check_transition(order["status"], OrderStatus.WAITING_APPROVAL)

    now = utcnow()
    result = db["order"].update_one(
        {"_id": order["_id"], "status": order["status"], "is_paid": False},
        {"$set": {"is_paid": True, "paid_at": now, "status": OrderStatus.WAITING_APPROVAL.value, "updated_at": now}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=409, detail="Order was changed by another request, reload and retry")

    paid = db["order"].find_one({"_id": order["_id"]})
    notify_buyer(db, paid, notifications)
    return {"status": "success", "order": serialize(paid)}
