"""
Server-side cart. This is the only cart checkout reads; clients may cache it
but do not own it.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from database import get_db, oid, serialize, utcnow
from schemas import Cart as CartSchema, CartItem as CartItemSchema, VariantRef, primary_image
from security import get_current_user

router = APIRouter(prefix="/cart", tags=["cart"])


class AddItemPayload(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(1, ge=1)


class UpdateItemPayload(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(..., ge=1)


class RemoveItemPayload(BaseModel):
    product_id: str
    variant_id: Optional[str] = None


def _variant_id(item: dict) -> Optional[str]:
    return (item.get("variant") or {}).get("variant_id")


def _find_line(items, product_id: str, variant_id: Optional[str]):
    for item in items:
        if item["product_id"] == product_id and _variant_id(item) == variant_id:
            return item
    return None


def load_cart(db, user_id: str) -> dict:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        return CartSchema(user_id=user_id).model_dump()
    return cart


def save_cart(db, cart: dict) -> dict:
    for item in cart["items"]:
        item["total"] = round(item["price"] * item["quantity"], 2)
    cart["subtotal"] = round(sum(i["total"] for i in cart["items"]), 2)
    db["cart"].update_one(
        {"user_id": cart["user_id"]},
        {"$set": {"items": cart["items"], "subtotal": cart["subtotal"], "updated_at": utcnow()}},
        upsert=True,
    )
    return db["cart"].find_one({"user_id": cart["user_id"]})


def snapshot_line(db, product_id: str, variant_id: Optional[str], quantity: int) -> dict:
    product = db["product"].find_one({"_id": oid(product_id), "is_active": True})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    price = float(product["price"])
    variant = None
    if variant_id:
        v = db["variant"].find_one({"_id": oid(variant_id), "product_id": product_id})
        if not v:
            raise HTTPException(status_code=404, detail="Variant not found")
        price = float(v["price"])
        variant = VariantRef(variant_id=variant_id, size=v.get("size"), color=v.get("color"))

    return CartItemSchema(
        product_id=product_id,
        name=product["name"],
        image=primary_image(product.get("images") or []),
        variant=variant,
        quantity=quantity,
        price=price,
        total=round(price * quantity, 2),
    ).model_dump()


@router.get("")
def get_cart(current_user: dict = Depends(get_current_user)):
    return serialize(load_cart(get_db(), str(current_user["_id"])))


@router.post("/items")
def add_item(payload: AddItemPayload, current_user: dict = Depends(get_current_user)):
    db = get_db()
    cart = load_cart(db, str(current_user["_id"]))
    line = _find_line(cart["items"], payload.product_id, payload.variant_id)
    if line:
        line["quantity"] += payload.quantity
    else:
        cart["items"].append(snapshot_line(db, payload.product_id, payload.variant_id, payload.quantity))
    return {"message": "Added to cart", "cart": serialize(save_cart(db, cart))}


@router.put("/items")
def update_item(payload: UpdateItemPayload, current_user: dict = Depends(get_current_user)):
    db = get_db()
    cart = load_cart(db, str(current_user["_id"]))
    line = _find_line(cart["items"], payload.product_id, payload.variant_id)
    if not line:
        raise HTTPException(status_code=404, detail="Item not in cart")
    line["quantity"] = payload.quantity
    return {"message": "Cart updated", "cart": serialize(save_cart(db, cart))}


@router.delete("/items")
def remove_item(payload: RemoveItemPayload, current_user: dict = Depends(get_current_user)):
    db = get_db()
    cart = load_cart(db, str(current_user["_id"]))
    line = _find_line(cart["items"], payload.product_id, payload.variant_id)
    if not line:
        raise HTTPException(status_code=404, detail="Item not in cart")
    cart["items"].remove(line)
    return {"message": "Removed from cart", "cart": serialize(save_cart(db, cart))}


@router.delete("")
def clear_cart(current_user: dict = Depends(get_current_user)):
    get_db()["cart"].delete_one({"user_id": str(current_user["_id"])})
    return {"message": "Cart cleared"}


@router.post("/reorder/{order_id}")
def reorder(order_id: str, current_user: dict = Depends(get_current_user)):
    """Copy a previous order's lines back into the cart at current prices."""
    db = get_db()
    user_id = str(current_user["_id"])
    order = db["order"].find_one({"_id": oid(order_id), "user_id": user_id})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    cart = load_cart(db, user_id)
    skipped = []
    for item in order["items"]:
        variant_id = _variant_id(item)
        line = _find_line(cart["items"], item["product_id"], variant_id)
        if line:
            line["quantity"] += item["quantity"]
            continue
        try:
            cart["items"].append(snapshot_line(db, item["product_id"], variant_id, item["quantity"]))
        except HTTPException:
            skipped.append(item["product_id"])
    return {"cart": serialize(save_cart(db, cart)), "skipped": skipped}
