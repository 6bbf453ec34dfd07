from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument

from database import get_db, oid, serialize, utcnow
from schemas import Address as AddressSchema
from security import get_current_user

router = APIRouter(prefix="/users", tags=["users"])


class WishlistAdd(BaseModel):
    product_id: str


class AddressPayload(BaseModel):
    name: str
    phone: str
    address: str
    city: str
    district: str
    ward: str
    is_default: bool = False


class AddressUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    ward: Optional[str] = None
    is_default: Optional[bool] = None


# Wishlist
@router.get("/wishlist")
def wishlist(current_user: dict = Depends(get_current_user)):
    ids = current_user.get("wishlist", [])
    query = {"_id": {"$in": [ObjectId(i) for i in ids if ObjectId.is_valid(i)]}}
    products = {str(p["_id"]): serialize(p) for p in get_db()["product"].find(query)}
    return [products[i] for i in ids if i in products]


@router.post("/wishlist")
def add_to_wishlist(payload: WishlistAdd, current_user: dict = Depends(get_current_user)):
    db = get_db()
    if not db["product"].find_one({"_id": oid(payload.product_id)}, {"_id": 1}):
        raise HTTPException(status_code=404, detail="Product not found")
    user = db["user"].find_one_and_update(
        {"_id": current_user["_id"], "wishlist": {"$ne": payload.product_id}},
        {"$push": {"wishlist": payload.product_id}},
        return_document=ReturnDocument.AFTER,
    )
    if user is None:
        raise HTTPException(status_code=400, detail="Product already in wishlist")
    return {"message": "Added to wishlist", "wishlist": user["wishlist"]}


@router.delete("/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, current_user: dict = Depends(get_current_user)):
    user = get_db()["user"].find_one_and_update(
        {"_id": current_user["_id"]},
        {"$pull": {"wishlist": product_id}},
        return_document=ReturnDocument.AFTER,
    )
    return {"message": "Removed from wishlist", "wishlist": user.get("wishlist", [])}


# Addresses
def _validated_address(data: dict) -> dict:
    try:
        return AddressSchema(**data).model_dump()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False))


def save_addresses(db, user: dict, addresses: List[dict]) -> List[dict]:
    """Stores the list, keeping exactly one default while any address exists."""
    if addresses and not any(a["is_default"] for a in addresses):
        addresses[0]["is_default"] = True
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": utcnow()}})
    return addresses


def _make_default(addresses: List[dict], address_id: str):
    for a in addresses:
        a["is_default"] = a["id"] == address_id


@router.get("/addresses")
def addresses(current_user: dict = Depends(get_current_user)):
    return current_user.get("addresses", [])


@router.post("/addresses", status_code=201)
def add_address(payload: AddressPayload, current_user: dict = Depends(get_current_user)):
    saved = list(current_user.get("addresses", []))
    address = _validated_address({**payload.model_dump(), "id": str(ObjectId())})
    saved.append(address)
    if address["is_default"]:
        _make_default(saved, address["id"])
    return {"message": "Address added", "addresses": save_addresses(get_db(), current_user, saved)}


def _index_of(addresses: List[dict], address_id: str) -> int:
    for i, a in enumerate(addresses):
        if a["id"] == address_id:
            return i
    raise HTTPException(status_code=404, detail="Address not found")


@router.put("/addresses/{address_id}")
def update_address(address_id: str, payload: AddressUpdate, current_user: dict = Depends(get_current_user)):
    saved = list(current_user.get("addresses", []))
    i = _index_of(saved, address_id)
    changes = payload.model_dump(exclude_unset=True)
    saved[i] = _validated_address({**saved[i], **changes, "id": address_id})
    if changes.get("is_default"):
        _make_default(saved, address_id)
    return {"message": "Address updated", "addresses": save_addresses(get_db(), current_user, saved)}


@router.delete("/addresses/{address_id}")
def delete_address(address_id: str, current_user: dict = Depends(get_current_user)):
    saved = list(current_user.get("addresses", []))
    del saved[_index_of(saved, address_id)]
    return {"message": "Address deleted", "addresses": save_addresses(get_db(), current_user, saved)}
