import logging
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, ValidationError
from pymongo import ReturnDocument

from database import create_document, get_db, oid, serialize, utcnow
from order_status import OrderStatus
from schemas import Review as ReviewSchema
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["reviews"])

STARS = (5, 4, 3, 2, 1)


class ReviewCreate(BaseModel):
    product_id: str
    rating: int
    title: str = ""
    comment: str
    images: List[str] = Field(default_factory=list)
    order_id: Optional[str] = None


class ReviewUpdate(BaseModel):
    rating: Optional[int] = None
    title: Optional[str] = None
    comment: Optional[str] = None
    images: Optional[List[str]] = None


def _validated_review(data: dict) -> ReviewSchema:
    try:
        return ReviewSchema(**data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False))


def with_reviewers(db, reviews: List[dict]) -> List[dict]:
    """Serialized reviews with the reviewer's name and avatar attached."""
    ids = {ObjectId(r["user_id"]) for r in reviews if ObjectId.is_valid(r["user_id"])}
    users = {
        str(u["_id"]): {"id": str(u["_id"]), "name": u.get("name", ""), "avatar": u.get("avatar", "")}
        for u in db["user"].find({"_id": {"$in": list(ids)}}, {"name": 1, "avatar": 1})
    }
    result = []
    for review in reviews:
        doc = serialize(review)
        doc["user"] = users.get(review["user_id"])
        result.append(doc)
    return result


def rating_stats(db, product_id: str) -> dict:
    counts = {star: 0 for star in STARS}
    rows = db["review"].aggregate([
        {"$match": {"product_id": product_id, "is_active": True}},
        {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
    ])
    for row in rows:
        counts[row["_id"]] = row["count"]
    return counts


@router.get("/product/{product_id}")
def product_reviews(product_id: str, page: int = 1, limit: int = 10, rating: Optional[int] = None):
    db = get_db()
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    filt = {"product_id": product_id, "is_active": True}
    if rating:
        filt["rating"] = rating

    total = db["review"].count_documents(filt)
    docs = list(db["review"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    stats = rating_stats(db, product_id)
    rated = sum(stats.values())
    pages = (total + limit - 1) // limit
    return {
        "reviews": with_reviewers(db, docs),
        "rating_stats": stats,
        "average_rating": round(sum(star * n for star, n in stats.items()) / rated, 1) if rated else 0,
        "pagination": {
            "current": page,
            "pages": pages,
            "total": total,
            "has_next": page < pages,
            "has_prev": page > 1,
        },
    }


@router.post("", status_code=201)
def create_review(payload: ReviewCreate, current_user: dict = Depends(get_current_user)):
    db = get_db()
    user_id = str(current_user["_id"])
    if not db["product"].find_one({"_id": oid(payload.product_id)}, {"_id": 1}):
        raise HTTPException(status_code=404, detail="Product not found")
    if db["review"].find_one({"user_id": user_id, "product_id": payload.product_id}):
        raise HTTPException(status_code=400, detail="You have already reviewed this product")

    if payload.order_id:
        delivered = db["order"].find_one({
            "_id": oid(payload.order_id),
            "user_id": user_id,
            "status": OrderStatus.DELIVERED.value,
            "items.product_id": payload.product_id,
        })
        if not delivered:
            raise HTTPException(status_code=400, detail="Invalid order or product not delivered")

    review = _validated_review({**payload.model_dump(), "user_id": user_id, "is_verified": bool(payload.order_id)})
    review_id = create_document("review", review)
    logger.info("User %s reviewed product %s (%s stars)", user_id, payload.product_id, review.rating)
    stored = db["review"].find_one({"_id": ObjectId(review_id)})
    return {"message": "Review created", "review": with_reviewers(db, [stored])[0]}


def own_review(db, review_id: str, user: dict) -> dict:
    review = db["review"].find_one({"_id": oid(review_id), "user_id": str(user["_id"]), "is_active": True})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review


@router.put("/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, current_user: dict = Depends(get_current_user)):
    db = get_db()
    review = own_review(db, review_id, current_user)
    changes = payload.model_dump(exclude_unset=True)
    merged = {k: review[k] for k in ReviewSchema.model_fields if k in review}
    merged.update(changes)
    checked = _validated_review(merged).model_dump()

    update = {k: checked[k] for k in changes}
    if update:
        update["updated_at"] = utcnow()
        db["review"].update_one({"_id": review["_id"]}, {"$set": update})
    stored = db["review"].find_one({"_id": review["_id"]})
    return {"message": "Review updated", "review": with_reviewers(db, [stored])[0]}


@router.delete("/{review_id}")
def delete_review(review_id: str, current_user: dict = Depends(get_current_user)):
    db = get_db()
    review = own_review(db, review_id, current_user)
    db["review"].update_one({"_id": review["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}})
    return {"message": "Review deleted"}


@router.post("/{review_id}/helpful")
def toggle_helpful(review_id: str, current_user: dict = Depends(get_current_user)):
    db = get_db()
    review = db["review"].find_one({"_id": oid(review_id), "is_active": True})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")

    user_id = str(current_user["_id"])
    if user_id in review.get("helpful_users", []):
        filt = {"_id": review["_id"], "helpful_users": user_id}
        change = {"$pull": {"helpful_users": user_id}, "$inc": {"helpful_count": -1}}
    else:
        filt = {"_id": review["_id"], "helpful_users": {"$ne": user_id}}
        change = {"$push": {"helpful_users": user_id}, "$inc": {"helpful_count": 1}}
    # a concurrent toggle by the same user leaves the document as the other request wrote it
    updated = db["review"].find_one_and_update(filt, change, return_document=ReturnDocument.AFTER)
    if updated is None:
        updated = db["review"].find_one({"_id": review["_id"]})
    return {
        "message": "Helpful vote updated",
        "helpful": {"count": updated["helpful_count"], "users": updated["helpful_users"]},
    }
