import logging
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException

from database import create_document, get_db, serialize, utcnow
from schemas import Conversation as ConversationSchema, Message as MessageSchema
from security import get_current_user, require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


def room_key(a: str, b: str) -> str:
    """Room id for a pair of participants, the same whichever side asks."""
    return "-".join(sorted([str(a), str(b)]))


def chat_identity(user: dict) -> str:
    # Sellers talk on behalf of their brand.
    if user.get("role") == "seller" and user.get("brand_id"):
        return str(user["brand_id"])
    return str(user["_id"])


def save_message(db, room_id: str, sender_id: str, text: str) -> str:
    """Append a message and upsert the conversation between the two room members."""
    message_id = create_document("message", MessageSchema(room_id=room_id, sender_id=sender_id, text=text))
    members = room_id.split("-")
    conversation = ConversationSchema(room_id=room_id, members=members)
    now = utcnow()
    db["conversation"].update_one(
        {"room_id": room_id},
        {
            "$set": {"last_message": text, "last_sender_id": sender_id, "updated_at": now},
            "$setOnInsert": {"members": conversation.members, "created_at": now},
        },
        upsert=True,
    )
    return message_id


@router.get("/messages")
def history(user_id: str, brand_id: str, current_user: dict = Depends(get_current_user)):
    if chat_identity(current_user) not in (user_id, brand_id) and current_user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Not a participant of this conversation")
    docs = get_db()["message"].find({"room_id": room_key(user_id, brand_id)}).sort("created_at", 1)
    return [serialize(m) for m in docs]


@router.get("/conversations")
def conversations(seller: dict = Depends(require_role("seller"))):
    db = get_db()
    brand_id = seller.get("brand_id")
    if not brand_id:
        return []

    result = []
    for conv in db["conversation"].find({"members": brand_id}).sort("updated_at", -1):
        customer_id = next((m for m in conv["members"] if m != brand_id), None)
        customer: Optional[dict] = None
        if customer_id and ObjectId.is_valid(customer_id):
            customer = db["user"].find_one({"_id": ObjectId(customer_id)}, {"name": 1, "email": 1, "avatar": 1})
        result.append({
            "room_id": conv["room_id"],
            "customer": serialize(customer) if customer else {"id": customer_id},
            "last_message": conv.get("last_message"),
            "updated_at": conv.get("updated_at"),
        })
    return result
