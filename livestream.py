import logging
from typing import List

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from database import create_document, get_db, serialize, utcnow
from schemas import Livestream as LivestreamSchema
from security import require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/livestreams", tags=["livestream"])


class LivestreamCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    products: List[str] = []


def channel_name(seller_id: str) -> str:
    return f"live-{seller_id}-{int(utcnow().timestamp() * 1000)}"


def end_stream(db, channel: str):
    db["livestream"].update_one(
        {"channel": channel, "status": "live"},
        {"$set": {"status": "ended", "ended_at": utcnow(), "updated_at": utcnow()}},
    )


@router.get("")
def live_now():
    docs = get_db()["livestream"].find({"status": "live"}).sort("created_at", -1)
    return [serialize(s) for s in docs]


@router.post("", status_code=201)
def start_livestream(payload: LivestreamCreate, seller: dict = Depends(require_role("seller"))):
    db = get_db()
    seller_id = str(seller["_id"])
    # One live session per seller.
    for stream in db["livestream"].find({"seller_id": seller_id, "status": "live"}):
        end_stream(db, stream["channel"])

    stream = LivestreamSchema(
        seller_id=seller_id,
        title=payload.title,
        description=payload.description,
        products=payload.products,
        status="live",
        channel=channel_name(seller_id),
    )
    stream_id = create_document("livestream", stream)
    logger.info("Seller %s went live on %s", seller_id, stream.channel)
    return serialize(db["livestream"].find_one({"_id": ObjectId(stream_id)}))


@router.put("/end")
def end_livestream(seller: dict = Depends(require_role("seller"))):
    db = get_db()
    stream = db["livestream"].find_one({"seller_id": str(seller["_id"]), "status": "live"})
    if not stream:
        raise HTTPException(status_code=404, detail="No live stream")
    end_stream(db, stream["channel"])
    return {"message": "Livestream ended", "channel": stream["channel"]}
