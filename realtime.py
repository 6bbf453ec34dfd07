"""
WebSocket fan-out for chat and livestream rooms.

Clients connect to ``/ws`` (optionally with ``?token=<bearer>``) and exchange
JSON envelopes ``{"event": name, "data": payload}``. Delivery is at-most-once
to the connections currently joined to a room; nothing is replayed.
"""

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from chat import chat_identity, save_message
from database import get_db, serialize, utcnow
from livestream import end_stream
from security import user_from_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

HOST = "host"
VIEWER = "viewer"


class RoomHub:
    """Room membership for the open sockets of this process."""

    def __init__(self):
        self.connections = set()
        self.rooms = defaultdict(set)
        self.memberships = defaultdict(set)
        self.viewers = defaultdict(set)

    def connect(self, websocket):
        self.connections.add(websocket)

    def disconnect(self, websocket):
        """Drop a socket from every room; returns the channels it was watching."""
        self.connections.discard(websocket)
        watched = [c for c, members in self.viewers.items() if websocket in members]
        for room in self.memberships.pop(websocket, set()):
            self._discard(self.rooms, room, websocket)
        for channel in watched:
            self._discard(self.viewers, channel, websocket)
        return watched

    def join(self, websocket, room: str):
        self.rooms[room].add(websocket)
        self.memberships[websocket].add(room)

    def leave(self, websocket, room: str):
        self._discard(self.rooms, room, websocket)
        self._discard(self.memberships, websocket, room)
        self._discard(self.viewers, room, websocket)

    @staticmethod
    def _discard(index, key, value):
        members = index.get(key)
        if members is None:
            return
        members.discard(value)
        if not members:
            del index[key]

    def members(self, room: str):
        return set(self.rooms.get(room, ()))

    def add_viewer(self, websocket, channel: str):
        self.viewers[channel].add(websocket)

    def viewer_count(self, channel: str) -> int:
        return len(self.viewers.get(channel, ()))

    async def send(self, websocket, event: str, data):
        try:
            await websocket.send_json({"event": event, "data": data})
        except Exception:
            logger.warning("[WS] Dropping connection after failed send of %s", event)
            self.disconnect(websocket)

    async def emit(self, room: str, event: str, data):
        for websocket in list(self.members(room)):
            await self.send(websocket, event, data)

    async def broadcast(self, event: str, data):
        for websocket in list(self.connections):
            await self.send(websocket, event, data)


def get_hub(websocket: WebSocket) -> RoomHub:
    return websocket.app.state.hub


@dataclass
class Session:
    websocket: WebSocket
    hub: RoomHub
    user: Optional[dict] = None

    async def reply(self, event: str, data):
        await self.hub.send(self.websocket, event, data)

    async def error(self, message: str):
        await self.reply("error", {"message": message})


def _json_safe(doc: dict) -> dict:
    return json.loads(json.dumps(serialize(doc), default=str))


def _owned_stream(session: Session, query: dict):
    """The livestream matching query when the session user hosts it."""
    if not session.user or session.user.get("role") != "seller":
        return None
    stream = get_db()["livestream"].find_one(query)
    if stream and stream["seller_id"] == str(session.user["_id"]):
        return stream
    return None


# Chat
async def on_join_room(session: Session, data):
    if not session.user:
        return await session.error("Authentication required")
    room_id = str(data)
    if chat_identity(session.user) not in room_id.split("-"):
        return await session.error("Not allowed to join this room")
    session.hub.join(session.websocket, room_id)
    await session.reply("room_joined", room_id)


async def on_send_message(session: Session, data):
    if not isinstance(data, dict) or not data.get("room_id") or not data.get("text"):
        return await session.error("room_id and text are required")
    if not session.user:
        return await session.error("Authentication required")

    sender_id = str(data.get("sender_id") or "")
    room_id = str(data["room_id"])
    if sender_id != chat_identity(session.user) or sender_id not in room_id.split("-"):
        return await session.error("Not allowed to send in this room")

    message = {"room_id": room_id, "sender_id": sender_id, "text": data["text"], "timestamp": data.get("timestamp")}
    await session.hub.emit(room_id, "receive_message", message)
    try:
        await run_in_threadpool(save_message, get_db(), room_id, sender_id, data["text"])
    except Exception:
        logger.exception("[WS] Could not store message for room %s", room_id)


# Livestream
async def on_join_livestream(session: Session, data):
    if not isinstance(data, dict) or not data.get("room_name"):
        return await session.error("room_name is required")
    channel = str(data["room_name"])
    session.hub.join(session.websocket, channel)
    if data.get("role", VIEWER) != HOST:
        session.hub.add_viewer(session.websocket, channel)
        await run_in_threadpool(get_db()["livestream"].update_one, {"channel": channel}, {"$inc": {"views": 1}})
    await session.hub.emit(channel, "view_count_update", {"count": session.hub.viewer_count(channel)})


async def on_leave_livestream(session: Session, data):
    channel = str(data)
    session.hub.leave(session.websocket, channel)
    await session.hub.emit(channel, "view_count_update", {"count": session.hub.viewer_count(channel)})


async def on_live_chat_message(session: Session, data):
    if not isinstance(data, dict) or not data.get("room_name"):
        return await session.error("room_name is required")
    comment = {
        "user": data.get("user") or (session.user or {}).get("name") or "Guest",
        "text": data.get("text", ""),
        "created_at": utcnow().isoformat(),
    }
    await session.hub.emit(str(data["room_name"]), "new_comment", comment)


async def on_send_heart(session: Session, data):
    channel = str(data)
    await session.hub.emit(channel, "receive_heart", {})
    await run_in_threadpool(get_db()["livestream"].update_one, {"channel": channel}, {"$inc": {"likes": 1}})


async def on_pin_product(session: Session, data):
    if not isinstance(data, dict) or not ObjectId.is_valid(str(data.get("stream_id", ""))):
        return await session.error("stream_id is required")
    stream = await run_in_threadpool(_owned_stream, session, {"_id": ObjectId(data["stream_id"])})
    if not stream:
        return await session.error("Only the host can pin products")
    product = data.get("product")
    await run_in_threadpool(
        get_db()["livestream"].update_one, {"_id": stream["_id"]}, {"$set": {"current_product": product}}
    )
    await session.hub.emit(stream["channel"], "product_pinned", product)


async def on_end_livestream(session: Session, data):
    channel = str(data)
    stream = await run_in_threadpool(_owned_stream, session, {"channel": channel})
    if not stream:
        return await session.error("Only the host can end the stream")
    await run_in_threadpool(end_stream, get_db(), channel)
    await session.hub.emit(channel, "stream_ended", {"channel": channel})


async def on_seller_start_live(session: Session, data):
    if not session.user or session.user.get("role") != "seller":
        return await session.error("Only sellers can go live")
    payload = data if isinstance(data, dict) else {}
    stream = await run_in_threadpool(
        _owned_stream, session, {"seller_id": str(session.user["_id"]), "status": "live"}
    )
    if stream:
        payload = {**_json_safe(stream), **payload}
    await session.hub.broadcast("livestream_started", payload)


HANDLERS = {
    "join_room": on_join_room,
    "send_message": on_send_message,
    "join_livestream": on_join_livestream,
    "leave_livestream": on_leave_livestream,
    "live_chat_message": on_live_chat_message,
    "send_heart": on_send_heart,
    "pin_product": on_pin_product,
    "end_livestream": on_end_livestream,
    "seller_start_live": on_seller_start_live,
}


@router.websocket("/ws")
async def socket_endpoint(websocket: WebSocket, token: Optional[str] = None, hub: RoomHub = Depends(get_hub)):
    user = await run_in_threadpool(user_from_token, token) if token else None
    if user and not user.get("is_active", True):
        user = None
    await websocket.accept()
    hub.connect(websocket)
    session = Session(websocket=websocket, hub=hub, user=user)
    logger.info("[WS] Connected %s", user["email"] if user else "anonymous")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                envelope = json.loads(raw)
            except ValueError:
                await session.error("Invalid JSON")
                continue
            if not isinstance(envelope, dict):
                await session.error("Expected an object")
                continue
            handler = HANDLERS.get(envelope.get("event"))
            if handler is None:
                await session.error(f"Unknown event: {envelope.get('event')}")
                continue
            await handler(session, envelope.get("data"))
    except WebSocketDisconnect:
        logger.info("[WS] Disconnected %s", user["email"] if user else "anonymous")
    finally:
        for channel in hub.disconnect(websocket):
            await hub.emit(channel, "view_count_update", {"count": hub.viewer_count(channel)})
