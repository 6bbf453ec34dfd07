import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import admin
import auth
import cart
import catalog
import chat
import database
import livestream
import orders
import promotions
import realtime
import reviews
import seller
import users
from database import utcnow
from notifications import NotificationDispatcher, mailer_from_env
from order_status import InvalidTransition
from realtime import RoomHub

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s",
)
logger = logging.getLogger(__name__)

# App and CORS
app = FastAPI(title="Marketplace API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.notifications = NotificationDispatcher(mailer_from_env())
app.state.hub = RoomHub()

app.include_router(auth.router)
app.include_router(catalog.router)
app.include_router(catalog.seller_router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(seller.router)
app.include_router(admin.router)
app.include_router(promotions.router)
app.include_router(reviews.router)
app.include_router(users.router)
app.include_router(chat.router)
app.include_router(livestream.router)
app.include_router(realtime.router)


@app.on_event("startup")
def start_notifications():
    app.state.notifications.start()


@app.on_event("shutdown")
def stop_notifications():
    app.state.notifications.stop()


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


@app.get("/")
def root():
    return {"message": "Marketplace API running"}


@app.get("/health")
def health():
    return {"status": "OK", "timestamp": utcnow().isoformat()}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    _db = database.db
    if _db is not None:
        response["database"] = "✅ Available"
        response["database_name"] = _db.name if hasattr(_db, 'name') else "✅ Connected"
        response["connection_status"] = "Connected"
        try:
            response["collections"] = _db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    else:
        response["database"] = "⚠️  Available but not initialized"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
