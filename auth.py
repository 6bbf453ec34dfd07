import logging
import os
from datetime import timedelta
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field

from database import create_document, get_db, serialize, utcnow
from notifications import RESET_PASSWORD, NotificationDispatcher, get_dispatcher
from schemas import Brand as BrandSchema, User as UserSchema
from security import (
    RESET_TOKEN_EXPIRE_MINUTES,
    PublicUser,
    Token,
    get_current_user,
    get_password_hash,
    get_user_by_email,
    hash_reset_token,
    new_reset_token,
    public_user,
    token_for,
    verify_password,
)

logger = logging.getLogger(__name__)

WEB_URL = os.getenv("WEB_URL", "http://localhost:3000")

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)


class SellerRegisterPayload(RegisterPayload):
    brand_name: str = Field(..., min_length=1)
    brand_country: str = Field(..., min_length=1)
    brand_description: str = ""
    logo_url: str = ""


class AuthResponse(Token):
    user: PublicUser


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class ForgotPasswordPayload(BaseModel):
    email: EmailStr


class ResetPasswordPayload(BaseModel):
    password: str = Field(..., min_length=6)


def _new_user(payload: RegisterPayload, role: str) -> UserSchema:
    return UserSchema(
        name=payload.name,
        email=payload.email.lower(),
        hashed_password=get_password_hash(payload.password),
        role=role,
        phone=payload.phone,
        address=payload.address,
    )


@router.post("/register", response_model=PublicUser, status_code=201)
def register(payload: RegisterPayload):
    db = get_db()
    if get_user_by_email(payload.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    user_id = create_document("user", _new_user(payload, "buyer"))
    logger.info("Registered buyer %s", user_id)
    return public_user(db["user"].find_one({"_id": ObjectId(user_id)}))


@router.post("/register-seller", response_model=AuthResponse, status_code=201)
def register_seller(payload: SellerRegisterPayload):
    db = get_db()
    if get_user_by_email(payload.email):
        raise HTTPException(status_code=400, detail="Email already registered")
    if db["brand"].find_one({"name": payload.brand_name}):
        raise HTTPException(status_code=400, detail="Brand name already taken")

    user_id = create_document("user", _new_user(payload, "seller"))
    brand_id = create_document("brand", BrandSchema(
        name=payload.brand_name,
        country=payload.brand_country,
        description=payload.brand_description,
        logo_url=payload.logo_url,
        seller_id=user_id,
    ))
    db["user"].update_one({"_id": ObjectId(user_id)}, {"$set": {"brand_id": brand_id}})
    logger.info("Registered seller %s with brand %s", user_id, brand_id)

    user = db["user"].find_one({"_id": ObjectId(user_id)})
    return AuthResponse(access_token=token_for(user), user=public_user(user))


@router.post("/login", response_model=AuthResponse)
def login(form_data: OAuth2PasswordRequestForm = Depends()):
    user = get_user_by_email(form_data.username)
    if not user or not verify_password(form_data.password, user.get("hashed_password", "")):
        raise HTTPException(status_code=400, detail="Incorrect email or password")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account is deactivated")

    return AuthResponse(access_token=token_for(user), user=public_user(user))


@router.get("/me", response_model=PublicUser)
def me(current_user: dict = Depends(get_current_user)):
    return public_user(current_user)


@router.get("/profile")
def profile(current_user: dict = Depends(get_current_user)):
    brand = None
    if current_user.get("role") == "seller" and current_user.get("brand_id"):
        brand = serialize(get_db()["brand"].find_one({"_id": ObjectId(current_user["brand_id"])}))
    return {"user": public_user(current_user), "brand": brand}


@router.put("/profile", response_model=PublicUser)
def update_profile(payload: ProfileUpdate, current_user: dict = Depends(get_current_user)):
    db = get_db()
    changes = {k: v for k, v in payload.model_dump().items() if v}
    if changes:
        changes["updated_at"] = utcnow()
        db["user"].update_one({"_id": current_user["_id"]}, {"$set": changes})
    return public_user(db["user"].find_one({"_id": current_user["_id"]}))


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordPayload, notifications: NotificationDispatcher = Depends(get_dispatcher)):
    db = get_db()
    user = get_user_by_email(payload.email)
    if not user:
        raise HTTPException(status_code=404, detail="Email not found")

    token, token_hash = new_reset_token()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {
        "reset_password_token_hash": token_hash,
        "reset_password_expire": utcnow() + timedelta(minutes=RESET_TOKEN_EXPIRE_MINUTES),
    }})

    notifications.enqueue(
        {"user": {"name": user.get("name"), "email": user["email"]}, "reset_url": f"{WEB_URL}/reset-password/{token}"},
        RESET_PASSWORD,
    )
    return {"success": True, "message": "Password reset instructions have been sent"}


@router.post("/reset-password/{token}")
def reset_password(token: str, payload: ResetPasswordPayload):
    db = get_db()
    user = db["user"].find_one({
        "reset_password_token_hash": hash_reset_token(token),
        "reset_password_expire": {"$gt": utcnow()},
    })
    if not user:
        raise HTTPException(status_code=400, detail="Reset link is invalid or has expired")

    db["user"].update_one({"_id": user["_id"]}, {"$set": {
        "hashed_password": get_password_hash(payload.password),
        "reset_password_token_hash": None,
        "reset_password_expire": None,
        "updated_at": utcnow(),
    }})
    return {"success": True, "message": "Password changed, you can sign in now"}
