import logging
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, EmailStr, Field
from bson import ObjectId
from pymongo.database import Database

import storage
from database import get_db, with_id
import notifications
from schemas import GovernmentId, Host as HostSchema, User as UserSchema, utcnow
from security import (
    AuthUser,
    create_access_token,
    create_user_token,
    get_current_user,
    hash_password,
    public_user,
    verify_password,
    verify_user_token,
)
from settings import EMAIL_TOKEN_EXPIRE_MINUTES, RESET_TOKEN_EXPIRE_MINUTES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

MAX_ID_IMAGES = 2


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)


class AuthResponse(BaseModel):
    token: str
    user: dict


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(data: RegisterRequest, db: Database = Depends(get_db)):
    if db["user"].find_one({"email": data.email}):
        raise HTTPException(status_code=400, detail="User already exists")

    user = UserSchema(
        email=data.email,
        password_hash=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
    )
    doc = user.model_dump()
    doc["_id"] = db["user"].insert_one(doc).inserted_id

    verification_token = create_user_token(doc, EMAIL_TOKEN_EXPIRE_MINUTES)
    db["user"].update_one({"_id": doc["_id"]}, {"$set": {"verification_token": verification_token}})
    notifications.send_verification_email(doc["email"], verification_token, doc["first_name"])

    logger.info("Registered user %s", doc["_id"])
    return AuthResponse(token=create_access_token(str(doc["_id"]), doc["role"]), user=public_user(doc))


@router.post("/login", response_model=AuthResponse)
def login(data: LoginRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": data.email})
    if not user or not verify_password(data.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return AuthResponse(token=create_access_token(str(user["_id"]), user["role"]), user=public_user(user))


@router.get("/verify-email")
def verify_email(token: Optional[str] = None, db: Database = Depends(get_db)):
    if not token:
        raise HTTPException(status_code=400, detail="Token is required")
    user = db["user"].find_one({"verification_token": token})
    if not user:
        raise HTTPException(status_code=400, detail="Invalid token")
    if not verify_user_token(token, user):
        raise HTTPException(status_code=400, detail="Token expired or invalid")

    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"is_verified": True}, "$unset": {"verification_token": ""}},
    )
    return {"message": "Email verified successfully"}


@router.post("/forgot-password")
def forgot_password(data: ForgotPasswordRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": data.email})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    reset_token = create_user_token(user, RESET_TOKEN_EXPIRE_MINUTES)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "reset_password_token": reset_token,
            "reset_password_expires": utcnow() + timedelta(minutes=RESET_TOKEN_EXPIRE_MINUTES),
        }},
    )
    notifications.send_password_reset_email(user["email"], reset_token, user["first_name"])
    return {"message": "Password reset email sent"}


@router.post("/reset-password")
def reset_password(data: ResetPasswordRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({
        "reset_password_token": data.token,
        "reset_password_expires": {"$gt": utcnow()},
    })
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired token")
    if not verify_user_token(data.token, user):
        raise HTTPException(status_code=400, detail="Token expired or invalid")

    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password_hash": hash_password(data.password)},
            "$unset": {"reset_password_token": "", "reset_password_expires": ""},
        },
    )
    return {"message": "Password reset successfully"}


@router.get("/me")
def me(user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    host_profile = None
    if user.role == "host":
        host_profile = with_id(db["host"].find_one({"user_id": user.id}))
    return {"user": user.model_dump(), "host_profile": host_profile}


@router.post("/become-host", status_code=201)
def become_host(
    government_id_type: str = Form(...),
    government_id_number: str = Form(...),
    id_images: List[UploadFile] = File(default=[]),
    user: AuthUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if government_id_type not in ("passport", "driving_license"):
        raise HTTPException(status_code=400, detail="government_id_type must be passport or driving_license")
    if not government_id_number.strip():
        raise HTTPException(status_code=400, detail="government_id_number is required")
    if len(id_images) > MAX_ID_IMAGES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_ID_IMAGES} ID images allowed")
    if db["host"].find_one({"user_id": user.id}):
        raise HTTPException(status_code=400, detail="User is already a host")

    try:
        image_urls = [storage.upload_file(f, f"hosts/{user.id}") for f in id_images]
    except storage.UnsupportedFileType as e:
        raise HTTPException(status_code=400, detail=str(e))

    host = HostSchema(
        user_id=user.id,
        government_id=GovernmentId(type=government_id_type, number=government_id_number, images=image_urls),
    )
    doc = host.model_dump()
    db["host"].insert_one(doc)
    db["user"].update_one({"_id": ObjectId(user.id)}, {"$set": {"role": "host"}})

    logger.info("User %s applied as host", user.id)
    return {"message": "Host application submitted successfully", "host": with_id(doc)}
