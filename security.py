import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import jwt
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr
from pymongo.database import Database

from database import get_db
from settings import (
    ACCESS_TOKEN_EXPIRE_DAYS,
    JWT_ADMIN_SECRET,
    JWT_ALG,
    JWT_SECRET,
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
auth_scheme = HTTPBearer(auto_error=False)

# Verification key per role class. Admin sessions are signed with their own key.
TOKEN_SECRETS = {
    "user": JWT_SECRET,
    "admin": JWT_ADMIN_SECRET,
}

# Never leaves the server
PRIVATE_USER_FIELDS = {
    "password_hash": 0,
    "verification_token": 0,
    "reset_password_token": 0,
    "reset_password_expires": 0,
}


class AuthUser(BaseModel):
    id: str
    role: str
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str] = None
    is_verified: bool = False


def key_class_for(role: str) -> str:
    return "admin" if role == "admin" else "user"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash or "")


def create_access_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS))
    to_encode = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(to_encode, TOKEN_SECRETS[key_class_for(role)], algorithm=JWT_ALG)


def create_user_token(user: dict, expires_minutes: int) -> str:
    """One-off token for email links, void once the password changes."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode(
        {"sub": str(user["_id"]), "exp": expire},
        JWT_SECRET + user["password_hash"],
        algorithm=JWT_ALG,
    )


def verify_user_token(token: str, user: dict) -> bool:
    try:
        payload = jwt.decode(token, JWT_SECRET + user["password_hash"], algorithms=[JWT_ALG])
    except jwt.PyJWTError:
        return False
    return payload.get("sub") == str(user["_id"])


def public_user(doc: dict) -> dict:
    return {
        "id": str(doc.get("_id", doc.get("id"))),
        "email": doc["email"],
        "first_name": doc["first_name"],
        "last_name": doc["last_name"],
        "phone": doc.get("phone"),
        "role": doc["role"],
        "is_verified": doc.get("is_verified", False),
    }


def _authenticate(
    credentials: Optional[HTTPAuthorizationCredentials],
    db: Database,
    key_class: str,
    roles: Optional[Sequence[str]] = None,
    denied: str = "Token is not valid.",
) -> AuthUser:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Access denied. No token provided.")
    try:
        payload = jwt.decode(credentials.credentials, TOKEN_SECRETS[key_class], algorithms=[JWT_ALG])
        user_id = ObjectId(payload["sub"])
    except (jwt.PyJWTError, InvalidId, KeyError, TypeError):
        raise HTTPException(status_code=401, detail=denied)

    user = db["user"].find_one({"_id": user_id}, PRIVATE_USER_FIELDS)
    if not user or (roles and user.get("role") not in roles):
        raise HTTPException(status_code=401, detail=denied)
    return AuthUser(**public_user(user))


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    db: Database = Depends(get_db),
) -> AuthUser:
    return _authenticate(credentials, db, "user")


def require_host(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    db: Database = Depends(get_db),
) -> AuthUser:
    return _authenticate(credentials, db, "user", roles=("host", "admin"), denied="Host access required.")


def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    db: Database = Depends(get_db),
) -> AuthUser:
    return _authenticate(credentials, db, "admin", roles=("admin",), denied="Admin access required.")
