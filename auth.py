"""
Authentication & authorization.

Passwords are hashed with bcrypt; bearer tokens are HMAC-signed
header.payload.signature strings carrying the user id and an expiry.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Optional

import bcrypt
from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr, Field

from config import SECRET_KEY, TOKEN_EXPIRY_MINUTES
from database import get_db, create_document, oid, serialize, utcnow
from schemas import User as UserSchema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

bearer_scheme = HTTPBearer(auto_error=False)


# --------------- Passwords ------------------------------------------------

def hash_password(pw: str) -> str:
    return bcrypt.hashpw(pw.encode(), bcrypt.gensalt()).decode()


def verify_password(pw: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(pw.encode(), hashed.encode())
    except ValueError:
        return False


# --------------- Tokens ---------------------------------------------------

def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _sign(header: str, payload: str) -> str:
    return hmac.new(SECRET_KEY.encode(), f"{header}.{payload}".encode(), hashlib.sha256).hexdigest()


def create_token(user_id: str, expires_in: int = TOKEN_EXPIRY_MINUTES * 60) -> str:
    header = _b64(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
    payload = _b64(json.dumps({"sub": user_id, "exp": int(time.time()) + expires_in}).encode())
    return f"{header}.{payload}.{_sign(header, payload)}"


def decode_token(token: str) -> Optional[dict]:
    """Verify and decode a token. Returns None if invalid or expired."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    header, payload, sig = parts
    if not hmac.compare_digest(sig, _sign(header, payload)):
        return None
    try:
        data = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
    except (ValueError, TypeError):
        return None
    if data.get("exp", 0) < time.time():
        return None
    return data


# --------------- Dependencies ---------------------------------------------

def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme), db=Depends(get_db)) -> dict:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    data = decode_token(credentials.credentials)
    if data is None:
        raise HTTPException(status_code=401, detail="Not authorized, token failed")
    user = db["user"].find_one({"_id": oid(data["sub"])})
    if not user or not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Not authorized, user not found")
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Not authorized as an admin")
    return user


def is_admin(user: dict) -> bool:
    return user.get("role") == "admin"


# --------------- Routes ---------------------------------------------------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)


class AuthResponse(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: str
    token: str


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(payload: RegisterRequest, db=Depends(get_db)):
    if db["user"].find_one({"email": payload.email}):
        raise HTTPException(status_code=400, detail="User already exists")
    user = UserSchema(
        name=payload.name,
        email=payload.email,
        password_hash=hash_password(payload.password),
        is_active=True,
        role="user",
    )
    user_id = create_document(db, "user", user)
    logger.info("Registered user %s", user_id)
    return AuthResponse(id=user_id, name=user.name, email=user.email, role=user.role, token=create_token(user_id))


@router.post("/login", response_model=AuthResponse)
def login(payload: LoginRequest, db=Depends(get_db)):
    user = db["user"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    user_id = str(user["_id"])
    return AuthResponse(id=user_id, name=user["name"], email=user["email"], role=user.get("role", "user"), token=create_token(user_id))


@router.get("/profile")
def get_profile(user: dict = Depends(get_current_user)):
    return serialize(dict(user))


@router.put("/profile")
def update_profile(payload: ProfileUpdateRequest, user: dict = Depends(get_current_user), db=Depends(get_db)):
    updates = {}
    if payload.name:
        updates["name"] = payload.name
    if payload.email and payload.email != user["email"]:
        if db["user"].find_one({"email": payload.email}):
            raise HTTPException(status_code=400, detail="Email already in use")
        updates["email"] = payload.email
    if payload.password:
        updates["password_hash"] = hash_password(payload.password)
    if updates:
        updates["updated_at"] = utcnow()
        db["user"].update_one({"_id": user["_id"]}, {"$set": updates})
    return serialize(db["user"].find_one({"_id": user["_id"]}))
