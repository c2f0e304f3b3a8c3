import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import Header
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from config import get_settings
from database import collection, create_document, to_object_id, utcnow
from errors import AuthError, DuplicateEmailError, InternalError
from schemas import LoginIn, RegisterIn, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# -----------------------
# Helpers
# -----------------------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _signing_secret() -> str:
    secret = get_settings().jwt_secret
    if not secret:
        logger.error("JWT_SECRET is not configured")
        raise InternalError("Server authentication is not configured")
    return secret


def create_access_token(user_id: str) -> str:
    settings = get_settings()
    now = utcnow()
    payload = {
        "userId": str(user_id),
        "iat": now,
        "exp": now + timedelta(days=settings.token_expire_days),
    }
    return jwt.encode(payload, _signing_secret(), algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str:
    """Return the user id carried by a valid token."""
    secret = _signing_secret()
    try:
        payload = jwt.decode(token, secret, algorithms=[get_settings().jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError as exc:
        logger.info("JWT verify failed: %s", exc)
        raise AuthError("Invalid token")
    user_id = payload.get("userId")
    if not user_id:
        raise AuthError("Invalid token")
    return str(user_id)


async def get_current_user(authorization: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthError("No token provided")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise AuthError("No token provided")
    user_id = decode_access_token(token)
    oid = to_object_id(user_id)
    user = collection("user").find_one({"_id": oid}) if oid else None
    if not user:
        raise AuthError("User not found")
    return {"_id": str(user["_id"]), "email": user.get("email", ""), "name": user.get("name", "")}


# -----------------------
# Operations
# -----------------------

def register_user(data: RegisterIn) -> str:
    """Create the account and return a fresh token."""
    _signing_secret()
    email = normalize_email(data.email)
    users = collection("user")
    if users.find_one({"email": email}):
        raise DuplicateEmailError()
    user = User(email=email, name=data.name, password_hash=hash_password(data.password))
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        # lost a race with a concurrent registration
        raise DuplicateEmailError()
    logger.info("Registered user %s", user_id)
    return create_access_token(user_id)


def login_user(data: LoginIn) -> str:
    user = collection("user").find_one({"email": normalize_email(data.email)})
    if not user or not verify_password(data.password, user.get("password_hash")):
        raise AuthError("Invalid email or password")
    return create_access_token(str(user["_id"]))
