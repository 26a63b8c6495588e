import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from bson import ObjectId
from fastapi import Depends, Header, HTTPException, Request
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from config import Settings
from database import get_db, serialize

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def build_pwd_context(settings: Settings) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)


def get_pwd_context(request: Request) -> CryptContext:
    return request.app.state.pwd_context


# Passwords

def hash_password(pwd_context: CryptContext, password: str) -> str:
    return pwd_context.hash(password)


def verify_password(pwd_context: CryptContext, plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


# Tokens

def _encode(claims: Dict[str, Any], secret: str, ttl: int, settings: Settings) -> str:
    to_encode = dict(claims)
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(seconds=ttl)
    return jwt.encode(to_encode, secret, algorithm=settings.jwt_algorithm)


def create_access_token(user: Dict[str, Any], settings: Settings) -> str:
    claims = {
        "sub": str(user["id"]),
        "role": user.get("role", "user"),
        "name": f"{user.get('first_name', '')} {user.get('last_name', '')}".strip(),
        "type": ACCESS,
    }
    return _encode(claims, settings.jwt_secret, settings.access_token_ttl, settings)


def create_refresh_token(user: Dict[str, Any], settings: Settings) -> str:
    # jti keeps two refresh tokens issued in the same second distinct
    claims = {"sub": str(user["id"]), "jti": uuid.uuid4().hex, "type": REFRESH}
    return _encode(claims, settings.jwt_refresh_secret, settings.refresh_token_ttl, settings)


def _decode(token: str, secret: str, token_type: str, settings: Settings) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=401, detail="Failed to authenticate")
    if payload.get("type") != token_type or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Failed to authenticate")
    return payload


def decode_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    return _decode(token, settings.jwt_secret, ACCESS, settings)


def decode_refresh_token(token: str, settings: Settings) -> Dict[str, Any]:
    return _decode(token, settings.jwt_refresh_secret, REFRESH, settings)


# Dependencies

def get_current_user(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="No token, access denied")
    token = authorization.split(" ", 1)[1].strip()
    payload = decode_access_token(token, settings)
    user_id = payload["sub"]
    if not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=401, detail="Failed to authenticate")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return serialize(user)


def require_roles(*roles: str) -> Callable[..., Dict[str, Any]]:
    def guard(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if current_user.get("role") not in roles:
            logger.warning("User %s with role %s denied access", current_user["id"], current_user.get("role"))
            raise HTTPException(status_code=403, detail="Access denied")
        return current_user

    return guard


require_admin = require_roles("admin")


def is_admin(user: Dict[str, Any]) -> bool:
    return user.get("role") == "admin"
