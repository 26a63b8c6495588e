import logging
from typing import Any, Dict, List

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Response
from passlib.context import CryptContext
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import create_document, get_db, oid, serialize, utcnow
from schemas import (
    AccessToken,
    LoginIn,
    Message,
    RefreshIn,
    RegisterIn,
    TokenPair,
    User as UserSchema,
    UserCreateIn,
    UserOut,
    UserUpdateIn,
)
from security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    get_current_user,
    get_pwd_context,
    get_settings,
    hash_password,
    is_admin,
    require_admin,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

# Never leave the server
PRIVATE_FIELDS = {"password_hash": 0, "refresh_token": 0}


def public_user(doc: Dict[str, Any]) -> UserOut:
    return UserOut(**serialize(doc))


def create_user(db: Database, pwd_context: CryptContext, payload: RegisterIn, role: str = "user") -> Dict[str, Any]:
    if db["user"].find_one({"email": payload.email}):
        raise HTTPException(status_code=409, detail="A user with this email already exists")
    user = UserSchema(
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        password_hash=hash_password(pwd_context, payload.password),
        role=role,
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        # lost a race against a concurrent registration
        raise HTTPException(status_code=409, detail="A user with this email already exists")
    logger.info("Created user %s with role %s", user_id, role)
    return db["user"].find_one({"_id": oid(user_id)})


@router.post("/register", response_model=UserOut, status_code=201)
def register(payload: RegisterIn, db: Database = Depends(get_db), pwd_context: CryptContext = Depends(get_pwd_context)):
    return public_user(create_user(db, pwd_context, payload))


@router.post("/create", response_model=UserOut, status_code=201, dependencies=[Depends(require_admin)])
def create_user_as_admin(payload: UserCreateIn, db: Database = Depends(get_db), pwd_context: CryptContext = Depends(get_pwd_context)):
    return public_user(create_user(db, pwd_context, payload, role=payload.role))


@router.post("/login", response_model=TokenPair)
def login(
    payload: LoginIn,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    pwd_context: CryptContext = Depends(get_pwd_context),
):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(pwd_context, payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    user = serialize(user)
    access_token = create_access_token(user, settings)
    refresh_token = create_refresh_token(user, settings)
    # one active refresh token per user; a new login revokes the previous one
    db["user"].update_one({"_id": oid(user["id"])}, {"$set": {"refresh_token": refresh_token, "updated_at": utcnow()}})
    logger.info("User %s logged in", user["id"])
    return TokenPair(access_token=access_token, refresh_token=refresh_token)


@router.post("/refresh", response_model=AccessToken)
def refresh(payload: RefreshIn, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    claims = decode_refresh_token(payload.token, settings)
    user = None
    if ObjectId.is_valid(claims["sub"]):
        user = db["user"].find_one({"_id": ObjectId(claims["sub"])})
    if not user or user.get("refresh_token") != payload.token:
        logger.warning("Rejected refresh token for user %s", claims["sub"])
        raise HTTPException(status_code=403, detail="Refresh token is not valid")
    return AccessToken(access_token=create_access_token(serialize(user), settings))


@router.post("/logout", status_code=204)
def logout(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    db["user"].update_one({"_id": oid(current_user["id"])}, {"$set": {"refresh_token": None, "updated_at": utcnow()}})
    logger.info("User %s logged out", current_user["id"])
    return Response(status_code=204)


@router.get("/me", response_model=UserOut)
def me(current_user: dict = Depends(get_current_user)):
    return UserOut(**current_user)


@router.get("", response_model=List[UserOut], dependencies=[Depends(require_admin)])
def list_users(db: Database = Depends(get_db)):
    return [public_user(u) for u in db["user"].find({}, PRIVATE_FIELDS).sort("created_at", 1)]


@router.put("/update/{user_id}", response_model=UserOut)
def update_user(
    user_id: str,
    payload: UserUpdateIn,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    pwd_context: CryptContext = Depends(get_pwd_context),
):
    if current_user["id"] != user_id and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Access denied")
    if payload.role is not None and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Only admins can change roles")

    user_oid = oid(user_id)
    if not db["user"].find_one({"_id": user_oid}):
        raise HTTPException(status_code=404, detail=f"No user with id: {user_id} found")

    update = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not update:
        raise HTTPException(status_code=400, detail="No fields provided to update")

    if "email" in update and db["user"].find_one({"email": update["email"], "_id": {"$ne": user_oid}}):
        raise HTTPException(status_code=409, detail="Email is already taken by another user")
    if "password" in update:
        update["password_hash"] = hash_password(pwd_context, update.pop("password"))
    update["updated_at"] = utcnow()

    try:
        user = db["user"].find_one_and_update({"_id": user_oid}, {"$set": update}, return_document=ReturnDocument.AFTER)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Email is already taken by another user")
    if not user:
        raise HTTPException(status_code=404, detail=f"No user with id: {user_id} found")
    return public_user(user)


@router.delete("/delete/{user_id}", response_model=Message, dependencies=[Depends(require_admin)])
def delete_user(user_id: str, db: Database = Depends(get_db)):
    res = db["user"].delete_one({"_id": oid(user_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail=f"User of id {user_id} not found")
    logger.info("Deleted user %s", user_id)
    return Message(message=f"Deleted user of id {user_id}")
