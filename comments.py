import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from pymongo.database import Database

from database import create_document, get_db, oid, serialize
from schemas import Comment as CommentSchema, CommentIn, CommentOut, Message
from security import get_current_user, is_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/comments", tags=["comments"])


def with_author(db: Database, comment: Dict[str, Any]) -> CommentOut:
    """Shape a comment, filling in the author name when no snapshot was stored.

    The stored names are what the author was called when they wrote the
    comment. Only comments written without a snapshot look up the current
    name.
    """
    d = serialize(comment)
    if not d.get("author_first_name") or not d.get("author_last_name"):
        user = db["user"].find_one({"_id": oid(d["user_id"])}, {"first_name": 1, "last_name": 1})
        d["author_first_name"] = (user or {}).get("first_name") or "Unknown"
        d["author_last_name"] = (user or {}).get("last_name") or "User"
    return CommentOut(**d)


@router.get("/{product_id}", response_model=List[CommentOut])
def list_comments(product_id: str, db: Database = Depends(get_db)):
    product_oid = oid(product_id)
    if not db["product"].find_one({"_id": product_oid}):
        raise HTTPException(status_code=404, detail=f"Product of id {product_id} not found")
    docs = db["comment"].find({"product_id": str(product_oid)}).sort("created_at", 1)
    return [with_author(db, d) for d in docs]


@router.post("/{product_id}", response_model=CommentOut, status_code=201)
def create_comment(product_id: str, payload: CommentIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    product_oid = oid(product_id)
    if not db["product"].find_one({"_id": product_oid}):
        raise HTTPException(status_code=404, detail=f"Product of id {product_id} not found")

    # Name comes from the stored user, never from the request or token
    author = db["user"].find_one({"_id": oid(current_user["id"])}, {"first_name": 1, "last_name": 1})
    if not author:
        raise HTTPException(status_code=404, detail="User not found")

    comment = CommentSchema(
        body=payload.body,
        user_id=current_user["id"],
        product_id=str(product_oid),
        author_first_name=author["first_name"],
        author_last_name=author["last_name"],
    )
    comment_id = create_document(db, "comment", comment)
    logger.info("User %s commented on product %s", current_user["id"], product_id)
    return with_author(db, db["comment"].find_one({"_id": oid(comment_id)}))


@router.delete("/{comment_id}", response_model=Message)
def delete_comment(comment_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    comment_oid = oid(comment_id)
    comment = db["comment"].find_one({"_id": comment_oid})
    if not comment:
        raise HTTPException(status_code=404, detail=f"Comment of id {comment_id} not found")
    if comment["user_id"] != current_user["id"] and not is_admin(current_user):
        raise HTTPException(
            status_code=403,
            detail="Access denied, you can not delete a comment of other user unless you have admin role",
        )
    res = db["comment"].delete_one({"_id": comment_oid})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail=f"Comment of id {comment_id} not found")
    logger.info("Comment %s deleted by user %s", comment_id, current_user["id"])
    return Message(message=f"Deleted comment of id {comment_id} successfully")
