"""
Orders

Creating an order validates every line item against the live product
documents, prices the batch server side and reserves stock before the
order document is written. Nothing is persisted unless the whole batch is
valid.

Stock reservation uses one conditional update per product
(``available >= qty`` in the filter, ``$inc`` by ``-qty``), so two requests
racing for the last units can not both succeed. Decrements already applied
are given back if a later product in the same batch runs short or the
order insert fails.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Tuple

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_db, oid, serialize, utcnow
from schemas import (
    Order as OrderSchema,
    OrderIn,
    OrderItem,
    OrderItemIn,
    OrderOut,
    StatusUpdate,
)
from security import get_current_user, is_admin, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

TWO_PLACES = Decimal("0.01")

# Goods have not left the warehouse yet; cancelling puts them back on the shelf
RESTOCKABLE = ("pending", "processing")


def to_money(value: Any) -> Decimal:
    # str() first so 9.99 stays 9.99 rather than its binary expansion
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


# ------------- Stock -------------

def fetch_products(db: Database, product_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """One lookup for the whole batch, indexed by string id."""
    ids = [ObjectId(pid) for pid in set(product_ids) if ObjectId.is_valid(pid)]
    if not ids:
        return {}
    return {str(d["_id"]): d for d in db["product"].find({"_id": {"$in": ids}})}


def insufficient_stock(product: Dict[str, Any], requested: int) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=(
            f"Insufficient stock for product {product.get('name')} ({product['_id']}): "
            f"available {product.get('available', 0)}, requested {requested}"
        ),
    )


def release_stock(db: Database, quantities: Dict[str, int]) -> None:
    for product_id, qty in quantities.items():
        db["product"].update_one({"_id": ObjectId(product_id)}, {"$inc": {"available": qty}})
    if quantities:
        logger.info("Released stock %s", quantities)


def reserve_stock(db: Database, quantities: Dict[str, int]) -> None:
    """Atomically take ``quantities`` out of stock, all or nothing."""
    reserved: Dict[str, int] = {}
    for product_id, qty in quantities.items():
        res = db["product"].update_one(
            {"_id": ObjectId(product_id), "available": {"$gte": qty}},
            {"$inc": {"available": -qty}},
        )
        if res.modified_count == 0:
            release_stock(db, reserved)
            product = db["product"].find_one({"_id": ObjectId(product_id)})
            if not product:
                raise HTTPException(status_code=404, detail=f"Product of id {product_id} not found")
            raise insufficient_stock(product, qty)
        reserved[product_id] = qty


def order_quantities(order: Dict[str, Any]) -> Dict[str, int]:
    quantities: Dict[str, int] = {}
    for item in order.get("items", []):
        quantities[item["product_id"]] = quantities.get(item["product_id"], 0) + int(item["quantity"])
    return quantities


# ------------- Pricing -------------

def price_items(items: List[OrderItemIn], products: Dict[str, Dict[str, Any]]) -> Tuple[List[OrderItem], Decimal, Dict[str, int]]:
    """Walk items in order, checking existence and stock while summing.

    Returns the priced line items, the total and the per-product quantity
    the batch needs. Repeated product ids are checked against their
    combined quantity.
    """
    total = Decimal("0")
    requested: Dict[str, int] = {}
    lines: List[OrderItem] = []
    for item in items:
        product = products.get(item.product_id)
        if not product:
            raise HTTPException(status_code=404, detail=f"Product of id {item.product_id} not found")

        wanted = requested.get(item.product_id, 0) + item.quantity
        if wanted > int(product.get("available", 0)):
            raise insufficient_stock(product, wanted)
        requested[item.product_id] = wanted

        unit_price = to_money(product["price"])
        total += unit_price * item.quantity
        lines.append(OrderItem(
            product_id=item.product_id,
            name=product["name"],
            unit_price=float(unit_price),
            quantity=item.quantity,
        ))
    return lines, total.quantize(TWO_PLACES, rounding=ROUND_HALF_UP), requested


# ------------- Operations -------------

def create_order(db: Database, current_user: Dict[str, Any], payload: OrderIn) -> Dict[str, Any]:
    # Same answer whether or not the target exists, so user ids can't be enumerated
    if not is_admin(current_user) and current_user["id"] != payload.user_id:
        logger.warning("User %s tried to order on behalf of %s", current_user["id"], payload.user_id)
        raise HTTPException(status_code=403, detail="Access denied")

    if not ObjectId.is_valid(payload.user_id) or not db["user"].find_one({"_id": ObjectId(payload.user_id)}):
        raise HTTPException(status_code=404, detail=f"User of id {payload.user_id} not found")

    products = fetch_products(db, (i.product_id for i in payload.items))
    lines, total, requested = price_items(payload.items, products)

    reserve_stock(db, requested)
    order = OrderSchema(user_id=payload.user_id, items=lines, total_price=float(total), status="pending")
    try:
        order_id = create_document(db, "order", order)
    except Exception:
        release_stock(db, requested)
        raise

    logger.info("Created order %s for user %s, total %s", order_id, payload.user_id, total)
    return db["order"].find_one({"_id": ObjectId(order_id)})


def change_status(db: Database, order_id: str, status: str) -> Dict[str, Any]:
    """Admin status change.

    Any lifecycle status other than the current one is accepted. Cancelling
    a pending or processing order puts its items back in stock; a shipped or
    delivered order keeps its stock counted out, since the goods are gone.
    Leaving ``cancelled`` takes released items out of stock again and fails
    if they are no longer available.
    """
    order_oid = oid(order_id)
    order = db["order"].find_one({"_id": order_oid})
    if not order:
        raise HTTPException(status_code=404, detail=f"Order of id {order_id} not found")

    previous = order["status"]
    if previous == status:
        raise HTTPException(status_code=400, detail="The status provided is already set")

    quantities = order_quantities(order)
    reserved = order.get("stock_reserved", True)
    take = not reserved and status != "cancelled"
    give_back = reserved and status == "cancelled" and previous in RESTOCKABLE

    if take:
        reserve_stock(db, quantities)

    changes = {"status": status, "updated_at": utcnow()}
    if take or give_back:
        changes["stock_reserved"] = take
    updated = db["order"].find_one_and_update(
        {"_id": order_oid, "status": previous},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        if take:
            release_stock(db, quantities)
        raise HTTPException(status_code=409, detail="Order status was changed by another request")

    if give_back:
        release_stock(db, quantities)
    logger.info("Order %s status changed from %s to %s", order_id, previous, status)
    return updated


def cancel_order(db: Database, current_user: Dict[str, Any], order_id: str) -> Dict[str, Any]:
    order_oid = oid(order_id)
    order = db["order"].find_one({"_id": order_oid})
    if not order:
        raise HTTPException(status_code=404, detail=f"Order of id {order_id} not found")
    if order["user_id"] != current_user["id"] and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Access denied")
    if order["status"] != "pending":
        raise HTTPException(status_code=400, detail="Only pending orders can be cancelled")

    updated = db["order"].find_one_and_update(
        {"_id": order_oid, "status": "pending"},
        {"$set": {"status": "cancelled", "stock_reserved": False, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise HTTPException(status_code=409, detail="Order status was changed by another request")

    if order.get("stock_reserved", True):
        release_stock(db, order_quantities(order))
    logger.info("Order %s cancelled by user %s", order_id, current_user["id"])
    return updated


# ------------- Routes -------------

@router.get("", response_model=List[OrderOut], dependencies=[Depends(require_admin)])
def list_orders(db: Database = Depends(get_db)):
    return [OrderOut(**serialize(d)) for d in db["order"].find().sort("created_at", -1)]


@router.get("/user_orders/{user_id}", response_model=List[OrderOut])
def list_user_orders(user_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    if ObjectId.is_valid(user_id):
        user_id = str(ObjectId(user_id))
    if current_user["id"] != user_id and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Access denied")
    if not db["user"].find_one({"_id": oid(user_id)}):
        raise HTTPException(status_code=404, detail=f"User of id {user_id} not found")
    docs = db["order"].find({"user_id": user_id}).sort("created_at", -1)
    return [OrderOut(**serialize(d)) for d in docs]


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    doc = db["order"].find_one({"_id": oid(order_id)})
    if not doc:
        raise HTTPException(status_code=404, detail=f"Order of id {order_id} not found")
    if doc["user_id"] != current_user["id"] and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Access denied")
    return OrderOut(**serialize(doc))


@router.post("/create", response_model=OrderOut, status_code=201)
def create_order_route(payload: OrderIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return OrderOut(**serialize(create_order(db, current_user, payload)))


@router.patch("/change_status/{order_id}", response_model=OrderOut, dependencies=[Depends(require_admin)])
def change_status_route(order_id: str, payload: StatusUpdate, db: Database = Depends(get_db)):
    return OrderOut(**serialize(change_status(db, order_id, payload.status)))


@router.patch("/cancel/{order_id}", response_model=OrderOut)
def cancel_order_route(order_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return OrderOut(**serialize(cancel_order(db, current_user, order_id)))
