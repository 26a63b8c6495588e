import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_db, oid, serialize, utcnow
from schemas import Message, Product as ProductSchema, ProductIn, ProductOut, ProductUpdateIn
from security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])


def matches(product: dict, query: Optional[str], category: Optional[str]) -> bool:
    if category and product.get("category") != category:
        return False
    if query:
        needle = query.lower()
        name = (product.get("name") or "").lower()
        description = (product.get("description") or "").lower()
        if needle not in name and needle not in description:
            return False
    return True


@router.get("", response_model=List[ProductOut])
def list_products(query: Optional[str] = None, category: Optional[str] = None, db: Database = Depends(get_db)):
    # The catalogue is small; filtering happens after a full fetch
    docs = db["product"].find().sort("created_at", 1)
    return [ProductOut(**serialize(d)) for d in docs if matches(d, query, category)]


@router.get("/categories", response_model=List[str])
def list_categories(db: Database = Depends(get_db)):
    return sorted(c for c in db["product"].distinct("category") if c)


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Database = Depends(get_db)):
    doc = db["product"].find_one({"_id": oid(product_id)})
    if not doc:
        raise HTTPException(status_code=404, detail=f"Product of id {product_id} not found")
    return ProductOut(**serialize(doc))


@router.post("/create", response_model=ProductOut, status_code=201, dependencies=[Depends(require_admin)])
def create_product(payload: ProductIn, db: Database = Depends(get_db)):
    data = payload.model_dump()
    data["price"] = float(data["price"])
    product = ProductSchema(**data)
    product_id = create_document(db, "product", product)
    logger.info("Created product %s", product_id)
    return ProductOut(**serialize(db["product"].find_one({"_id": oid(product_id)})))


@router.put("/update/{product_id}", response_model=ProductOut, dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductUpdateIn, db: Database = Depends(get_db)):
    update = payload.model_dump(exclude_unset=True)
    for field in ("name", "description", "price", "available"):
        if field in update and update[field] is None:
            raise HTTPException(status_code=400, detail=f"{field} can not be null")
    if not update:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "price" in update:
        update["price"] = float(update["price"])
    update["updated_at"] = utcnow()
    doc = db["product"].find_one_and_update({"_id": oid(product_id)}, {"$set": update}, return_document=ReturnDocument.AFTER)
    if not doc:
        raise HTTPException(status_code=404, detail=f"Product of id {product_id} not found")
    logger.info("Updated product %s", product_id)
    return ProductOut(**serialize(doc))


@router.delete("/delete/{product_id}", response_model=Message, dependencies=[Depends(require_admin)])
def delete_product(product_id: str, db: Database = Depends(get_db)):
    res = db["product"].delete_one({"_id": oid(product_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail=f"Product of id {product_id} not found")
    logger.info("Deleted product %s", product_id)
    return Message(message=f"Deleted product of id {product_id} successfully")
