"""Create the admin account and load the starter catalogue.

The admin comes from ADMIN_EMAIL / ADMIN_PASSWORD. Products are fetched from
PRODUCTS_SOURCE_URL (a fakestoreapi style listing) into an empty catalogue,
each with DEFAULT_PRODUCTS_AVAILABLE units in stock.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from pymongo.database import Database

from config import ConfigError, Settings
from database import connect, create_document, ensure_indexes
from main import configure_logging
from schemas import Product, UserCreateIn
from security import build_pwd_context
from users import create_user

logger = logging.getLogger(__name__)


def seed_admin(db: Database, settings: Settings) -> Optional[str]:
    if not settings.admin_email or not settings.admin_password:
        raise ConfigError("ADMIN_EMAIL and ADMIN_PASSWORD must be set to seed the admin user")

    payload = UserCreateIn(
        email=settings.admin_email,
        password=settings.admin_password,
        first_name="Admin",
        last_name="Admin",
        role="admin",
    )
    if db["user"].find_one({"email": payload.email}):
        logger.info("Admin user %s already exists", payload.email)
        return None

    user = create_user(db, build_pwd_context(settings), payload, role="admin")
    return str(user["_id"])


def to_product(item: Dict[str, Any], available: int) -> Product:
    return Product(
        name=item["title"],
        description=item["description"],
        price=item["price"],
        available=available,
        category=item.get("category"),
        image_path=item.get("image"),
    )


def seed_products(db: Database, settings: Settings, client: Optional[httpx.Client] = None) -> int:
    """Fill an empty catalogue from the remote listing; returns how many were added."""
    if db["product"].find_one({}, {"_id": 1}):
        logger.info("Product catalogue already populated, skipping import")
        return 0

    http = client or httpx.Client(timeout=10.0)
    try:
        resp = http.get(settings.products_source_url)
        resp.raise_for_status()
        items = resp.json()
    finally:
        if client is None:
            http.close()

    products = [to_product(item, settings.default_products_available) for item in items]
    for product in products:
        create_document(db, "product", product)
    logger.info("%d products seeded from %s", len(products), settings.products_source_url)
    return len(products)


if __name__ == "__main__":
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    db = connect(settings)
    ensure_indexes(db)
    seed_admin(db, settings)
    seed_products(db, settings)
