import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

import comments
import orders
import products
import users
from config import Settings
from database import connect, ensure_indexes, get_db, serialize
from schemas import CheckoutIn, OrderIn, OrderOut
from security import build_pwd_context, get_current_user

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


# ------------- Error handlers -------------

def _validation_message(error: dict) -> str:
    msg = error.get("msg", "Invalid value")
    if error.get("type") == "value_error":
        return msg.removeprefix("Value error, ")
    loc = [str(p) for p in error.get("loc", ()) if p not in ("body", "query", "path")]
    return f"{'.'.join(loc)}: {msg}" if loc else msg


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [_validation_message(e) for e in exc.errors()]
    return JSONResponse(status_code=400, content={"error": messages[0] if messages else "Validation failed", "details": messages})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ------------- App -------------

def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    if database is None:
        database = connect(settings)
    ensure_indexes(database)

    app = FastAPI(title="Storefront API")
    app.state.settings = settings
    app.state.db = database
    app.state.pwd_context = build_pwd_context(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(users.router)
    app.include_router(products.router)
    app.include_router(orders.router)
    app.include_router(comments.router)

    @app.get("/")
    def read_root():
        return {"message": "Storefront API running"}

    @app.get("/health")
    def health(db: Database = Depends(get_db)):
        try:
            db.command("ping")
        except Exception:
            logger.exception("Database ping failed")
            raise HTTPException(status_code=503, detail="Database not available")
        return {"backend": "running", "database": "connected"}

    # Checkout hands the caller's cart to the regular order creation path
    @app.post("/checkout", response_model=OrderOut, status_code=201)
    def checkout(payload: CheckoutIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
        order_request = OrderIn(user_id=current_user["id"], items=payload.items)
        return OrderOut(**serialize(orders.create_order(db, current_user, order_request)))

    return app


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    port = int(os.getenv("PORT", 5000))
    uvicorn.run(create_app(settings), host="0.0.0.0", port=port)
