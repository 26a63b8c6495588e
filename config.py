import os
from typing import List, Optional

from pydantic import BaseModel, Field


class ConfigError(RuntimeError):
    pass


class Settings(BaseModel):
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "storefront"
    jwt_secret: str = Field(..., min_length=8)
    jwt_refresh_secret: str = Field(..., min_length=8)
    jwt_algorithm: str = "HS256"
    access_token_ttl: int = Field(900, gt=0, description="Seconds")
    refresh_token_ttl: int = Field(86400, gt=0, description="Seconds")
    bcrypt_rounds: int = Field(12, ge=4, le=31)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    products_source_url: str = "https://fakestoreapi.com/products"
    default_products_available: int = Field(10, ge=0)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment.

        Token secrets have no default: a server started without them
        refuses to run instead of signing with a guessable key.
        """
        jwt_secret = os.getenv("JWT_SECRET")
        refresh_secret = os.getenv("JWT_REFRESH_SECRET")
        if not jwt_secret or not refresh_secret:
            raise ConfigError("JWT_SECRET and JWT_REFRESH_SECRET must be set")
        if jwt_secret == refresh_secret:
            raise ConfigError("JWT_SECRET and JWT_REFRESH_SECRET must differ")

        values = {
            "jwt_secret": jwt_secret,
            "jwt_refresh_secret": refresh_secret,
            "admin_email": os.getenv("ADMIN_EMAIL"),
            "admin_password": os.getenv("ADMIN_PASSWORD"),
        }
        optional = {
            "database_url": "DATABASE_URL",
            "database_name": "DATABASE_NAME",
            "access_token_ttl": "ACCESS_TOKEN_DURATION_SEC",
            "refresh_token_ttl": "REFRESH_TOKEN_DURATION_SEC",
            "bcrypt_rounds": "BCRYPT_ROUNDS",
            "log_level": "LOG_LEVEL",
            "products_source_url": "PRODUCTS_SOURCE_URL",
            "default_products_available": "DEFAULT_PRODUCTS_AVAILABLE",
        }
        for field_name, env_name in optional.items():
            value = os.getenv(env_name)
            if value:
                values[field_name] = value

        origins = os.getenv("CORS_ORIGINS")
        if origins:
            values["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]

        try:
            return cls(**values)
        except ValueError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
