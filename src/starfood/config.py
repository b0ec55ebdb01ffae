# runtime configuration, read once from the environment at import time
import os
from decimal import Decimal


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise RuntimeError(f"Environment variable {key} must be a valid integer")


DEBUG = bool(os.getenv("DEBUG"))

# Database
DB_PATH = os.getenv("STARFOOD_DB_PATH", "data/starfood.sqlite")
DB_TIMEOUT = _env_int("STARFOOD_DB_TIMEOUT", 5)

# JWT
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "dev-refresh-secret-change-me")
JWT_ALG = "HS256"
JWT_ACCESS_EXPIRES_MINUTES = _env_int("JWT_ACCESS_EXPIRES_MINUTES", 60)
JWT_REFRESH_EXPIRES_MINUTES = _env_int("JWT_REFRESH_EXPIRES_MINUTES", 60 * 24 * 7)

# Orders
DELIVERY_COST = Decimal(os.getenv("DELIVERY_COST", "25000"))
ORDER_NUMBER_ATTEMPTS = 5

# HTTP
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3000")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = _env_int("PORT", 8000)
