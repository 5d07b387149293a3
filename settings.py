"""
Runtime configuration for the Common Place Store backend.

Every value can be overridden through an environment variable of the same name.
Money values are Colombian pesos (whole units).
"""

import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Pricing (Colombia)
TAX_RATE = float(os.getenv("TAX_RATE", 0.19))
FREE_SHIPPING_MIN = float(os.getenv("FREE_SHIPPING_MIN", 100000))
STANDARD_SHIPPING_COST = float(os.getenv("STANDARD_SHIPPING_COST", 10000))

# Inventory
LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", 5))

# Reviews
REVIEW_AUTO_APPROVE = _env_bool("REVIEW_AUTO_APPROVE")

# Pagination
DEFAULT_PAGE_LIMIT = 12
MAX_PAGE_LIMIT = 100

DEFAULT_PRODUCT_IMAGE = "/img/placeholder.jpg"
