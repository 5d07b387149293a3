"""
Catalog store: product listings and the seller accounts that own them.

Stock is never written here after a product is created; the inventory
manager owns every later stock change.
"""

import re
from typing import Any, Dict, Optional

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

import settings
from database import create_document, to_object_id, utcnow
from errors import ForbiddenError, NotFoundError, ValidationError
from schemas import Product, ProductCreate, ProductUpdate, User

logger = structlog.get_logger(__name__)

SKU_ATTEMPTS = 5


def discount_percentage(product: Dict[str, Any]) -> int:
    original = product.get("original_price")
    price = product.get("price", 0)
    if not original or original <= price:
        return 0
    return round((original - price) / original * 100)


def primary_image(product: Dict[str, Any]) -> str:
    images = product.get("images") or []
    for image in images:
        if image.get("is_primary"):
            return image["url"]
    if images:
        return images[0]["url"]
    return settings.DEFAULT_PRODUCT_IMAGE


def is_purchasable(product: Dict[str, Any]) -> bool:
    return bool(product.get("active")) and product.get("stock", 0) > 0


class Catalog:
    def __init__(self, db):
        self.db = db
        self.products = db["product"]
        self.users = db["user"]

    # ----- Users -----

    def create_user(self, user: User) -> Dict[str, Any]:
        if self.users.find_one({"$or": [{"email": user.email}, {"username": user.username}]}):
            raise ValidationError("Email or username already registered")
        user_id = create_document(self.db, "user", user)
        return self.users.find_one({"_id": to_object_id(user_id)})

    def get_user(self, user_id: str) -> Dict[str, Any]:
        doc = self.users.find_one({"_id": to_object_id(user_id, "User")})
        if not doc:
            raise NotFoundError("User", user_id)
        return doc

    def increment_seller_stats(self, seller_id: str, products_sold: int = 0, total_earnings: float = 0,
                               products_listed: int = 0) -> None:
        try:
            oid = to_object_id(seller_id, "User")
        except NotFoundError:
            logger.warning("seller_stats_skipped", seller_id=seller_id)
            return
        self.users.update_one(
            {"_id": oid},
            {"$inc": {
                "stats.products_sold": products_sold,
                "stats.total_earnings": total_earnings,
                "stats.products_listed": products_listed,
            }},
        )

    # ----- Products -----

    def _next_sku(self) -> str:
        last = self.products.find_one(
            {"sku": {"$regex": r"^CP\d{6}$"}}, {"sku": 1}, sort=[("sku", DESCENDING)]
        )
        number = int(last["sku"][2:]) if last else 0
        return f"CP{number + 1:06d}"

    def create_product(self, seller_id: str, payload: ProductCreate) -> Dict[str, Any]:
        data = payload.model_dump()
        chosen_sku = data.get("sku")
        for _ in range(SKU_ATTEMPTS):
            if not chosen_sku:
                data["sku"] = self._next_sku()
            product = Product(seller_id=seller_id, **data)
            try:
                product_id = create_document(self.db, "product", product)
                break
            except DuplicateKeyError:
                if chosen_sku:
                    raise ValidationError(f"SKU {chosen_sku} is already in use")
                logger.warning("sku_taken", sku=product.sku)
        else:
            raise ValidationError("Could not allocate a SKU, try again")
        self.increment_seller_stats(seller_id, products_listed=1)
        logger.info("product_created", product_id=product_id, seller_id=seller_id, sku=product.sku)
        return self.get_product(product_id)

    def get_product(self, product_id: str) -> Dict[str, Any]:
        doc = self.products.find_one({"_id": to_object_id(product_id, "Product")})
        if not doc:
            raise NotFoundError("Product", product_id)
        return doc

    def list_products(
        self,
        q: Optional[str] = None,
        category: Optional[str] = None,
        size: Optional[str] = None,
        condition: Optional[str] = None,
        brand: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        seller_id: Optional[str] = None,
        page: int = 1,
        limit: int = settings.DEFAULT_PAGE_LIMIT,
    ) -> Dict[str, Any]:
        filter_q: Dict[str, Any] = {"active": True}
        if q:
            pattern = re.escape(q)
            filter_q["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
                {"brand": {"$regex": pattern, "$options": "i"}},
            ]
        if category:
            filter_q["category"] = category
        if size:
            filter_q["size"] = size
        if condition:
            filter_q["condition"] = condition
        if brand:
            filter_q["brand"] = {"$regex": f"^{re.escape(brand)}$", "$options": "i"}
        if seller_id:
            filter_q["seller_id"] = seller_id
        if min_price is not None or max_price is not None:
            price_q: Dict[str, Any] = {}
            if min_price is not None:
                price_q["$gte"] = min_price
            if max_price is not None:
                price_q["$lte"] = max_price
            filter_q["price"] = price_q

        page = max(page, 1)
        limit = min(max(limit, 1), settings.MAX_PAGE_LIMIT)
        total = self.products.count_documents(filter_q)
        cursor = (
            self.products.find(filter_q)
            .sort("created_at", -1)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return {"total": total, "page": page, "per_page": limit, "items": list(cursor)}

    def _check_owner(self, product: Dict[str, Any], requester) -> None:
        if product.get("seller_id") != requester.user_id and not requester.is_admin:
            raise ForbiddenError("Not allowed to modify this product")

    def update_product(self, product_id: str, payload: ProductUpdate, requester) -> Dict[str, Any]:
        product = self.get_product(product_id)
        self._check_owner(product, requester)
        updates = payload.model_dump(exclude_none=True)
        if not updates:
            return product
        updates["updated_at"] = utcnow()
        return self.products.find_one_and_update(
            {"_id": product["_id"]},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )

    def deactivate_product(self, product_id: str, requester) -> Dict[str, Any]:
        product = self.get_product(product_id)
        self._check_owner(product, requester)
        logger.info("product_deactivated", product_id=product_id)
        return self.products.find_one_and_update(
            {"_id": product["_id"]},
            {"$set": {"active": False, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def product_summary(self, product_id: str) -> Optional[Dict[str, Any]]:
        try:
            oid = to_object_id(product_id, "Product")
        except NotFoundError:
            return None
        doc = self.products.find_one(
            {"_id": oid}, {"name": 1, "images": 1, "brand": 1, "seller_id": 1}
        )
        return doc

    def user_summary(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            oid = to_object_id(user_id, "User")
        except NotFoundError:
            return None
        return self.users.find_one({"_id": oid}, {"username": 1, "email": 1})
