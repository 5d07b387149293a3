"""
Inventory manager: stock checks, reservations and releases.

Reservation is one conditional update on the product document
(`stock >= quantity`, `$inc stock -quantity`), so concurrent orders for the
same product can never drive stock below zero.
"""

from typing import Any, Dict, Iterable, List, Optional

import structlog
from pymongo import ReturnDocument

import settings
from database import to_object_id, utcnow
from errors import InsufficientStockError, NotFoundError, ValidationError
from schemas import StockUpdate

logger = structlog.get_logger(__name__)

ALERT_FIELDS = {"name": 1, "stock": 1, "price": 1, "images": 1}


def _check_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")


class InventoryManager:
    def __init__(self, db):
        self.products = db["product"]

    def _find(self, product_id: str) -> Dict[str, Any]:
        product = self.products.find_one({"_id": to_object_id(product_id, "Product")})
        if not product:
            raise NotFoundError("Product", product_id)
        return product

    def check_availability(self, product_id: str, quantity: int) -> Dict[str, Any]:
        """Return the product and its stock if `quantity` units can be bought right now.

        This is a read-only snapshot; `reserve_stock` re-checks atomically.
        """
        _check_quantity(quantity)
        product = self._find(product_id)
        if not product.get("active"):
            raise NotFoundError("Product", product_id)
        stock = product.get("stock", 0)
        if stock < quantity:
            raise InsufficientStockError(product_id, quantity, stock, product.get("name"))
        return {"product": product, "available_stock": stock}

    def reserve_stock(self, product_id: str, quantity: int) -> Dict[str, Any]:
        _check_quantity(quantity)
        oid = to_object_id(product_id, "Product")
        product = self.products.find_one_and_update(
            {"_id": oid, "active": True, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if product is None:
            current = self.products.find_one({"_id": oid})
            if not current or not current.get("active"):
                raise NotFoundError("Product", product_id)
            raise InsufficientStockError(product_id, quantity, current.get("stock", 0), current.get("name"))

        logger.info(
            "stock_reserved",
            product_id=product_id,
            quantity=quantity,
            remaining_stock=product["stock"],
        )
        return product

    def release_stock(self, product_id: str, quantity: int) -> Dict[str, Any]:
        _check_quantity(quantity)
        product = self.products.find_one_and_update(
            {"_id": to_object_id(product_id, "Product")},
            {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if product is None:
            raise NotFoundError("Product", product_id)
        logger.info(
            "stock_released",
            product_id=product_id,
            quantity=quantity,
            current_stock=product["stock"],
        )
        return product

    def update_stock_after_sale(self, product_id: str, quantity: int) -> Dict[str, Any]:
        # stock was already decremented when the order reserved it
        _check_quantity(quantity)
        product = self.products.find_one_and_update(
            {"_id": to_object_id(product_id, "Product")},
            {"$inc": {"stats.sales": quantity}},
            return_document=ReturnDocument.AFTER,
        )
        if product is None:
            raise NotFoundError("Product", product_id)
        logger.info("sales_recorded", product_id=product_id, quantity=quantity,
                    sales=product["stats"]["sales"])
        return product

    def get_low_stock_alerts(self, seller_id: str, threshold: int = settings.LOW_STOCK_THRESHOLD) -> Dict[str, Any]:
        low_stock = list(self.products.find(
            {"seller_id": seller_id, "active": True, "stock": {"$gt": 0, "$lte": threshold}},
            ALERT_FIELDS,
        ))
        out_of_stock = list(self.products.find(
            {"seller_id": seller_id, "active": True, "stock": 0},
            ALERT_FIELDS,
        ))
        return {
            "low_stock": {"count": len(low_stock), "products": low_stock},
            "out_of_stock": {"count": len(out_of_stock), "products": out_of_stock},
            "total_alerts": len(low_stock) + len(out_of_stock),
        }

    def get_inventory_stats(self, seller_id: str, threshold: int = settings.LOW_STOCK_THRESHOLD) -> Dict[str, Any]:
        match = {"$match": {"seller_id": seller_id, "active": True}}
        overview = next(iter(self.products.aggregate([
            match,
            {"$group": {
                "_id": None,
                "total_products": {"$sum": 1},
                "total_stock": {"$sum": "$stock"},
                "total_value": {"$sum": {"$multiply": ["$price", "$stock"]}},
                "average_price": {"$avg": "$price"},
                "low_stock_count": {"$sum": {"$cond": [{"$lte": ["$stock", threshold]}, 1, 0]}},
                "out_of_stock_count": {"$sum": {"$cond": [{"$eq": ["$stock", 0]}, 1, 0]}},
            }},
        ])), None)
        if overview is None:
            overview = {
                "total_products": 0,
                "total_stock": 0,
                "total_value": 0,
                "average_price": 0,
                "low_stock_count": 0,
                "out_of_stock_count": 0,
            }
        else:
            overview.pop("_id", None)

        by_category = [
            {"category": c["_id"], "count": c["count"], "total_stock": c["total_stock"],
             "total_value": c["total_value"]}
            for c in self.products.aggregate([
                match,
                {"$group": {
                    "_id": "$category",
                    "count": {"$sum": 1},
                    "total_stock": {"$sum": "$stock"},
                    "total_value": {"$sum": {"$multiply": ["$price", "$stock"]}},
                }},
                {"$sort": {"count": -1}},
            ])
        ]
        return {"overview": overview, "by_category": by_category}

    def bulk_update_stock(self, updates: Iterable[StockUpdate], seller_id: Optional[str] = None) -> Dict[str, Any]:
        """Set absolute stock levels for restocks and corrections.

        Each update stands alone: a bad id or negative level fails that entry
        only. When `seller_id` is given, products of other sellers count as
        not found.
        """
        results: List[Dict[str, Any]] = []
        for update in updates:
            if update.new_stock < 0:
                results.append({"product_id": update.product_id, "success": False,
                                "error": "Stock cannot be negative"})
                continue
            try:
                oid = to_object_id(update.product_id, "Product")
            except NotFoundError as exc:
                results.append({"product_id": update.product_id, "success": False, "error": str(exc)})
                continue
            filter_q: Dict[str, Any] = {"_id": oid}
            if seller_id is not None:
                filter_q["seller_id"] = seller_id
            previous = self.products.find_one_and_update(
                filter_q,
                {"$set": {"stock": update.new_stock, "updated_at": utcnow()}},
                return_document=ReturnDocument.BEFORE,
            )
            if previous is None:
                results.append({"product_id": update.product_id, "success": False,
                                "error": f"Product not found: {update.product_id}"})
                continue
            results.append({
                "product_id": update.product_id,
                "success": True,
                "product_name": previous.get("name"),
                "previous_stock": previous.get("stock", 0),
                "new_stock": update.new_stock,
            })
            logger.info("stock_set", product_id=update.product_id,
                        previous_stock=previous.get("stock", 0), new_stock=update.new_stock)

        successful = sum(1 for r in results if r["success"])
        return {
            "summary": {"total": len(results), "successful": successful, "failed": len(results) - successful},
            "details": results,
        }
