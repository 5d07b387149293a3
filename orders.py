"""
Order lifecycle: creation with stock reservation, payment, delivery,
status changes and cancellation.

Creating an order reserves stock item by item, in the order supplied. If any
reservation (or the final insert) fails, every reservation already made by
that call is released again before the error propagates, so a failed
checkout never holds stock.

Status moves forward only:

    pending -> confirmed -> processing -> shipped -> delivered -> refunded

`cancelled` is reachable from any status before `delivered`, and only through
`cancel_order`, which puts the stock back. A delivered order is not
cancelled; it goes to `refunded` instead, and the returned item does not
come back into stock. `is_paid` and `is_delivered` are tracked separately
from `status`; seller and product sales stats are applied exactly once per
order, when it is first marked paid.

Payment stats and cancellation releases record each finished item on the
order (`stats_applied_items`, `released_items`) before the order-wide marker
(`stats_applied`, `stock_released`) is set, so a call that fails halfway is
completed by the next call without repeating what already happened.
"""

from functools import partial
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from catalog import Catalog, primary_image
from database import create_document, get_documents, to_object_id, utcnow
from errors import (
    EmptyOrderError,
    ForbiddenError,
    InvalidStatusTransitionError,
    MarketplaceError,
    NotFoundError,
)
from inventory import InventoryManager
from pricing import calculate_totals
from schemas import Order, OrderCreate, OrderItem, OrderStatusUpdate, PaymentResult, Requester

logger = structlog.get_logger(__name__)

STATUS_FLOW = ["pending", "confirmed", "processing", "shipped", "delivered", "refunded"]
CANCELLABLE = ("pending", "confirmed", "processing", "shipped")
TERMINAL = ("cancelled", "refunded")


def can_transition(current: str, target: str) -> bool:
    if target == "cancelled":
        return current in CANCELLABLE
    if current in TERMINAL:
        return False
    if target == "refunded":
        return current == "delivered"
    return STATUS_FLOW.index(target) > STATUS_FLOW.index(current)


class OrderManager:
    def __init__(self, db, inventory: Optional[InventoryManager] = None, catalog: Optional[Catalog] = None):
        self.db = db
        self.orders = db["order"]
        self.inventory = inventory or InventoryManager(db)
        self.catalog = catalog or Catalog(db)

    # ----- Lookup -----

    def _get(self, order_id: str) -> Dict[str, Any]:
        order = self.orders.find_one({"_id": to_object_id(order_id, "Order")})
        if not order:
            raise NotFoundError("Order", order_id)
        return order

    @staticmethod
    def _check_access(order: Dict[str, Any], requester: Requester, action: str) -> None:
        if order["user_id"] != requester.user_id and not requester.is_admin:
            raise ForbiddenError(f"Not allowed to {action} this order")

    def populate(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """Attach buyer and product summaries for display without touching the stored order."""
        doc = dict(order)
        doc["user"] = self.catalog.user_summary(order["user_id"])
        doc["items"] = [
            dict(item, product=self.catalog.product_summary(item["product_id"]))
            for item in order["items"]
        ]
        return doc

    def get_order(self, order_id: str, requester: Requester) -> Dict[str, Any]:
        order = self._get(order_id)
        self._check_access(order, requester, "view")
        return self.populate(order)

    def list_user_orders(self, user_id: str) -> List[Dict[str, Any]]:
        return get_documents(self.db, "order", {"user_id": user_id}, sort=[("created_at", DESCENDING)])

    def list_orders(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        filter_q = {"status": status} if status else {}
        return get_documents(self.db, "order", filter_q, sort=[("created_at", DESCENDING)])

    def list_seller_orders(self, seller_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """Orders containing this seller's items, with other sellers' items left out."""
        filter_q: Dict[str, Any] = {"items.seller_id": seller_id}
        if status:
            filter_q["status"] = status
        result = []
        for order in self.orders.find(filter_q).sort("created_at", DESCENDING):
            order["items"] = [i for i in order["items"] if i["seller_id"] == seller_id]
            result.append(order)
        return result

    def get_sales_stats(self, seller_id: str) -> Dict[str, Any]:
        orders = self.list_seller_orders(seller_id, status="delivered")
        total_sales = 0
        total_revenue = 0.0
        for order in orders:
            for item in order["items"]:
                total_sales += item["quantity"]
                total_revenue += item["price"] * item["quantity"]
        order_count = len(orders)
        average = sum(o["total_price"] for o in orders) / order_count if order_count else 0
        return {
            "total_sales": total_sales,
            "total_revenue": total_revenue,
            "average_order_value": round(average, 2),
            "order_count": order_count,
        }

    # ----- Creation -----

    def _release_all(self, reserved: List[Tuple[str, int]]) -> None:
        for product_id, quantity in reversed(reserved):
            try:
                self.inventory.release_stock(product_id, quantity)
            except (MarketplaceError, PyMongoError):
                logger.exception("rollback_release_failed", product_id=product_id, quantity=quantity)

    def create_order(self, user_id: str, payload: OrderCreate) -> Dict[str, Any]:
        if not payload.items:
            raise EmptyOrderError()

        reserved: List[Tuple[str, int]] = []
        items: List[OrderItem] = []
        try:
            for line in payload.items:
                product = self.inventory.reserve_stock(line.product, line.quantity)
                reserved.append((line.product, line.quantity))
                items.append(OrderItem(
                    product_id=str(product["_id"]),
                    seller_id=product["seller_id"],
                    name=product["name"],
                    image=primary_image(product),
                    price=product["price"],
                    quantity=line.quantity,
                    size=product["size"],
                    condition=product["condition"],
                ))

            order = Order(
                user_id=user_id,
                items=items,
                shipping_address=payload.shipping_address,
                payment_method=payload.payment_method,
                notes=payload.notes,
                **calculate_totals(items),
            )
            order_id = create_document(self.db, "order", order)
        except Exception as exc:
            if reserved:
                logger.warning(
                    "order_rolled_back",
                    user_id=user_id,
                    reserved_items=len(reserved),
                    error=str(exc),
                )
                self._release_all(reserved)
            raise

        logger.info("order_created", order_id=order_id, user_id=user_id,
                    items=len(items), total_price=order.total_price)
        return self.populate(self._get(order_id))

    # ----- Transitions -----

    def _run_once(self, order_oid, field: str, key: Any, step) -> None:
        """Run `step` unless `key` is already recorded in the order's `field` list.

        The key is claimed before the step runs and given back if the step
        fails, so a retry picks up exactly the steps that did not happen.
        """
        claimed = self.orders.update_one(
            {"_id": order_oid, field: {"$ne": key}},
            {"$addToSet": {field: key}},
        )
        if not claimed.modified_count:
            return
        try:
            step()
        except Exception:
            self.orders.update_one({"_id": order_oid}, {"$pull": {field: key}})
            raise

    def _record_sale(self, item: Dict[str, Any], order_id: str) -> None:
        try:
            self.inventory.update_stock_after_sale(item["product_id"], item["quantity"])
        except NotFoundError:
            logger.warning("sale_for_missing_product", order_id=order_id, product_id=item["product_id"])

    def _release_item(self, item: Dict[str, Any], order_id: str) -> None:
        try:
            self.inventory.release_stock(item["product_id"], item["quantity"])
        except NotFoundError:
            logger.warning("release_for_missing_product", order_id=order_id, product_id=item["product_id"])

    def _apply_sale_stats(self, order: Dict[str, Any]) -> Dict[str, Any]:
        if order.get("stats_applied"):
            return order
        order_id = str(order["_id"])
        for index, item in enumerate(order["items"]):
            self._run_once(order["_id"], "stats_applied_items", f"seller-{index}", partial(
                self.catalog.increment_seller_stats,
                item["seller_id"],
                products_sold=item["quantity"],
                total_earnings=item["price"] * item["quantity"],
            ))
            self._run_once(order["_id"], "stats_applied_items", f"sales-{index}",
                           partial(self._record_sale, item, order_id))
        return self.orders.find_one_and_update(
            {"_id": order["_id"]},
            {"$set": {"stats_applied": True}},
            return_document=ReturnDocument.AFTER,
        )

    def _release_order_stock(self, order: Dict[str, Any]) -> Dict[str, Any]:
        if order.get("stock_released"):
            return order
        order_id = str(order["_id"])
        for index, item in enumerate(order["items"]):
            self._run_once(order["_id"], "released_items", index,
                           partial(self._release_item, item, order_id))
        return self.orders.find_one_and_update(
            {"_id": order["_id"]},
            {"$set": {"stock_released": True}},
            return_document=ReturnDocument.AFTER,
        )

    def mark_paid(self, order_id: str, payment_result: PaymentResult) -> Dict[str, Any]:
        order = self._get(order_id)
        if order.get("is_paid"):
            logger.info("payment_already_applied", order_id=order_id)
            return self._apply_sale_stats(order)
        if order["status"] in TERMINAL:
            raise InvalidStatusTransitionError(order["status"], "paid")

        now = utcnow()
        updated = self.orders.find_one_and_update(
            {"_id": order["_id"], "is_paid": {"$ne": True}, "status": {"$nin": list(TERMINAL)}},
            {"$set": {
                "is_paid": True,
                "paid_at": now,
                "payment_result": payment_result.model_dump(),
                "updated_at": now,
            }},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            current = self._get(order_id)
            if not current.get("is_paid"):
                raise InvalidStatusTransitionError(current["status"], "paid")
            logger.info("payment_already_applied", order_id=order_id)
            return self._apply_sale_stats(current)

        updated = self._apply_sale_stats(updated)
        logger.info("order_paid", order_id=order_id, payment_id=payment_result.id,
                    total_price=updated["total_price"])
        return updated

    def mark_delivered(self, order_id: str) -> Dict[str, Any]:
        order = self._get(order_id)
        if order.get("is_delivered"):
            return order
        if order["status"] in TERMINAL:
            raise InvalidStatusTransitionError(order["status"], "delivered")

        now = utcnow()
        updated = self.orders.find_one_and_update(
            {"_id": order["_id"], "status": {"$nin": list(TERMINAL)}},
            {"$set": {"is_delivered": True, "delivered_at": now, "status": "delivered", "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            current = self._get(order_id)
            raise InvalidStatusTransitionError(current["status"], "delivered")
        logger.info("order_delivered", order_id=order_id)
        return updated

    def cancel_order(self, order_id: str, requester: Requester) -> Dict[str, Any]:
        order = self._get(order_id)
        self._check_access(order, requester, "cancel")
        if order["status"] == "cancelled":
            return self._release_order_stock(order)
        if order["status"] not in CANCELLABLE:
            raise InvalidStatusTransitionError(order["status"], "cancelled")

        now = utcnow()
        updated = self.orders.find_one_and_update(
            {"_id": order["_id"], "status": {"$in": list(CANCELLABLE)}},
            {"$set": {"status": "cancelled", "cancelled_at": now, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            current = self._get(order_id)
            if current["status"] == "cancelled":
                return self._release_order_stock(current)
            raise InvalidStatusTransitionError(current["status"], "cancelled")

        logger.info("order_cancelled", order_id=order_id, cancelled_by=requester.user_id)
        return self._release_order_stock(updated)

    def update_status(self, order_id: str, update: OrderStatusUpdate, requester: Requester) -> Dict[str, Any]:
        if update.status == "cancelled":
            order = self.cancel_order(order_id, requester)
        elif update.status == "delivered":
            order = self.mark_delivered(order_id)
        else:
            order = self._get(order_id)
            current = order["status"]
            if current != update.status:
                if not can_transition(current, update.status):
                    raise InvalidStatusTransitionError(current, update.status)
                order = self.orders.find_one_and_update(
                    {"_id": order["_id"], "status": current},
                    {"$set": {"status": update.status, "updated_at": utcnow()}},
                    return_document=ReturnDocument.AFTER,
                )
                if order is None:
                    raise InvalidStatusTransitionError(self._get(order_id)["status"], update.status)
                logger.info("order_status_changed", order_id=order_id, previous=current, status=update.status)

        tracking = update.model_dump(include={"tracking_number", "carrier"}, exclude_none=True)
        if tracking:
            order = self.orders.find_one_and_update(
                {"_id": order["_id"]},
                {"$set": dict(tracking, updated_at=utcnow())},
                return_document=ReturnDocument.AFTER,
            )
        return order
