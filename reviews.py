"""
Product reviews and the rating aggregate kept on each product.

A review needs proof of purchase: a delivered order of the reviewer that
contains the product. Each user reviews a product at most once. Only
approved reviews count towards `stats.average_rating` and
`stats.review_count`, which are recomputed after every change.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

import settings
from database import create_document, to_object_id, utcnow
from errors import (
    DuplicateReviewError,
    ForbiddenError,
    NotFoundError,
    PurchaseRequiredError,
)
from schemas import Requester, Review, ReviewCreate, ReviewUpdate

logger = structlog.get_logger(__name__)


def round_rating(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class ReviewManager:
    def __init__(self, db):
        self.db = db
        self.reviews = db["review"]
        self.products = db["product"]
        self.orders = db["order"]

    def _get(self, review_id: str) -> Dict[str, Any]:
        review = self.reviews.find_one({"_id": to_object_id(review_id, "Review")})
        if not review:
            raise NotFoundError("Review", review_id)
        return review

    def _has_purchased(self, user_id: str, product_id: str, order_id: str) -> bool:
        try:
            oid = to_object_id(order_id, "Order")
        except NotFoundError:
            return False
        return self.orders.find_one({
            "_id": oid,
            "user_id": user_id,
            "items.product_id": product_id,
            "is_delivered": True,
            "status": {"$nin": ["cancelled", "refunded"]},
        }) is not None

    def create_review(self, user_id: str, payload: ReviewCreate) -> Dict[str, Any]:
        product = self.products.find_one({"_id": to_object_id(payload.product, "Product")})
        if not product:
            raise NotFoundError("Product", payload.product)
        product_id = str(product["_id"])

        if not self._has_purchased(user_id, product_id, payload.order):
            raise PurchaseRequiredError(product_id)
        if self.reviews.find_one({"product_id": product_id, "user_id": user_id}):
            raise DuplicateReviewError(product_id, user_id)

        data = payload.model_dump(exclude={"product", "order"})
        review = Review(
            product_id=product_id,
            user_id=user_id,
            order_id=payload.order,
            verified_purchase=True,
            status="approved" if settings.REVIEW_AUTO_APPROVE else "pending",
            **data,
        )
        try:
            review_id = create_document(self.db, "review", review)
        except DuplicateKeyError:
            raise DuplicateReviewError(product_id, user_id)

        logger.info("review_created", review_id=review_id, product_id=product_id,
                    user_id=user_id, rating=review.rating, status=review.status)
        self.recompute_product_rating(product_id)
        return self._get(review_id)

    def recompute_product_rating(self, product_id: str) -> Dict[str, Any]:
        ratings = [
            r["rating"]
            for r in self.reviews.find({"product_id": product_id, "status": "approved"}, {"rating": 1})
        ]
        average = round_rating(sum(ratings) / len(ratings)) if ratings else 0
        self.products.update_one(
            {"_id": to_object_id(product_id, "Product")},
            {"$set": {"stats.average_rating": average, "stats.review_count": len(ratings)}},
        )
        logger.info("product_rating_recomputed", product_id=product_id,
                    average_rating=average, review_count=len(ratings))
        return {"average_rating": average, "review_count": len(ratings)}

    def moderate_review(self, review_id: str, status: str) -> Dict[str, Any]:
        review = self.reviews.find_one_and_update(
            {"_id": to_object_id(review_id, "Review")},
            {"$set": {"status": status, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if review is None:
            raise NotFoundError("Review", review_id)
        self.recompute_product_rating(review["product_id"])
        return review

    def update_review(self, review_id: str, requester: Requester, payload: ReviewUpdate) -> Dict[str, Any]:
        review = self._get(review_id)
        if review["user_id"] != requester.user_id:
            raise ForbiddenError("Only the author can edit this review")
        updates = payload.model_dump(exclude_none=True)
        if not updates:
            return review
        updates["updated_at"] = utcnow()
        review = self.reviews.find_one_and_update(
            {"_id": review["_id"]},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        self.recompute_product_rating(review["product_id"])
        return review

    def delete_review(self, review_id: str, requester: Requester) -> None:
        review = self._get(review_id)
        if review["user_id"] != requester.user_id and not requester.is_admin:
            raise ForbiddenError("Not allowed to delete this review")
        self.reviews.delete_one({"_id": review["_id"]})
        logger.info("review_deleted", review_id=review_id, deleted_by=requester.user_id)
        self.recompute_product_rating(review["product_id"])

    def mark_helpful(self, review_id: str, user_id: str) -> Dict[str, Any]:
        review = self.reviews.find_one_and_update(
            {"_id": to_object_id(review_id, "Review")},
            {"$addToSet": {"helpful": user_id}},
            return_document=ReturnDocument.AFTER,
        )
        if review is None:
            raise NotFoundError("Review", review_id)
        return review

    def list_product_reviews(
        self,
        product_id: str,
        rating: Optional[int] = None,
        page: int = 1,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        filter_q: Dict[str, Any] = {"product_id": product_id, "status": "approved"}
        if rating:
            filter_q["rating"] = rating
        page = max(page, 1)
        limit = min(max(limit, 1), settings.MAX_PAGE_LIMIT)
        cursor = (
            self.reviews.find(filter_q)
            .sort("created_at", DESCENDING)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return list(cursor)

    def get_rating_stats(self, product_id: str) -> Dict[str, Any]:
        pipeline = [
            {"$match": {"product_id": product_id, "status": "approved"}},
            {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
        ]
        distribution = {str(g["_id"]): g["count"] for g in self.reviews.aggregate(pipeline)}
        total = sum(distribution.values())
        if not total:
            return {"total": 0, "average": 0, "distribution": {}}
        weighted = sum(int(rating) * count for rating, count in distribution.items())
        return {
            "total": total,
            "average": round_rating(weighted / total),
            "distribution": dict(sorted(distribution.items())),
        }
