from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import settings
from catalog import Catalog, discount_percentage, is_purchasable
from database import ensure_indexes, get_db, serialize_doc
from errors import (
    DuplicateReviewError,
    EmptyOrderError,
    ForbiddenError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    MarketplaceError,
    NotFoundError,
    PurchaseRequiredError,
    ValidationError,
)
from inventory import InventoryManager
from logging_config import configure_logging
from orders import OrderManager
from reviews import ReviewManager
from schemas import (
    OrderCreate,
    OrderStatus,
    OrderStatusUpdate,
    PaymentResult,
    ProductCreate,
    ProductUpdate,
    Requester,
    ReviewCreate,
    ReviewModeration,
    ReviewUpdate,
    StockUpdate,
    User,
)

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = get_db()
    if db is not None:
        ensure_indexes(db)
        logger.info("indexes_ensured", database=db.name)
    yield


app = FastAPI(title="Common Place Store API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----- Error handling -----

ERROR_STATUS_CODES: dict = {
    NotFoundError: 404,
    InsufficientStockError: 400,
    EmptyOrderError: 400,
    ValidationError: 400,
    InvalidStatusTransitionError: 400,
    DuplicateReviewError: 400,
    PurchaseRequiredError: 400,
    ForbiddenError: 403,
}


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    content = {"success": False, "error": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, InsufficientStockError):
        content.update(product_id=exc.product_id, requested=exc.requested, available=exc.available)
    if status_code >= 500:
        logger.error("unhandled_marketplace_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"success": False, "error": "Validation error", "details": exc.errors()}),
    )


# ----- Dependencies -----

def require_db(db=Depends(get_db)):
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def get_requester(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Requester:
    """Identity forwarded by the authentication gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    role = x_user_role if x_user_role in ("user", "seller", "admin") else "user"
    return Requester(user_id=x_user_id, role=role)


def require_admin(requester: Requester = Depends(get_requester)) -> Requester:
    if not requester.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return requester


def require_seller(requester: Requester = Depends(get_requester)) -> Requester:
    if requester.role not in ("seller", "admin"):
        raise HTTPException(status_code=403, detail="Seller role required")
    return requester


def product_out(doc):
    doc = serialize_doc(doc)
    doc["discount_percentage"] = discount_percentage(doc)
    doc["available"] = is_purchasable(doc)
    return doc


@app.get("/")
def read_root():
    return {"message": "Common Place Store API is running"}


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/test")
def test_database(db=Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if settings.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if db is None:
        return response

    response["database"] = "✅ Available"
    response["connection_status"] = "Connected"
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# ----- Users -----

@app.post("/api/users", status_code=201)
def create_user(payload: User, db=Depends(require_db)):
    return serialize_doc(Catalog(db).create_user(payload))


@app.get("/api/users/{user_id}")
def get_user(user_id: str, db=Depends(require_db)):
    return serialize_doc(Catalog(db).get_user(user_id))


# ----- Products -----

@app.post("/api/products", status_code=201)
def create_product(payload: ProductCreate, requester: Requester = Depends(require_seller), db=Depends(require_db)):
    return product_out(Catalog(db).create_product(requester.user_id, payload))


@app.get("/api/products")
def list_products(
    q: Optional[str] = Query(None, description="Search across name/description/brand"),
    category: Optional[str] = None,
    size: Optional[str] = None,
    condition: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    seller: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    db=Depends(require_db),
):
    result = Catalog(db).list_products(
        q=q, category=category, size=size, condition=condition, brand=brand,
        min_price=min_price, max_price=max_price, seller_id=seller, page=page, limit=per_page,
    )
    result["items"] = [product_out(d) for d in result["items"]]
    return result


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(require_db)):
    return product_out(Catalog(db).get_product(product_id))


@app.patch("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate,
                   requester: Requester = Depends(get_requester), db=Depends(require_db)):
    return product_out(Catalog(db).update_product(product_id, payload, requester))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, requester: Requester = Depends(get_requester), db=Depends(require_db)):
    product = Catalog(db).deactivate_product(product_id, requester)
    return {"deleted": True, "product": product_out(product)}


# ----- Inventory -----

@app.get("/api/inventory/alerts")
def low_stock_alerts(
    threshold: int = Query(settings.LOW_STOCK_THRESHOLD, ge=0),
    requester: Requester = Depends(require_seller),
    db=Depends(require_db),
):
    alerts = InventoryManager(db).get_low_stock_alerts(requester.user_id, threshold)
    for key in ("low_stock", "out_of_stock"):
        alerts[key]["products"] = [serialize_doc(p) for p in alerts[key]["products"]]
    return alerts


@app.get("/api/inventory/stats")
def inventory_stats(requester: Requester = Depends(require_seller), db=Depends(require_db)):
    return InventoryManager(db).get_inventory_stats(requester.user_id)


@app.put("/api/inventory/stock")
def bulk_update_stock(updates: List[StockUpdate], requester: Requester = Depends(require_seller),
                      db=Depends(require_db)):
    seller_id = None if requester.is_admin else requester.user_id
    return InventoryManager(db).bulk_update_stock(updates, seller_id=seller_id)


# ----- Orders -----

@app.post("/api/orders", status_code=201)
def create_order(payload: OrderCreate, requester: Requester = Depends(get_requester), db=Depends(require_db)):
    return serialize_doc(OrderManager(db).create_order(requester.user_id, payload))


@app.get("/api/orders")
def list_orders(status: Optional[OrderStatus] = None, _: Requester = Depends(require_admin),
                db=Depends(require_db)):
    orders = [serialize_doc(o) for o in OrderManager(db).list_orders(status)]
    return {"count": len(orders), "items": orders}


@app.get("/api/orders/mine")
def my_orders(requester: Requester = Depends(get_requester), db=Depends(require_db)):
    orders = [serialize_doc(o) for o in OrderManager(db).list_user_orders(requester.user_id)]
    return {"count": len(orders), "items": orders}


@app.get("/api/orders/seller")
def seller_orders(status: Optional[OrderStatus] = None, requester: Requester = Depends(require_seller),
                  db=Depends(require_db)):
    orders = [serialize_doc(o) for o in OrderManager(db).list_seller_orders(requester.user_id, status)]
    return {"count": len(orders), "items": orders}


@app.get("/api/orders/seller/stats")
def seller_sales_stats(requester: Requester = Depends(require_seller), db=Depends(require_db)):
    return OrderManager(db).get_sales_stats(requester.user_id)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, requester: Requester = Depends(get_requester), db=Depends(require_db)):
    return serialize_doc(OrderManager(db).get_order(order_id, requester))


@app.put("/api/orders/{order_id}/pay")
def pay_order(order_id: str, payload: PaymentResult, requester: Requester = Depends(get_requester),
              db=Depends(require_db)):
    manager = OrderManager(db)
    manager.get_order(order_id, requester)
    return serialize_doc(manager.mark_paid(order_id, payload))


@app.put("/api/orders/{order_id}/deliver")
def deliver_order(order_id: str, _: Requester = Depends(require_admin), db=Depends(require_db)):
    return serialize_doc(OrderManager(db).mark_delivered(order_id))


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, requester: Requester = Depends(get_requester), db=Depends(require_db)):
    return serialize_doc(OrderManager(db).cancel_order(order_id, requester))


@app.patch("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, requester: Requester = Depends(require_admin),
                        db=Depends(require_db)):
    return serialize_doc(OrderManager(db).update_status(order_id, payload, requester))


# ----- Reviews -----

@app.post("/api/reviews", status_code=201)
def create_review(payload: ReviewCreate, requester: Requester = Depends(get_requester), db=Depends(require_db)):
    return serialize_doc(ReviewManager(db).create_review(requester.user_id, payload))


@app.get("/api/reviews/product/{product_id}")
def product_reviews(
    product_id: str,
    rating: Optional[int] = Query(None, ge=1, le=5),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=settings.MAX_PAGE_LIMIT),
    db=Depends(require_db),
):
    reviews = ReviewManager(db).list_product_reviews(product_id, rating, page, limit)
    return {"count": len(reviews), "items": [serialize_doc(r) for r in reviews]}


@app.get("/api/reviews/product/{product_id}/stats")
def product_review_stats(product_id: str, db=Depends(require_db)):
    return ReviewManager(db).get_rating_stats(product_id)


@app.put("/api/reviews/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, requester: Requester = Depends(get_requester),
                  db=Depends(require_db)):
    return serialize_doc(ReviewManager(db).update_review(review_id, requester, payload))


@app.delete("/api/reviews/{review_id}")
def delete_review(review_id: str, requester: Requester = Depends(get_requester), db=Depends(require_db)):
    ReviewManager(db).delete_review(review_id, requester)
    return {"deleted": True}


@app.post("/api/reviews/{review_id}/helpful")
def mark_review_helpful(review_id: str, requester: Requester = Depends(get_requester), db=Depends(require_db)):
    review = ReviewManager(db).mark_helpful(review_id, requester.user_id)
    return {"success": True, "helpful_count": len(review.get("helpful", []))}


@app.patch("/api/reviews/{review_id}/moderate")
def moderate_review(review_id: str, payload: ReviewModeration, _: Requester = Depends(require_admin),
                    db=Depends(require_db)):
    return serialize_doc(ReviewManager(db).moderate_review(review_id, payload.status))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
