import logging
from datetime import datetime
from typing import Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Depends, Request, Query
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from bson import ObjectId

import coupons
from auth import get_admin_user, get_cart_identity, get_user_identity
from cart_service import CartService
from cart_store import MongoCartStore
from catalog import MongoCatalog
from config import CORS_ORIGINS, LOG_LEVEL
from database import db
from errors import CartError, InvalidRequest
from identity import Identity, UserIdentity
from schemas import (
    ApplyCouponIn, CartItemIn, CartItemUpdate, CouponCreate, CouponUpdate, MergeCartIn,
)

logging.basicConfig(level=getattr(logging, LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger("cart.api")

# App setup
app = FastAPI(title="E-commerce Cart API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CartError)
async def cart_error_handler(request: Request, exc: CartError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    if not request.url.path.startswith("/cart"):
        return await request_validation_exception_handler(request, exc)
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error["loc"] if part != "body")
    message = f"{field}: {error['msg']}" if field else error["msg"]
    return await cart_error_handler(request, InvalidRequest(message))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


# Collaborators
def get_database():
    if db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return db


def get_catalog(database=Depends(get_database)) -> MongoCatalog:
    return MongoCatalog(database["product"])


def get_coupon_directory(database=Depends(get_database)) -> coupons.MongoCouponDirectory:
    return coupons.MongoCouponDirectory(database["coupon"])


def get_cart_service(
    database=Depends(get_database),
    catalog: MongoCatalog = Depends(get_catalog),
    directory: coupons.MongoCouponDirectory = Depends(get_coupon_directory),
) -> CartService:
    return CartService(MongoCartStore(database["cart"]), catalog, directory)


def parse_object_id(value: str, label: str) -> str:
    if not ObjectId.is_valid(value):
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID")
    return value


# Health and helpers
@app.get("/")
def root():
    return {"message": "E-commerce Cart API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# Cart
@app.get("/cart")
def get_cart(identity: Identity = Depends(get_cart_identity), service: CartService = Depends(get_cart_service)):
    return service.get_or_create_cart(identity).to_dict()


@app.post("/cart/add")
def cart_add(item: CartItemIn, identity: Identity = Depends(get_cart_identity),
             service: CartService = Depends(get_cart_service)):
    return service.add_to_cart(identity, item.product_id, item.quantity).to_dict()


@app.put("/cart/item/{item_id}")
def cart_update_item(item_id: str, body: CartItemUpdate, identity: Identity = Depends(get_cart_identity),
                     service: CartService = Depends(get_cart_service)):
    return service.update_item(identity, item_id, body.quantity).to_dict()


@app.delete("/cart/item/{item_id}")
def cart_remove_item(item_id: str, identity: Identity = Depends(get_cart_identity),
                     service: CartService = Depends(get_cart_service)):
    return service.remove_item(identity, item_id).to_dict()


@app.post("/cart/clear")
def cart_clear(identity: Identity = Depends(get_cart_identity), service: CartService = Depends(get_cart_service)):
    return service.clear(identity).to_dict()


@app.post("/cart/merge")
def cart_merge(body: MergeCartIn, user: UserIdentity = Depends(get_user_identity),
               service: CartService = Depends(get_cart_service)):
    return service.merge_guest_into_user(user, body.guest_session_id).to_dict()


@app.post("/cart/apply-coupon")
def cart_apply_coupon(body: ApplyCouponIn, identity: Identity = Depends(get_cart_identity),
                      service: CartService = Depends(get_cart_service)):
    return service.apply_coupon(identity, body.code).to_dict()


@app.post("/cart/remove-coupon")
def cart_remove_coupon(identity: Identity = Depends(get_cart_identity),
                       service: CartService = Depends(get_cart_service)):
    return service.remove_coupon(identity).to_dict()


# Admin: coupons
def check_products(product_ids, catalog: MongoCatalog):
    if len(set(product_ids)) != len(product_ids) or catalog.count_active(product_ids) != len(product_ids):
        raise HTTPException(status_code=400, detail="One or more selected products are invalid or inactive")


@app.post("/admin/coupons", status_code=201)
def create_coupon(payload: CouponCreate, admin: dict = Depends(get_admin_user),
                  directory: coupons.MongoCouponDirectory = Depends(get_coupon_directory),
                  catalog: MongoCatalog = Depends(get_catalog)):
    check_products(payload.applicable_products, catalog)
    if directory.code_taken(payload.code):
        raise HTTPException(status_code=400, detail="Coupon code already exists")
    coupon = directory.create(dict(payload.model_dump(), created_by=admin["sub"]))
    return {"success": True, "message": "Coupon created successfully",
            "coupon": coupons.enrich(coupon, datetime.utcnow())}


@app.get("/admin/coupons/stats")
def coupon_stats(admin: dict = Depends(get_admin_user),
                 directory: coupons.MongoCouponDirectory = Depends(get_coupon_directory)):
    return {"success": True, "stats": directory.stats(datetime.utcnow())}


@app.get("/admin/coupons")
def list_coupons(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), search: Optional[str] = None,
                 is_active: Optional[bool] = Query(None, alias="isActive"),
                 sort_by: str = Query("createdAt", alias="sortBy"),
                 sort_order: str = Query("desc", alias="sortOrder"),
                 admin: dict = Depends(get_admin_user),
                 directory: coupons.MongoCouponDirectory = Depends(get_coupon_directory)):
    filt = coupons.build_list_filter(search, is_active)
    items, total = directory.list(filt, sort_by, sort_order, page, limit)
    now = datetime.utcnow()
    return {
        "success": True,
        "coupons": [coupons.enrich(c, now) for c in items],
        "pagination": coupons.pagination(page, limit, total),
    }


@app.get("/admin/coupons/{coupon_id}")
def get_coupon(coupon_id: str, admin: dict = Depends(get_admin_user),
               directory: coupons.MongoCouponDirectory = Depends(get_coupon_directory)):
    coupon = directory.get(parse_object_id(coupon_id, "coupon"))
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return {"success": True, "coupon": coupons.enrich(coupon, datetime.utcnow())}


@app.put("/admin/coupons/{coupon_id}")
def update_coupon(coupon_id: str, payload: CouponUpdate, admin: dict = Depends(get_admin_user),
                  directory: coupons.MongoCouponDirectory = Depends(get_coupon_directory),
                  catalog: MongoCatalog = Depends(get_catalog)):
    coupon = directory.get(parse_object_id(coupon_id, "coupon"))
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")

    changes: Dict[str, Any] = payload.model_dump(exclude_unset=True)
    if "max_usage" in changes:
        changes["max_usage"] = changes["max_usage"] or None
    changes = {k: v for k, v in changes.items() if v is not None or k == "max_usage"}

    start = changes.get("start_date", coupon.start_date)
    end = changes.get("end_date", coupon.end_date)
    if start >= end:
        raise HTTPException(status_code=400, detail="End date must be after start date")
    if "applicable_products" in changes:
        check_products(changes["applicable_products"], catalog)
    if "code" in changes and changes["code"] != coupon.code and directory.code_taken(changes["code"], coupon_id):
        raise HTTPException(status_code=400, detail="Coupon code already exists")

    updated = directory.update(coupon_id, changes)
    return {"success": True, "message": "Coupon updated successfully",
            "coupon": coupons.enrich(updated, datetime.utcnow())}


@app.delete("/admin/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, admin: dict = Depends(get_admin_user),
                  directory: coupons.MongoCouponDirectory = Depends(get_coupon_directory)):
    if not directory.delete(parse_object_id(coupon_id, "coupon")):
        raise HTTPException(status_code=404, detail="Coupon not found")
    return {"success": True, "message": "Coupon deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    from config import PORT
    uvicorn.run(app, host="0.0.0.0", port=PORT)
