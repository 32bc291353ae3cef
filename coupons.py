"""
Coupon directory: validity rules, discount calculation and the Mongo-backed repository.

The rule functions are pure so the cart service can evaluate them against an injected
clock. Discounts are percentage-only and rounded half-up to whole currency units.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from database import create_document
from schemas import CartItem, Coupon

logger = logging.getLogger("cart.coupons")

SORTABLE_FIELDS = {
    "createdAt": "created_at",
    "code": "code",
    "discountValue": "discount_value",
    "startDate": "start_date",
    "endDate": "end_date",
    "usageCount": "usage_count",
}


@dataclass
class DiscountCalculation:
    discount_amount: float = 0
    applicable_subtotal: float = 0
    applicable_items: List[CartItem] = field(default_factory=list)


def is_date_valid(coupon: Coupon, now: datetime) -> bool:
    return coupon.start_date <= now <= coupon.end_date


def is_valid(coupon: Coupon, now: datetime) -> bool:
    """Active, inside its validity window and not usage-exhausted."""
    usage_ok = coupon.max_usage is None or coupon.usage_count < coupon.max_usage
    return coupon.is_active and is_date_valid(coupon, now) and usage_ok


def is_applicable_to_products(coupon: Coupon, product_ids: Iterable[str]) -> bool:
    """True when at least one of product_ids is covered by the coupon."""
    applicable = {str(pid) for pid in coupon.applicable_products}
    return any(str(pid) in applicable for pid in product_ids)


def round_currency(amount: float) -> int:
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_discount(coupon: Coupon, items: Iterable[CartItem], now: datetime) -> DiscountCalculation:
    if not is_valid(coupon, now):
        return DiscountCalculation()

    applicable = {str(pid) for pid in coupon.applicable_products}
    result = DiscountCalculation()
    for item in items:
        if item.product_id in applicable:
            result.applicable_subtotal += item.line_total
            result.applicable_items.append(item)

    if result.applicable_subtotal == 0:
        return result

    if coupon.discount_type == "percentage":
        result.discount_amount = round_currency(result.applicable_subtotal * coupon.discount_value / 100)
    return result


def enrich(coupon: Coupon, now: datetime) -> Dict[str, Any]:
    """Admin view of a coupon with its computed validity flags."""
    data = coupon.model_dump(by_alias=True, mode="json")
    data["isDateValid"] = is_date_valid(coupon, now)
    data["isFullyValid"] = is_valid(coupon, now)
    data["applicableProductCount"] = len(coupon.applicable_products)
    return data


def build_list_filter(search: Optional[str] = None, is_active: Optional[bool] = None) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    if search:
        filt["code"] = {"$regex": re.escape(search), "$options": "i"}
    if is_active is not None:
        filt["is_active"] = is_active
    return filt


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    skip = (page - 1) * limit
    return {
        "currentPage": page,
        "totalPages": math.ceil(total / limit) if limit else 0,
        "totalCoupons": total,
        "hasNext": skip + limit < total,
        "hasPrev": page > 1,
    }


def coupon_from_document(doc: Dict[str, Any]) -> Coupon:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    doc["applicable_products"] = [str(pid) for pid in doc.get("applicable_products", [])]
    return Coupon.model_validate(doc)


class MongoCouponDirectory:
    """Coupon repository over the "coupon" collection, keyed by uppercase code."""

    def __init__(self, collection):
        self.collection = collection

    def find_by_code(self, code: str) -> Optional[Coupon]:
        doc = self.collection.find_one({"code": code.strip().upper()})
        return coupon_from_document(doc) if doc else None

    def get(self, coupon_id: str) -> Optional[Coupon]:
        doc = self.collection.find_one({"_id": ObjectId(coupon_id)})
        return coupon_from_document(doc) if doc else None

    def code_taken(self, code: str, exclude_id: Optional[str] = None) -> bool:
        filt: Dict[str, Any] = {"code": code}
        if exclude_id:
            filt["_id"] = {"$ne": ObjectId(exclude_id)}
        return self.collection.find_one(filt) is not None

    def create(self, data: Dict[str, Any]) -> Coupon:
        doc = create_document(self.collection, dict(data, usage_count=0))
        logger.info("Created coupon %s", doc["code"])
        return coupon_from_document(doc)

    def update(self, coupon_id: str, changes: Dict[str, Any]) -> Optional[Coupon]:
        changes = dict(changes, updated_at=datetime.utcnow())
        doc = self.collection.find_one_and_update(
            {"_id": ObjectId(coupon_id)},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        return coupon_from_document(doc) if doc else None

    def delete(self, coupon_id: str) -> bool:
        return self.collection.delete_one({"_id": ObjectId(coupon_id)}).deleted_count > 0

    def list(self, filt: Dict[str, Any], sort_by: str = "createdAt", sort_order: str = "desc",
             page: int = 1, limit: int = 10):
        sort_field = SORTABLE_FIELDS.get(sort_by, "created_at")
        direction = DESCENDING if sort_order == "desc" else ASCENDING
        cursor = (
            self.collection.find(filt)
            .sort(sort_field, direction)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        coupons = [coupon_from_document(doc) for doc in cursor]
        return coupons, self.collection.count_documents(filt)

    def stats(self, now: datetime) -> Dict[str, int]:
        total = self.collection.count_documents({})
        active = self.collection.count_documents({"is_active": True})
        return {
            "totalCoupons": total,
            "activeCoupons": active,
            "expiredCoupons": self.collection.count_documents({"end_date": {"$lt": now}}),
            "upcomingCoupons": self.collection.count_documents({"start_date": {"$gt": now}}),
            "inactiveCoupons": total - active,
        }
