"""
Database Schemas for the cart and coupon backend

Each Pydantic model corresponds to a MongoDB document shape. Documents are stored
with snake_case keys; the REST surface speaks camelCase through the alias generator.

Example: Cart -> collection "cart", Coupon -> collection "coupon"
"""
from typing import List, Optional, Dict, Any, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone

from config import DEFAULT_CURRENCY


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo hands back naive UTC datetimes; keep everything in that form."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# Catalog lookup result

class ProductImage(WireModel):
    url: Optional[str] = None
    alt: Optional[str] = None


class Product(WireModel):
    id: str
    title: str
    sku: str = ""
    price: float = Field(..., ge=0)
    stock: int = 0
    is_active: bool = True
    images: List[ProductImage] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    currency: str = DEFAULT_CURRENCY


# Cart documents

class ProductSnapshot(WireModel):
    title: str
    sku: str = ""
    image: ProductImage = Field(default_factory=ProductImage)
    attributes: Dict[str, Any] = Field(default_factory=dict)


class CartItem(WireModel):
    id: str
    product_id: str
    product_snapshot: ProductSnapshot
    quantity: int = Field(1, ge=1)
    price_at_add: float = Field(..., ge=0)
    currency: str = DEFAULT_CURRENCY

    @property
    def line_total(self) -> float:
        return self.price_at_add * self.quantity


class AppliedCoupon(WireModel):
    code: str
    discount_type: str
    discount_value: float
    discount_amount: float = Field(..., ge=0)
    applicable_products: List[str] = Field(default_factory=list)
    applied_at: datetime = Field(default_factory=datetime.utcnow)


class Cart(WireModel):
    id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    items: List[CartItem] = Field(default_factory=list)
    coupon: Optional[AppliedCoupon] = None
    subtotal: float = 0
    total_discount: float = 0
    final_total: float = 0
    currency: str = DEFAULT_CURRENCY
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find_item(self, item_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def find_product(self, product_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def to_wire(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, mode="json")
        data["itemCount"] = self.item_count
        return data


# Coupon documents

class Coupon(WireModel):
    id: Optional[str] = None
    code: str
    discount_type: Literal["percentage"] = "percentage"
    discount_value: float = Field(..., ge=1, le=100)
    applicable_products: List[str] = Field(default_factory=list)
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    usage_count: int = 0
    max_usage: Optional[int] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v):
        return naive_utc(v)


class CouponCreate(WireModel):
    code: str = Field(..., min_length=3, max_length=20)
    discount_type: Literal["percentage"] = "percentage"
    discount_value: float = Field(..., ge=1, le=100)
    applicable_products: List[str] = Field(..., min_length=1)
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    max_usage: Optional[int] = Field(None, ge=0)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v):
        return naive_utc(v)

    @field_validator("code", mode="before")
    @classmethod
    def upper_code(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("max_usage")
    @classmethod
    def zero_is_unlimited(cls, v):
        return v or None

    @model_validator(mode="after")
    def check_window(self):
        if self.start_date >= self.end_date:
            raise ValueError("End date must be after start date")
        return self


class CouponUpdate(WireModel):
    code: Optional[str] = Field(None, min_length=3, max_length=20)
    discount_type: Optional[Literal["percentage"]] = None
    discount_value: Optional[float] = Field(None, ge=1, le=100)
    applicable_products: Optional[List[str]] = Field(None, min_length=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    max_usage: Optional[int] = Field(None, ge=0)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v):
        return naive_utc(v)

    @field_validator("code", mode="before")
    @classmethod
    def upper_code(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


# Request bodies

class CartItemIn(WireModel):
    product_id: Optional[str] = None
    quantity: int = 1


class CartItemUpdate(WireModel):
    quantity: int


class ApplyCouponIn(WireModel):
    code: Optional[str] = None


class MergeCartIn(WireModel):
    guest_session_id: Optional[str] = None
