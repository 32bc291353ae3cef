"""
Pure state transitions on a single cart.

Every mutating function ends by recomputing the derived totals. Inputs are assumed to be
validated by the caller; nothing here raises for business-rule violations. Functions that
can drop the applied coupon as a side effect return the list of adjustments they made so
the caller can report them.
"""
from dataclasses import dataclass
from typing import List

from bson import ObjectId

from coupons import DiscountCalculation
from schemas import AppliedCoupon, Cart, CartItem, Coupon, Product, ProductImage, ProductSnapshot

COUPON_TITLE = "Coupon"


@dataclass(frozen=True)
class Adjustment:
    title: str
    reason: str

    def to_dict(self):
        return {"title": self.title, "reason": self.reason}


def recalculate(cart: Cart) -> Cart:
    cart.subtotal = sum(item.price_at_add * item.quantity for item in cart.items)
    cart.total_discount = cart.coupon.discount_amount if cart.coupon else 0
    cart.final_total = max(0, cart.subtotal - cart.total_discount)
    return cart


def snapshot(product: Product) -> ProductSnapshot:
    image = product.images[0] if product.images else ProductImage()
    return ProductSnapshot(
        title=product.title,
        sku=product.sku,
        image=image.model_copy(),
        attributes=dict(product.attributes),
    )


def add_item(cart: Cart, product: Product, quantity: int, unit_price: float) -> Cart:
    existing = cart.find_product(product.id)
    if existing:
        # the price locked in when the line was first added is kept
        existing.quantity += quantity
    else:
        cart.items.append(CartItem(
            id=str(ObjectId()),
            product_id=product.id,
            product_snapshot=snapshot(product),
            quantity=quantity,
            price_at_add=unit_price,
            currency=product.currency,
        ))
    return recalculate(cart)


def remove_item(cart: Cart, item_id: str) -> List[Adjustment]:
    """Drop an item, then drop the coupon if nothing in the cart is covered by it any more."""
    cart.items = [item for item in cart.items if item.id != item_id]
    recalculate(cart)

    if cart.coupon is None:
        return []

    if cart.items:
        frozen = set(cart.coupon.applicable_products)
        if any(item.product_id in frozen for item in cart.items):
            return []
        reason = "No applicable products in cart"
    else:
        reason = "Cart is empty"

    cart.coupon = None
    recalculate(cart)
    return [Adjustment(COUPON_TITLE, reason)]


def update_item_quantity(cart: Cart, item_id: str, quantity: int) -> List[Adjustment]:
    if quantity <= 0:
        return remove_item(cart, item_id)

    item = cart.find_item(item_id)
    if item is not None:
        item.quantity = quantity
        recalculate(cart)
    return []


def clear_cart(cart: Cart) -> Cart:
    cart.items = []
    cart.coupon = None
    return recalculate(cart)


def apply_coupon(cart: Cart, coupon: Coupon, calculation: DiscountCalculation) -> Cart:
    cart.coupon = AppliedCoupon(
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        discount_amount=calculation.discount_amount,
        applicable_products=list(coupon.applicable_products),
    )
    return recalculate(cart)


def remove_coupon(cart: Cart) -> Cart:
    cart.coupon = None
    return recalculate(cart)


def merge_with(cart: Cart, other: Cart) -> List[Adjustment]:
    """Fold other's items into cart; the merged-in cart's price wins on a product match."""
    for other_item in other.items:
        existing = cart.find_product(other_item.product_id)
        if existing:
            existing.quantity += other_item.quantity
            existing.price_at_add = other_item.price_at_add
        else:
            cart.items.append(other_item.model_copy(deep=True))

    adjustments = []
    if cart.coupon is not None:
        adjustments.append(Adjustment(COUPON_TITLE, f"Coupon {cart.coupon.code} removed after merging carts"))
        cart.coupon = None
    recalculate(cart)
    return adjustments
