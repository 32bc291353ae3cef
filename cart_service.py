"""
Cart service: identity-bound orchestration of the cart engine.

Each operation loads (or lazily creates) the identity's cart, checks every business
rule against the live catalog and coupon directory, delegates the mutation to
cart_engine and persists the result as a single document write. No stock is reserved
and concurrent writers to the same cart are not detected; the store's last write wins.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId

import cart_engine
import coupons
from cart_engine import Adjustment
from cart_store import new_cart
from errors import (
    CouponInvalid,
    CouponNotApplicable,
    EmptyCart,
    InsufficientStock,
    InvalidRequest,
    NotFound,
    ProductUnavailable,
)
from identity import GuestIdentity, Identity, UserIdentity
from schemas import Cart, Product

logger = logging.getLogger("cart.service")


@dataclass
class CartResult:
    cart: Cart
    message: Optional[str] = None
    adjustments: List[Adjustment] = field(default_factory=list)
    discount: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": True}
        if self.message:
            body["message"] = self.message
        body["cart"] = self.cart.to_wire()
        if self.adjustments:
            body["removedItems"] = [a.to_dict() for a in self.adjustments]
        if self.discount is not None:
            body["discount"] = self.discount
        return body


def check_stock(product: Product, requested: int, existing: int = 0) -> None:
    if not product.is_active:
        raise ProductUnavailable(f"Product {product.title} is not available")
    if existing + requested > product.stock:
        message = f"Only {product.stock} units available for {product.title}."
        if existing:
            message += f" You already have {existing} in cart."
        raise InsufficientStock(message, max_allowed=max(0, product.stock - existing))


def require_object_id(value: Optional[str], label: str) -> str:
    if not value:
        raise InvalidRequest(f"{label} is required")
    if not ObjectId.is_valid(value):
        raise InvalidRequest(f"Invalid {label[0].lower() + label[1:]}")
    return value


class CartService:
    def __init__(self, store, catalog, coupon_directory, clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.catalog = catalog
        self.coupons = coupon_directory
        self.clock = clock

    # -- helpers ---------------------------------------------------------

    def _load(self, identity: Identity) -> Cart:
        return self.store.load(identity) or new_cart(identity)

    def _revalidate_coupon(self, cart: Cart) -> List[Adjustment]:
        """Recompute an applied coupon against the live directory, dropping it when it no longer pays out."""
        if cart.coupon is None:
            return []
        if not cart.items:
            cart_engine.remove_coupon(cart)
            return [Adjustment(cart_engine.COUPON_TITLE, "Cart is empty")]

        coupon = self.coupons.find_by_code(cart.coupon.code)
        now = self.clock()
        if coupon is None or not coupons.is_valid(coupon, now):
            logger.warning("Dropping expired or invalid coupon %s", cart.coupon.code)
            cart_engine.remove_coupon(cart)
            return [Adjustment(cart_engine.COUPON_TITLE, "Coupon expired or invalid")]

        calculation = coupons.calculate_discount(coupon, cart.items, now)
        if calculation.discount_amount == 0:
            logger.warning("Dropping coupon %s with no applicable products", coupon.code)
            cart_engine.remove_coupon(cart)
            return [Adjustment(cart_engine.COUPON_TITLE, "No applicable products in cart")]

        cart_engine.apply_coupon(cart, coupon, calculation)
        return []

    # -- operations ------------------------------------------------------

    def get_or_create_cart(self, identity: Identity) -> CartResult:
        """Load the cart for display, pruning it against live stock first."""
        cart = self._load(identity)
        adjustments: List[Adjustment] = []

        for item in list(cart.items):
            title = item.product_snapshot.title
            product = self.catalog.get(item.product_id)
            if product is None or not product.is_active:
                side_effects = cart_engine.remove_item(cart, item.id)
                adjustments.append(Adjustment(title, "Product no longer available"))
                adjustments.extend(side_effects)
            elif item.quantity > product.stock:
                if product.stock > 0:
                    cart_engine.update_item_quantity(cart, item.id, product.stock)
                    adjustments.append(Adjustment(title, f"Quantity reduced to {product.stock} (available stock)"))
                else:
                    side_effects = cart_engine.remove_item(cart, item.id)
                    adjustments.append(Adjustment(title, "Out of stock"))
                    adjustments.extend(side_effects)

        adjustments.extend(self._revalidate_coupon(cart))
        cart_engine.recalculate(cart)
        self.store.save(cart)
        if adjustments:
            logger.warning("Cart %s adjusted on read: %s", cart.id, [a.reason for a in adjustments])
        return CartResult(cart, adjustments=adjustments)

    def add_to_cart(self, identity: Identity, product_id: Optional[str], quantity: int = 1) -> CartResult:
        require_object_id(product_id, "Product ID")
        if quantity < 1:
            raise InvalidRequest("Quantity must be at least 1")

        product = self.catalog.get(product_id)
        if product is None:
            raise NotFound("Product not found")

        cart = self._load(identity)
        existing = cart.find_product(product_id)
        check_stock(product, quantity, existing.quantity if existing else 0)

        cart_engine.add_item(cart, product, quantity, product.price)
        adjustments = self._revalidate_coupon(cart)
        self.store.save(cart)
        logger.info("Added %d x %s to cart %s", quantity, product_id, cart.id)
        message = "Cart item quantity updated" if existing else "Item added to cart"
        return CartResult(cart, message=message, adjustments=adjustments)

    def update_item(self, identity: Identity, item_id: str, quantity: int) -> CartResult:
        require_object_id(item_id, "Item ID")
        if quantity < 0:
            raise InvalidRequest("Quantity cannot be negative")

        cart = self._load(identity)
        item = cart.find_item(item_id)
        if item is None:
            raise NotFound("Cart item not found")

        if quantity == 0:
            adjustments = cart_engine.remove_item(cart, item_id)
            message = "Item removed from cart"
        else:
            product = self.catalog.get(item.product_id)
            if product is None:
                raise NotFound("Product not found")
            check_stock(product, quantity)
            adjustments = cart_engine.update_item_quantity(cart, item_id, quantity)
            message = "Cart item updated"

        adjustments.extend(self._revalidate_coupon(cart))
        self.store.save(cart)
        logger.info("Set item %s in cart %s to quantity %d", item_id, cart.id, quantity)
        return CartResult(cart, message=message, adjustments=adjustments)

    def remove_item(self, identity: Identity, item_id: str) -> CartResult:
        require_object_id(item_id, "Item ID")
        cart = self._load(identity)
        if cart.find_item(item_id) is None:
            raise NotFound("Cart item not found")

        adjustments = cart_engine.remove_item(cart, item_id)
        adjustments.extend(self._revalidate_coupon(cart))
        self.store.save(cart)
        logger.info("Removed item %s from cart %s", item_id, cart.id)
        return CartResult(cart, message="Item removed from cart", adjustments=adjustments)

    def clear(self, identity: Identity) -> CartResult:
        cart = self._load(identity)
        cart_engine.clear_cart(cart)
        self.store.save(cart)
        logger.info("Cleared cart %s", cart.id)
        return CartResult(cart, message="Cart cleared successfully")

    def apply_coupon(self, identity: Identity, code: Optional[str]) -> CartResult:
        if not code or not code.strip():
            raise InvalidRequest("Coupon code is required")

        cart = self._load(identity)
        if not cart.items:
            raise EmptyCart("Cannot apply coupon to empty cart")

        coupon = self.coupons.find_by_code(code)
        if coupon is None:
            raise NotFound("Invalid coupon code")

        now = self.clock()
        if not coupons.is_valid(coupon, now):
            raise CouponInvalid("Coupon is expired or inactive")
        if not coupons.is_applicable_to_products(coupon, [item.product_id for item in cart.items]):
            raise CouponNotApplicable("Coupon is not applicable to any products in your cart")

        calculation = coupons.calculate_discount(coupon, cart.items, now)
        if calculation.discount_amount == 0:
            raise CouponNotApplicable("Coupon cannot be applied to current cart items")

        cart_engine.apply_coupon(cart, coupon, calculation)
        self.store.save(cart)
        logger.info("Applied coupon %s to cart %s (-%s)", coupon.code, cart.id, calculation.discount_amount)
        return CartResult(
            cart,
            message="Coupon applied successfully",
            discount={
                "code": coupon.code,
                "discountAmount": calculation.discount_amount,
                "applicableItems": len(calculation.applicable_items),
            },
        )

    def remove_coupon(self, identity: Identity) -> CartResult:
        cart = self._load(identity)
        if cart.coupon is None:
            raise InvalidRequest("No coupon applied to cart")

        code = cart.coupon.code
        cart_engine.remove_coupon(cart)
        self.store.save(cart)
        logger.info("Removed coupon %s from cart %s", code, cart.id)
        return CartResult(cart, message=f"Coupon {code} removed successfully")

    def merge_guest_into_user(self, user: UserIdentity, guest_session_id: Optional[str]) -> CartResult:
        if not guest_session_id:
            raise InvalidRequest("Guest session ID is required")

        guest_cart = self.store.load(GuestIdentity(guest_session_id))
        if guest_cart is None or not guest_cart.items:
            return CartResult(self._load(user), message="No guest cart to merge")

        user_cart = self._load(user)

        for item in list(guest_cart.items):
            product = self.catalog.get(item.product_id)
            if product is None or not product.is_active or product.stock <= 0:
                guest_cart.items.remove(item)
            else:
                item.quantity = min(item.quantity, product.stock)

        adjustments = cart_engine.merge_with(user_cart, guest_cart)

        for item in list(user_cart.items):
            product = self.catalog.get(item.product_id)
            if product is None:
                continue
            if item.quantity > product.stock:
                adjustments.extend(cart_engine.update_item_quantity(user_cart, item.id, product.stock))

        self.store.save(user_cart)
        self.store.delete(guest_cart)
        logger.info("Merged guest cart %s into user cart %s", guest_cart.id, user_cart.id)
        return CartResult(user_cart, message="Carts merged successfully", adjustments=adjustments)
