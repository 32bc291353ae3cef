"""Business-rule failures raised by the cart service before any cart mutation."""
from typing import Any, Dict, Optional


class CartError(Exception):
    status_code = 400

    def __init__(self, message: str, max_allowed: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.max_allowed = max_allowed

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message}
        if self.max_allowed is not None:
            body["maxAllowed"] = self.max_allowed
        return body


class InvalidRequest(CartError):
    """Malformed input: missing ids, bad id format, negative quantities."""


class NotFound(CartError):
    status_code = 404


class InsufficientStock(CartError):
    """Requested quantity exceeds live stock; carries the largest quantity still allowed."""


class ProductUnavailable(CartError):
    pass


class CouponInvalid(CartError):
    pass


class CouponNotApplicable(CartError):
    pass


class EmptyCart(CartError):
    pass
