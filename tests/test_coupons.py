"""Tests for coupon validity rules, discount calculation and the Mongo repository."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pydantic import ValidationError

import cart_engine
import coupons
from fakes import NOW, make_coupon, make_product
from schemas import Cart, CouponCreate


class TestIsValid:
    def test_active_in_window(self):
        assert coupons.is_valid(make_coupon(), NOW)

    def test_inactive(self):
        assert not coupons.is_valid(make_coupon(is_active=False), NOW)

    def test_not_started(self):
        coupon = make_coupon(start_date=NOW + timedelta(hours=1))
        assert not coupons.is_valid(coupon, NOW)

    def test_expired(self):
        coupon = make_coupon(start_date=NOW - timedelta(days=10), end_date=NOW - timedelta(seconds=1))
        assert not coupons.is_valid(coupon, NOW)

    def test_window_bounds_inclusive(self):
        coupon = make_coupon(start_date=NOW - timedelta(days=1), end_date=NOW)
        assert coupons.is_valid(coupon, NOW)
        assert coupons.is_valid(coupon, NOW - timedelta(days=1))

    def test_usage_exhausted(self):
        assert not coupons.is_valid(make_coupon(max_usage=3, usage_count=3), NOW)

    def test_usage_remaining(self):
        assert coupons.is_valid(make_coupon(max_usage=3, usage_count=2), NOW)

    def test_unlimited_usage(self):
        assert coupons.is_valid(make_coupon(max_usage=None, usage_count=10_000), NOW)


class TestApplicability:
    def test_any_overlap_is_enough(self):
        coupon = make_coupon(products=["a", "b"])
        assert coupons.is_applicable_to_products(coupon, ["z", "b"])

    def test_no_overlap(self):
        coupon = make_coupon(products=["a", "b"])
        assert not coupons.is_applicable_to_products(coupon, ["x", "y"])

    def test_empty_cart(self):
        assert not coupons.is_applicable_to_products(make_coupon(products=["a"]), [])


class TestCalculateDiscount:
    def _cart(self, *lines):
        cart = Cart(user_id="u")
        for product, qty in lines:
            cart_engine.add_item(cart, product, qty, product.price)
        return cart

    def test_percentage_of_applicable_subtotal_only(self, plant, planter):
        cart = self._cart((plant, 3), (planter, 1))
        result = coupons.calculate_discount(make_coupon(products=[plant.id]), cart.items, NOW)

        assert result.applicable_subtotal == 897
        assert result.discount_amount == 179
        assert [i.product_id for i in result.applicable_items] == [plant.id]

    def test_rounds_half_up(self):
        product = make_product(price=25)
        cart = self._cart((product, 1))
        result = coupons.calculate_discount(make_coupon(value=10, products=[product.id]), cart.items, NOW)
        # 2.5 rounds up, not to even
        assert result.discount_amount == 3

    def test_invalid_coupon_gives_zero(self, plant):
        cart = self._cart((plant, 1))
        result = coupons.calculate_discount(make_coupon(is_active=False, products=[plant.id]), cart.items, NOW)
        assert result.discount_amount == 0
        assert result.applicable_items == []

    def test_no_applicable_items_gives_zero(self, plant, planter):
        cart = self._cart((planter, 2))
        result = coupons.calculate_discount(make_coupon(products=[plant.id]), cart.items, NOW)
        assert result.discount_amount == 0
        assert result.applicable_subtotal == 0


class TestCouponCreateSchema:
    def _payload(self, **overrides):
        data = {
            "code": " save20 ",
            "discountValue": 20,
            "applicableProducts": ["p1"],
            "startDate": "2026-03-01T00:00:00Z",
            "endDate": "2026-04-01T00:00:00Z",
        }
        data.update(overrides)
        return data

    def test_code_uppercased_and_dates_naive(self):
        payload = CouponCreate.model_validate(self._payload())
        assert payload.code == "SAVE20"
        assert payload.start_date.tzinfo is None
        assert payload.discount_type == "percentage"

    def test_zero_max_usage_means_unlimited(self):
        assert CouponCreate.model_validate(self._payload(maxUsage=0)).max_usage is None

    @pytest.mark.parametrize("overrides", [
        {"discountValue": 0},
        {"discountValue": 101},
        {"discountType": "fixed"},
        {"applicableProducts": []},
        {"code": "ab"},
        {"startDate": "2026-04-01T00:00:00Z"},
    ])
    def test_rejects_invalid(self, overrides):
        with pytest.raises(ValidationError):
            CouponCreate.model_validate(self._payload(**overrides))


class TestAdminHelpers:
    def test_list_filter(self):
        assert coupons.build_list_filter() == {}
        filt = coupons.build_list_filter("save", True)
        assert filt["code"] == {"$regex": "save", "$options": "i"}
        assert filt["is_active"] is True

    def test_list_filter_escapes_regex(self):
        assert coupons.build_list_filter("a.b")["code"]["$regex"] == r"a\.b"

    def test_pagination(self):
        assert coupons.pagination(1, 10, 25) == {
            "currentPage": 1, "totalPages": 3, "totalCoupons": 25, "hasNext": True, "hasPrev": False,
        }
        last = coupons.pagination(3, 10, 25)
        assert last["hasNext"] is False
        assert last["hasPrev"] is True

    def test_enrich(self):
        data = coupons.enrich(make_coupon(products=["a", "b"]), NOW)
        assert data["isDateValid"] is True
        assert data["isFullyValid"] is True
        assert data["applicableProductCount"] == 2
        assert data["discountValue"] == 20


class TestMongoCouponDirectory:
    @pytest.fixture
    def collection(self):
        return MagicMock()

    def _doc(self, **extra):
        doc = {
            "_id": ObjectId(),
            "code": "SAVE20",
            "discount_type": "percentage",
            "discount_value": 20,
            "applicable_products": [ObjectId()],
            "start_date": NOW - timedelta(days=1),
            "end_date": NOW + timedelta(days=1),
            "is_active": True,
            "usage_count": 0,
            "max_usage": None,
        }
        doc.update(extra)
        return doc

    def test_find_by_code_uppercases(self, collection):
        doc = self._doc()
        collection.find_one.return_value = doc
        coupon = coupons.MongoCouponDirectory(collection).find_by_code(" save20 ")

        collection.find_one.assert_called_once_with({"code": "SAVE20"})
        assert coupon.id == str(doc["_id"])
        assert coupon.applicable_products == [str(doc["applicable_products"][0])]

    def test_find_by_code_missing(self, collection):
        collection.find_one.return_value = None
        assert coupons.MongoCouponDirectory(collection).find_by_code("NOPE") is None

    def test_code_taken_excludes_self(self, collection):
        collection.find_one.return_value = None
        coupon_id = str(ObjectId())
        coupons.MongoCouponDirectory(collection).code_taken("SAVE20", coupon_id)

        collection.find_one.assert_called_once_with({"code": "SAVE20", "_id": {"$ne": ObjectId(coupon_id)}})

    def test_create_sets_usage_and_timestamps(self, collection):
        collection.insert_one.return_value.inserted_id = ObjectId()
        coupon = coupons.MongoCouponDirectory(collection).create({
            "code": "SAVE20",
            "discount_type": "percentage",
            "discount_value": 20,
            "applicable_products": ["a"],
            "start_date": NOW,
            "end_date": NOW + timedelta(days=1),
            "is_active": True,
            "max_usage": None,
            "created_by": "admin-1",
        })

        inserted = collection.insert_one.call_args[0][0]
        assert inserted["usage_count"] == 0
        assert "created_at" in inserted and "updated_at" in inserted
        assert coupon.created_by == "admin-1"

    def test_stats(self, collection):
        collection.count_documents.side_effect = [10, 7, 2, 1]
        stats = coupons.MongoCouponDirectory(collection).stats(NOW)

        assert stats == {
            "totalCoupons": 10,
            "activeCoupons": 7,
            "expiredCoupons": 2,
            "upcomingCoupons": 1,
            "inactiveCoupons": 3,
        }

    def test_list_sorts_and_pages(self, collection):
        cursor = collection.find.return_value.sort.return_value.skip.return_value.limit.return_value
        cursor.__iter__.return_value = iter([self._doc()])
        collection.count_documents.return_value = 11

        items, total = coupons.MongoCouponDirectory(collection).list({}, "code", "asc", page=2, limit=5)

        collection.find.return_value.sort.assert_called_once_with("code", 1)
        collection.find.return_value.sort.return_value.skip.assert_called_once_with(5)
        assert len(items) == 1
        assert total == 11
