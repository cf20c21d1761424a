#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Tests for the checkout pipeline."""

import asyncio
from decimal import Decimal
import shutil
import tempfile

from absl.testing import absltest
import config
import db
from enums import CouponType
from enums import OrderStatus
from exceptions import ForbiddenError
from exceptions import InsufficientStockError
from exceptions import PaymentProviderError
from exceptions import RateLimitedError
from exceptions import ResourceNotFoundError
from models import AuthenticatedUser
from models import CheckoutRequest
from services.checkout_service import CheckoutService
from services.rate_limit import RateLimiter
from sqlalchemy import select
import testing_support

_USER = AuthenticatedUser(id="user-1", email="anna@shop.test")
_OTHER = AuthenticatedUser(id="user-2")


class CheckoutServiceTest(absltest.TestCase):

  def setUp(self) -> None:
    super().setUp()
    self.test_dir = tempfile.mkdtemp()

    async def init() -> None:
      await testing_support.init_test_db(self.test_dir)
      await testing_support.seed_products([
          {"id": "A", "name": "Acacia", "price": 1000, "stock": 5},
          {"id": "B", "name": "Castagno", "price": 2500, "stock": 1},
      ])
      await testing_support.seed_coupon(
          code="SAVE10", type=CouponType.PERCENTAGE.value, value=10
      )

    asyncio.run(init())
    self.gateway = testing_support.FakePaymentGateway()
    self.rate_limiter = RateLimiter("checkout", limit=5, window_seconds=60)
    self.settings = config.ShopSettings(site_url="https://shop.test/")

  def tearDown(self) -> None:
    asyncio.run(db.manager.close())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def _checkout(self, body, user=_USER):
    async def run():
      async with db.manager.session_factory() as session:
        service = CheckoutService(
            session, self.gateway, self.rate_limiter, self.settings
        )
        return await service.create_checkout(
            user, CheckoutRequest.model_validate(body)
        )

    return asyncio.run(run())

  def _get_order(self, order_id, user=_USER):
    async def run():
      async with db.manager.session_factory() as session:
        service = CheckoutService(
            session, self.gateway, self.rate_limiter, self.settings
        )
        return await service.get_order(user, order_id)

    return asyncio.run(run())

  def _orders(self):
    async def run():
      async with db.manager.session_factory() as session:
        result = await session.execute(select(db.Order))
        return list(result.scalars().all())

    return asyncio.run(run())

  def test_creates_pending_order_and_session(self) -> None:
    result = self._checkout({
        "items": [
            {"product_id": "A", "quantity": 2},
            {"product_id": "B", "quantity": 1},
        ],
        "coupon_code": "save10",
    })

    self.assertEqual(result.session_id, "cs_test_1")
    self.assertEqual(
        result.checkout_url, "https://checkout.stripe.com/c/pay/cs_test_1"
    )

    order = asyncio.run(testing_support.get_order(result.order_id))
    self.assertEqual(order.status, OrderStatus.PENDING_PAYMENT.value)
    self.assertEqual(order.user_id, "user-1")
    self.assertEqual(order.total, 4649)
    self.assertEqual(order.stripe_session_id, "cs_test_1")
    self.assertEqual(order.payment_intent_id, "pi_test_1")

    call = self.gateway.calls[0]
    self.assertEqual(call["metadata"]["order_id"], result.order_id)
    self.assertEqual(call["metadata"]["user_id"], "user-1")
    self.assertEqual(call["metadata"]["items_count"], "2")
    self.assertEqual(call["metadata"]["total_amount"], "46.49")
    self.assertEqual(call["shipping_cents"], 599)
    self.assertEqual(call["discount_cents"], 450)
    self.assertEqual(call["customer_email"], "anna@shop.test")
    self.assertEqual(
        call["success_url"],
        "https://shop.test/success?session_id={CHECKOUT_SESSION_ID}",
    )
    self.assertEqual(call["cancel_url"], "https://shop.test/cart")
    self.assertEqual(
        [(i.name, i.unit_amount, i.quantity) for i in call["line_items"]],
        [("Acacia", 1000, 2), ("Castagno", 2500, 1)],
    )

  def test_checkout_does_not_reserve_stock(self) -> None:
    self._checkout({"items": [{"product_id": "B", "quantity": 1}]})
    product = asyncio.run(testing_support.get_product("B"))
    self.assertEqual(product.stock, 1)

  def test_rate_limit_is_checked_first(self) -> None:
    self.rate_limiter = RateLimiter("checkout", limit=1, window_seconds=60)
    self._checkout({"items": [{"product_id": "A", "quantity": 1}]})

    with self.assertRaises(RateLimitedError):
      self._checkout({"items": [{"product_id": "A", "quantity": 1}]})
    self.assertLen(self.gateway.calls, 1)
    self.assertLen(self._orders(), 1)

  def test_stock_failure_creates_nothing(self) -> None:
    with self.assertRaises(InsufficientStockError):
      self._checkout({"items": [{"product_id": "B", "quantity": 2}]})
    self.assertEmpty(self._orders())
    self.assertEmpty(self.gateway.calls)

  def test_processor_failure_leaves_order_pending(self) -> None:
    self.gateway = testing_support.FakePaymentGateway(
        error=PaymentProviderError("Payment processor timed out")
    )
    with self.assertRaises(PaymentProviderError):
      self._checkout({"items": [{"product_id": "A", "quantity": 1}]})

    orders = self._orders()
    self.assertLen(orders, 1)
    self.assertEqual(orders[0].status, OrderStatus.PENDING_PAYMENT.value)
    self.assertIsNone(orders[0].stripe_session_id)
    self.assertIsNone(orders[0].paid_at)

  def test_owner_can_read_order(self) -> None:
    result = self._checkout({
        "items": [{"product_id": "A", "quantity": 1}],
        "shipping_address": {"city": "Bologna"},
    })

    view = self._get_order(result.order_id)
    self.assertEqual(view.id, result.order_id)
    self.assertEqual(view.total, Decimal("15.99"))
    self.assertEqual(view.shipping_cost, Decimal("5.99"))
    self.assertEqual(view.shipping_address, {"city": "Bologna"})
    self.assertLen(view.items, 1)
    self.assertEqual(view.items[0].unit_price, Decimal("10.00"))

  def test_other_users_cannot_read_order(self) -> None:
    result = self._checkout({"items": [{"product_id": "A", "quantity": 1}]})
    with self.assertRaises(ForbiddenError):
      self._get_order(result.order_id, user=_OTHER)

  def test_unknown_order(self) -> None:
    with self.assertRaises(ResourceNotFoundError):
      self._get_order("missing")


if __name__ == "__main__":
  absltest.main()
