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

"""Tests for payment event reconciliation."""

import asyncio
import shutil
import tempfile
from typing import Optional
from unittest import mock

from absl.testing import absltest
import db
from enums import OrderStatus
from enums import PaymentStatus
from enums import StockAlertKind
from exceptions import InvalidSignatureError
from exceptions import WebhookProcessingError
from services.idempotency import InMemoryIdempotencyLedger
from services.notification_service import EmailNotifier
from services.webhook_service import WebhookReconciler
from sqlalchemy import select
import testing_support

_ORDER_ID = "order-1"


def _session_completed(**overrides):
  obj = {
      "id": "cs_test_1",
      "object": "checkout.session",
      "payment_intent": "pi_test_1",
      "amount_total": 4649,
      "customer_details": {
          "name": "Anna Rossi",
          "email": "anna@shop.test",
          "address": {"line1": "Via Roma 1", "city": "Bologna"},
      },
      "shipping_details": {
          "name": "Anna Rossi",
          "address": {"line1": "Via Roma 1", "city": "Bologna"},
      },
      "metadata": {"order_id": _ORDER_ID},
  }
  obj.update(overrides)
  return obj


def _intent(**overrides):
  obj = {
      "id": "pi_test_1",
      "object": "payment_intent",
      "metadata": {"order_id": _ORDER_ID},
  }
  obj.update(overrides)
  return obj


class WebhookReconcilerTest(absltest.TestCase):

  def setUp(self) -> None:
    super().setUp()
    self.test_dir = tempfile.mkdtemp()

    async def init() -> None:
      await testing_support.init_test_db(self.test_dir)
      await testing_support.seed_products([
          {"id": "A", "name": "Acacia", "price": 1000, "stock": 10},
          {"id": "B", "name": "Castagno", "price": 2500, "stock": 10},
      ])

    asyncio.run(init())
    self.ledger = InMemoryIdempotencyLedger()
    self.notifier = mock.create_autospec(EmailNotifier, instance=True)
    self.notifier.send_order_confirmation.return_value = True
    self.reconciler = WebhookReconciler(
        db.manager.session_factory,
        testing_support.FakePaymentGateway(),
        self.ledger,
        notifier=self.notifier,
        low_stock_threshold=5,
    )

  def tearDown(self) -> None:
    asyncio.run(db.manager.close())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def _seed_order(
      self,
      items=(("A", 2, 1000), ("B", 1, 2500)),
      status: str = OrderStatus.PENDING_PAYMENT.value,
      payment_intent_id: Optional[str] = "pi_test_1",
      total: int = 4649,
  ) -> None:
    async def run():
      now = db.utc_now()
      async with db.manager.session_factory() as session:
        session.add(
            db.Order(
                id=_ORDER_ID,
                user_id="user-1",
                status=status,
                payment_status=PaymentStatus.PENDING.value,
                currency="eur",
                subtotal=4500,
                discount_amount=450,
                shipping_cost=599,
                total=total,
                coupon_code="SAVE10",
                stripe_session_id="cs_test_1",
                payment_intent_id=payment_intent_id,
                created_at=now,
                updated_at=now,
            )
        )
        await session.flush()
        for product_id, quantity, price in items:
          session.add(
              db.OrderItem(
                  order_id=_ORDER_ID,
                  product_id=product_id,
                  quantity=quantity,
                  unit_price=price,
                  total_price=price * quantity,
                  product_snapshot={"name": product_id},
              )
          )
        await session.commit()

    asyncio.run(run())

  def _set_stock(self, product_id: str, stock: int) -> None:
    async def run():
      async with db.manager.session_factory() as session:
        product = await session.get(db.Product, product_id)
        product.stock = stock
        await session.commit()

    asyncio.run(run())

  def _deliver(self, event_id: str, event_type: str, obj):
    payload = testing_support.make_event(event_id, event_type, obj)
    return asyncio.run(
        self.reconciler.process(
            payload, testing_support.sign_payload(payload)
        )
    )

  def _order(self) -> db.Order:
    return asyncio.run(testing_support.get_order(_ORDER_ID))

  def _stock(self, product_id: str) -> int:
    return asyncio.run(testing_support.get_product(product_id)).stock

  def _loyalty(self) -> int:
    async def run():
      async with db.manager.session_factory() as session:
        return await db.get_loyalty_points(session, "user-1")

    return asyncio.run(run())

  def _alerts(self):
    async def run():
      async with db.manager.session_factory() as session:
        result = await session.execute(
            select(db.StockAlert).order_by(db.StockAlert.id)
        )
        return [(a.product_id, a.kind, a.stock) for a in result.scalars()]

    return asyncio.run(run())

  def test_session_completed_confirms_order(self) -> None:
    self._seed_order()

    outcome = self._deliver(
        "evt_1", "checkout.session.completed", _session_completed()
    )

    self.assertFalse(outcome.duplicate)
    self.assertEqual(outcome.event_id, "evt_1")
    order = self._order()
    self.assertEqual(order.status, OrderStatus.IN_PROGRESS.value)
    self.assertEqual(order.payment_status, PaymentStatus.PAID.value)
    self.assertIsNotNone(order.paid_at)
    self.assertEqual(order.billing_address["email"], "anna@shop.test")
    self.assertEqual(order.shipping_address["address"]["city"], "Bologna")
    self.assertIsNone(order.admin_notes)
    self.assertEqual(self._stock("A"), 8)
    self.assertEqual(self._stock("B"), 9)
    self.assertEqual(self._loyalty(), 46)

    self.notifier.send_order_confirmation.assert_awaited_once()
    args = self.notifier.send_order_confirmation.await_args.args
    self.assertEqual(args[0].id, _ORDER_ID)
    self.assertLen(args[1], 2)
    self.assertEqual(args[2], "anna@shop.test")
    self.assertEqual(args[3], "Anna Rossi")

  def test_redelivered_event_is_applied_once(self) -> None:
    self._seed_order()

    self._deliver("evt_1", "checkout.session.completed", _session_completed())
    outcome = self._deliver(
        "evt_1", "checkout.session.completed", _session_completed()
    )

    self.assertTrue(outcome.duplicate)
    self.assertEqual(self._stock("A"), 8)
    self.assertEqual(self._loyalty(), 46)
    self.notifier.send_order_confirmation.assert_awaited_once()

  def test_concurrent_deliveries_have_one_winner(self) -> None:
    self._seed_order()
    payload = testing_support.make_event(
        "evt_1", "checkout.session.completed", _session_completed()
    )
    signature = testing_support.sign_payload(payload)

    async def deliver_all():
      return await asyncio.gather(
          *(self.reconciler.process(payload, signature) for _ in range(5))
      )

    outcomes = asyncio.run(deliver_all())
    self.assertEqual(sum(not o.duplicate for o in outcomes), 1)
    self.assertEqual(self._stock("A"), 8)
    self.assertEqual(self._loyalty(), 46)

  def test_both_confirmation_events_fulfill_once(self) -> None:
    self._seed_order()

    self._deliver("evt_1", "checkout.session.completed", _session_completed())
    self._deliver("evt_2", "payment_intent.succeeded", _intent())

    order = self._order()
    self.assertEqual(order.status, OrderStatus.IN_PROGRESS.value)
    self.assertEqual(self._stock("A"), 8)
    self.assertEqual(self._stock("B"), 9)
    self.assertEqual(self._loyalty(), 46)

  def test_intent_before_session_is_matched_by_metadata(self) -> None:
    self._seed_order(payment_intent_id=None)

    self._deliver("evt_1", "payment_intent.succeeded", _intent())
    order = self._order()
    self.assertEqual(order.status, OrderStatus.IN_PROGRESS.value)
    self.assertEqual(order.payment_intent_id, "pi_test_1")
    self.assertEqual(self._stock("A"), 8)

    self._deliver("evt_2", "checkout.session.completed", _session_completed())
    self.assertEqual(self._stock("A"), 8)
    self.assertEqual(self._loyalty(), 46)

  def test_payment_failed(self) -> None:
    self._seed_order()

    self._deliver(
        "evt_1",
        "payment_intent.payment_failed",
        _intent(last_payment_error={"message": "Your card was declined."}),
    )

    order = self._order()
    self.assertEqual(order.status, OrderStatus.PAYMENT_FAILED.value)
    self.assertEqual(order.payment_status, PaymentStatus.FAILED.value)
    self.assertEqual(
        order.admin_notes, "Payment failed: Your card was declined."
    )
    self.assertEqual(self._stock("A"), 10)
    self.notifier.send_order_confirmation.assert_not_awaited()

  def test_success_after_failure_is_noted_not_applied(self) -> None:
    self._seed_order(status=OrderStatus.PAYMENT_FAILED.value)

    outcome = self._deliver("evt_1", "payment_intent.succeeded", _intent())

    self.assertFalse(outcome.duplicate)
    order = self._order()
    self.assertEqual(order.status, OrderStatus.PAYMENT_FAILED.value)
    self.assertIsNone(order.paid_at)
    self.assertIn("Ignored in_corso update", order.admin_notes)
    self.assertEqual(self._stock("A"), 10)
    self.assertEqual(self._loyalty(), 0)

  def test_late_confirmation_keeps_dispatched_status(self) -> None:
    self._seed_order()
    self._deliver("evt_1", "checkout.session.completed", _session_completed())

    async def ship():
      async with db.manager.session_factory() as session:
        await db.transition_order_status(
            session,
            _ORDER_ID,
            OrderStatus.IN_PROGRESS.value,
            OrderStatus.SHIPPED.value,
        )
        await session.commit()

    asyncio.run(ship())
    self._deliver("evt_2", "payment_intent.succeeded", _intent())

    order = self._order()
    self.assertEqual(order.status, OrderStatus.SHIPPED.value)
    self.assertIsNone(order.admin_notes)
    self.assertEqual(self._stock("A"), 8)

  def test_dispute_is_noted(self) -> None:
    self._seed_order()

    self._deliver(
        "evt_1",
        "charge.dispute.created",
        {
            "id": "dp_1",
            "object": "dispute",
            "payment_intent": "pi_test_1",
            "reason": "fraudulent",
        },
    )

    order = self._order()
    self.assertEqual(order.admin_notes, "Dispute created: fraudulent - dp_1")
    self.assertEqual(order.status, OrderStatus.PENDING_PAYMENT.value)

  def test_unknown_event_type_is_acknowledged(self) -> None:
    outcome = self._deliver("evt_1", "customer.created", {"id": "cus_1"})
    self.assertFalse(outcome.duplicate)
    self.assertEqual(
        asyncio.run(testing_support.count_rows(db.WebhookError)), 0
    )

  def test_unknown_session_is_acknowledged(self) -> None:
    outcome = self._deliver(
        "evt_1", "checkout.session.completed", _session_completed(id="cs_x")
    )
    self.assertFalse(outcome.duplicate)
    self.notifier.send_order_confirmation.assert_not_awaited()

  def test_invalid_signature_is_not_recorded(self) -> None:
    payload = testing_support.make_event("evt_1", "x", {})
    with self.assertRaises(InvalidSignatureError):
      asyncio.run(
          self.reconciler.process(
              payload, testing_support.sign_payload(payload, "whsec_bad")
          )
      )
    self.assertLen(self.ledger, 0)

  def test_handler_failure_rolls_back_and_allows_retry(self) -> None:
    self._seed_order()

    with mock.patch.object(
        db,
        "add_loyalty_points",
        new=mock.AsyncMock(side_effect=RuntimeError("loyalty down")),
    ):
      with self.assertRaises(WebhookProcessingError) as ctx:
        self._deliver(
            "evt_1", "checkout.session.completed", _session_completed()
        )
    self.assertEqual(ctx.exception.status_code, 500)
    self.assertEqual(ctx.exception.event_id, "evt_1")

    order = self._order()
    self.assertEqual(order.status, OrderStatus.PENDING_PAYMENT.value)
    self.assertIsNone(order.paid_at)
    self.assertEqual(self._stock("A"), 10)
    self.assertLen(self.ledger, 0)
    self.assertEqual(
        asyncio.run(testing_support.count_rows(db.WebhookError)), 1
    )

    outcome = self._deliver(
        "evt_1", "checkout.session.completed", _session_completed()
    )
    self.assertFalse(outcome.duplicate)
    self.assertEqual(self._order().status, OrderStatus.IN_PROGRESS.value)
    self.assertEqual(self._stock("A"), 8)

  def test_oversold_line_is_flagged_and_stock_never_negative(self) -> None:
    self._seed_order()
    self._set_stock("A", 1)

    self._deliver("evt_1", "checkout.session.completed", _session_completed())

    order = self._order()
    self.assertEqual(order.status, OrderStatus.IN_PROGRESS.value)
    self.assertIn("Insufficient stock for product A", order.admin_notes)
    self.assertEqual(self._stock("A"), 1)
    self.assertEqual(self._stock("B"), 9)
    self.assertIn(("A", StockAlertKind.OVERSOLD.value, 1), self._alerts())

  def test_low_and_out_of_stock_alerts(self) -> None:
    self._seed_order()
    self._set_stock("A", 2)
    self._set_stock("B", 4)

    self._deliver("evt_1", "checkout.session.completed", _session_completed())

    self.assertEqual(
        self._alerts(),
        [
            ("A", StockAlertKind.OUT_OF_STOCK.value, 0),
            ("B", StockAlertKind.LOW_STOCK.value, 3),
        ],
    )
    self.assertFalse(asyncio.run(testing_support.get_product("A")).is_active)

  def test_amount_mismatch_is_noted(self) -> None:
    self._seed_order()

    self._deliver(
        "evt_1",
        "checkout.session.completed",
        _session_completed(amount_total=4000),
    )

    order = self._order()
    self.assertEqual(order.status, OrderStatus.IN_PROGRESS.value)
    self.assertIn("Amount mismatch", order.admin_notes)
    self.assertIn("40.00", order.admin_notes)

  def test_email_failure_does_not_fail_event(self) -> None:
    self._seed_order()
    self.notifier.send_order_confirmation.side_effect = RuntimeError("smtp")

    outcome = self._deliver(
        "evt_1", "checkout.session.completed", _session_completed()
    )

    self.assertFalse(outcome.duplicate)
    self.assertEqual(self._order().status, OrderStatus.IN_PROGRESS.value)


if __name__ == "__main__":
  absltest.main()
