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

"""Reconciles payment processor events into order, stock and loyalty state.

Every inbound event goes through the same steps:

1. The signature is verified and the body decoded by the payment gateway.
2. The event id is looked up in, then claimed on, the idempotency ledger.
   Redelivered events stop here and are acknowledged.
3. The handler for the event type runs inside one database transaction.
   Status changes are conditional updates checked against the order state
   machine, and stock and loyalty side effects run only for the delivery that
   wins the order's fulfillment claim.
4. If the handler fails, the transaction is rolled back, the failure is
   recorded in `webhook_errors` and the ledger claim is released so that the
   processor's retry runs the event again.

The confirmation email is sent after the transaction commits and can never
fail the event.
"""

import dataclasses
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import db
from enums import EventType
from enums import OrderStatus
from enums import PaymentStatus
from enums import StockAlertKind
from exceptions import IllegalTransitionError
from exceptions import WebhookProcessingError
import money
import order_state
from services.idempotency import IdempotencyLedger
from services.notification_service import EmailNotifier
from services.payment_gateway import PaymentGateway
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

EventObject = Dict[str, Any]


@dataclasses.dataclass(frozen=True)
class WebhookOutcome:
  event_id: str
  event_type: str
  duplicate: bool
  processing_time_ms: float


@dataclasses.dataclass(frozen=True)
class _Confirmation:
  """An email to send once the handler's transaction has committed."""

  order_id: str
  recipient: Optional[str]
  customer_name: Optional[str]


_Handler = Callable[
    [AsyncSession, EventObject], Awaitable[Optional[_Confirmation]]
]


def _elapsed_ms(started: float) -> float:
  return round((time.perf_counter() - started) * 1000, 2)


class WebhookReconciler:
  """Applies verified payment processor events exactly once."""

  def __init__(
      self,
      session_factory: Callable[[], AsyncSession],
      gateway: PaymentGateway,
      ledger: IdempotencyLedger,
      notifier: Optional[EmailNotifier] = None,
      low_stock_threshold: int = 5,
  ):
    self._session_factory = session_factory
    self.gateway = gateway
    self.ledger = ledger
    self.notifier = notifier
    self.low_stock_threshold = low_stock_threshold
    self._handlers: Dict[str, _Handler] = {
        EventType.CHECKOUT_SESSION_COMPLETED.value: (
            self._handle_checkout_session_completed
        ),
        EventType.PAYMENT_INTENT_SUCCEEDED.value: (
            self._handle_payment_intent_succeeded
        ),
        EventType.PAYMENT_INTENT_FAILED.value: (
            self._handle_payment_intent_failed
        ),
        EventType.CHARGE_DISPUTE_CREATED.value: self._handle_dispute_created,
        EventType.INVOICE_PAYMENT_SUCCEEDED.value: self._handle_invoice,
        EventType.INVOICE_PAYMENT_FAILED.value: self._handle_invoice,
    }

  async def process(self, payload: bytes, signature: str) -> WebhookOutcome:
    """Verifies and applies one webhook delivery.

    Args:
      payload: The raw request body, exactly as received.
      signature: The processor's signature header.

    Returns:
      The outcome, with `duplicate` set for redelivered events.

    Raises:
      InvalidSignatureError: If the payload is not authentic.
      WebhookProcessingError: If the event handler failed. Nothing from the
        failed attempt is committed and the event can be retried.
    """
    started = time.perf_counter()
    event = self.gateway.construct_event(payload, signature)
    event_id = event["id"]
    event_type = event.get("type", "")
    logger.info("Received webhook event %s (%s)", event_id, event_type)

    if await self.ledger.seen(event_id) or not await self.ledger.record(
        event_id, event_type
    ):
      logger.info("Skipping duplicate webhook event %s", event_id)
      return WebhookOutcome(
          event_id=event_id,
          event_type=event_type,
          duplicate=True,
          processing_time_ms=_elapsed_ms(started),
      )

    handler = self._handlers.get(event_type)
    if handler is None:
      logger.info("Unhandled event type: %s", event_type)
      return WebhookOutcome(
          event_id=event_id,
          event_type=event_type,
          duplicate=False,
          processing_time_ms=_elapsed_ms(started),
      )

    obj = (event.get("data") or {}).get("object") or {}
    try:
      async with self._session_factory() as session:
        confirmation = await handler(session, obj)
        await session.commit()
    except Exception as e:  # pylint: disable=broad-exception-caught
      duration_ms = _elapsed_ms(started)
      logger.exception(
          "Failed to process webhook event %s (%s) after %.2fms",
          event_id,
          event_type,
          duration_ms,
      )
      await self._record_failure(event_id, event_type, str(e), duration_ms)
      await self.ledger.release(event_id)
      raise WebhookProcessingError(
          "Webhook processing failed", event_id, event_type
      ) from e

    if confirmation is not None:
      await self._send_confirmation(confirmation)

    return WebhookOutcome(
        event_id=event_id,
        event_type=event_type,
        duplicate=False,
        processing_time_ms=_elapsed_ms(started),
    )

  async def _record_failure(
      self,
      event_id: str,
      event_type: str,
      message: str,
      duration_ms: float,
  ) -> None:
    try:
      async with self._session_factory() as session:
        await db.log_webhook_error(
            session, event_id, event_type, message, int(duration_ms)
        )
        await session.commit()
    except SQLAlchemyError as e:
      logger.error("Failed to record webhook error for %s: %s", event_id, e)

  # --- Event handlers ---

  async def _handle_checkout_session_completed(
      self, session: AsyncSession, obj: EventObject
  ) -> Optional[_Confirmation]:
    session_id = obj.get("id")
    logger.info("Checkout session completed: %s", session_id)
    order = await db.get_order_by_session_id(session, session_id)
    if order is None:
      logger.error("Order not found for session: %s", session_id)
      return None

    values: Dict[str, Any] = {"payment_status": PaymentStatus.PAID.value}
    if obj.get("payment_intent"):
      values["payment_intent_id"] = obj["payment_intent"]
    customer = obj.get("customer_details") or {}
    if customer:
      values["billing_address"] = {
          "name": customer.get("name"),
          "email": customer.get("email"),
          "address": customer.get("address"),
          "phone": customer.get("phone"),
      }
    shipping = obj.get("shipping_details") or (
        obj.get("collected_information") or {}
    ).get("shipping_details")
    if shipping:
      values["shipping_address"] = {
          "name": shipping.get("name"),
          "address": shipping.get("address"),
          "phone": shipping.get("phone") or customer.get("phone"),
      }

    if not await self._confirm_payment(session, order, values):
      return None

    amount_total = obj.get("amount_total")
    if amount_total is not None and amount_total != order.total:
      logger.error(
          "Amount mismatch for order %s: charged %s, expected %s",
          order.id,
          amount_total,
          order.total,
      )
      await db.append_admin_note(
          session,
          order.id,
          "Amount mismatch: processor charged"
          f" {money.from_cents(amount_total)}, order total"
          f" {money.from_cents(order.total)}",
      )

    return _Confirmation(
        order_id=order.id,
        recipient=customer.get("email") or obj.get("customer_email"),
        customer_name=customer.get("name"),
    )

  async def _handle_payment_intent_succeeded(
      self, session: AsyncSession, obj: EventObject
  ) -> None:
    logger.info("Payment intent succeeded: %s", obj.get("id"))
    order = await self._find_order_for_intent(session, obj)
    if order is None:
      return
    await self._confirm_payment(
        session,
        order,
        {
            "payment_status": PaymentStatus.PAID.value,
            "payment_intent_id": obj.get("id"),
        },
    )

  async def _handle_payment_intent_failed(
      self, session: AsyncSession, obj: EventObject
  ) -> None:
    logger.info("Payment intent failed: %s", obj.get("id"))
    order = await self._find_order_for_intent(session, obj)
    if order is None:
      return

    reason = (obj.get("last_payment_error") or {}).get(
        "message"
    ) or "Unknown error"
    if await self._transition(
        session,
        order,
        OrderStatus.PAYMENT_FAILED,
        {
            "payment_status": PaymentStatus.FAILED.value,
            "payment_intent_id": obj.get("id"),
        },
    ):
      await db.append_admin_note(
          session, order.id, f"Payment failed: {reason}"
      )

  async def _handle_dispute_created(
      self, session: AsyncSession, obj: EventObject
  ) -> None:
    dispute_id = obj.get("id")
    logger.warning("Charge dispute created: %s", dispute_id)
    intent_id = obj.get("payment_intent")
    order = (
        await db.get_order_by_payment_intent(session, intent_id)
        if intent_id
        else None
    )
    if order is None:
      logger.error("Order not found for dispute: %s", dispute_id)
      return
    await db.append_admin_note(
        session,
        order.id,
        f"Dispute created: {obj.get('reason', 'unknown')} - {dispute_id}",
    )

  async def _handle_invoice(
      self, session: AsyncSession, obj: EventObject
  ) -> None:
    del session  # Unused.
    logger.info("Invoice event for %s, no action taken", obj.get("id"))

  # --- Helpers ---

  async def _find_order_for_intent(
      self, session: AsyncSession, intent: EventObject
  ) -> Optional[db.Order]:
    order = None
    if intent.get("id"):
      order = await db.get_order_by_payment_intent(session, intent["id"])
    order_id = (intent.get("metadata") or {}).get("order_id")
    if order is None and order_id:
      order = await db.get_order(session, order_id)
    if order is None:
      logger.error("Order not found for payment intent: %s", intent.get("id"))
    return order

  async def _transition(
      self,
      session: AsyncSession,
      order: db.Order,
      target: OrderStatus,
      values: Dict[str, Any],
  ) -> bool:
    """Moves an order to `target` with a conditional update.

    Returns:
      True if the order is in `target` afterwards, whether this call moved it
      or an earlier delivery did. False if the state machine forbids the
      change; the conflict is noted on the order for manual review.
    """
    order_id = order.id
    while order is not None:
      current = OrderStatus(order.status)
      try:
        changed = order_state.ensure_transition(current, target)
      except IllegalTransitionError as e:
        logger.warning("Order %s: %s", order_id, e.message)
        await db.append_admin_note(
            session,
            order_id,
            f"Ignored {target.value} update: order is {current.value}",
        )
        return False

      if not changed:
        await db.update_order_fields(session, order_id, **values)
        return True

      if await db.transition_order_status(
          session, order_id, current.value, target.value, **values
      ):
        logger.info(
            "Order %s: %s -> %s", order_id, current.value, target.value
        )
        return True

      # Another writer changed the status first; re-check against its result.
      order = await db.get_order(session, order_id)
    return False

  async def _confirm_payment(
      self, session: AsyncSession, order: db.Order, values: Dict[str, Any]
  ) -> bool:
    if order.paid_at and OrderStatus(order.status) in (
        OrderStatus.SHIPPED,
        OrderStatus.COMPLETED,
    ):
      logger.info("Order %s already confirmed and dispatched", order.id)
      return True

    if not await self._transition(
        session, order, OrderStatus.IN_PROGRESS, values
    ):
      return False

    if await db.claim_order_fulfillment(session, order.id):
      await self._fulfill(session, order)
    return True

  async def _fulfill(self, session: AsyncSession, order: db.Order) -> None:
    """Decrements stock for every line and accrues loyalty points."""
    for item in await db.get_order_items(session, order.id):
      remaining = await db.decrement_stock(
          session, item.product_id, item.quantity
      )
      if remaining is None:
        product = await db.get_product(session, item.product_id)
        available = product.stock if product else 0
        logger.error(
            "Oversold product %s on order %s: requested %d, available %d",
            item.product_id,
            order.id,
            item.quantity,
            available,
        )
        await db.add_stock_alert(
            session,
            item.product_id,
            StockAlertKind.OVERSOLD.value,
            available,
            order.id,
        )
        await db.append_admin_note(
            session,
            order.id,
            f"Insufficient stock for product {item.product_id}: requested"
            f" {item.quantity}, available {available}",
        )
      elif remaining == 0:
        logger.warning("Product %s is out of stock", item.product_id)
        await db.add_stock_alert(
            session,
            item.product_id,
            StockAlertKind.OUT_OF_STOCK.value,
            remaining,
            order.id,
        )
      elif remaining <= self.low_stock_threshold:
        logger.warning(
            "Low stock for product %s: %d left", item.product_id, remaining
        )
        await db.add_stock_alert(
            session,
            item.product_id,
            StockAlertKind.LOW_STOCK.value,
            remaining,
            order.id,
        )

    points = order.total // 100
    if order.user_id and points > 0:
      await db.add_loyalty_points(session, order.user_id, points)
      logger.info("Added %d loyalty points to user %s", points, order.user_id)

  async def _send_confirmation(self, confirmation: _Confirmation) -> None:
    if self.notifier is None:
      return
    try:
      async with self._session_factory() as session:
        order = await db.get_order(session, confirmation.order_id)
        items = await db.get_order_items(session, confirmation.order_id)
      if order is None:
        return
      sent = await self.notifier.send_order_confirmation(
          order, items, confirmation.recipient, confirmation.customer_name
      )
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error(
          "Confirmation email for order %s failed: %s",
          confirmation.order_id,
          e,
      )
      return
    if not sent:
      logger.warning(
          "Confirmation email for order %s was not sent",
          confirmation.order_id,
      )
