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

"""Persists orders and their line items as one unit of work.

The order header is written first so that line items can reference it. If any
line item cannot be written, the transaction is rolled back and the registered
compensating actions run, so no header survives without its items.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
import uuid

import db
from enums import OrderStatus
from enums import PaymentStatus
from exceptions import OrderPersistenceError
from services.inventory_service import ValidatedItem
from services.pricing_service import OrderTotals
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

Compensation = Callable[[], Awaitable[Any]]


class UnitOfWork:
  """Commit-or-compensate boundary around a session.

  Used as an async context manager: the transaction commits when the block
  exits normally. On an exception it is rolled back and each compensation
  registered during the block runs in reverse order.
  """

  def __init__(self, session: AsyncSession):
    self.session = session
    self._compensations: List[Compensation] = []

  def on_rollback(self, compensation: Compensation) -> None:
    self._compensations.append(compensation)

  async def commit(self) -> None:
    await self.session.commit()
    self._compensations.clear()

  async def rollback(self) -> None:
    await self.session.rollback()
    while self._compensations:
      compensation = self._compensations.pop()
      try:
        await compensation()
      except SQLAlchemyError as e:
        logger.error("Compensating action failed: %s", e)

  async def __aenter__(self) -> "UnitOfWork":
    return self

  async def __aexit__(self, exc_type, exc, tb) -> bool:
    if exc_type is None:
      await self.commit()
    else:
      await self.rollback()
    return False


class OrderWriter:
  """Writes order headers and line items."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def _delete_order(self, order_id: str) -> None:
    deleted = await db.delete_order(self.session, order_id)
    await self.session.commit()
    if deleted:
      logger.warning("Removed orphan order header %s", order_id)

  async def create_order(
      self,
      user_id: str,
      items: Sequence[ValidatedItem],
      totals: OrderTotals,
      shipping_address: Optional[Dict[str, Any]] = None,
      currency: str = "eur",
  ) -> db.Order:
    """Creates a `pending_payment` order with its line items.

    Args:
      user_id: The owner of the order.
      items: Validated items to persist as line items.
      totals: The priced amounts for the items.
      shipping_address: Optional address snapshot from the request.
      currency: ISO currency code of the amounts.

    Returns:
      The persisted order.

    Raises:
      OrderPersistenceError: If the header or any line item could not be
        written. No order row remains in that case.
    """
    now = db.utc_now()
    order_id = str(uuid.uuid4())
    order = db.Order(
        id=order_id,
        user_id=user_id,
        status=OrderStatus.PENDING_PAYMENT.value,
        payment_status=PaymentStatus.PENDING.value,
        currency=currency,
        subtotal=totals.subtotal,
        discount_amount=totals.discount,
        shipping_cost=totals.shipping,
        total=totals.total,
        coupon_code=totals.coupon_code,
        shipping_address=shipping_address,
        created_at=now,
        updated_at=now,
    )

    try:
      async with UnitOfWork(self.session) as uow:
        await db.insert_order(self.session, order)
        uow.on_rollback(lambda: self._delete_order(order_id))

        await db.insert_order_items(
            self.session,
            [
                db.OrderItem(
                    order_id=order_id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.line_total,
                    product_snapshot=item.snapshot(),
                )
                for item in items
            ],
        )
    except SQLAlchemyError as e:
      logger.error("Failed to persist order %s: %s", order_id, e)
      raise OrderPersistenceError("Failed to create order") from e

    logger.info(
        "Created order %s for user %s (%d items, total %d)",
        order.id,
        user_id,
        len(items),
        order.total,
    )
    return order
