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

"""Database management and persistence layer for the checkout server.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the server. It utilizes SQLAlchemy with
SQLite (via aiosqlite). Catalog, order and ledger tables share one database so
that an order's status change and the stock decrements it triggers commit in a
single transaction.

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup.
- WAL Mode: Automatically enables SQLite Write-Ahead Logging so the checkout
  and webhook endpoints can read while the other writes.
- Declarative Models: Defines tables for products, coupons, orders, order line
  items, loyalty balances, webhook idempotency records, webhook errors and
  stock alerts.
- Data Access Helpers: Asynchronous functions for reads and for the
  conditional writes (status transitions, stock decrements) that keep
  concurrent webhook deliveries from racing each other.

All monetary columns hold integer cents.
"""

import datetime
import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import delete
from sqlalchemy import ForeignKey
from sqlalchemy import func
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import text
from sqlalchemy import Text
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


def utc_now() -> str:
  return datetime.datetime.now(datetime.timezone.utc).isoformat()


class DatabaseManager:
  """Manages the database engine and sessions without using global variables."""

  def __init__(self) -> None:
    self.engine: Optional[AsyncEngine] = None
    self.session_factory: Optional[sessionmaker] = None

  async def init_db(self, database_path: str, **engine_kwargs: Any) -> None:
    """Initializes the database engine and creates tables."""
    url = f"sqlite+aiosqlite:///{database_path}"
    self.engine = create_async_engine(url, echo=False, **engine_kwargs)

    async with self.engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)

  async def close(self) -> None:
    """Closes the database engine."""
    if self.engine:
      await self.engine.dispose()
      self.engine = None
      self.session_factory = None


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


class Product(Base):
  __tablename__ = "products"

  id = Column(String, primary_key=True)
  name = Column(String, nullable=False)
  description = Column(String, nullable=True)
  price = Column(Integer, nullable=False)  # Price in cents
  stock = Column(Integer, nullable=False, default=0)
  is_active = Column(Boolean, nullable=False, default=True)
  image_url = Column(String, nullable=True)
  updated_at = Column(String, nullable=True)


class Coupon(Base):
  __tablename__ = "coupons"

  id = Column(String, primary_key=True)
  code = Column(String, unique=True, index=True)  # Stored upper-case
  type = Column(String)  # 'percentage', 'fixed_amount' or 'free_shipping'
  value = Column(Integer, default=0)  # Percentage (e.g., 10) or cents
  maximum_discount = Column(Integer, nullable=True)  # In cents
  minimum_amount = Column(Integer, default=0)  # In cents
  valid_until = Column(String, nullable=True)  # ISO-8601
  usage_limit = Column(Integer, nullable=True)
  usage_count = Column(Integer, default=0)
  is_active = Column(Boolean, default=True)
  description = Column(String, nullable=True)


class Order(Base):
  __tablename__ = "orders"

  id = Column(String, primary_key=True)
  user_id = Column(String, index=True, nullable=False)
  status = Column(String, nullable=False, index=True)
  payment_status = Column(String, nullable=True)
  currency = Column(String, nullable=False, default="eur")
  subtotal = Column(Integer, nullable=False)
  discount_amount = Column(Integer, nullable=False, default=0)
  shipping_cost = Column(Integer, nullable=False, default=0)
  total = Column(Integer, nullable=False)
  coupon_code = Column(String, nullable=True)
  stripe_session_id = Column(String, nullable=True, unique=True, index=True)
  payment_intent_id = Column(String, nullable=True, index=True)
  shipping_address = Column(JSON, nullable=True)
  billing_address = Column(JSON, nullable=True)
  admin_notes = Column(Text, nullable=True)
  # Set exactly once, by whichever confirmation wins the fulfillment claim.
  paid_at = Column(String, nullable=True)
  created_at = Column(String, nullable=False)
  updated_at = Column(String, nullable=False)


class OrderItem(Base):
  __tablename__ = "order_items"

  id = Column(Integer, primary_key=True, autoincrement=True)
  order_id = Column(String, ForeignKey("orders.id"), index=True, nullable=False)
  product_id = Column(String, nullable=False)
  quantity = Column(Integer, nullable=False)
  unit_price = Column(Integer, nullable=False)  # Price snapshot in cents
  total_price = Column(Integer, nullable=False)
  product_snapshot = Column(JSON, nullable=True)


class LoyaltyAccount(Base):
  __tablename__ = "loyalty_accounts"

  user_id = Column(String, primary_key=True)
  points = Column(Integer, nullable=False, default=0)
  updated_at = Column(String, nullable=True)


class WebhookEvent(Base):
  __tablename__ = "webhook_events"

  event_id = Column(String, primary_key=True)
  event_type = Column(String)
  processed_at = Column(String, index=True)


class WebhookError(Base):
  __tablename__ = "webhook_errors"

  id = Column(Integer, primary_key=True, autoincrement=True)
  event_id = Column(String, nullable=True)
  event_type = Column(String, nullable=True)
  error_message = Column(Text)
  duration_ms = Column(Integer, nullable=True)
  created_at = Column(String)


class StockAlert(Base):
  __tablename__ = "stock_alerts"

  id = Column(Integer, primary_key=True, autoincrement=True)
  product_id = Column(String, index=True)
  kind = Column(String)  # 'low_stock', 'out_of_stock' or 'oversold'
  stock = Column(Integer)
  order_id = Column(String, nullable=True)
  created_at = Column(String)


# --- Data Access Helpers ---


async def get_product(
    session: AsyncSession, product_id: str
) -> Optional[Product]:
  """Retrieves a product by ID."""
  return await session.get(Product, product_id)


async def get_products_by_ids(
    session: AsyncSession, product_ids: List[str]
) -> Dict[str, Product]:
  """Retrieves several products in a single query, keyed by ID."""
  if not product_ids:
    return {}
  result = await session.execute(
      select(Product).where(Product.id.in_(product_ids))
  )
  return {p.id: p for p in result.scalars().all()}


async def get_coupon_by_code(
    session: AsyncSession, code: str
) -> Optional[Coupon]:
  """Retrieves a coupon by code, ignoring case.

  Args:
    session: The database session to use.
    code: The coupon code as typed by the customer.

  Returns:
    The Coupon object if found, otherwise None.
  """
  result = await session.execute(
      select(Coupon).where(func.upper(Coupon.code) == code.strip().upper())
  )
  return result.scalar_one_or_none()


async def insert_order(session: AsyncSession, order: Order) -> None:
  """Adds an order header and flushes it so line items can reference it."""
  session.add(order)
  await session.flush()


async def insert_order_items(
    session: AsyncSession, items: List[OrderItem]
) -> None:
  """Adds the line items of an order and flushes them."""
  session.add_all(items)
  await session.flush()


async def delete_order(session: AsyncSession, order_id: str) -> int:
  """Deletes an order header and any of its line items."""
  await session.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
  result = await session.execute(delete(Order).where(Order.id == order_id))
  return result.rowcount


async def get_order(session: AsyncSession, order_id: str) -> Optional[Order]:
  """Retrieves an order by ID, bypassing the identity map."""
  result = await session.execute(
      select(Order)
      .where(Order.id == order_id)
      .execution_options(populate_existing=True)
  )
  return result.scalar_one_or_none()


async def get_order_by_session_id(
    session: AsyncSession, stripe_session_id: str
) -> Optional[Order]:
  """Retrieves the order a payment processor checkout session belongs to."""
  result = await session.execute(
      select(Order)
      .where(Order.stripe_session_id == stripe_session_id)
      .execution_options(populate_existing=True)
  )
  return result.scalar_one_or_none()


async def get_order_by_payment_intent(
    session: AsyncSession, payment_intent_id: str
) -> Optional[Order]:
  """Retrieves the order a payment intent was created for."""
  result = await session.execute(
      select(Order)
      .where(Order.payment_intent_id == payment_intent_id)
      .execution_options(populate_existing=True)
  )
  return result.scalars().first()


async def get_order_items(
    session: AsyncSession, order_id: str
) -> List[OrderItem]:
  """Retrieves the line items of an order in insertion order."""
  result = await session.execute(
      select(OrderItem)
      .where(OrderItem.order_id == order_id)
      .order_by(OrderItem.id)
  )
  return list(result.scalars().all())


async def attach_checkout_session(
    session: AsyncSession,
    order_id: str,
    stripe_session_id: str,
    payment_intent_id: Optional[str],
) -> None:
  """Stores the processor session identifiers on an order."""
  await session.execute(
      update(Order)
      .where(Order.id == order_id)
      .values(
          stripe_session_id=stripe_session_id,
          payment_intent_id=payment_intent_id,
          updated_at=utc_now(),
      )
  )


async def transition_order_status(
    session: AsyncSession,
    order_id: str,
    expected_status: str,
    new_status: str,
    **values: Any,
) -> bool:
  """Moves an order to a new status only if it is still in the expected one.

  Args:
    session: The database session to use.
    order_id: The order to update.
    expected_status: The status the caller observed and validated against.
    new_status: The status to move to.
    **values: Extra columns to set in the same statement.

  Returns:
    True if this call performed the transition, False if another writer
    changed the status first.
  """
  stmt = (
      update(Order)
      .where(Order.id == order_id)
      .where(Order.status == expected_status)
      .values(status=new_status, updated_at=utc_now(), **values)
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def update_order_fields(
    session: AsyncSession, order_id: str, **values: Any
) -> None:
  """Sets non-status columns on an order."""
  await session.execute(
      update(Order)
      .where(Order.id == order_id)
      .values(updated_at=utc_now(), **values)
  )


async def claim_order_fulfillment(session: AsyncSession, order_id: str) -> bool:
  """Marks an order as paid exactly once.

  Stock decrements and loyalty accrual run only for the caller that wins this
  claim, whichever confirmation event that caller is handling.
  """
  stmt = (
      update(Order)
      .where(Order.id == order_id)
      .where(Order.paid_at.is_(None))
      .values(paid_at=utc_now())
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def append_admin_note(
    session: AsyncSession, order_id: str, note: str
) -> None:
  """Appends a line to an order's admin notes."""
  existing = func.coalesce(Order.admin_notes + "\n", "")
  await session.execute(
      update(Order)
      .where(Order.id == order_id)
      .values(admin_notes=existing + note, updated_at=utc_now())
  )


async def decrement_stock(
    session: AsyncSession, product_id: str, quantity: int
) -> Optional[int]:
  """Atomically decrements stock if sufficient stock exists.

  A product whose stock reaches zero is deactivated in the same transaction.

  Returns:
    The remaining stock, or None if the product is missing or could not
    cover `quantity`.
  """
  stmt = (
      update(Product)
      .where(Product.id == product_id)
      .where(Product.stock >= quantity)
      .values(stock=Product.stock - quantity, updated_at=utc_now())
  )
  result = await session.execute(stmt)
  if result.rowcount == 0:
    return None

  remaining = (
      await session.execute(
          select(Product.stock).where(Product.id == product_id)
      )
  ).scalar_one()
  if remaining == 0:
    await session.execute(
        update(Product)
        .where(Product.id == product_id)
        .where(Product.stock == 0)
        .values(is_active=False)
    )
  return remaining


async def add_loyalty_points(
    session: AsyncSession, user_id: str, points: int
) -> None:
  """Adds points to a user's loyalty balance, opening the account if needed."""
  result = await session.execute(
      update(LoyaltyAccount)
      .where(LoyaltyAccount.user_id == user_id)
      .values(points=LoyaltyAccount.points + points, updated_at=utc_now())
  )
  if result.rowcount == 0:
    session.add(
        LoyaltyAccount(user_id=user_id, points=points, updated_at=utc_now())
    )
    await session.flush()


async def get_loyalty_points(session: AsyncSession, user_id: str) -> int:
  result = await session.execute(
      select(LoyaltyAccount.points).where(LoyaltyAccount.user_id == user_id)
  )
  return result.scalar_one_or_none() or 0


async def add_stock_alert(
    session: AsyncSession,
    product_id: str,
    kind: str,
    stock: int,
    order_id: Optional[str] = None,
) -> None:
  """Records an admin-facing stock alert."""
  session.add(
      StockAlert(
          product_id=product_id,
          kind=kind,
          stock=stock,
          order_id=order_id,
          created_at=utc_now(),
      )
  )


async def has_webhook_event(session: AsyncSession, event_id: str) -> bool:
  """Checks whether a webhook event was already recorded."""
  return await session.get(WebhookEvent, event_id) is not None


async def save_webhook_event(
    session: AsyncSession, event_id: str, event_type: str
) -> None:
  """Saves a new webhook idempotency record."""
  session.add(
      WebhookEvent(
          event_id=event_id, event_type=event_type, processed_at=utc_now()
      )
  )
  await session.flush()


async def delete_webhook_event(session: AsyncSession, event_id: str) -> None:
  await session.execute(
      delete(WebhookEvent).where(WebhookEvent.event_id == event_id)
  )


async def prune_webhook_events(
    session: AsyncSession, older_than: datetime.datetime
) -> int:
  """Deletes idempotency records processed before `older_than`."""
  result = await session.execute(
      delete(WebhookEvent).where(
          WebhookEvent.processed_at < older_than.isoformat()
      )
  )
  return result.rowcount


async def log_webhook_error(
    session: AsyncSession,
    event_id: Optional[str],
    event_type: Optional[str],
    error_message: str,
    duration_ms: Optional[int] = None,
) -> None:
  """Logs a webhook processing failure to the database."""
  session.add(
      WebhookError(
          event_id=event_id,
          event_type=event_type,
          error_message=error_message,
          duration_ms=duration_ms,
          created_at=utc_now(),
      )
  )
