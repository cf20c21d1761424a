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

"""Utility script to dump order data.

This script reads from the configured SQLite database and prints a summary of
all stored orders, including their status, totals, admin notes and line items.
It is useful for debugging and verifying the state of the server.

Usage:
  uv run dump_orders.py --database_path=... [--status=in_corso]
"""

import asyncio
import sys
from absl import app as absl_app
from absl import flags
import config  # pylint: disable=unused-import
from db import Order
from db import OrderItem
import money
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker

FLAGS = flags.FLAGS
try:
  flags.DEFINE_string("status", None, "Only dump orders in this status")
except flags.DuplicateFlagError:
  pass


async def dump_orders():
  """Queries the database and prints all orders."""
  if not FLAGS.database_path:
    print("Error: --database_path is required.")
    sys.exit(1)

  db_url = f"sqlite+aiosqlite:///{FLAGS.database_path}"
  engine = create_async_engine(db_url, echo=False)
  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )

  async with session_factory() as session:
    query = select(Order).order_by(Order.created_at)
    if FLAGS.status:
      query = query.where(Order.status == FLAGS.status)
    orders = (await session.execute(query)).scalars().all()

    if not orders:
      print("No orders found.")
      await engine.dispose()
      return

    for order in orders:
      currency = order.currency or "eur"
      print(f"Order: {order.id} [{order.status}] user={order.user_id}")
      print(
          f"  subtotal={money.format_amount(order.subtotal, currency)}"
          f" discount={money.format_amount(order.discount_amount, currency)}"
          f" shipping={money.format_amount(order.shipping_cost, currency)}"
          f" total={money.format_amount(order.total, currency)}"
      )
      if order.stripe_session_id:
        print(f"  Session: {order.stripe_session_id}")
      if order.paid_at:
        print(f"  Paid at: {order.paid_at}")

      items = (
          await session.execute(
              select(OrderItem)
              .where(OrderItem.order_id == order.id)
              .order_by(OrderItem.id)
          )
      ).scalars().all()
      if items:
        for item in items:
          name = (item.product_snapshot or {}).get("name", "Unknown Item")
          print(
              f"  - {name} (ID: {item.product_id}) x{item.quantity} @"
              f" {money.format_amount(item.unit_price, currency)} ="
              f" {money.format_amount(item.total_price, currency)}"
          )
      else:
        print("  (No items)")

      if order.admin_notes:
        for note in order.admin_notes.splitlines():
          print(f"  Note: {note}")
      print("-" * 60)

  await engine.dispose()


def main(argv):
  """Main entry point for the order dump script."""
  del argv
  asyncio.run(dump_orders())


if __name__ == "__main__":
  absl_app.run(main)
