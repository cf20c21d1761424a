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

"""Utility script to dump inventory data.

This script reads the current stock levels from the configured SQLite database
and outputs them to standard output in CSV format, together with any stock
alerts raised by the webhook reconciler.

Usage:
  uv run dump_inventory.py --database_path=... [--alerts]
"""

import asyncio
import csv
import sys
from absl import app as absl_app
from absl import flags
import config  # pylint: disable=unused-import
from db import Product
from db import StockAlert
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker

FLAGS = flags.FLAGS
try:
  flags.DEFINE_boolean("alerts", False, "Also dump recorded stock alerts")
except flags.DuplicateFlagError:
  pass


async def dump_inventory():
  """Queries the database and prints current stock levels."""
  if not FLAGS.database_path:
    print("Error: --database_path is required.")
    sys.exit(1)

  db_url = f"sqlite+aiosqlite:///{FLAGS.database_path}"
  engine = create_async_engine(db_url, echo=False)
  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )

  async with session_factory() as session:
    result = await session.execute(select(Product).order_by(Product.id))
    products = result.scalars().all()

    writer = csv.writer(sys.stdout)
    writer.writerow(["product_id", "name", "stock", "is_active"])
    for product in products:
      writer.writerow(
          [product.id, product.name, product.stock, product.is_active]
      )

    if FLAGS.alerts:
      result = await session.execute(
          select(StockAlert).order_by(StockAlert.id)
      )
      writer.writerow([])
      writer.writerow(["product_id", "kind", "stock", "order_id", "created_at"])
      for alert in result.scalars().all():
        writer.writerow([
            alert.product_id,
            alert.kind,
            alert.stock,
            alert.order_id,
            alert.created_at,
        ])

  await engine.dispose()


def main(argv):
  """Main entry point for the inventory dump script."""
  del argv
  asyncio.run(dump_inventory())


if __name__ == "__main__":
  absl_app.run(main)
