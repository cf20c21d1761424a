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

"""Database initialization script for the checkout server.

This script imports the product catalog and coupons from CSV files into the
configured SQLite database. It clears any existing data in the 'products' and
'coupons' tables before populating them with the new dataset. Prices and
amounts in the CSV files are display amounts (e.g. "12.50") and are stored as
cents.

Usage:
  uv run import_csv.py --database_path=... --data_dir=...
"""

import asyncio
import csv
import logging
import os
from typing import List, Optional
from absl import app as absl_app
from absl import flags
import config  # pylint: disable=unused-import
import db
from db import Coupon
from db import Product
from enums import CouponType
import money
from sqlalchemy import delete

FLAGS = flags.FLAGS
try:
  flags.DEFINE_string(
      "data_dir",
      os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"),
      "Directory containing products.csv and coupons.csv",
  )
except flags.DuplicateFlagError:
  pass

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _parse_bool(value: Optional[str], default: bool = True) -> bool:
  if value is None or value.strip() == "":
    return default
  return value.strip().lower() in ("1", "true", "yes", "y")


def _optional_cents(value: Optional[str]) -> Optional[int]:
  if value is None or value.strip() == "":
    return None
  return money.to_cents(value.strip())


def read_products(path: str) -> List[Product]:
  """Reads products.csv rows into Product rows."""
  products = []
  with open(path, "r", newline="") as f:
    reader = csv.DictReader(f)
    for row in reader:
      products.append(
          Product(
              id=row["id"],
              name=row["name"],
              description=row.get("description") or None,
              price=money.to_cents(row["price"]),
              stock=int(row.get("stock") or 0),
              is_active=_parse_bool(row.get("is_active")),
              image_url=row.get("image_url") or None,
              updated_at=db.utc_now(),
          )
      )
  return products


def read_coupons(path: str) -> List[Coupon]:
  """Reads coupons.csv rows into Coupon rows."""
  coupons = []
  with open(path, "r", newline="") as f:
    reader = csv.DictReader(f)
    for row in reader:
      coupon_type = CouponType(row["type"])
      if coupon_type == CouponType.PERCENTAGE:
        value = int(row["value"])
      elif coupon_type == CouponType.FIXED_AMOUNT:
        value = money.to_cents(row["value"])
      else:
        value = 0
      usage_limit = row.get("usage_limit")
      coupons.append(
          Coupon(
              id=row.get("id") or row["code"].upper(),
              code=row["code"].upper(),
              type=coupon_type.value,
              value=value,
              maximum_discount=_optional_cents(row.get("maximum_discount")),
              minimum_amount=_optional_cents(row.get("minimum_amount")) or 0,
              valid_until=row.get("valid_until") or None,
              usage_limit=int(usage_limit) if usage_limit else None,
              usage_count=int(row.get("usage_count") or 0),
              is_active=_parse_bool(row.get("is_active")),
              description=row.get("description") or None,
          )
      )
  return coupons


async def import_csv_data(database_path: str, data_dir: str) -> None:
  """Reads CSV files and populates the database."""
  # Ensure tables exist
  await db.manager.init_db(database_path)

  try:
    async with db.manager.session_factory() as session:
      logger.info("Clearing existing products...")
      await session.execute(delete(Product))

      logger.info("Importing Products from CSV...")
      products = read_products(os.path.join(data_dir, "products.csv"))
      session.add_all(products)

      logger.info("Clearing existing coupons...")
      await session.execute(delete(Coupon))

      coupons_path = os.path.join(data_dir, "coupons.csv")
      if os.path.exists(coupons_path):
        logger.info("Importing Coupons from CSV...")
        session.add_all(read_coupons(coupons_path))

      await session.commit()

    logger.info("Database populated from CSVs.")
  finally:
    await db.manager.close()


def main(argv) -> None:
  """Main entry point for the CSV import script."""
  del argv
  if not FLAGS.database_path:
    logger.error("--database_path is required.")
    return
  asyncio.run(import_csv_data(FLAGS.database_path, FLAGS.data_dir))


if __name__ == "__main__":
  absl_app.run(main)
