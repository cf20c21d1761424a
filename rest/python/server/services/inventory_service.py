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

"""Product and stock validation for checkout requests.

A stale cart that references a deleted or deactivated product should not block
checkout of the remaining items, so such lines are dropped. Asking for more
units than an active product has in stock is an error the customer must act
on, so it fails the whole request.
"""

import dataclasses
import logging
from typing import Dict, Iterable, List, Optional, Tuple

import db
from exceptions import InsufficientStockError
from exceptions import NoValidItemsError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ValidatedItem:
  """A requested line with the product data read at validation time."""

  product_id: str
  quantity: int
  name: str
  unit_price: int  # Cents
  stock: int
  image_url: Optional[str] = None
  description: Optional[str] = None

  @property
  def line_total(self) -> int:
    return self.unit_price * self.quantity

  def snapshot(self) -> Dict[str, object]:
    return {
        "name": self.name,
        "price": self.unit_price,
        "image_url": self.image_url,
    }


def merge_quantities(items: Iterable[Tuple[str, int]]) -> List[Tuple[str, int]]:
  """Sums quantities of repeated product IDs, keeping first-seen order."""
  merged: Dict[str, int] = {}
  for product_id, quantity in items:
    merged[product_id] = merged.get(product_id, 0) + quantity
  return list(merged.items())


class ProductValidator:
  """Checks requested items against the product catalog."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def validate(
      self, items: Iterable[Tuple[str, int]]
  ) -> List[ValidatedItem]:
    """Validates (product_id, quantity) pairs.

    Args:
      items: The requested lines. Quantities must be positive.

    Returns:
      The lines that reference existing, active products.

    Raises:
      InsufficientStockError: If an active product has less stock than
        requested.
      NoValidItemsError: If no line references an existing, active product.
    """
    requested = merge_quantities(items)
    products = await db.get_products_by_ids(
        self.session, [product_id for product_id, _ in requested]
    )

    validated = []
    for product_id, quantity in requested:
      if quantity <= 0:
        logger.info("Skipping invalid quantity %d for %s", quantity, product_id)
        continue

      product = products.get(product_id)
      if product is None or not product.is_active:
        logger.info("Product not found or inactive: %s", product_id)
        continue

      if product.stock < quantity:
        raise InsufficientStockError(product.name, product.stock, quantity)

      validated.append(
          ValidatedItem(
              product_id=product.id,
              quantity=quantity,
              name=product.name,
              unit_price=product.price,
              stock=product.stock,
              image_url=product.image_url,
              description=product.description,
          )
      )

    if not validated:
      raise NoValidItemsError()
    return validated
