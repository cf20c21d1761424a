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

"""Pricing service for computing order totals.

This module encapsulates subtotal, coupon discount, shipping and total
calculation. All arithmetic is done in integer cents; the shipping threshold,
flat fee and total bound come from configuration as display amounts and are
converted once.

The invariant every result satisfies:

  total == subtotal - discount + shipping
  0 <= discount <= subtotal
  shipping in {0, shipping_fee}
  0 < total <= max_order_total
"""

import dataclasses
import datetime
import logging
from typing import Callable, Optional, Sequence

import db
from enums import CouponType
from exceptions import CouponExhaustedError
from exceptions import CouponExpiredError
from exceptions import CouponMinimumNotMetError
from exceptions import CouponNotFoundError
from exceptions import InvalidTotalError
import money
from services.inventory_service import ValidatedItem
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class OrderTotals:
  """Computed amounts for an order, in cents."""

  subtotal: int
  discount: int
  shipping: int
  total: int
  coupon_code: Optional[str] = None
  coupon_type: Optional[CouponType] = None


def _utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.timezone.utc)


def _parse_timestamp(value: str) -> datetime.datetime:
  parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
  if parsed.tzinfo is None:
    parsed = parsed.replace(tzinfo=datetime.timezone.utc)
  return parsed


class PricingService:
  """Computes subtotal, discount, shipping and total for validated items."""

  def __init__(
      self,
      session: AsyncSession,
      free_shipping_threshold: int,
      shipping_fee: int,
      max_order_total: int,
      clock: Callable[[], datetime.datetime] = _utc_now,
  ):
    self.session = session
    self.free_shipping_threshold = free_shipping_threshold
    self.shipping_fee = shipping_fee
    self.max_order_total = max_order_total
    self._clock = clock

  @classmethod
  def from_settings(cls, session: AsyncSession, settings) -> "PricingService":
    return cls(
        session,
        free_shipping_threshold=money.to_cents(
            settings.free_shipping_threshold
        ),
        shipping_fee=money.to_cents(settings.shipping_fee),
        max_order_total=money.to_cents(settings.max_order_total),
    )

  async def price(
      self,
      items: Sequence[ValidatedItem],
      coupon_code: Optional[str] = None,
  ) -> OrderTotals:
    """Prices a set of validated items.

    Args:
      items: Items produced by the product validator.
      coupon_code: Optional coupon code, matched case-insensitively.

    Returns:
      The computed OrderTotals.

    Raises:
      CouponNotFoundError: If the coupon does not exist or is inactive.
      CouponExpiredError: If the coupon is past its expiry.
      CouponExhaustedError: If the coupon reached its usage limit.
      CouponMinimumNotMetError: If the subtotal is below the coupon minimum.
      InvalidTotalError: If the resulting total is not chargeable.
    """
    subtotal = sum(item.line_total for item in items)

    discount = 0
    coupon_type = None
    normalized_code = None
    if coupon_code and coupon_code.strip():
      coupon = await self._load_coupon(coupon_code, subtotal)
      coupon_type = CouponType(coupon.type)
      normalized_code = coupon.code.upper()
      discount = self._compute_discount(coupon, coupon_type, subtotal)

    if coupon_type == CouponType.FREE_SHIPPING:
      shipping = 0
    elif subtotal - discount >= self.free_shipping_threshold:
      shipping = 0
    else:
      shipping = self.shipping_fee

    total = subtotal - discount + shipping
    if total <= 0 or total > self.max_order_total:
      logger.warning(
          "Rejecting total %d (subtotal=%d discount=%d shipping=%d)",
          total,
          subtotal,
          discount,
          shipping,
      )
      raise InvalidTotalError()

    return OrderTotals(
        subtotal=subtotal,
        discount=discount,
        shipping=shipping,
        total=total,
        coupon_code=normalized_code,
        coupon_type=coupon_type,
    )

  async def _load_coupon(self, code: str, subtotal: int) -> db.Coupon:
    coupon = await db.get_coupon_by_code(self.session, code)
    if coupon is None or not coupon.is_active:
      raise CouponNotFoundError(code.strip().upper())

    if coupon.valid_until and _parse_timestamp(coupon.valid_until) < (
        self._clock()
    ):
      raise CouponExpiredError(coupon.code)

    if (
        coupon.usage_limit is not None
        and (coupon.usage_count or 0) >= coupon.usage_limit
    ):
      raise CouponExhaustedError(coupon.code)

    minimum = coupon.minimum_amount or 0
    if subtotal < minimum:
      raise CouponMinimumNotMetError(
          coupon.code, str(money.from_cents(minimum))
      )
    return coupon

  def _compute_discount(
      self, coupon: db.Coupon, coupon_type: CouponType, subtotal: int
  ) -> int:
    if coupon_type == CouponType.PERCENTAGE:
      discount = money.percentage_of(subtotal, coupon.value or 0)
      if coupon.maximum_discount is not None:
        discount = min(discount, coupon.maximum_discount)
    elif coupon_type == CouponType.FIXED_AMOUNT:
      discount = coupon.value or 0
    else:
      discount = 0
    return max(0, min(discount, subtotal))
