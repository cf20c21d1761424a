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

"""Checkout service for turning a cart into a pending order and payment page.

This module provides the `CheckoutService` class, which runs the checkout
pipeline for an authenticated user:

- Rate limiting per user, before any datastore or processor work.
- Product and stock validation of the requested items.
- Pricing, including coupon discount and shipping.
- Persisting the order header and line items as one unit of work.
- Opening a hosted payment session and attaching its identifiers to the order.

Stock is not reserved here. It is decremented when the payment is confirmed
by the webhook reconciler. The service also returns placed orders to their
owners.
"""

import dataclasses
import logging

import config
import db
from exceptions import ForbiddenError
from exceptions import PaymentProviderError
from exceptions import ResourceNotFoundError
import money
from models import AuthenticatedUser
from models import CheckoutRequest
from models import OrderItemView
from models import OrderView
from services.inventory_service import ProductValidator
from services.order_writer import OrderWriter
from services.payment_gateway import line_items_for
from services.payment_gateway import PaymentGateway
from services.pricing_service import PricingService
from services.rate_limit import RateLimiter
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class CheckoutResult:
  order_id: str
  session_id: str
  checkout_url: str


class CheckoutService:
  """Service for creating orders and their payment sessions."""

  def __init__(
      self,
      session: AsyncSession,
      gateway: PaymentGateway,
      rate_limiter: RateLimiter,
      settings: config.ShopSettings,
  ):
    self.session = session
    self.gateway = gateway
    self.rate_limiter = rate_limiter
    self.settings = settings
    self.site_url = settings.site_url.rstrip("/")

  async def create_checkout(
      self, user: AuthenticatedUser, request: CheckoutRequest
  ) -> CheckoutResult:
    """Creates a pending order and a hosted payment session for it.

    Args:
      user: The authenticated customer.
      request: The requested items, coupon and shipping address.

    Returns:
      The order id together with the payment session id and URL.

    Raises:
      RateLimitedError: If the user exceeded the checkout quota.
      InsufficientStockError: If an item asks for more than is in stock.
      NoValidItemsError: If no item references an active product.
      ShopError: For coupon and total validation failures.
      OrderPersistenceError: If the order could not be stored.
      PaymentProviderError: If the processor did not open a session. The
        order stays in `pending_payment` and is never charged.
    """
    logger.info("Checkout request from user %s", user.id)
    self.rate_limiter.check(user.id)

    validated = await ProductValidator(self.session).validate(
        (item.product_id, item.quantity) for item in request.items
    )
    totals = await PricingService.from_settings(
        self.session, self.settings
    ).price(validated, request.coupon_code)

    order = await OrderWriter(self.session).create_order(
        user_id=user.id,
        items=validated,
        totals=totals,
        shipping_address=request.shipping_address,
        currency=self.settings.currency,
    )

    metadata = {
        "order_id": order.id,
        "user_id": user.id,
        "items_count": str(len(validated)),
        "total_amount": str(money.from_cents(totals.total)),
    }
    try:
      payment_session = await self.gateway.create_checkout_session(
          line_items_for(validated),
          metadata,
          success_url=(
              f"{self.site_url}/success?session_id={{CHECKOUT_SESSION_ID}}"
          ),
          cancel_url=f"{self.site_url}/cart",
          shipping_cents=totals.shipping,
          discount_cents=totals.discount,
          customer_email=user.email,
      )
    except PaymentProviderError:
      logger.error(
          "No payment session for order %s, leaving it pending", order.id
      )
      raise

    await db.attach_checkout_session(
        self.session,
        order.id,
        payment_session.id,
        payment_session.payment_intent_id,
    )
    await self.session.commit()
    logger.info(
        "Checkout session %s created for order %s",
        payment_session.id,
        order.id,
    )

    return CheckoutResult(
        order_id=order.id,
        session_id=payment_session.id,
        checkout_url=payment_session.url,
    )

  async def get_order(
      self, user: AuthenticatedUser, order_id: str
  ) -> OrderView:
    """Returns an order with its line items to the user who placed it."""
    order = await db.get_order(self.session, order_id)
    if order is None:
      raise ResourceNotFoundError("Order not found")
    if order.user_id != user.id:
      logger.warning("User %s denied access to order %s", user.id, order_id)
      raise ForbiddenError("Order belongs to another user")

    items = await db.get_order_items(self.session, order_id)
    return OrderView(
        id=order.id,
        status=order.status,
        payment_status=order.payment_status,
        currency=order.currency,
        subtotal=money.from_cents(order.subtotal),
        discount_amount=money.from_cents(order.discount_amount),
        shipping_cost=money.from_cents(order.shipping_cost),
        total=money.from_cents(order.total),
        coupon_code=order.coupon_code,
        shipping_address=order.shipping_address,
        billing_address=order.billing_address,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[
            OrderItemView(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=money.from_cents(item.unit_price),
                total_price=money.from_cents(item.total_price),
                product_snapshot=item.product_snapshot,
            )
            for item in items
        ],
    )
