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

"""Adapter for the external payment processor (Stripe).

The rest of the server talks to the processor only through the
`PaymentGateway` protocol: one call to open a hosted checkout session and one
to authenticate and decode an inbound webhook. Processor requests go through
the SDK's async client. Its HTTP timeout bounds each request, network retries
are disabled, and `wait_for` applies the same bound to the awaiting coroutine,
so an abandoned request is cancelled rather than left running.
"""

import asyncio
import dataclasses
import json
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from exceptions import InvalidSignatureError
from exceptions import PaymentProviderError
import stripe

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class PaymentLineItem:
  name: str
  unit_amount: int  # Cents
  quantity: int
  image_url: Optional[str] = None
  description: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class CheckoutSessionResult:
  id: str
  url: str
  payment_intent_id: Optional[str] = None


class PaymentGateway(Protocol):
  """Operations the server needs from the payment processor."""

  async def create_checkout_session(
      self,
      line_items: Sequence[PaymentLineItem],
      metadata: Dict[str, str],
      success_url: str,
      cancel_url: str,
      shipping_cents: int = 0,
      discount_cents: int = 0,
      customer_email: Optional[str] = None,
  ) -> CheckoutSessionResult:
    ...

  def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
    ...


class StripeGateway:
  """`PaymentGateway` backed by Stripe Checkout."""

  def __init__(
      self,
      secret_key: Optional[str],
      webhook_secret: Optional[str],
      currency: str = "eur",
      timeout_seconds: float = 20.0,
      webhook_tolerance_seconds: int = 300,
      shipping_countries: Sequence[str] = (),
      client: Optional[stripe.StripeClient] = None,
  ):
    self.secret_key = secret_key
    self.webhook_secret = webhook_secret
    self.currency = currency
    self.timeout_seconds = timeout_seconds
    self.webhook_tolerance_seconds = webhook_tolerance_seconds
    self.shipping_countries = list(shipping_countries)
    self._client = client

  @classmethod
  def from_settings(cls, settings) -> "StripeGateway":
    return cls(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        currency=settings.currency,
        timeout_seconds=settings.payment_timeout_seconds,
        webhook_tolerance_seconds=settings.webhook_tolerance_seconds,
        shipping_countries=settings.allowed_shipping_countries,
    )

  @property
  def client(self) -> stripe.StripeClient:
    """The SDK client, built on first use."""
    if self._client is None:
      self._client = stripe.StripeClient(
          self.secret_key,
          http_client=stripe.HTTPXClient(timeout=self.timeout_seconds),
          max_network_retries=0,
      )
    return self._client

  def _line_item(self, item: PaymentLineItem) -> Dict[str, Any]:
    product_data: Dict[str, Any] = {"name": item.name}
    if item.description:
      product_data["description"] = item.description
    if item.image_url:
      product_data["images"] = [item.image_url]
    return {
        "price_data": {
            "currency": self.currency,
            "product_data": product_data,
            "unit_amount": item.unit_amount,
        },
        "quantity": item.quantity,
    }

  def _session_params(
      self,
      line_items: Sequence[PaymentLineItem],
      metadata: Dict[str, str],
      success_url: str,
      cancel_url: str,
      shipping_cents: int,
      customer_email: Optional[str],
  ) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": [self._line_item(item) for item in line_items],
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": metadata,
        "payment_intent_data": {"metadata": metadata},
        "billing_address_collection": "required",
    }
    if self.shipping_countries:
      params["shipping_address_collection"] = {
          "allowed_countries": self.shipping_countries
      }
    if customer_email:
      params["customer_email"] = customer_email
    if shipping_cents > 0:
      params["shipping_options"] = [{
          "shipping_rate_data": {
              "type": "fixed_amount",
              "fixed_amount": {
                  "amount": shipping_cents,
                  "currency": self.currency,
              },
              "display_name": "Spedizione standard",
          }
      }]
    return params

  async def _call(self, coro):
    return await asyncio.wait_for(coro, timeout=self.timeout_seconds)

  async def _discard_coupon(self, coupon_id: str) -> None:
    try:
      await self._call(self.client.v1.coupons.delete_async(coupon_id))
    except (asyncio.TimeoutError, stripe.StripeError) as e:
      logger.error("Failed to delete unused coupon %s: %s", coupon_id, e)
      return
    logger.info("Deleted unused coupon %s", coupon_id)

  async def create_checkout_session(
      self,
      line_items: Sequence[PaymentLineItem],
      metadata: Dict[str, str],
      success_url: str,
      cancel_url: str,
      shipping_cents: int = 0,
      discount_cents: int = 0,
      customer_email: Optional[str] = None,
  ) -> CheckoutSessionResult:
    """Opens a hosted checkout session.

    A discount is carried by a single-use processor coupon. If the session
    cannot be opened, the coupon is deleted again.

    Raises:
      PaymentProviderError: If the processor is not configured, rejects the
        request or does not answer within the timeout.
    """
    if not self.secret_key:
      raise PaymentProviderError("Payment processor is not configured")

    params = self._session_params(
        line_items,
        metadata,
        success_url,
        cancel_url,
        shipping_cents,
        customer_email,
    )
    coupon_id = None
    try:
      if discount_cents > 0:
        coupon = await self._call(
            self.client.v1.coupons.create_async(
                params={
                    "amount_off": discount_cents,
                    "currency": self.currency,
                    "duration": "once",
                    "max_redemptions": 1,
                    "metadata": {"order_id": metadata.get("order_id", "")},
                }
            )
        )
        coupon_id = coupon.id
        params["discounts"] = [{"coupon": coupon_id}]

      session = await self._call(
          self.client.v1.checkout.sessions.create_async(params=params)
      )
    except asyncio.TimeoutError as e:
      logger.error(
          "Checkout session creation timed out after %.1fs",
          self.timeout_seconds,
      )
      if coupon_id:
        await self._discard_coupon(coupon_id)
      raise PaymentProviderError("Payment processor timed out") from e
    except stripe.StripeError as e:
      logger.error(
          "Checkout session creation failed: %s (%s)", e, type(e).__name__
      )
      if coupon_id:
        await self._discard_coupon(coupon_id)
      raise PaymentProviderError(
          "Payment processor rejected the request"
      ) from e

    return CheckoutSessionResult(
        id=session.id,
        url=session.url,
        payment_intent_id=getattr(session, "payment_intent", None),
    )

  def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
    """Verifies the signature header and decodes the event body.

    Raises:
      InvalidSignatureError: If the signature does not match, the timestamp
        is outside the tolerance, or the body is not a JSON event.
    """
    if not self.webhook_secret:
      logger.error("Webhook secret is not configured")
      raise InvalidSignatureError("Webhook secret is not configured")

    body = payload.decode("utf-8", errors="replace")
    try:
      stripe.WebhookSignature.verify_header(
          body,
          signature,
          self.webhook_secret,
          self.webhook_tolerance_seconds,
      )
    except stripe.SignatureVerificationError as e:
      logger.warning("Webhook signature verification failed: %s", e)
      raise InvalidSignatureError() from e

    try:
      event = json.loads(body)
    except ValueError as e:
      raise InvalidSignatureError("Invalid payload") from e
    if not isinstance(event, dict) or not event.get("id"):
      raise InvalidSignatureError("Invalid payload")
    return event


def line_items_for(items) -> List[PaymentLineItem]:
  """Maps validated items to processor line items."""
  return [
      PaymentLineItem(
          name=item.name,
          unit_amount=item.unit_price,
          quantity=item.quantity,
          image_url=item.image_url,
          description=item.description,
      )
      for item in items
  ]
