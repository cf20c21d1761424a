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

"""Shared fixtures for the server tests.

Provides a throwaway SQLite database bound to the global database manager,
catalog seeding, a fake payment gateway that records session requests, and
helpers that build processor events signed exactly as Stripe signs them.
"""

import hashlib
import hmac
import itertools
import json
import os
import time
from typing import Any, Dict, List, Optional, Sequence

import db
from services.payment_gateway import CheckoutSessionResult
from services.payment_gateway import PaymentLineItem
from services.payment_gateway import StripeGateway
from sqlalchemy import func
from sqlalchemy import select
from sqlalchemy.pool import NullPool

WEBHOOK_SECRET = "whsec_test_secret"


async def init_test_db(test_dir: str) -> str:
  """Creates a fresh database file and points the manager at it."""
  path = os.path.join(test_dir, "test_shop.db")
  await db.manager.init_db(path, poolclass=NullPool)
  return path


async def seed_products(products: Sequence[Dict[str, Any]]) -> None:
  """Inserts products given as column dicts (price in cents)."""
  async with db.manager.session_factory() as session:
    for values in products:
      row = {"is_active": True, "updated_at": db.utc_now(), **values}
      session.add(db.Product(**row))
    await session.commit()


async def seed_coupon(**values: Any) -> None:
  row = {
      "id": values.get("code", "COUPON"),
      "value": 0,
      "minimum_amount": 0,
      "usage_count": 0,
      "is_active": True,
      **values,
  }
  async with db.manager.session_factory() as session:
    session.add(db.Coupon(**row))
    await session.commit()


async def get_product(product_id: str) -> Optional[db.Product]:
  async with db.manager.session_factory() as session:
    return await db.get_product(session, product_id)


async def get_order(order_id: str) -> Optional[db.Order]:
  async with db.manager.session_factory() as session:
    return await db.get_order(session, order_id)


async def count_rows(model) -> int:
  async with db.manager.session_factory() as session:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


def sign_payload(
    payload: bytes,
    secret: str = WEBHOOK_SECRET,
    timestamp: Optional[int] = None,
) -> str:
  """Builds a Stripe-Signature header for `payload`."""
  timestamp = int(time.time()) if timestamp is None else timestamp
  signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
  digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
  return f"t={timestamp},v1={digest}"


def make_event(
    event_id: str, event_type: str, obj: Dict[str, Any]
) -> bytes:
  return json.dumps({
      "id": event_id,
      "object": "event",
      "type": event_type,
      "data": {"object": obj},
  }).encode("utf-8")


class FakePaymentGateway:
  """Payment gateway double.

  Session creation is recorded and answered locally. Webhook verification is
  delegated to the real Stripe gateway so signatures are checked for real.
  """

  def __init__(
      self,
      webhook_secret: str = WEBHOOK_SECRET,
      error: Optional[Exception] = None,
  ):
    self.calls: List[Dict[str, Any]] = []
    self.error = error
    self._ids = itertools.count(1)
    self._verifier = StripeGateway(
        secret_key=None, webhook_secret=webhook_secret
    )

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
    self.calls.append({
        "line_items": list(line_items),
        "metadata": dict(metadata),
        "success_url": success_url,
        "cancel_url": cancel_url,
        "shipping_cents": shipping_cents,
        "discount_cents": discount_cents,
        "customer_email": customer_email,
    })
    if self.error is not None:
      raise self.error
    n = next(self._ids)
    return CheckoutSessionResult(
        id=f"cs_test_{n}",
        url=f"https://checkout.stripe.com/c/pay/cs_test_{n}",
        payment_intent_id=f"pi_test_{n}",
    )

  def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
    return self._verifier.construct_event(payload, signature)
