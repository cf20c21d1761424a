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

"""Shared configuration and startup logic for the checkout server."""

import asyncio
import contextlib
from decimal import Decimal
import logging
import os
from typing import Optional, Tuple

from absl import flags
import db
from fastapi import FastAPI
from pydantic import BaseModel
from pydantic import ConfigDict

logger = logging.getLogger(__name__)

FLAGS = flags.FLAGS

SERVER_VERSION = "1.0.0"

# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string("database_path", None, "Path to the shop SQLite DB")
  flags.DEFINE_integer("port", None, "Port to run the server on")
  flags.DEFINE_string(
      "site_url",
      os.environ.get("SITE_URL", "http://localhost:3000"),
      "Public storefront URL used for checkout success/cancel redirects",
  )
  flags.DEFINE_string("currency", "eur", "ISO currency code for all charges")
  flags.DEFINE_string(
      "stripe_secret_key",
      os.environ.get("STRIPE_SECRET_KEY"),
      "Stripe API secret key",
  )
  flags.DEFINE_string(
      "stripe_webhook_secret",
      os.environ.get("STRIPE_WEBHOOK_SECRET"),
      "Shared secret used to verify Stripe webhook signatures",
  )
  flags.DEFINE_integer(
      "webhook_tolerance_seconds",
      300,
      "Maximum age of a webhook signature timestamp",
  )
  flags.DEFINE_float(
      "payment_timeout_seconds",
      20.0,
      "Timeout for calls to the payment processor",
  )
  flags.DEFINE_string(
      "free_shipping_threshold",
      "50.00",
      "Order amount (after discount) from which shipping is free",
  )
  flags.DEFINE_string("shipping_fee", "5.99", "Flat shipping fee")
  flags.DEFINE_string(
      "max_order_total", "999999.99", "Largest total accepted for a charge"
  )
  flags.DEFINE_integer(
      "low_stock_threshold", 5, "Stock level at which an admin alert is raised"
  )
  flags.DEFINE_integer(
      "checkout_rate_limit", 5, "Checkout attempts allowed per user per window"
  )
  flags.DEFINE_integer(
      "checkout_rate_window_seconds", 60, "Checkout rate limit window"
  )
  flags.DEFINE_integer(
      "webhook_rate_limit", 100, "Webhook deliveries allowed per IP per window"
  )
  flags.DEFINE_integer(
      "webhook_rate_window_seconds", 60, "Webhook rate limit window"
  )
  flags.DEFINE_bool(
      "trust_forwarded_for",
      False,
      "Key webhook rate limits on X-Forwarded-For (only behind a proxy)",
  )
  flags.DEFINE_integer(
      "event_retention_hours",
      24,
      "How long processed webhook event ids are remembered",
  )
  flags.DEFINE_integer(
      "prune_interval_seconds",
      300,
      "How often expired idempotency records are pruned",
  )
  flags.DEFINE_enum(
      "idempotency_backend",
      "memory",
      ["memory", "database"],
      "Where processed webhook event ids are stored",
  )
  flags.DEFINE_enum(
      "rate_limit_backend",
      "memory",
      ["memory", "redis"],
      "Where rate limit counters are stored",
  )
  flags.DEFINE_string(
      "redis_url", os.environ.get("REDIS_URL"), "Redis URL for shared state"
  )
  flags.DEFINE_string(
      "resend_api_key",
      os.environ.get("RESEND_API_KEY"),
      "API key for the transactional email service",
  )
  flags.DEFINE_string(
      "email_from",
      os.environ.get("FROM_EMAIL", "ordini@mieledautore.com"),
      "Sender address for order emails",
  )
  flags.DEFINE_float(
      "email_timeout_seconds", 10.0, "Timeout for the email service"
  )
  flags.DEFINE_string(
      "auth_url",
      os.environ.get("SUPABASE_URL"),
      "Base URL of the hosted auth service",
  )
  flags.DEFINE_string(
      "auth_api_key",
      os.environ.get("SUPABASE_ANON_KEY"),
      "API key sent to the hosted auth service",
  )
  flags.DEFINE_float(
      "auth_timeout_seconds", 10.0, "Timeout for the hosted auth service"
  )
  flags.DEFINE_list(
      "allowed_shipping_countries",
      ["IT", "FR", "DE", "ES", "AT", "CH"],
      "Countries the checkout page accepts shipping addresses for",
  )
except flags.DuplicateFlagError:
  pass


class ShopSettings(BaseModel):
  """Immutable snapshot of the server configuration."""

  model_config = ConfigDict(frozen=True)

  site_url: str = "http://localhost:3000"
  currency: str = "eur"
  stripe_secret_key: Optional[str] = None
  stripe_webhook_secret: Optional[str] = None
  webhook_tolerance_seconds: int = 300
  payment_timeout_seconds: float = 20.0
  free_shipping_threshold: Decimal = Decimal("50.00")
  shipping_fee: Decimal = Decimal("5.99")
  max_order_total: Decimal = Decimal("999999.99")
  low_stock_threshold: int = 5
  checkout_rate_limit: int = 5
  checkout_rate_window_seconds: int = 60
  webhook_rate_limit: int = 100
  webhook_rate_window_seconds: int = 60
  trust_forwarded_for: bool = False
  event_retention_hours: int = 24
  prune_interval_seconds: int = 300
  idempotency_backend: str = "memory"
  rate_limit_backend: str = "memory"
  redis_url: Optional[str] = None
  resend_api_key: Optional[str] = None
  email_from: str = "ordini@mieledautore.com"
  email_timeout_seconds: float = 10.0
  auth_url: Optional[str] = None
  auth_api_key: Optional[str] = None
  auth_timeout_seconds: float = 10.0
  allowed_shipping_countries: Tuple[str, ...] = (
      "IT",
      "FR",
      "DE",
      "ES",
      "AT",
      "CH",
  )


def settings_from_flags() -> ShopSettings:
  """Builds settings from parsed flags, or defaults when flags are unparsed."""
  if not FLAGS.is_parsed():
    return ShopSettings()
  values = {}
  for name in ShopSettings.model_fields:
    value = getattr(FLAGS, name)
    if value is not None:
      values[name] = tuple(value) if isinstance(value, list) else value
  return ShopSettings(**values)


async def _prune_ledger_periodically(settings: ShopSettings) -> None:
  # dependencies imports config.
  import dependencies  # pylint: disable=g-import-not-at-top
  from services import idempotency  # pylint: disable=g-import-not-at-top

  await idempotency.prune_periodically(
      dependencies.get_idempotency_ledger(),
      retention_hours=settings.event_retention_hours,
      interval_seconds=settings.prune_interval_seconds,
  )


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Shared lifespan manager for the database and the ledger pruning task."""
  del app  # Unused.
  prune_task = None
  # In tests or if flags aren't set, the database is wired up by the caller
  if FLAGS.is_parsed() and FLAGS.database_path:
    await db.manager.init_db(FLAGS.database_path)
    prune_task = asyncio.create_task(
        _prune_ledger_periodically(settings_from_flags())
    )
  yield
  if prune_task:
    prune_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await prune_task
  await db.manager.close()
