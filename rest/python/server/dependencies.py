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

"""FastAPI dependencies for the checkout server.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Settings and database session management.
- Process-wide collaborators (payment gateway, idempotency ledger, rate
  limiters, email notifier, auth lookup), built once from the settings.
- Bearer authentication of the calling user.
- Service instantiation (CheckoutService, WebhookReconciler).
"""

import functools
from typing import AsyncGenerator, Optional

import config
import db
from fastapi import Depends
from fastapi import Header
from models import AuthenticatedUser
from services.auth_service import AuthService
from services.checkout_service import CheckoutService
from services.idempotency import DatabaseIdempotencyLedger
from services.idempotency import IdempotencyLedger
from services.idempotency import InMemoryIdempotencyLedger
from services.notification_service import EmailNotifier
from services.payment_gateway import PaymentGateway
from services.payment_gateway import StripeGateway
from services.rate_limit import build_store
from services.rate_limit import RateLimiter
from services.webhook_service import WebhookReconciler
from sqlalchemy.ext.asyncio import AsyncSession


def get_settings() -> config.ShopSettings:
  """Dependency provider for the server settings."""
  return config.settings_from_flags()


def _new_session() -> AsyncSession:
  return db.manager.session_factory()


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for a request-scoped database session."""
  async with db.manager.session_factory() as session:
    yield session


@functools.lru_cache(maxsize=None)
def get_idempotency_ledger() -> IdempotencyLedger:
  """Process-wide ledger of processed webhook events."""
  if get_settings().idempotency_backend == "database":
    return DatabaseIdempotencyLedger(_new_session)
  return InMemoryIdempotencyLedger()


@functools.lru_cache(maxsize=None)
def _rate_limit_store():
  settings = get_settings()
  return build_store(settings.rate_limit_backend, settings.redis_url)


@functools.lru_cache(maxsize=None)
def get_checkout_rate_limiter() -> RateLimiter:
  settings = get_settings()
  return RateLimiter(
      "checkout",
      settings.checkout_rate_limit,
      settings.checkout_rate_window_seconds,
      _rate_limit_store(),
  )


@functools.lru_cache(maxsize=None)
def get_webhook_rate_limiter() -> RateLimiter:
  settings = get_settings()
  return RateLimiter(
      "webhook",
      settings.webhook_rate_limit,
      settings.webhook_rate_window_seconds,
      _rate_limit_store(),
  )


@functools.lru_cache(maxsize=None)
def get_payment_gateway() -> PaymentGateway:
  return StripeGateway.from_settings(get_settings())


@functools.lru_cache(maxsize=None)
def get_email_notifier() -> EmailNotifier:
  return EmailNotifier.from_settings(get_settings())


@functools.lru_cache(maxsize=None)
def get_auth_service() -> AuthService:
  return AuthService.from_settings(get_settings())


async def get_current_user(
    authorization: Optional[str] = Header(None),
    auth_service: AuthService = Depends(get_auth_service),
) -> AuthenticatedUser:
  """Resolves the `Authorization: Bearer` header to the calling user."""
  return await auth_service.resolve_user(authorization)


def get_checkout_service(
    session: AsyncSession = Depends(get_db_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    rate_limiter: RateLimiter = Depends(get_checkout_rate_limiter),
    settings: config.ShopSettings = Depends(get_settings),
) -> CheckoutService:
  """Dependency provider for CheckoutService."""
  return CheckoutService(session, gateway, rate_limiter, settings)


def get_webhook_reconciler(
    gateway: PaymentGateway = Depends(get_payment_gateway),
    ledger: IdempotencyLedger = Depends(get_idempotency_ledger),
    notifier: EmailNotifier = Depends(get_email_notifier),
    settings: config.ShopSettings = Depends(get_settings),
) -> WebhookReconciler:
  """Dependency provider for WebhookReconciler."""
  return WebhookReconciler(
      _new_session,
      gateway,
      ledger,
      notifier,
      low_stock_threshold=settings.low_stock_threshold,
  )
