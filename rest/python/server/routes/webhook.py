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

"""Payment processor webhook route."""

from typing import Optional

import config
import dependencies
from exceptions import InvalidRequestError
from exceptions import InvalidSignatureError
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from models import WebhookResponse
from services.rate_limit import RateLimiter
from services.webhook_service import WebhookReconciler

router = APIRouter()


def client_ip(request: Request, trust_forwarded_for: bool = False) -> str:
  """Returns the caller address.

  X-Forwarded-For is set by the caller, so it is only honored when the server
  runs behind a proxy that overwrites it.
  """
  if trust_forwarded_for:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
      return forwarded.split(",")[0].strip()
  return request.client.host if request.client else "unknown"


@router.post(
    "/webhooks/stripe",
    response_model=WebhookResponse,
    operation_id="stripe_webhook",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    settings: config.ShopSettings = Depends(dependencies.get_settings),
    rate_limiter: RateLimiter = Depends(dependencies.get_webhook_rate_limiter),
    reconciler: WebhookReconciler = Depends(
        dependencies.get_webhook_reconciler
    ),
) -> WebhookResponse:
  """Receive a signed payment processor event."""
  rate_limiter.check(client_ip(request, settings.trust_forwarded_for))

  # The signature covers the exact bytes sent, so the body is read raw.
  payload = await request.body()
  if not payload:
    raise InvalidRequestError("Empty request body")
  if not stripe_signature:
    raise InvalidSignatureError("Missing stripe signature")

  outcome = await reconciler.process(payload, stripe_signature)
  return WebhookResponse(
      event_id=outcome.event_id,
      duplicate=outcome.duplicate,
      processing_time=outcome.processing_time_ms,
  )
