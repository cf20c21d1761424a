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

"""Checkout routes for the shop server."""

import dependencies
from fastapi import APIRouter
from fastapi import Depends
from models import AuthenticatedUser
from models import CheckoutRequest
from models import CheckoutResponse
from services.checkout_service import CheckoutService

router = APIRouter()


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    operation_id="create_checkout",
)
async def create_checkout(
    request: CheckoutRequest,
    user: AuthenticatedUser = Depends(dependencies.get_current_user),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> CheckoutResponse:
  """Create a pending order and a hosted payment session for the cart."""
  result = await checkout_service.create_checkout(user, request)
  return CheckoutResponse(
      checkout_url=result.checkout_url,
      session_id=result.session_id,
      order_id=result.order_id,
  )
