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

"""Request and response models for the checkout server.

Monetary values in responses are decimal strings in the display currency
(e.g. "50.99"); the server computes with integer cents internally.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pydantic import Field


class CheckoutItemRequest(BaseModel):
  product_id: str = Field(..., min_length=1)
  quantity: int = Field(..., gt=0)


class CheckoutRequest(BaseModel):
  """Body of a checkout request."""

  items: List[CheckoutItemRequest] = Field(..., min_length=1)
  coupon_code: Optional[str] = None
  shipping_address: Optional[Dict[str, Any]] = None


class CheckoutResponse(BaseModel):
  success: bool = True
  checkout_url: str
  session_id: str
  order_id: str


class WebhookResponse(BaseModel):
  success: bool = True
  event_id: str
  duplicate: bool = False
  processing_time: float  # Milliseconds


class ErrorResponse(BaseModel):
  success: bool = False
  error: str
  code: Optional[str] = None


class AuthenticatedUser(BaseModel):
  id: str
  email: Optional[str] = None


class OrderItemView(BaseModel):
  product_id: str
  quantity: int
  unit_price: Decimal
  total_price: Decimal
  product_snapshot: Optional[Dict[str, Any]] = None


class OrderView(BaseModel):
  """An order as returned to its owner."""

  id: str
  status: str
  payment_status: Optional[str] = None
  currency: str
  subtotal: Decimal
  discount_amount: Decimal
  shipping_cost: Decimal
  total: Decimal
  coupon_code: Optional[str] = None
  shipping_address: Optional[Dict[str, Any]] = None
  billing_address: Optional[Dict[str, Any]] = None
  created_at: str
  updated_at: str
  items: List[OrderItemView] = []
