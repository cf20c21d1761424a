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

"""Custom exceptions for the checkout and payment reconciliation server."""

from typing import Optional


class ShopError(Exception):
  """Base class for all shop exceptions."""

  def __init__(
      self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(self.message)


class InvalidRequestError(ShopError):
  """Raised when the request is invalid (e.g. missing fields)."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_REQUEST", status_code=400)


class InsufficientStockError(ShopError):
  """Raised when an active product cannot cover the requested quantity."""

  def __init__(self, product_name: str, available: int, requested: int):
    self.available = available
    self.requested = requested
    super().__init__(
        f"Insufficient stock for product {product_name}. Available:"
        f" {available}, Requested: {requested}",
        code="INSUFFICIENT_STOCK",
        status_code=400,
    )


class NoValidItemsError(ShopError):
  """Raised when no requested item refers to an existing, active product."""

  def __init__(self, message: str = "No valid products found"):
    super().__init__(message, code="NO_VALID_ITEMS", status_code=400)


class CouponNotFoundError(ShopError):

  def __init__(self, code: str):
    super().__init__(
        f"Coupon {code} not found", code="COUPON_NOT_FOUND", status_code=400
    )


class CouponExpiredError(ShopError):

  def __init__(self, code: str):
    super().__init__(
        f"Coupon {code} has expired", code="COUPON_EXPIRED", status_code=400
    )


class CouponExhaustedError(ShopError):

  def __init__(self, code: str):
    super().__init__(
        f"Coupon {code} usage limit exceeded",
        code="COUPON_EXHAUSTED",
        status_code=400,
    )


class CouponMinimumNotMetError(ShopError):

  def __init__(self, code: str, minimum: str):
    super().__init__(
        f"Minimum order amount not met for coupon {code} ({minimum})",
        code="COUPON_MINIMUM_NOT_MET",
        status_code=400,
    )


class InvalidTotalError(ShopError):
  """Raised when the computed total is non-positive or out of bounds."""

  def __init__(self, message: str = "Invalid total amount"):
    super().__init__(message, code="INVALID_TOTAL", status_code=400)


class AuthenticationError(ShopError):

  def __init__(self, message: str = "Authentication failed"):
    super().__init__(message, code="UNAUTHENTICATED", status_code=401)


class ForbiddenError(ShopError):

  def __init__(self, message: str = "Forbidden"):
    super().__init__(message, code="FORBIDDEN", status_code=403)


class ResourceNotFoundError(ShopError):
  """Raised when a requested resource is not found."""

  def __init__(self, message: str):
    super().__init__(message, code="RESOURCE_NOT_FOUND", status_code=404)


class RateLimitedError(ShopError):
  """Raised when a caller exceeds its request quota."""

  def __init__(self, message: str, retry_after: Optional[float] = None):
    self.retry_after = retry_after
    super().__init__(message, code="RATE_LIMITED", status_code=429)


class InvalidSignatureError(ShopError):
  """Raised when a webhook payload fails signature verification."""

  def __init__(self, message: str = "Invalid signature"):
    super().__init__(message, code="INVALID_SIGNATURE", status_code=400)


class IllegalTransitionError(ShopError):
  """Raised when an order status change is not allowed by the state machine."""

  def __init__(self, current: str, target: str):
    self.current = current
    self.target = target
    super().__init__(
        f"Cannot move order from '{current}' to '{target}'",
        code="ILLEGAL_TRANSITION",
        status_code=409,
    )


class OrderPersistenceError(ShopError):
  """Raised when an order and its line items could not be stored."""

  def __init__(self, message: str):
    super().__init__(message, code="ORDER_PERSISTENCE_FAILED", status_code=500)


class PaymentProviderError(ShopError):
  """Raised when the payment processor rejects or does not answer a call."""

  def __init__(self, message: str):
    super().__init__(message, code="PAYMENT_PROVIDER_ERROR", status_code=500)


class WebhookProcessingError(ShopError):
  """Raised when a verified webhook event could not be applied."""

  def __init__(self, message: str, event_id: str, event_type: str):
    self.event_id = event_id
    self.event_type = event_type
    super().__init__(
        message, code="WEBHOOK_PROCESSING_FAILED", status_code=500
    )
