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

"""Enumerations for the checkout server.

This module defines standard enums used throughout the server application
to represent order lifecycle states, coupon kinds, and the payment processor
event types the webhook reconciler understands.
"""

import enum


class OrderStatus(str, enum.Enum):
  PENDING_PAYMENT = "pending_payment"
  IN_PROGRESS = "in_corso"
  SHIPPED = "spedito"
  COMPLETED = "completato"
  PAYMENT_FAILED = "payment_failed"
  CANCELED = "cancellato"


class PaymentStatus(str, enum.Enum):
  PENDING = "pending"
  PAID = "paid"
  FAILED = "failed"


class CouponType(str, enum.Enum):
  PERCENTAGE = "percentage"
  FIXED_AMOUNT = "fixed_amount"
  FREE_SHIPPING = "free_shipping"


class StockAlertKind(str, enum.Enum):
  LOW_STOCK = "low_stock"
  OUT_OF_STOCK = "out_of_stock"
  OVERSOLD = "oversold"


class EventType(str, enum.Enum):
  CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
  PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
  PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
  CHARGE_DISPUTE_CREATED = "charge.dispute.created"
  INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
  INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
