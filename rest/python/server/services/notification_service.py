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

"""Best-effort order confirmation emails.

Emails are rendered from Jinja2 templates and posted to the Resend HTTP API.
Sending never raises: every failure is logged and reported as `False` so a
notification problem cannot fail the payment flow that triggered it.
"""

import datetime
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

import db
import httpx
import jinja2
import money

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
COMPANY_NAME = "Miele d'Autore"
SUPPORT_EMAIL = "support@mieledautore.com"

_templates_dir = os.path.join(os.path.dirname(__file__), "..", "templates")
_jinja_env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(_templates_dir),
    autoescape=jinja2.select_autoescape(["html", "xml"]),
)


def address_lines(address: Optional[Dict[str, Any]]) -> List[str]:
  """Formats a stored address snapshot as display lines."""
  if not address:
    return []
  nested = address.get("address")
  fields = {**address, **nested} if isinstance(nested, dict) else address

  lines = []
  if fields.get("name"):
    lines.append(fields["name"])
  for key in ("line1", "address_line_1", "line2", "address_line_2"):
    if fields.get(key):
      lines.append(fields[key])
  city_line = " ".join(
      part for part in (fields.get("postal_code"), fields.get("city")) if part
  )
  if city_line:
    lines.append(city_line)
  if fields.get("country"):
    lines.append(fields["country"])
  if fields.get("phone"):
    lines.append(f"Tel: {fields['phone']}")
  return lines


def render_order_confirmation(
    order: db.Order,
    items: Sequence[db.OrderItem],
    customer_name: Optional[str] = None,
) -> str:
  currency = order.currency or "eur"
  rendered_items = []
  for item in items:
    snapshot = item.product_snapshot or {}
    rendered_items.append({
        "name": snapshot.get("name", item.product_id),
        "image_url": snapshot.get("image_url"),
        "quantity": item.quantity,
        "total": money.format_amount(item.total_price, currency),
    })

  return _jinja_env.get_template("order_confirmation.html").render(
      company_name=COMPANY_NAME,
      support_email=SUPPORT_EMAIL,
      customer_name=customer_name,
      order_number=order_number(order.id),
      order_date=(order.created_at or "")[:10],
      items=rendered_items,
      subtotal=money.format_amount(order.subtotal, currency),
      discount=(
          money.format_amount(order.discount_amount, currency)
          if order.discount_amount
          else None
      ),
      coupon_code=order.coupon_code,
      shipping=(
          money.format_amount(order.shipping_cost, currency)
          if order.shipping_cost
          else None
      ),
      total=money.format_amount(order.total, currency),
      address_lines=address_lines(order.shipping_address),
      year=datetime.date.today().year,
  )


def order_number(order_id: str) -> str:
  return order_id.replace("-", "")[:8].upper()


class EmailNotifier:
  """Sends transactional emails through Resend."""

  def __init__(
      self,
      api_key: Optional[str],
      sender: str,
      timeout_seconds: float = 10.0,
      api_url: str = RESEND_API_URL,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.api_key = api_key
    self.sender = sender
    self.timeout_seconds = timeout_seconds
    self.api_url = api_url
    self._transport = transport

  @classmethod
  def from_settings(cls, settings) -> "EmailNotifier":
    return cls(
        api_key=settings.resend_api_key,
        sender=settings.email_from,
        timeout_seconds=settings.email_timeout_seconds,
    )

  async def send(self, recipient: str, subject: str, html: str) -> bool:
    if not self.api_key:
      logger.warning("Email API key not configured, skipping email send")
      return False

    try:
      async with httpx.AsyncClient(
          timeout=self.timeout_seconds, transport=self._transport
      ) as client:
        response = await client.post(
            self.api_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "from": self.sender,
                "to": recipient,
                "subject": subject,
                "html": html,
            },
        )
    except httpx.HTTPError as e:
      logger.error("Email service error: %s", e)
      return False

    if response.status_code >= 400:
      logger.error(
          "Email send failed: %s %s", response.status_code, response.text
      )
      return False

    logger.info("Email sent to %s", recipient)
    return True

  async def send_order_confirmation(
      self,
      order: db.Order,
      items: Sequence[db.OrderItem],
      recipient: Optional[str],
      customer_name: Optional[str] = None,
  ) -> bool:
    """Sends the order confirmation. Returns True if the email was accepted."""
    if not recipient:
      logger.warning("No recipient for order %s, skipping email", order.id)
      return False

    try:
      html = render_order_confirmation(order, items, customer_name)
    except jinja2.TemplateError as e:
      logger.error("Failed to render confirmation for %s: %s", order.id, e)
      return False

    subject = f"Conferma Ordine #{order_number(order.id)} - {COMPANY_NAME}"
    return await self.send(recipient, subject, html)
