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

"""Helpers for currency-exact arithmetic.

Amounts are carried as integer minor units (cents) everywhere inside the
server. Conversion to and from display amounts happens only at the edges:
configuration values, CSV imports, JSON responses and email rendering.
"""

from decimal import Decimal
from decimal import ROUND_HALF_UP
from typing import Union

_CENT = Decimal("0.01")

_SYMBOLS = {"eur": "€", "usd": "$", "gbp": "£"}


def to_cents(amount: Union[Decimal, str, int]) -> int:
  """Converts a display amount (e.g. "5.99") to integer cents."""
  value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
  return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
  """Converts integer cents to a two-place Decimal."""
  return (Decimal(cents) / 100).quantize(_CENT)


def percentage_of(cents: int, percent: int) -> int:
  """Returns `percent`% of `cents`, rounded half-up to the nearest cent."""
  value = Decimal(cents) * Decimal(percent) / Decimal(100)
  return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(cents: int, currency: str = "eur") -> str:
  symbol = _SYMBOLS.get(currency.lower(), currency.upper() + " ")
  return f"{symbol}{from_cents(cents)}"
