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

"""Order lifecycle state machine.

Orders move forward only:

  pending_payment -> in_corso -> spedito -> completato
  pending_payment -> payment_failed
  pending_payment | in_corso -> cancellato

Every status write in the server goes through `ensure_transition` first, and
the datastore update itself is conditional on the status that was checked, so
a concurrent writer can never move an order backwards.
"""

from typing import Dict, FrozenSet, Union

from enums import OrderStatus
from exceptions import IllegalTransitionError

TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING_PAYMENT: frozenset({
        OrderStatus.IN_PROGRESS,
        OrderStatus.PAYMENT_FAILED,
        OrderStatus.CANCELED,
    }),
    OrderStatus.IN_PROGRESS: frozenset({
        OrderStatus.SHIPPED,
        OrderStatus.CANCELED,
    }),
    OrderStatus.SHIPPED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.PAYMENT_FAILED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
}


def can_transition(
    current: Union[OrderStatus, str], target: Union[OrderStatus, str]
) -> bool:
  return OrderStatus(target) in TRANSITIONS[OrderStatus(current)]


def ensure_transition(
    current: Union[OrderStatus, str], target: Union[OrderStatus, str]
) -> bool:
  """Validates a status change.

  Args:
    current: The status the order is in now.
    target: The status the caller wants to move it to.

  Returns:
    True if the change must be applied, False if the order is already in
    `target` (a redelivered confirmation).

  Raises:
    IllegalTransitionError: If the state machine forbids the change.
  """
  current = OrderStatus(current)
  target = OrderStatus(target)
  if current == target:
    return False
  if target not in TRANSITIONS[current]:
    raise IllegalTransitionError(current.value, target.value)
  return True


def is_terminal(status: Union[OrderStatus, str]) -> bool:
  return not TRANSITIONS[OrderStatus(status)]
