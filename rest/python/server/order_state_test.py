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

"""Tests for the order status state machine."""

from absl.testing import absltest
from enums import OrderStatus
from exceptions import IllegalTransitionError
import order_state


class OrderStateTest(absltest.TestCase):

  def test_payment_confirmation_from_pending(self) -> None:
    self.assertTrue(
        order_state.ensure_transition(
            OrderStatus.PENDING_PAYMENT, OrderStatus.IN_PROGRESS
        )
    )
    self.assertTrue(
        order_state.can_transition("pending_payment", "payment_failed")
    )

  def test_same_state_is_already_applied(self) -> None:
    self.assertFalse(
        order_state.ensure_transition("in_corso", OrderStatus.IN_PROGRESS)
    )

  def test_failed_payment_never_becomes_paid(self) -> None:
    with self.assertRaises(IllegalTransitionError) as ctx:
      order_state.ensure_transition(
          OrderStatus.PAYMENT_FAILED, OrderStatus.IN_PROGRESS
      )
    self.assertEqual(ctx.exception.status_code, 409)
    self.assertEqual(ctx.exception.current, "payment_failed")

  def test_no_backward_transitions(self) -> None:
    statuses = list(OrderStatus)
    order = [
        OrderStatus.PENDING_PAYMENT,
        OrderStatus.IN_PROGRESS,
        OrderStatus.SHIPPED,
        OrderStatus.COMPLETED,
    ]
    for i, later in enumerate(order):
      for earlier in order[:i]:
        self.assertFalse(order_state.can_transition(later, earlier))
    for status in statuses:
      self.assertFalse(
          order_state.can_transition(status, OrderStatus.PENDING_PAYMENT)
      )

  def test_terminal_states(self) -> None:
    self.assertTrue(order_state.is_terminal(OrderStatus.COMPLETED))
    self.assertTrue(order_state.is_terminal("payment_failed"))
    self.assertTrue(order_state.is_terminal(OrderStatus.CANCELED))
    self.assertFalse(order_state.is_terminal(OrderStatus.PENDING_PAYMENT))
    self.assertFalse(order_state.is_terminal(OrderStatus.SHIPPED))

  def test_unknown_status_is_rejected(self) -> None:
    with self.assertRaises(ValueError):
      order_state.ensure_transition("pending_payment", "refunded")


if __name__ == "__main__":
  absltest.main()
