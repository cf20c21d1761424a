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

"""Idempotency ledger for payment processor events.

The ledger remembers which event identifiers have been applied so redelivered
events become no-ops. Two interchangeable backends are provided:

- `InMemoryIdempotencyLedger` keeps records in process memory and is suitable
  only when a single server instance receives webhooks.
- `DatabaseIdempotencyLedger` stores records in the `webhook_events` table and
  is shared by every instance pointed at the same database. The table's
  primary key makes `record` an atomic claim.
"""

import asyncio
import datetime
import logging
from typing import Callable, Dict, Optional, Protocol, Tuple

import db
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _now() -> datetime.datetime:
  return datetime.datetime.now(datetime.timezone.utc)


class IdempotencyLedger(Protocol):
  """Record of already-processed event identifiers."""

  async def seen(self, key: str) -> bool:
    """Returns True if `key` has been recorded."""
    ...

  async def record(self, key: str, event_type: str) -> bool:
    """Records `key`. Returns False if it was already recorded."""
    ...

  async def release(self, key: str) -> None:
    """Forgets `key` so a later delivery is processed again."""
    ...

  async def prune(self, older_than: datetime.datetime) -> int:
    """Drops records created before `older_than`; returns how many."""
    ...


class InMemoryIdempotencyLedger:
  """Process-local ledger."""

  def __init__(self, clock: Callable[[], datetime.datetime] = _now) -> None:
    self._clock = clock
    self._records: Dict[str, Tuple[str, datetime.datetime]] = {}

  async def seen(self, key: str) -> bool:
    return key in self._records

  async def record(self, key: str, event_type: str) -> bool:
    # No await between the check and the insert, so concurrent deliveries on
    # the same event loop cannot both claim the key.
    if key in self._records:
      return False
    self._records[key] = (event_type, self._clock())
    return True

  async def release(self, key: str) -> None:
    self._records.pop(key, None)

  async def prune(self, older_than: datetime.datetime) -> int:
    expired = [k for k, (_, ts) in self._records.items() if ts < older_than]
    for key in expired:
      del self._records[key]
    return len(expired)

  def __len__(self) -> int:
    return len(self._records)


class DatabaseIdempotencyLedger:
  """Ledger backed by the `webhook_events` table.

  Every call uses its own short transaction so a record is durable before the
  caller starts mutating order state.
  """

  def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
    self._session_factory = session_factory

  async def seen(self, key: str) -> bool:
    async with self._session_factory() as session:
      return await db.has_webhook_event(session, key)

  async def record(self, key: str, event_type: str) -> bool:
    async with self._session_factory() as session:
      try:
        await db.save_webhook_event(session, key, event_type)
        await session.commit()
      except IntegrityError:
        await session.rollback()
        return False
    return True

  async def release(self, key: str) -> None:
    async with self._session_factory() as session:
      await db.delete_webhook_event(session, key)
      await session.commit()

  async def prune(self, older_than: datetime.datetime) -> int:
    async with self._session_factory() as session:
      count = await db.prune_webhook_events(session, older_than)
      await session.commit()
      return count


async def prune_periodically(
    ledger: IdempotencyLedger,
    retention_hours: int,
    interval_seconds: int,
    clock: Optional[Callable[[], datetime.datetime]] = None,
) -> None:
  """Prunes expired ledger records until cancelled."""
  clock = clock or _now
  while True:
    await asyncio.sleep(interval_seconds)
    cutoff = clock() - datetime.timedelta(hours=retention_hours)
    try:
      pruned = await ledger.prune(cutoff)
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Failed to prune idempotency ledger: %s", e)
      continue
    if pruned:
      logger.info("Pruned %d expired webhook event records", pruned)
