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

"""Utility script to dump webhook processing records from the database.

This script displays the processed webhook event ids held by the database
idempotency ledger and the failures recorded while handling events. It can
optionally show only the failures.

Usage:
  uv run dump_webhooks.py --database_path=... [--errors_only]
"""

import asyncio
import sys
from absl import app as absl_app
from absl import flags
import config  # pylint: disable=unused-import
from db import WebhookError
from db import WebhookEvent
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker

FLAGS = flags.FLAGS
try:
  flags.DEFINE_bool("errors_only", False, "Only show webhook errors")
except flags.DuplicateFlagError:
  pass


async def dump_webhooks():
  """Queries the database and prints webhook events and errors."""
  if not FLAGS.database_path:
    print("Error: --database_path is required.")
    sys.exit(1)

  db_url = f"sqlite+aiosqlite:///{FLAGS.database_path}"
  engine = create_async_engine(db_url, echo=False)
  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )

  async with session_factory() as session:
    if not FLAGS.errors_only:
      print("=== PROCESSED EVENTS ===")
      result = await session.execute(
          select(WebhookEvent).order_by(WebhookEvent.processed_at)
      )
      events = result.scalars().all()
      if not events:
        print("No processed events found.")
      for event in events:
        print(f"[{event.processed_at}] {event.event_type} {event.event_id}")
      print()

    print("=== WEBHOOK ERRORS ===")
    result = await session.execute(
        select(WebhookError).order_by(WebhookError.id)
    )
    errors = result.scalars().all()
    if not errors:
      print("No webhook errors found.")
    for error in errors:
      print(f"[{error.created_at}] {error.event_type} {error.event_id}")
      if error.duration_ms is not None:
        print(f"  Duration: {error.duration_ms}ms")
      print(f"  Error: {error.error_message}")
      print("-" * 40)

  await engine.dispose()


def main(argv):
  """Main entry point for the webhook dump script."""
  del argv
  asyncio.run(dump_webhooks())


if __name__ == "__main__":
  absl_app.run(main)
