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

"""Sliding-window rate limiting built on throttled-py.

Counters live in a throttled store: `MemoryStore` for a single instance (the
store expires stale windows on its own) or `RedisStore` when several instances
must share the same quota.
"""

from datetime import timedelta
import logging
from typing import Optional

from exceptions import RateLimitedError
from throttled import rate_limiter
from throttled import RateLimiterType
from throttled import store
from throttled import Throttled

logger = logging.getLogger(__name__)


def build_store(backend: str = "memory", redis_url: Optional[str] = None):
  """Returns the throttled store for the configured backend."""
  if backend == "redis":
    if not redis_url:
      raise ValueError("redis_url is required for the redis rate limit store")
    logger.info("Using Redis for rate limiting")
    return store.RedisStore(server=redis_url)
  return store.MemoryStore()


class RateLimiter:
  """Allows at most `limit` calls per identity in any `window_seconds` span."""

  def __init__(
      self,
      name: str,
      limit: int,
      window_seconds: int,
      backing_store=None,
  ):
    self.name = name
    self.limit = limit
    self.window_seconds = window_seconds
    self._throttle = Throttled(
        using=RateLimiterType.SLIDING_WINDOW.value,
        quota=rate_limiter.per_duration(
            timedelta(seconds=window_seconds), limit=limit
        ),
        store=backing_store or store.MemoryStore(),
    )

  def check(self, identity: str) -> None:
    """Counts one call for `identity`.

    Raises:
      RateLimitedError: If the identity is over its quota.
    """
    result = self._throttle.limit(f"{self.name}:{identity}", cost=1)
    if result.limited:
      retry_after = getattr(result.state, "retry_after", None)
      logger.warning("Rate limit exceeded for %s:%s", self.name, identity)
      raise RateLimitedError(
          "Too many requests. Please try again later.",
          retry_after=retry_after,
      )
