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

"""Resolves bearer credentials to users via the hosted auth service."""

import logging
from typing import Optional

from exceptions import AuthenticationError
import httpx
from models import AuthenticatedUser

logger = logging.getLogger(__name__)


class AuthService:
  """Looks up the user a bearer token belongs to."""

  def __init__(
      self,
      auth_url: Optional[str],
      api_key: Optional[str] = None,
      timeout_seconds: float = 10.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.auth_url = auth_url.rstrip("/") if auth_url else None
    self.api_key = api_key
    self.timeout_seconds = timeout_seconds
    self._transport = transport

  @classmethod
  def from_settings(cls, settings) -> "AuthService":
    return cls(
        auth_url=settings.auth_url,
        api_key=settings.auth_api_key,
        timeout_seconds=settings.auth_timeout_seconds,
    )

  async def resolve_user(
      self, authorization_header: Optional[str]
  ) -> AuthenticatedUser:
    """Returns the user for an `Authorization: Bearer <token>` header.

    Raises:
      AuthenticationError: If the header is missing or malformed, the token
        is rejected, or the auth service cannot be reached.
    """
    if not authorization_header or not authorization_header.startswith(
        "Bearer "
    ):
      raise AuthenticationError("Missing or invalid authorization header")

    token = authorization_header[len("Bearer ") :].strip()
    if not token:
      raise AuthenticationError("Missing or invalid authorization header")

    if not self.auth_url:
      logger.error("Auth service URL is not configured")
      raise AuthenticationError()

    headers = {"Authorization": f"Bearer {token}"}
    if self.api_key:
      headers["apikey"] = self.api_key

    try:
      async with httpx.AsyncClient(
          timeout=self.timeout_seconds, transport=self._transport
      ) as client:
        response = await client.get(
            f"{self.auth_url}/auth/v1/user", headers=headers
        )
    except httpx.HTTPError as e:
      logger.error("Auth service unreachable: %s", e)
      raise AuthenticationError() from e

    if response.status_code != 200:
      logger.info("Auth service rejected token (%s)", response.status_code)
      raise AuthenticationError("Invalid token")

    try:
      data = response.json()
    except ValueError as e:
      raise AuthenticationError("Invalid token") from e
    if not isinstance(data, dict) or not data.get("id"):
      raise AuthenticationError("Invalid token")

    return AuthenticatedUser(id=str(data["id"]), email=data.get("email"))
