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

"""Checkout and payment reconciliation server (Python/FastAPI)."""

import logging
import sys
from typing import Sequence
from absl import app as absl_app
import config
from exceptions import RateLimitedError
from exceptions import ShopError
from fastapi import FastAPI
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from routes.checkout import router as checkout_router
from routes.order import router as order_router
from routes.webhook import router as webhook_router
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

# --- App Setup ---

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Shop Checkout Service",
    version=config.SERVER_VERSION,
    description="Order checkout and payment reconciliation service",
    lifespan=config.lifespan,
)


def _error_response(
    status_code: int, message: str, code: str, headers=None
) -> JSONResponse:
  return JSONResponse(
      status_code=status_code,
      content={"success": False, "error": message, "code": code},
      headers=headers,
  )


@app.exception_handler(ShopError)
async def shop_exception_handler(request: Request, exc: ShopError):
  """Handles shop exceptions and converts them to JSON responses."""
  del request  # Unused.
  headers = None
  if isinstance(exc, RateLimitedError) and exc.retry_after:
    headers = {"Retry-After": str(max(1, int(round(exc.retry_after))))}
  if exc.status_code >= 500:
    logger.error("Request failed: %s (%s)", exc.message, exc.code)
  return _error_response(exc.status_code, exc.message, exc.code, headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
):
  del request  # Unused.
  return _error_response(
      exc.status_code,
      str(exc.detail),
      "METHOD_NOT_ALLOWED" if exc.status_code == 405 else "HTTP_ERROR",
      getattr(exc, "headers", None),
  )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
):
  """Reports malformed request bodies as 400s."""
  del request  # Unused.
  errors = exc.errors()
  if errors:
    location = ".".join(str(part) for part in errors[0].get("loc", ()))
    message = f"{location}: {errors[0].get('msg', 'invalid value')}"
  else:
    message = "Invalid request"
  return _error_response(400, message, "INVALID_REQUEST")


@app.get("/health", operation_id="health")
async def health() -> dict:
  return {"status": "ok", "version": config.SERVER_VERSION}


app.include_router(checkout_router)
app.include_router(webhook_router)
app.include_router(order_router)


def main(argv: Sequence[str]) -> None:
  """Main entry point for the checkout server."""
  del argv  # Unused.

  if config.FLAGS.database_path is None or config.FLAGS.port is None:
    logger.error("Both --database_path and --port must be provided.")
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  settings = config.settings_from_flags()
  if not settings.stripe_secret_key or not settings.stripe_webhook_secret:
    logger.warning(
        "Stripe keys are not configured; checkout and webhooks will fail."
    )

  uvicorn.run(app, host="0.0.0.0", port=config.FLAGS.port)


if __name__ == "__main__":
  absl_app.run(main)
