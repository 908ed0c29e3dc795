"""Error kinds raised by the gateway and their FastAPI response mapping."""
from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from shotpix.gateway.config import GatewayConfig, get_config
from shotpix.gateway.debug import sanitize
from shotpix.gateway.log_config import logger
from shotpix.gateway.safety.codes import UNKNOWN_PROVIDER_ERROR


class GatewayError(Exception):
    """Base class for failures that carry operator diagnostics.

    ``message`` is safe to show to a caller. ``status_code`` is the provider's
    HTTP status when one was observed, ``code`` the value reported to callers
    and ``debug`` a sanitised payload for the diagnostic channel only.
    """

    code: int = UNKNOWN_PROVIDER_ERROR
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        status_code: int | None = None,
        debug: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.status_code = status_code
        self.debug = sanitize(debug or {})

    def to_payload(self, *, include_debug: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "data": None,
            "status": "error",
            "message": self.message,
            "code": self.code,
        }
        if include_debug:
            payload["debug"] = {"statusCode": self.status_code, **self.debug}
        return payload


class AuthError(GatewayError):
    """Token signing or exchange failed."""


class ProviderError(GatewayError):
    """The provider reported a failure or returned nothing usable."""

    http_status = status.HTTP_502_BAD_GATEWAY


class ProviderUnavailable(ProviderError):
    """Non-2xx provider response without a classifiable safety signal."""


class ParseError(GatewayError):
    """A provider response had an unexpected shape."""

    http_status = status.HTTP_502_BAD_GATEWAY


class GatewayTimeout(GatewayError):
    """A single call or a polling loop exceeded its bounded wait."""

    http_status = status.HTTP_504_GATEWAY_TIMEOUT


class InvalidImageError(GatewayError):
    """A source image reference was rejected before any provider call."""

    code = status.HTTP_400_BAD_REQUEST
    http_status = status.HTTP_400_BAD_REQUEST


def _handler_for(config: GatewayConfig):
    async def handle_gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        logger.error(
            "gateway.error path=%s kind=%s code=%s providerStatus=%s message=%s debug=%s",
            request.url.path,
            type(exc).__name__,
            exc.code,
            exc.status_code,
            exc.message,
            exc.debug,
        )
        return JSONResponse(
            status_code=exc.http_status,
            content=exc.to_payload(include_debug=config.enable_debug_response),
        )

    return handle_gateway_error


def register_exception_handlers(app: FastAPI, config: GatewayConfig | None = None) -> None:
    """Map every ``GatewayError`` raised by a route to the JSON error envelope."""
    app.add_exception_handler(GatewayError, _handler_for(config or get_config()))
