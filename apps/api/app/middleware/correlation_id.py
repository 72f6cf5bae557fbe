from __future__ import annotations

import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import reset_correlation_id, reset_tenant_id, set_correlation_id, set_tenant_id

CORRELATION_HEADER = "x-correlation-id"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds the correlation id and a fresh tenant slot to the request context.

    The tenant slot starts empty; the actor dependency fills it once the
    caller is authenticated, and it is cleared when the request ends.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        correlation_token = set_correlation_id(correlation_id)
        tenant_token = set_tenant_id(None)
        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_tenant_id(tenant_token)
            reset_correlation_id(correlation_token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
