"""
Request ID middleware.

Every request gets an ID (client-provided X-Request-ID when it looks sane,
otherwise a fresh UUID). It is stored on request.state, stamped on every
log record emitted while the request is handled, copied into audit entries
through the client context, and echoed back in the response headers.
"""

import re
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _incoming_request_id(request: Request) -> str | None:
    value = request.headers.get(REQUEST_ID_HEADER)
    if value and _VALID_REQUEST_ID.match(value):
        return value
    return None


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        request_id = _incoming_request_id(request) or str(uuid.uuid4())
        request.state.request_id = request_id

        old_factory = logging.getLogRecordFactory()

        def record_factory(*args, **kwargs):
            record = old_factory(*args, **kwargs)
            record.request_id = request_id
            return record

        logging.setLogRecordFactory(record_factory)

        try:
            response: Response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            logging.setLogRecordFactory(old_factory)


def get_request_id(request: Request) -> str:
    """Request ID from request.state, or "no-request-id" outside the middleware."""
    return getattr(request.state, "request_id", "no-request-id")
