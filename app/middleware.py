"""
Request correlation middleware.
"""

import logging
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from socialdash.utils.logging import clear_request_context, set_request_context

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Adds a unique request ID to each request for tracing.

    The ID is bound to the logging context for the request's duration and
    echoed in the ``X-Request-ID`` response header.
    """

    REQUEST_ID_HEADER = "X-Request-ID"

    def __init__(self, app, trust_incoming_id: bool = False):
        super().__init__(app)
        self.trust_incoming_id = trust_incoming_id

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = None
        if self.trust_incoming_id:
            request_id = request.headers.get(self.REQUEST_ID_HEADER)
        if not request_id:
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        try:
            response = await call_next(request)
        except Exception:
            logger.error(f"Request failed: {request.method} {request.url.path}")
            raise
        finally:
            clear_request_context()

        response.headers[self.REQUEST_ID_HEADER] = request_id
        return response
