import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from promptschola.core.logging import bind_request_id, latency_bucket_ms, reset_request_id

REQUEST_ID_HEADER = "x-request-id"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Correlate each request with an id and log one completion line.

    An incoming ``x-request-id`` (set by the edge proxy) is reused, otherwise a
    fresh uuid4 is minted. The id is echoed on the response and stored on
    ``request.state`` for the error handlers.
    """

    def __init__(self, app, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = bind_request_id(rid)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            reset_request_id(token)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[self.header_name] = rid
        logging.getLogger("promptschola").info(
            "request.complete",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_bucket": latency_bucket_ms(elapsed_ms),
                # set by the auth dependency once the bearer token verifies
                "user_id": getattr(request.state, "user_id", None),
            },
        )
        return response
