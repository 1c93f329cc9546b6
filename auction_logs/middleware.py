from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
import time
import uuid

REQUEST_ID_HEADER = "X-Request-ID"

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one started/completed pair per HTTP request and tags the response
    with a request id (the caller's X-Request-ID if it sent one) so a bid
    seen by a client can be found in server.log. Reads of the log router
    itself are not logged.
    """

    def __init__(self, app, logger, skip_prefixes=("/admin/logs",)):
        super().__init__(app)
        self.logger = logger
        self.skip_prefixes = tuple(skip_prefixes)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path.startswith(self.skip_prefixes):
            return await call_next(request)

        req_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        start = time.perf_counter()

        self.logger.debug("request_started",
            req_id=req_id,
            method=request.method,
            path=path,
            client_ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )

        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error("request_failed", req_id=req_id, method=request.method, path=path, error=str(e))
            raise

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        if response.status_code >= 500:
            log = self.logger.error
        elif response.status_code >= 400:
            log = self.logger.warning
        else:
            log = self.logger.info
        log("request_completed",
            req_id=req_id,
            method=request.method,
            path=path,
            status=response.status_code,
            duration_ms=duration_ms
        )

        response.headers[REQUEST_ID_HEADER] = req_id
        return response
