"""
Logging middleware for the CFDI generator API
Logs requests and responses with a correlation ID
"""
import time
from typing import Callable, Optional
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from cfdi_generator.core.logging import audit_logger


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request/response logging
    """

    def __init__(self, app, exclude_paths: Optional[list] = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or ["/health", "/docs", "/redoc", "/openapi.json"]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if any(request.url.path.startswith(path) for path in self.exclude_paths):
            return await call_next(request)

        correlation_id = request.headers.get("x-correlation-id") or str(uuid4())
        audit_logger.set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        try:
            audit_logger.log_api_request(method=request.method, path=request.url.path, client_ip=client_ip)

            response = await call_next(request)

            audit_logger.log_api_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=(time.time() - start_time) * 1000,
                client_ip=client_ip
            )
        finally:
            audit_logger.set_correlation_id(None)
        response.headers["X-Correlation-ID"] = correlation_id
        return response
