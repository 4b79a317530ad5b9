from starlette.middleware.base import BaseHTTPMiddleware

from accessledger.core.metrics import http_requests_total, route_template


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count HTTP requests by method, route template and status."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        http_requests_total.inc(labels={
            "method": request.method.upper(),
            "path": route_template(request),
            "status": str(getattr(response, "status_code", 0) or 0),
        })
        return response
