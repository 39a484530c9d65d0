# mclink/middleware/correlation.py
import contextvars
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

request_id_var = contextvars.ContextVar("request_id", default=None)
correlation_id_var = contextvars.ContextVar("correlation_id", default=None)

log = logging.getLogger("mclink.http")


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        record.correlation_id = correlation_id_var.get() or "-"
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        corr_id = request.headers.get("x-correlation-id") or req_id
        request_id_var.set(req_id)
        correlation_id_var.set(corr_id)
        request.state.request_id = req_id

        start = time.time()
        log.info(
            "REQ method=%s path=%s client=%s",
            request.method,
            request.url.path,
            request.client.host if request.client else None,
        )
        try:
            response = await call_next(request)
        except Exception:
            dur_ms = int((time.time() - start) * 1000)
            log.exception("ERR dur_ms=%s path=%s", dur_ms, request.url.path)
            raise

        dur_ms = int((time.time() - start) * 1000)
        log.info("RES status=%s dur_ms=%s path=%s", response.status_code, dur_ms, request.url.path)
        response.headers["x-request-id"] = req_id
        response.headers["x-correlation-id"] = corr_id
        return response
