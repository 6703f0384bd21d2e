import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from adboard.metrics import record_http_request


# Context variable to store request_id for the current request
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding an ISO-8601 `ts`, `level` and the request_id."""

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            now = datetime.now(timezone.utc)
            log_record['ts'] = now.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname

        if 'request_id' not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record['request_id'] = req_id


def setup_logging(log_level: str = "INFO"):
    """
    Setup structured JSON logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(CustomJsonFormatter('%(ts)s %(level)s %(name)s %(message)s'))
    logger.addHandler(json_handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # Our middleware logs every request already
    logging.getLogger("uvicorn.access").disabled = True

    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every HTTP request as one JSON line and stamp response headers.

    Log keys: ts, level, request_id, method, path, status, latency_ms.
    For /submit requests the submission outcome (phone, category, result)
    attached by `log_submission_data` is merged in.

    Every response gets `X-Request-ID` and `Cache-Control: no-store`, so
    listings are never served stale from a browser cache.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        start_time = time.time()

        try:
            response = await call_next(request)

            response.headers["X-Request-ID"] = request_id
            response.headers["Cache-Control"] = "no-store"

            latency_seconds = time.time() - start_time
            latency_ms = round(latency_seconds * 1000, 2)

            if request.url.path != "/metrics":
                record_http_request(
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    latency_seconds=latency_seconds
                )

            log_data = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": latency_ms,
            }
            if hasattr(request.state, "submission_log_data"):
                log_data.update(request.state.submission_log_data)

            logger = logging.getLogger("adboard.requests")
            if response.status_code >= 500:
                logger.error("Request completed", extra=log_data)
            elif response.status_code >= 400:
                logger.warning("Request completed", extra=log_data)
            else:
                logger.info("Request completed", extra=log_data)

            return response
        finally:
            request_id_ctx.reset(token)


def log_submission_data(request: Request, phone: str = None, category: str = None, result: str = None):
    """
    Attach submission-specific logging data to the request state.
    The middleware includes it in the request log line.
    """
    submission_data = {}

    if phone is not None:
        submission_data["phone"] = phone
    if category is not None:
        submission_data["category"] = category
    if result is not None:
        submission_data["result"] = result

    request.state.submission_log_data = submission_data
