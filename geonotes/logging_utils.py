"""
Structured JSON logging for the geonotes API.

Every log line carries `ts` (ISO-8601 UTC), `level`, `name` and, inside a
request, the `request_id` the middleware assigns. One "Request completed"
line is written per request with:

- method, path, status, latency_ms
- backend: the message store serving the request
- message_id, result, count: set by the /messages routes through
  `log_message_data` (result is created, deleted, listed, not_found,
  unauthorized, validation_error or error)
"""

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

from geonotes.metrics import record_http_request

REQUEST_LOGGER = "geonotes.requests"

# Paths whose requests are neither counted nor logged
_UNINSTRUMENTED_PATHS = frozenset({"/metrics"})

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Adds the millisecond `ts` field, the level name and the current request id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
            log_record['ts'] = ts.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname

        if 'request_id' not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record['request_id'] = req_id


def setup_logging(log_level: str = "INFO"):
    """
    Send the root logger and uvicorn's loggers to stdout as JSON.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(CustomJsonFormatter('%(ts)s %(level)s %(name)s %(message)s'))
    root.addHandler(json_handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # RequestLoggingMiddleware writes the access log
    logging.getLogger("uvicorn.access").disabled = True

    return root


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Tag each request with an id (also returned as `X-Request-ID`), record the
    HTTP metrics and write the request log line described in the module
    docstring.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            path = request.url.path
            if path not in _UNINSTRUMENTED_PATHS:
                latency_seconds = time.perf_counter() - start_time
                record_http_request(
                    method=request.method,
                    path=path,
                    status=response.status_code,
                    latency_seconds=latency_seconds,
                )
                self._log(request, response, latency_seconds)

            return response
        finally:
            request_id_ctx.reset(token)

    @staticmethod
    def _log(request: Request, response: Response, latency_seconds: float) -> None:
        log_data = {
            "request_id": request.state.request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round(latency_seconds * 1000, 2),
        }
        store = getattr(request.app.state, "store", None)
        if store is not None:
            log_data["backend"] = store.name
        log_data.update(getattr(request.state, "message_log_data", {}))

        logger = logging.getLogger(REQUEST_LOGGER)
        if response.status_code >= 500:
            logger.error("Request completed", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request completed", extra=log_data)
        else:
            logger.info("Request completed", extra=log_data)


def log_message_data(request: Request, message_id: str = None, result: str = None, count: int = None):
    """
    Attach message fields to the request log line.

    Later calls in the same request add to (and override) earlier ones.
    """
    data = dict(getattr(request.state, "message_log_data", {}))
    if message_id is not None:
        data["message_id"] = message_id
    if result is not None:
        data["result"] = result
    if count is not None:
        data["count"] = count
    request.state.message_log_data = data
