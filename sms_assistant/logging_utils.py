import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from sms_assistant.metrics import record_http_request
from sms_assistant.utils import utcnow


# Context variable to store request_id for the current request
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

REQUEST_ID_HEADER = "X-Request-ID"


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_ctx.get()


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding an ISO-8601 timestamp, the level and the request_id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("ts"):
            log_record["ts"] = utcnow().strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        log_record["level"] = record.levelname

        if "request_id" not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record["request_id"] = req_id


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Setup structured JSON logging on stdout for the application, uvicorn
    and the HTTP client libraries.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(CustomJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))
    logger.addHandler(json_handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # Access records come from RequestLoggingMiddleware
    logging.getLogger("uvicorn.access").disabled = True

    # httpx logs every request URL at INFO, including the Maps API key
    for logger_name in ("httpx", "httpcore", "anthropic"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    return logger


def _access_log_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every HTTP request as one structured JSON record.

    Log keys: ts, level, request_id, method, path, status, latency_ms.

    For the SMS webhooks, also includes:
    - message_sid: provider message id (when present)
    - intent: classified intent (when classification ran)
    - result: processed, unauthorized, invalid_signature, validation_error, error
    """

    access_logger = logging.getLogger("sms_assistant.requests")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        path = request.url.path
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            self.access_logger.exception(
                "Request failed",
                extra={"request_id": request_id, "method": request.method, "path": path},
            )
            request_id_ctx.reset(token)
            raise

        try:
            elapsed = time.perf_counter() - started
            response.headers[REQUEST_ID_HEADER] = request_id

            # The scrape endpoint is not instrumented
            if path != "/metrics":
                record_http_request(request.method, path, response.status_code, elapsed)

            record = {
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "status": response.status_code,
                "latency_ms": round(elapsed * 1000, 2),
                **getattr(request.state, "webhook_log_data", {}),
            }
            self.access_logger.log(_access_log_level(response.status_code), "Request completed", extra=record)
            return response
        finally:
            request_id_ctx.reset(token)


def log_webhook_data(
    request: Request,
    message_sid: Optional[str] = None,
    intent: Optional[str] = None,
    result: Optional[str] = None,
) -> None:
    """
    Attach webhook fields to the request state so the middleware includes
    them in the access record.

    Args:
        request: FastAPI request object
        message_sid: Provider message id from the payload
        intent: Classified intent, when classification ran
        result: Processing result (see RequestLoggingMiddleware)
    """
    webhook_data = {}

    if message_sid is not None:
        webhook_data["message_sid"] = message_sid

    if intent is not None:
        webhook_data["intent"] = intent

    if result is not None:
        webhook_data["result"] = result

    request.state.webhook_log_data = webhook_data
