import logging
from contextlib import asynccontextmanager
from typing import Annotated, Literal, Mapping, NoReturn
from urllib.parse import parse_qsl

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response, status
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from sms_assistant import __version__
from sms_assistant.classifier import AnthropicClassifier, IntentClassifier
from sms_assistant.config import Settings, get_settings, settings
from sms_assistant.logging_utils import RequestLoggingMiddleware, log_webhook_data, setup_logging
from sms_assistant.maps import GoogleMapsClient, MapsService
from sms_assistant.metrics import get_metrics, get_metrics_content_type, record_webhook_outcome
from sms_assistant.pipeline import InboundProcessor
from sms_assistant.repository import Repository
from sms_assistant.schemas import (
    ErrorResponse,
    HealthResponse,
    IncomingSms,
    MessageLogListResponse,
    MessageLogResponse,
    SmsStatusCallback,
    StatusResponse,
)
from sms_assistant.sms import SmsSender, TwilioSender
from sms_assistant.storage import check_db_health, get_db, init_db
from sms_assistant.utils import normalize_phone_number, verify_bearer_token, verify_twilio_signature


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Empty TwiML: the reply is sent through the REST API, not in the webhook response
EMPTY_TWIML = "<Response></Response>"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    - Startup: create tables, build the collaborator clients once
    - Shutdown: close their HTTP connection pools
    """
    init_db()

    app.state.classifier = AnthropicClassifier(
        api_key=settings.ANTHROPIC_API_KEY,
        model=settings.CLASSIFIER_MODEL,
        max_tokens=settings.CLASSIFIER_MAX_TOKENS,
        temperature=settings.CLASSIFIER_TEMPERATURE,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    app.state.maps = GoogleMapsClient(
        api_key=settings.GOOGLE_MAPS_API_KEY,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    app.state.sms_sender = TwilioSender(
        account_sid=settings.TWILIO_ACCOUNT_SID,
        auth_token=settings.TWILIO_AUTH_TOKEN,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    logger.info("SMS assistant started", extra={"environment": settings.APP_ENV})

    yield

    app.state.maps.close()
    app.state.sms_sender.close()


app = FastAPI(
    title="SMS Assistant",
    description="Personal SMS assistant for contacts, shared lists and trip tracking",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Dependencies
# =============================================================================

def get_classifier(request: Request) -> IntentClassifier:
    return request.app.state.classifier


def get_maps_service(request: Request) -> MapsService:
    return request.app.state.maps


def get_sms_sender(request: Request) -> SmsSender:
    return request.app.state.sms_sender


def get_repository(db: Session = Depends(get_db)) -> Repository:
    return Repository(db)


def get_processor(
    repo: Repository = Depends(get_repository),
    classifier: IntentClassifier = Depends(get_classifier),
    maps: MapsService = Depends(get_maps_service),
    sender: SmsSender = Depends(get_sms_sender),
    app_settings: Settings = Depends(get_settings),
) -> InboundProcessor:
    return InboundProcessor(repo, classifier, maps, sender, app_settings)


def require_admin(
    authorization: Annotated[str | None, Header()] = None,
    app_settings: Settings = Depends(get_settings),
) -> None:
    """Bearer ADMIN_API_KEY; admin endpoints are closed when no key is configured."""
    if not app_settings.ADMIN_API_KEY or not verify_bearer_token(authorization, app_settings.ADMIN_API_KEY):
        logger.warning("Rejected admin request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


# =============================================================================
# Webhook helpers
# =============================================================================

def _signed_url(request: Request, app_settings: Settings) -> str:
    """The URL the provider signed; PUBLIC_BASE_URL replaces the host when behind a proxy."""
    if not app_settings.PUBLIC_BASE_URL:
        return str(request.url)

    url = app_settings.PUBLIC_BASE_URL.rstrip("/") + request.url.path
    if request.url.query:
        url += "?" + request.url.query
    return url


async def _read_form(request: Request) -> dict[str, str]:
    raw_body = await request.body()
    logger.debug(f"Request body size: {len(raw_body)} bytes")
    return dict(parse_qsl(raw_body.decode("utf-8", errors="replace"), keep_blank_values=True))


def _signature_ok(
    request: Request,
    params: Mapping[str, str],
    signature: str | None,
    app_settings: Settings,
) -> bool:
    if app_settings.SKIP_SIGNATURE_VALIDATION:
        logger.warning("Webhook signature validation is disabled")
        return True

    if not signature:
        logger.error("Missing X-Twilio-Signature header")
        return False

    if not verify_twilio_signature(_signed_url(request, app_settings), params, signature, app_settings.WEBHOOK_SECRET):
        logger.error("Invalid webhook signature")
        return False

    return True


def _reject(request: Request, result: str, status_code: int, detail: str, message_sid: str | None = None) -> NoReturn:
    record_webhook_outcome(result)
    log_webhook_data(request=request, message_sid=message_sid, result=result)
    raise HTTPException(status_code=status_code, detail=detail)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. WEBHOOK_SECRET is set (non-empty)
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.WEBHOOK_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="WEBHOOK_SECRET not configured"
        )

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# SMS Webhook Routes
# =============================================================================

@app.post(
    "/webhooks/sms/incoming",
    response_class=Response,
    responses={
        200: {"content": {"application/xml": {}}, "description": "Empty TwiML"},
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"model": ErrorResponse, "description": "Validation error"},
    },
)
async def incoming_sms(
    request: Request,
    x_twilio_signature: Annotated[str | None, Header(alias="X-Twilio-Signature")] = None,
    processor: InboundProcessor = Depends(get_processor),
    app_settings: Settings = Depends(get_settings),
) -> Response:
    """
    Answer an inbound SMS.

    - Validates the X-Twilio-Signature header against WEBHOOK_SECRET
    - Validates the form payload against IncomingSms
    - Runs the pipeline (whitelist, classify, dispatch, reply) off the event loop

    The reply goes out through the SMS API; the provider always gets 200
    with empty TwiML once the request itself is valid.
    """
    logger.info("Inbound SMS webhook received")
    params = await _read_form(request)

    if not _signature_ok(request, params, x_twilio_signature, app_settings):
        _reject(request, "invalid_signature", status.HTTP_401_UNAUTHORIZED, "invalid signature")

    try:
        message = IncomingSms.model_validate(params)
    except ValidationError as e:
        logger.error(f"Validation error: {e.error_count()} error(s)")
        _reject(
            request,
            "validation_error",
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "invalid payload",
            message_sid=params.get("MessageSid"),
        )

    outcome = await run_in_threadpool(processor.process, message)

    logger.info(f"Message handled: {message.message_sid}, result: {outcome.result}")
    record_webhook_outcome(outcome.result)
    log_webhook_data(
        request=request,
        message_sid=message.message_sid,
        intent=outcome.intent,
        result=outcome.result,
    )

    return Response(content=EMPTY_TWIML, media_type="application/xml")


@app.post(
    "/webhooks/sms/status",
    response_class=Response,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"model": ErrorResponse, "description": "Validation error"},
    },
)
async def sms_status_callback(
    request: Request,
    x_twilio_signature: Annotated[str | None, Header(alias="X-Twilio-Signature")] = None,
    repo: Repository = Depends(get_repository),
    app_settings: Settings = Depends(get_settings),
) -> Response:
    """Back-fill the delivery status of an outbound message."""
    params = await _read_form(request)

    if not _signature_ok(request, params, x_twilio_signature, app_settings):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid signature")

    try:
        callback = SmsStatusCallback.model_validate(params)
    except ValidationError as e:
        logger.error(f"Status callback validation error: {e.error_count()} error(s)")
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid payload")

    updated = await run_in_threadpool(repo.set_message_status, callback.message_sid, callback.message_status)
    logger.info(
        "Delivery status received",
        extra={
            "message_sid": callback.message_sid,
            "message_status": callback.message_status,
            "error_code": callback.error_code,
            "updated": updated,
        },
    )
    log_webhook_data(request=request, message_sid=callback.message_sid)

    return Response(content=EMPTY_TWIML, media_type="application/xml")


# =============================================================================
# Admin Routes
# =============================================================================

@app.get(
    "/status",
    response_model=StatusResponse,
    dependencies=[Depends(require_admin)],
    responses={401: {"model": ErrorResponse}},
)
async def service_status(app_settings: Settings = Depends(get_settings)) -> StatusResponse:
    """Version, environment and whether each collaborator is configured."""
    checks = {
        "database": check_db_health(),
        "sms": bool(
            app_settings.TWILIO_ACCOUNT_SID
            and app_settings.TWILIO_AUTH_TOKEN
            and app_settings.TWILIO_PHONE_NUMBER
        ),
        "classifier": bool(app_settings.ANTHROPIC_API_KEY),
        "maps": bool(app_settings.GOOGLE_MAPS_API_KEY),
    }
    return StatusResponse(
        status="ok" if checks["database"] else "degraded",
        version=__version__,
        environment=app_settings.APP_ENV,
        checks=checks,
    )


@app.get(
    "/messages",
    response_model=MessageLogListResponse,
    dependencies=[Depends(require_admin)],
    responses={401: {"model": ErrorResponse}},
)
def list_messages(
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum number of entries to return")] = 50,
    offset: Annotated[int, Query(ge=0, description="Number of entries to skip")] = 0,
    phone: Annotated[str | None, Query(description="Filter by sender or recipient")] = None,
    direction: Annotated[Literal["inbound", "outbound"] | None, Query(description="Filter by direction")] = None,
    q: Annotated[str | None, Query(description="Free-text search in the body (case-insensitive)")] = None,
    repo: Repository = Depends(get_repository),
) -> MessageLogListResponse:
    """
    List the message audit log with pagination and filtering.

    Ordering:
        - Entries are ordered by created_at ASC, id ASC (deterministic)

    Response:
        - data: Entries matching filters
        - total: Total count matching filters (ignoring limit/offset)
        - limit: The limit value used
        - offset: The offset value used
    """
    logger.info(f"GET /messages: limit={limit}, offset={offset}, phone={phone}, direction={direction}, q={q}")

    entries, total = repo.get_messages(
        limit=limit,
        offset=offset,
        phone=normalize_phone_number(phone) if phone else None,
        direction=direction,
        q=q,
    )

    return MessageLogListResponse(
        data=[MessageLogResponse.model_validate(entry) for entry in entries],
        total=total,
        limit=limit,
        offset=offset,
    )


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.

    Returns metrics in Prometheus text exposition format including:
    - http_requests_total, request_latency_seconds
    - sms_webhook_total{result}, sms_outbound_total{success}
    - intents_total{intent}, classification_latency_seconds
    - external_call_failures_total{service}
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
