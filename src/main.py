"""SatuPintu FastAPI application entry point.

Creates the FastAPI app, configures middleware and error handlers,
includes routers, and manages the lifecycle of all backend services
(store, cache, notification channels, geocoder, LLM, address resolver,
classifier, ticket lifecycle, rating, voice agent, SMS commands).
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import settings
from src.api.router import api_router
from src.middleware.rate_limit import RateLimitMiddleware
from src.models.enums import NotificationChannel
from src.services.errors import SatuPintuError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.get_level_from_name(settings.log_level),
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of all SatuPintu services.

    On startup:
      1. Ticket store (in-memory or Supabase PostgREST)
      2. Response cache (Redis with in-memory fallback)
      3. Notification channels and dispatcher
      4. Geocoder, LLM and address resolver
      5. Complaint classifier
      6. Ticket lifecycle and rating services
      7. Voice agent and SMS command handler
      8. Store everything on ``app.state``

    Channels without credentials fall back to the mock channel, and a
    missing GCP project leaves the classifier on ``fallback_complaint``,
    so the app always starts.

    On shutdown every HTTP client and the cache are closed.
    """
    _configure_logging()
    logger.info(
        "app.startup",
        env=settings.env,
        store=settings.store_backend,
        gcp_project=settings.gcp_project_id or None,
    )

    app.state.start_time = time.time()

    # -- 1. Store -----------------------------------------------------------
    from src.services.store import InMemoryTicketStore, PostgrestTicketStore, TicketStore

    store: TicketStore
    if settings.store_backend == "postgrest" and settings.supabase_url:
        store = PostgrestTicketStore(settings.supabase_url, settings.supabase_service_role_key)
        app.state.store_backend = "postgrest"
    else:
        if settings.store_backend == "postgrest":
            logger.warning("app.store_not_configured", fallback="memory")
        store = InMemoryTicketStore()
        app.state.store_backend = "memory"
    app.state.store = store
    logger.info("app.store_initialised", backend=app.state.store_backend)

    # -- 2. Cache -----------------------------------------------------------
    from src.services.cache import CacheManager

    cache = CacheManager(
        redis_url=settings.redis_url if settings.redis_url else None,
        namespace="satupintu:",
    )
    app.state.cache = cache
    logger.info("app.cache_initialised")

    # -- 3. Notifications ---------------------------------------------------
    from src.services.notifications import (
        FonnteWhatsAppChannel,
        MockChannel,
        NotificationDispatcher,
        TwilioSmsChannel,
    )

    channels: dict = {}
    if settings.fonnte_token:
        channels[NotificationChannel.WHATSAPP] = FonnteWhatsAppChannel(
            settings.fonnte_token,
            url=settings.fonnte_url,
            timeout=settings.notification_timeout_seconds,
        )
    else:
        logger.warning("app.whatsapp_not_configured", fallback="mock")
        channels[NotificationChannel.WHATSAPP] = MockChannel(NotificationChannel.WHATSAPP)

    if settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_phone_number:
        channels[NotificationChannel.SMS] = TwilioSmsChannel(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_phone_number,
            timeout=settings.notification_timeout_seconds,
        )
    else:
        logger.warning("app.sms_not_configured", fallback="mock")
        channels[NotificationChannel.SMS] = MockChannel(NotificationChannel.SMS)

    dispatcher = NotificationDispatcher(
        store,
        channels,
        max_attempts=settings.notification_max_attempts,
        whatsapp_test_number=settings.whatsapp_test_number or None,
    )
    app.state.dispatcher = dispatcher
    logger.info("app.notifications_initialised", channels=sorted(c.value for c in channels))

    # -- 4. Geocoder, LLM, address resolver ---------------------------------
    from src.services.address import AddressResolver
    from src.services.geocoding import BoundingBox, GoogleGeocoder, NominatimGeocoder
    from src.services.llm import LLMService

    bounds = BoundingBox(
        south=settings.coverage_south,
        north=settings.coverage_north,
        west=settings.coverage_west,
        east=settings.coverage_east,
    )
    geocoder: GoogleGeocoder | NominatimGeocoder
    if settings.google_maps_api_key:
        geocoder = GoogleGeocoder(
            settings.google_maps_api_key, bounds, timeout=settings.geocoder_timeout_seconds
        )
    else:
        geocoder = NominatimGeocoder(
            settings.nominatim_url,
            settings.nominatim_user_agent,
            timeout=settings.geocoder_timeout_seconds,
        )
    app.state.geocoder = geocoder

    llm: LLMService | None = None
    if settings.gcp_project_id:
        try:
            llm = LLMService(
                project_id=settings.gcp_project_id,
                region=settings.vertex_ai_location,
                model_name=settings.vertex_ai_model,
            )
            logger.info("app.llm_initialised", model=settings.vertex_ai_model)
        except Exception:
            logger.warning("app.llm_init_failed", exc_info=True)
    else:
        logger.warning("app.llm_not_configured")
    app.state.llm = llm

    resolver = AddressResolver(bounds, geocoder=geocoder, llm=llm, city=settings.service_city)
    app.state.address_resolver = resolver
    logger.info("app.address_resolver_initialised", geocoder=type(geocoder).__name__)

    # -- 5. Classifier ------------------------------------------------------
    from src.services.classifier import ComplaintClassifier

    classifier = ComplaintClassifier(llm)
    app.state.classifier = classifier

    # -- 6. Tickets and rating ----------------------------------------------
    from src.services.rating import RatingService
    from src.services.tickets import TicketService

    tickets = TicketService(
        store,
        dispatcher,
        settings.track_url,
        resolver=resolver,
        cache=cache,
        notify_channel=NotificationChannel(settings.notify_channel),
        photo_host_suffixes=settings.photo_host_suffixes,
        allow_reopen=settings.allow_reopen,
        ticket_prefix=settings.ticket_prefix,
        timezone=settings.timezone,
    )
    app.state.tickets = tickets

    rating = RatingService(
        store,
        dispatcher,
        cache=cache,
        otp_channel=NotificationChannel(settings.otp_channel),
        validity_minutes=settings.otp_validity_minutes,
        cooldown_seconds=settings.otp_cooldown_seconds,
        feedback_max_length=settings.feedback_max_length,
    )
    app.state.rating = rating
    logger.info("app.ticket_services_initialised")

    # -- 7. Voice agent and SMS commands ------------------------------------
    from src.services.sms_commands import SmsCommandService
    from src.services.voice_agent import RecordingClient, VoiceAgentService

    recordings: RecordingClient | None = None
    if settings.twilio_account_sid and settings.twilio_auth_token:
        recordings = RecordingClient(settings.twilio_account_sid, settings.twilio_auth_token)
    app.state.voice_agent = VoiceAgentService(
        tickets,
        classifier,
        resolver=resolver,
        recordings=recordings,
        process_url=f"{api_router.prefix}/voice/process",
        record_max_seconds=settings.voice_record_max_seconds,
    )
    app.state.sms_commands = SmsCommandService(tickets, dispatcher, settings.ticket_prefix)
    logger.info("app.intake_initialised", recordings=recordings is not None)

    logger.info("app.startup_complete")

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start")

    if recordings is not None:
        await recordings.close()
    await dispatcher.close()
    await geocoder.close()
    await store.close()
    await cache.close()

    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


async def _domain_error_handler(request: Request, exc: SatuPintuError) -> ORJSONResponse:
    if exc.status_code >= 500:
        logger.error("api.domain_error", path=request.url.path, code=exc.code)
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> ORJSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg', 'invalid')}" if field else "Permintaan tidak valid"
    logger.info("api.validation_error", path=request.url.path, errors=len(errors))
    return ORJSONResponse(
        status_code=400,
        content={"success": False, "error": message, "code": "VALIDATION_ERROR"},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.error("api.unhandled_error", path=request.url.path, exc_info=exc)
    return ORJSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"},
    )


def register_error_handlers(app: FastAPI) -> None:
    """Render every failure as ``{success: false, error, code}``."""
    app.add_exception_handler(SatuPintuError, _domain_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build the application with middleware, handlers and routers."""
    application = FastAPI(
        title="SatuPintu API",
        description=(
            "SatuPintu -- one-door complaint intake for Kota Bandung. Citizens report "
            "by phone, voice AI or SMS; tickets are classified, routed to the "
            "responsible agency and tracked to resolution."
        ),
        version="1.0.0",
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )

    # -- CORS middleware ----------------------------------------------------
    # allow_credentials=True must not be combined with allow_origins=["*"].
    if settings.is_production:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origin_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PATCH"],
            allow_headers=["Content-Type", "Authorization", "X-API-Key"],
        )
    else:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:3000", "http://localhost:8000", "http://127.0.0.1:8000"],
            allow_credentials=True,
            allow_methods=["GET", "POST", "PATCH", "OPTIONS", "HEAD"],
            allow_headers=["Content-Type", "Accept", "Authorization", "X-API-Key"],
        )

    application.add_middleware(
        RateLimitMiddleware,
        max_requests_per_minute=settings.rate_limit_per_minute,
        otp_requests_per_minute=settings.otp_rate_limit_per_minute,
        trusted_proxy_count=settings.trusted_proxy_count,
    )

    register_error_handlers(application)
    application.include_router(api_router)

    @application.get("/")
    async def root() -> dict:
        """API information endpoint."""
        return {
            "name": "SatuPintu API",
            "version": application.version,
            "docs": "/docs",
            "health": "/api/v1/health",
            "endpoints": {
                "vapi_webhook": "/api/v1/vapi/webhook",
                "sms": "/api/v1/sms/incoming",
                "voice": "/api/v1/voice/incoming",
                "tickets": "/api/v1/tickets",
                "track": "/api/v1/track/{ticket_id}",
                "stats": "/api/v1/stats",
                "analytics": "/api/v1/analytics",
            },
        }

    return application


app = create_app()

# -- Prometheus metrics -----------------------------------------------------
# Exposed for in-cluster scraping only; excluded from the public schema in
# production.
try:
    from prometheus_fastapi_instrumentator import Instrumentator

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/metrics", "/api/v1/health"],
    ).instrument(app).expose(
        app,
        endpoint="/metrics",
        include_in_schema=not settings.is_production,
    )
    logger.info("app.prometheus_metrics_enabled")
except ImportError:
    logger.warning("app.prometheus_not_available")
