from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from pvp_relay.api.routes import router as api_router
from pvp_relay.core.config import Settings, get_settings
from pvp_relay.core.request_meta import extract_client_ip
from pvp_relay.realtime.relay import RelayService
from pvp_relay.realtime.socket_server import build_socket_app
from pvp_relay.services.rate_limit_service import RateLimitService, scope_for_path
from pvp_relay.services.room_registry import SessionRegistry

logger = logging.getLogger(__name__)


class ApiRateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: RateLimitService, enabled: bool = True) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.enabled = enabled

    async def dispatch(self, request, call_next):
        if not self.enabled:
            return await call_next(request)

        scope = scope_for_path(request.url.path)
        if scope is None:
            return await call_next(request)

        client_ip = extract_client_ip(request)
        decision = self.limiter.check(scope, client_ip)
        headers = {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset-Seconds": str(decision.reset_after_seconds),
        }
        if not decision.allowed:
            logger.warning("Rate limit exceeded for %s on %s", client_ip, scope)
            headers["Retry-After"] = str(decision.retry_after_seconds)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded"},
                headers=headers,
            )

        response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = value
        return response


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_relay(settings: Settings) -> RelayService:
    registry = SessionRegistry(
        ttl_seconds=settings.room_ttl_seconds,
        code_length=settings.room_code_length,
    )
    return RelayService(
        registry,
        keepalive_seconds=settings.keepalive_interval_seconds,
        chat_max_length=settings.chat_max_length,
    )


def create_api_app(
    relay: RelayService | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    relay = relay or build_relay(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("%s started", settings.app_name)
        yield
        await relay.shutdown()
        logger.info("%s stopped", settings.app_name)

    api_app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
    api_app.state.relay = relay
    api_app.state.settings = settings
    api_app.state.rate_limiter = RateLimitService.from_settings(settings)

    api_app.add_middleware(
        ApiRateLimitMiddleware,
        limiter=api_app.state.rate_limiter,
        enabled=settings.rate_limit_enabled,
    )
    api_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    api_app.include_router(api_router, prefix=settings.api_prefix)
    return api_app


def create_app(settings: Settings | None = None):
    settings = settings or get_settings()
    configure_logging(settings)
    api_app = create_api_app(settings=settings)
    return build_socket_app(api_app, api_app.state.relay)


app = create_app()
