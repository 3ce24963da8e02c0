"""Webhook HTTP server using aiohttp."""

from __future__ import annotations

from typing import Any

from aiohttp import web
from pydantic import ValidationError

from prcleaner.config import WebhooksConfig
from prcleaner.core.bus import EventBus
from prcleaner.core.filter import filter_notification
from prcleaner.core.scheduler import CleanupScheduler
from prcleaner.utils.logging import get_logger, sanitize_log_value
from prcleaner.webhooks.auth import basic_auth_middleware
from prcleaner.webhooks.models import WebhookNotification

log = get_logger(__name__)

HEALTH_PATH = "/health"
LIVENESS_PATH = "/liveness"

_PROBLEM_CONTENT_TYPE = "application/problem+json"


def validation_problem(errors: dict[str, list[str]]) -> web.Response:
    """Build a 422 problem details response listing field errors."""
    return web.json_response(
        {
            "type": "https://tools.ietf.org/html/rfc4918#section-11.2",
            "title": "One or more validation errors occurred.",
            "status": 422,
            "errors": errors,
        },
        status=422,
        content_type=_PROBLEM_CONTENT_TYPE,
    )


def field_errors(exc: ValidationError) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "$"
        errors.setdefault(field, []).append(error["msg"])
    return errors


class WebhookServer:
    """Receives Azure DevOps service hooks and schedules cleanups."""

    def __init__(
        self, config: WebhooksConfig, scheduler: CleanupScheduler, bus: EventBus
    ) -> None:
        self._config = config
        self._scheduler = scheduler
        self._bus = bus
        self._runner: web.AppRunner | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if not (self._config.username and self._config.password):
            log.warning(
                "webhook_no_credentials",
                path=self._config.path,
                msg="No basic auth credentials configured; all webhook requests will be rejected.",
            )
        app = self._build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.bind, self._config.port)
        await site.start()
        log.info(
            "webhook_server_started",
            bind=self._config.bind,
            port=self._config.port,
            path=self._config.path,
        )

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        log.info("webhook_server_stopped")

    # ------------------------------------------------------------------
    # App construction
    # ------------------------------------------------------------------

    def _build_app(self) -> web.Application:
        app = web.Application(
            middlewares=[
                basic_auth_middleware(
                    self._config.username,
                    self._config.password,
                    self._config.realm,
                    anonymous_paths=(HEALTH_PATH, LIVENESS_PATH),
                ),
            ]
        )
        app.router.add_post(self._config.path, self._handle_webhook)
        app.router.add_get(HEALTH_PATH, self._handle_health)
        app.router.add_get(LIVENESS_PATH, self._handle_liveness)
        return app

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        # Parse JSON
        try:
            payload: Any = await request.json()
        except ValueError:
            return validation_problem({"$": ["The request body is not valid JSON."]})
        if not isinstance(payload, dict):
            return validation_problem({"$": ["The request body must be a JSON object."]})

        # Validate schema
        try:
            notification = WebhookNotification.model_validate(payload)
        except ValidationError as exc:
            return validation_problem(field_errors(exc))

        log.info(
            "notification_received",
            event_type=notification.event_type,
            notification_id=notification.notification_id,
            subscription_id=sanitize_log_value(notification.subscription_id),
        )

        # Contract violations raise here and surface as a 500
        result = filter_notification(notification)
        if result.should_schedule:
            assert result.request is not None
            await self._scheduler.schedule(result.request)

        return web.Response(status=200, text="OK")

    async def _handle_health(self, request: web.Request) -> web.Response:
        healthy = await self._bus.check_health()
        return web.json_response(
            {
                "status": "Healthy" if healthy else "Unhealthy",
                "transport": self._bus.transport.name,
            },
            status=200 if healthy else 503,
        )

    async def _handle_liveness(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "Healthy"})
