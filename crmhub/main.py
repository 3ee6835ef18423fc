import logging

from crmhub.core.config import Settings, get_settings
from crmhub.core.events import DomainEvent, event_bus
from crmhub.crm.client import CRMBackend, DemoCRMBackend, HttpCRMBackend
from crmhub.crm.service import CRMWorkspace
from crmhub.logging import configure_logging
from crmhub.metrics import generate_metrics_payload, metrics_content_type
from crmhub.otel import setup_otel


logger = logging.getLogger("crmhub.lifecycle")
_subscriptions_registered = False

_domain_event_types = [
    "crm.lead.converted",
    "crm.deal.won",
    "crm.deal.lost",
    "crm.deal.stage_changed",
    "crm.project.status_changed",
    "crm.quote.accepted",
    "crm.meeting.scheduled",
]


def _on_domain_event(event: DomainEvent) -> None:
    logger.info(
        "domain_event",
        extra={
            "operation": event.operation,
            "entity_type": event.event_type,
            "correlation_id": event.correlation_id,
            "actor_user_id": event.actor_user_id,
        },
    )


def register_event_subscriptions() -> None:
    global _subscriptions_registered
    if _subscriptions_registered:
        return
    for event_type in _domain_event_types:
        event_bus.subscribe(event_type, _on_domain_event)
    _subscriptions_registered = True


def build_backend(settings: Settings) -> CRMBackend:
    if settings.demo_mode:
        return DemoCRMBackend()
    return HttpCRMBackend(settings.api_base_url, timeout=settings.http_timeout_seconds)


def build_workspace(settings: Settings | None = None, backend: CRMBackend | None = None) -> CRMWorkspace:
    """Wire logging, tracing and the configured backend into a ready workspace."""

    settings = settings or get_settings()
    configure_logging()
    setup_otel(settings.app_name, settings.otel_enabled)
    register_event_subscriptions()
    workspace = CRMWorkspace(backend or build_backend(settings), settings=settings)
    logger.info("workspace_ready", extra={"operation": "startup", "status": "demo" if settings.demo_mode else "live"})
    return workspace


def export_metrics(settings: Settings | None = None) -> tuple[bytes, str] | None:
    settings = settings or get_settings()
    if not settings.metrics_enabled:
        return None
    return generate_metrics_payload(), metrics_content_type()
