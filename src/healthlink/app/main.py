"""Health link FastAPI application factory.

The create_app() factory is the single entry point for building the ASGI
application. It wires middleware (request-ID, metrics, request logging,
clinical session, CORS), the link/manifest/session routers, and injects
collaborator implementations via dependency injection.

Usage:
    # Local development (in-memory registry, storage and EHR)
    from healthlink.app import create_app, HealthLinkSettings
    app = create_app(HealthLinkSettings())

    # Non-local (Supabase registry, S3 storage, EHR over HTTP)
    settings = HealthLinkSettings.from_env()
    app = create_app(settings, session_store=launch_session_store)

    # Testing (full DI control)
    app = create_app(settings, registry=registry, storage=storage, ...)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from ..observability import configure_logging, get_logger, metrics_text
from ..observability.middleware import (
    MetricsMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
)
from .clinical.routes import create_session_router
from .clinical.session import (
    ClinicalSessionMiddleware,
    ClinicalSessionStore,
    InMemoryClinicalSessionStore,
)
from .clinical.source import (
    ClinicalDataSource,
    HttpClinicalDataSource,
    InMemoryClinicalDataSource,
)
from .links.access import create_manifest_router
from .links.audit import AuditTrail, InMemoryAuditTrail
from .links.issuer import LinkIssuer
from .links.management import LinkManager
from .links.manifest import ManifestService
from .links.registry import InMemoryLinkRegistry, LinkRegistry
from .links.routes import create_links_router
from .notifications.dispatcher import NotificationDispatcher
from .notifications.geo import GeoLocator, IpGeoLocator, NullGeoLocator
from .notifications.senders import (
    EmailSender,
    LoggingEmailSender,
    LoggingSmsSender,
    SesEmailSender,
    SmsSender,
    TwilioSmsSender,
)
from .settings import HealthLinkSettings
from .storage.artifacts import ArtifactStorage, ArtifactStore, InMemoryArtifactStorage

logger = get_logger(__name__)


@dataclass(frozen=True)
class AppDependencies:
    """Container for all injected collaborator instances.

    Stored on ``app.state.deps`` so route handlers and tests can reach them.
    """

    registry: LinkRegistry
    audit: AuditTrail
    storage: ArtifactStorage
    clinical: ClinicalDataSource
    session_store: ClinicalSessionStore
    sms_sender: SmsSender
    email_sender: EmailSender
    geo: GeoLocator


def _build_inmemory_deps() -> AppDependencies:
    """Construct all-InMemory dependencies for local development."""
    audit = InMemoryAuditTrail()
    return AppDependencies(
        registry=InMemoryLinkRegistry(audit=audit),
        audit=audit,
        storage=InMemoryArtifactStorage(),
        clinical=InMemoryClinicalDataSource(),
        session_store=InMemoryClinicalSessionStore(),
        sms_sender=LoggingSmsSender(),
        email_sender=LoggingEmailSender(),
        geo=NullGeoLocator(),
    )


def _build_remote_deps(
    settings: HealthLinkSettings, session_store: ClinicalSessionStore,
) -> AppDependencies:
    """Construct Supabase/S3/EHR-backed dependencies from settings."""
    from .db import SupabaseAuditTrail, SupabaseClient, SupabaseLinkRegistry
    from .storage.s3 import S3ArtifactStorage

    client = SupabaseClient(
        supabase_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
        timeout_seconds=settings.registry_timeout_seconds,
    )

    if settings.sms_configured:
        sms: SmsSender = TwilioSmsSender(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_phone_number,
        )
    else:
        logger.warning("sms_not_configured", environment=settings.environment)
        sms = LoggingSmsSender()

    if settings.email_configured:
        email: EmailSender = SesEmailSender(
            settings.ses_from_email, region=settings.aws_region,
        )
    else:
        logger.warning("email_not_configured", environment=settings.environment)
        email = LoggingEmailSender()

    geo: GeoLocator = (
        IpGeoLocator(
            settings.geolocation_url,
            timeout_seconds=settings.geolocation_timeout_seconds,
        )
        if settings.geolocation_enabled else NullGeoLocator()
    )

    return AppDependencies(
        registry=SupabaseLinkRegistry(client),
        audit=SupabaseAuditTrail(client),
        storage=S3ArtifactStorage(settings.s3_bucket, region=settings.aws_region),
        clinical=HttpClinicalDataSource(
            settings.documents_base_url,
            timeout_seconds=settings.clinical_timeout_seconds,
        ),
        session_store=session_store,
        sms_sender=sms,
        email_sender=email,
        geo=geo,
    )


async def _close_http_clients(deps: AppDependencies) -> None:
    """Close the httpx clients owned by outbound collaborators."""
    for collaborator in (deps.clinical, deps.sms_sender, deps.geo):
        aclose = getattr(collaborator, "aclose", None)
        if aclose is not None:
            await aclose()


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: HealthLinkSettings | None = None,
    *,
    registry: LinkRegistry | None = None,
    audit: AuditTrail | None = None,
    storage: ArtifactStorage | None = None,
    clinical: ClinicalDataSource | None = None,
    session_store: ClinicalSessionStore | None = None,
    sms_sender: SmsSender | None = None,
    email_sender: EmailSender | None = None,
    geo: GeoLocator | None = None,
) -> FastAPI:
    """Create a configured health link FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        registry..geo: Collaborator overrides. When None, local mode uses
            InMemory implementations and non-local mode builds Supabase,
            S3 and EHR clients from settings.

    Returns:
        Configured FastAPI application ready for uvicorn.run().

    Raises:
        ValueError: If settings validation fails.
        ValueError: If a non-local environment has no session store. Sessions
            are created by the EHR launch, so the store must be shared with it.
    """
    if settings is None:
        settings = HealthLinkSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Health link settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    if settings.is_local:
        defaults = _build_inmemory_deps()
    else:
        if session_store is None:
            raise ValueError(
                f"Non-local environment ({settings.environment}) requires "
                "session_store to be explicitly provided"
            )
        defaults = _build_remote_deps(settings, session_store)

    # The in-memory registry writes its lifecycle events to its own trail.
    if audit is None and isinstance(registry, InMemoryLinkRegistry):
        audit = registry.audit

    deps = AppDependencies(
        registry=registry or defaults.registry,
        audit=audit or defaults.audit,
        storage=storage or defaults.storage,
        clinical=clinical or defaults.clinical,
        session_store=session_store or defaults.session_store,
        sms_sender=sms_sender or defaults.sms_sender,
        email_sender=email_sender or defaults.email_sender,
        geo=geo or defaults.geo,
    )

    artifacts = ArtifactStore(
        deps.storage,
        namespace=settings.storage_namespace,
        signed_url_ttl=settings.signed_url_ttl_seconds,
        timeout_seconds=settings.storage_timeout_seconds,
    )
    dispatcher = NotificationDispatcher(
        deps.sms_sender,
        deps.email_sender,
        timeout_seconds=settings.notification_timeout_seconds,
        max_pending=settings.notification_max_pending,
    )
    issuer = LinkIssuer(
        registry=deps.registry,
        audit=deps.audit,
        artifacts=artifacts,
        clinical=deps.clinical,
        dispatcher=dispatcher,
        api_url=settings.api_url,
        viewer_base_url=settings.viewer_url,
        expiration_days_default=settings.expiration_days_default,
        expiration_days_max=settings.expiration_days_max,
        clinical_timeout_seconds=settings.clinical_timeout_seconds,
    )
    manager = LinkManager(registry=deps.registry, audit=deps.audit)
    manifest = ManifestService(
        registry=deps.registry,
        artifacts=artifacts,
        dispatcher=dispatcher,
        geo=deps.geo,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        logger.info("healthlink_startup", environment=settings.environment)
        yield
        await dispatcher.drain(timeout=settings.notification_timeout_seconds)
        await _close_http_clients(deps)
        logger.info("healthlink_shutdown", pending=dispatcher.pending)

    app = FastAPI(
        title="Health Links",
        description="Issue, serve and revoke encrypted patient health links",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.deps = deps
    app.state.settings = settings
    app.state.dispatcher = dispatcher

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestId -> Metrics -> RequestLogging
    #   -> ClinicalSession -> CORS -> route handler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        ClinicalSessionMiddleware,
        store=deps.session_store,
        session_secret=settings.session_secret,
        cookie_name=settings.session_cookie_name,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
        }

    @app.get("/metrics")
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(create_links_router(issuer, manager))
    app.include_router(create_manifest_router(manifest))
    app.include_router(create_session_router(
        deps.clinical,
        deps.session_store,
        cookie_name=settings.session_cookie_name,
        timeout_seconds=settings.clinical_timeout_seconds,
    ))

    return app


# For uvicorn, use --factory flag:
#   uvicorn healthlink.app.main:create_app --factory
# This avoids executing create_app() at import time.
