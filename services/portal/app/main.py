import logging, sys
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.clients.gas import GasClient
from app.errors import GrantNotFoundError, PortalError
from app.portal import Portal
from app.routers import pages, submission
from app.services.registry import load_grants
from app.services.state_backend import MongoStateBackend
from app.services.state_store import StateStore, build_cache
from app.settings import Settings, settings as default_settings

logger = logging.getLogger("portal")


def setup_logging(level: str):
    logging.basicConfig(
        level=level.upper(),
        stream=sys.stdout,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def build_portal(settings: Settings) -> Portal:
    """Wire the collaborators from settings. Invalid grant rules abort here."""
    grants = load_grants(
        settings.GRANT_DEFINITIONS_DIR,
        agreements_url=settings.AGREEMENTS_BASE_URL,
        production=settings.is_production,
    )
    backend = MongoStateBackend.from_uri(settings.MONGO_URI, settings.MONGO_DB) if settings.MONGO_URI else None
    store = StateStore(
        build_cache(settings.SESSION_CACHE_ENGINE, settings.REDIS_URL),
        backend=backend,
        ttl_seconds=settings.SESSION_TTL_SECONDS,
    )
    gas = GasClient(
        settings.GAS_API_URL,
        token=settings.GAS_API_TOKEN,
        timeout=settings.GAS_TIMEOUT_SECONDS,
    )
    logger.info("Loaded %d grant(s)", len(grants))
    return Portal(settings=settings, grants=grants, store=store, gas=gas, backend=backend)


def create_app(portal: Optional[Portal] = None) -> FastAPI:
    if portal is None:
        setup_logging(default_settings.LOG_LEVEL)
        portal = build_portal(default_settings)

    app = FastAPI(title=portal.settings.APP_NAME)
    app.state.portal = portal

    @app.exception_handler(GrantNotFoundError)
    def grant_not_found(request: Request, exc: GrantNotFoundError):
        logger.info("Form not found", extra={"slug": exc.slug, "path": request.url.path})
        return JSONResponse(status_code=404, content={"detail": "Page not found"})

    @app.exception_handler(PortalError)
    def portal_error(request: Request, exc: PortalError):
        logger.error(
            "Unhandled portal error",
            extra={"path": request.url.path, "error": str(exc), "error_type": type(exc).__name__},
        )
        return JSONResponse(status_code=500, content={"detail": "Something went wrong"})

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # /{slug}/submit must win over the generic page route
    app.include_router(submission.router)
    app.include_router(pages.router)
    return app


app = create_app()
