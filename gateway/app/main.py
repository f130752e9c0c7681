import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from gateway.app.api.files import router as files_router
from gateway.app.api.render import router as render_router
from gateway.app.api.security import require_credentials
from gateway.app.api.templates import router as templates_router
from gateway.app.core.config import Settings, get_settings
from gateway.app.registry.formatters import load_default_registry
from gateway.app.registry.templates import TemplateCatalog
from gateway.app.services.engine import RenderEngine
from gateway.app.services.mailer import SmtpMailer
from gateway.app.services.pipeline import RenderPipeline
from gateway.app.services.storage import ArtifactStore

logger = logging.getLogger("gateway.main")

STATIC_DIR = Path(__file__).parent / "static"


def get_app_version() -> str:
    try:
        return version("render-gateway")
    except PackageNotFoundError:
        return "0.1.0"


# ---------------------------------------------------------------------------
# Capability wiring
# ---------------------------------------------------------------------------


def configure_storage(settings: Settings) -> Optional[ArtifactStore]:
    """Build and validate the artifact store; None when not configured."""
    if not settings.storage_enabled:
        logger.info("no file storage configured; generated files will not be stored.")
        return None

    store = ArtifactStore(settings.storage_path)
    # StorageUnavailable propagates: a configured store is not best-effort.
    store.validate()
    logger.info("storage_configured", extra={"root": str(store.root)})
    return store


def configure_mailer(settings: Settings) -> Optional[SmtpMailer]:
    if not settings.email_enabled:
        logger.info("no SMTP host configured; email directives will be ignored.")
        return None

    return SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user,
        password=(
            settings.smtp_password.get_secret_value()
            if settings.smtp_password
            else None
        ),
        sender=settings.smtp_sender,
        unsafe=settings.smtp_unsafe,
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory for the render gateway.

    ``settings`` is resolved from the environment at startup when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Guarantees:
        - Fail-fast startup if configuration or storage is invalid
        - Formatter baseline frozen before the first request
        """
        logger.info(
            "gateway_startup_begin",
            extra={"service": "render-gateway", "version": get_app_version()},
        )

        try:
            resolved = settings or get_settings()
        except Exception:
            logger.exception("invalid_gateway_configuration")
            raise

        app.state.settings = resolved
        app.state.store = configure_storage(resolved)
        app.state.mailer = configure_mailer(resolved)

        app.state.catalog = TemplateCatalog(resolved.template_dir)
        app.state.catalog.ensure_root()

        app.state.registry = load_default_registry()
        app.state.pipeline = RenderPipeline(
            engine=RenderEngine(
                soffice_binary=resolved.soffice_binary,
                conversion_timeout=resolved.converter_timeout_seconds,
            ),
            registry=app.state.registry,
            store=app.state.store,
            mailer=app.state.mailer,
            render_timeout=resolved.render_timeout_seconds,
        )

        logger.info(
            "gateway_startup_complete",
            extra={
                "storage": app.state.store is not None,
                "email": app.state.mailer is not None,
            },
        )

        try:
            yield
        finally:
            logger.info("gateway_shutdown")

    app = FastAPI(
        title="render-gateway",
        description="Template rendering gateway with content-addressed delivery",
        version=get_app_version(),
        lifespan=lifespan,
        dependencies=[Depends(require_credentials)],
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(render_router)
    app.include_router(files_router)
    app.include_router(templates_router)

    @app.get("/", include_in_schema=False)
    def landing_page() -> FileResponse:
        return FileResponse(STATIC_DIR / "index.html", media_type="text/html")

    @app.get("/health", summary="Service health check")
    def health_check(request: Request) -> dict:
        return {
            "status": "ok",
            "service": "render-gateway",
            "version": app.version,
            "storage": request.app.state.store is not None,
            "email": request.app.state.mailer is not None,
        }

    return app


app = create_app()


def run() -> None:
    """Console entrypoint: ``render-gateway``."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
