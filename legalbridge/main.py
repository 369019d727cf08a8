from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from legalbridge.config import Settings, get_settings
from legalbridge.dependencies import Services, build_services
from legalbridge.logging_config import configure_logging
from legalbridge.routers.cases_router import router as cases_router
from legalbridge.routers.documents_router import router as documents_router
from legalbridge.schemas import HealthView, MessageResponse
from legalbridge.services.startup_checks import StartupCheckResult, run_startup_preflight

logger = structlog.get_logger()

SUMMARY_MESSAGE = (
    "بناءً على طلبك قمنا بتلخيص المعلومات المطلوبة بعناية لتقديم نظرة شاملة ومبسطة لمحتوى القضية أو المستند."
)
LEGAL_OPINION_MESSAGE = (
    "📜 هذا هو الرأي القانوني الخاص بك بناءً على البيانات المقدمة. "
    "إذا كنت بحاجة إلى توضيح إضافي، يرجى التواصل مع القسم القانوني."
)


def get_app_version() -> str:
    try:
        return version("legalbridge")
    except PackageNotFoundError:
        return "0.1.0"


def create_app(services: Services | None = None, settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if app.state.services is None:
            app.state.services = build_services(settings)
        app.state.startup_result = run_startup_preflight(settings, app.state.services)
        logger.info(
            "startup_complete",
            document_backend=app.state.services.records.store.backend_name,
            blob_backend=app.state.services.blobs.backend_name,
            warnings=app.state.startup_result.warnings,
        )
        yield

    app = FastAPI(title=settings.app_name, version=get_app_version(), docs_url="/api-docs", lifespan=lifespan)
    app.state.services = services
    app.state.startup_result = StartupCheckResult(ok=True, errors=[], warnings=[])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"message": "Invalid request payload"})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_error", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=500, content={"message": "Internal server error"})

    @app.get("/api/health", response_model=HealthView)
    def health(request: Request) -> HealthView:
        services: Services = request.app.state.services
        result: StartupCheckResult = request.app.state.startup_result
        return HealthView(
            status="ok" if result.ok else "degraded",
            app_version=get_app_version(),
            document_backend=services.records.store.backend_name,
            blob_backend=services.blobs.backend_name,
            completion_enabled=services.completion is not None,
            startup_errors=result.errors,
            startup_warnings=result.warnings,
        )

    @app.get("/api/summarize", response_model=MessageResponse, tags=["summarize"])
    def summarize() -> MessageResponse:
        return MessageResponse(message=SUMMARY_MESSAGE)

    @app.get("/api/legal-opinion", response_model=MessageResponse, tags=["legal-opinion"])
    def legal_opinion() -> MessageResponse:
        return MessageResponse(message=LEGAL_OPINION_MESSAGE)

    app.include_router(cases_router)
    app.include_router(documents_router)
    return app


app = create_app()
