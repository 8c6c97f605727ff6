"""FastAPI application factory for Felicity-Engine."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from felicity_engine.common.config import get_settings
from felicity_engine.common.exceptions import FelicityError
from felicity_engine.common.logging import get_logger, setup_logging
from felicity_engine.common.schemas import ErrorResponse, HealthResponse

logger = get_logger("app")


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from felicity_engine.deps import get_db, get_webhook_service
        db = get_db()
        await db.init()
        await db.create_all()
        yield
        # Shutdown
        await get_webhook_service().close()
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FelicityError)
    async def felicity_error_handler(request: Request, exc: FelicityError):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.kind, exc.message, extra={"path": request.url.path})
        body = ErrorResponse(kind=exc.kind, message=exc.message, details=exc.details)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err["loc"][1:]) or str(err["loc"][0]),
             "message": err["msg"]}
            for err in exc.errors()
        ]
        body = ErrorResponse(kind="ValidationError", message="Invalid request", details=details)
        return JSONResponse(status_code=422, content=body.model_dump())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", extra={"path": request.url.path})
        body = ErrorResponse(kind="InternalError", message="Internal server error")
        return JSONResponse(status_code=500, content=body.model_dump())

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    # Mount routers
    from felicity_engine.events.router import router as events_router
    from felicity_engine.forms.router import router as forms_router
    from felicity_engine.registrations.router import router as registrations_router
    from felicity_engine.payments.router import router as payments_router
    from felicity_engine.tickets.router import router as tickets_router
    from felicity_engine.attendance.router import router as attendance_router
    from felicity_engine.webhooks.router import router as webhook_router

    prefix = settings.api_prefix
    app.include_router(events_router, prefix=prefix)
    app.include_router(forms_router, prefix=prefix)
    app.include_router(registrations_router, prefix=prefix)
    app.include_router(payments_router, prefix=prefix)
    app.include_router(tickets_router, prefix=prefix)
    app.include_router(attendance_router, prefix=prefix)
    app.include_router(webhook_router, prefix=prefix)

    return app
