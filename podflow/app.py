import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from podflow.application import WorkflowService, build_workflow_service, configure_workflow_service
from podflow.core.logs import configure_logging
from podflow.core.settings import Settings
from podflow.infrastructure import SessionManager
from podflow.routes import auth, generation, publish, transcription, upload, workflows
from podflow.workers.polling import PollerRegistry

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, *, service: WorkflowService | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    service = service or build_workflow_service(settings)
    configure_workflow_service(service)
    pollers = PollerRegistry(
        service,
        interval=settings.poll_interval_seconds,
        max_attempts=settings.poll_max_attempts,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Podflow API starting (workflow store: %s, job store: %s)", settings.workflow_store, settings.job_store)
        try:
            yield
        finally:
            pollers.cancel_all()
            service.close()
            logger.info("Podflow API stopped")

    app = FastAPI(title="Podflow Publishing API", version="0.0.1", lifespan=lifespan)
    app.state.settings = settings
    app.state.sessions = SessionManager(settings)
    app.state.pollers = pollers

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router, prefix="/api")
    app.include_router(workflows.router, prefix="/api")
    app.include_router(upload.router, prefix="/api")
    app.include_router(transcription.router, prefix="/api")
    app.include_router(generation.router, prefix="/api")
    app.include_router(publish.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Podflow Publishing API",
                "docs": "/docs",
                "health": "/api/workflows",
            }
        )

    return app


app = create_app()
