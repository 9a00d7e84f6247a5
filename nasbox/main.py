"""Main FastAPI application entry point."""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import text

from nasbox import __version__
from nasbox.api.plans import router as plans_router
from nasbox.api.runs import router as runs_router
from nasbox.api.servers import router as servers_router
from nasbox.config import settings
from nasbox.container import AppContainer
from nasbox.models import BackupRecord, Plan, Run, Server
from nasbox.models.enums import RunStatus

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    encryption: str
    scheduler: str
    message: Optional[str] = None


class StatsResponse(BaseModel):
    """System statistics response."""

    servers_count: int
    plans_count: int
    scheduled_plans_count: int
    runs_count: int
    running_runs_count: int
    backup_records_count: int
    last_run_status: Optional[str] = None


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    """Create the application.

    Args:
        container: Pre-built container. When omitted one is built from
            settings at startup, which validates the encryption key.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="NASBox",
        description="Scheduled backups of local media to SMB shares",
        version=__version__,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(servers_router)
    app.include_router(plans_router)
    app.include_router(runs_router)

    app.state.container = container

    @app.on_event("startup")
    async def startup_event():
        """Build the container (exits if the encryption key is invalid) and restore state."""
        if app.state.container is None:
            configure_logging(settings.log_level)
            app.state.container = AppContainer.build()
        await app.state.container.startup()
        logger.info("NASBox started")

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.container is not None:
            await app.state.container.shutdown()

    @app.get("/")
    async def root():
        return {"message": "NASBox API", "version": __version__}

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint.

        Checks database connectivity and that stored passwords can be encrypted.
        """
        container: AppContainer = request.app.state.container
        health_status = {
            "status": "healthy",
            "database": "connected",
            "encryption": "valid",
            "scheduler": "enabled" if container.settings.scheduler_enabled else "disabled",
        }

        try:
            db = container.database.session_factory()
            try:
                db.execute(text("SELECT 1"))
            finally:
                db.close()
        except Exception as e:
            health_status["status"] = "unhealthy"
            health_status["database"] = "disconnected"
            health_status["message"] = str(e)
            return HealthResponse(**health_status)

        encryption_service = getattr(container.credential_store, "encryption_service", None)
        if encryption_service is not None:
            try:
                if encryption_service.decrypt(encryption_service.encrypt("test")) != "test":
                    raise ValueError("Encryption service validation failed")
            except Exception as e:
                health_status["status"] = "unhealthy"
                health_status["encryption"] = "invalid"
                health_status["message"] = str(e)

        return HealthResponse(**health_status)

    @app.get("/api/stats", response_model=StatsResponse)
    async def get_stats(request: Request):
        """Counts of servers, plans, runs and backup records."""
        container: AppContainer = request.app.state.container
        db = container.database.session_factory()
        try:
            last_run = db.query(Run).order_by(Run.started_at.desc(), Run.id.desc()).first()
            return StatsResponse(
                servers_count=db.query(Server).count(),
                plans_count=db.query(Plan).count(),
                scheduled_plans_count=db.query(Plan).filter(
                    Plan.enabled == True, Plan.schedule_enabled == True  # noqa: E712
                ).count(),
                runs_count=db.query(Run).count(),
                running_runs_count=db.query(Run).filter(Run.status == RunStatus.RUNNING.value).count(),
                backup_records_count=db.query(BackupRecord).count(),
                last_run_status=last_run.status if last_run else None,
            )
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Failed to get stats: {str(e)}")
        finally:
            db.close()

    return app


app = create_app()
