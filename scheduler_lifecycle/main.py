from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from scheduler_lifecycle.core.config import settings
from scheduler_lifecycle.api.endpoints import maintenance, orchestration, health, dashboard
from scheduler_lifecycle.services.background_jobs import (
    start_maintenance_scheduler,
    stop_maintenance_scheduler,
    start_stale_run_recovery,
    stop_stale_run_recovery,
)
import logging

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(
    maintenance.router,
    prefix=f"{settings.API_V1_PREFIX}/maintenance",
    tags=["maintenance"]
)

app.include_router(
    orchestration.router,
    prefix=f"{settings.API_V1_PREFIX}/orchestration",
    tags=["orchestration"]
)

app.include_router(
    health.router,
    prefix=f"{settings.API_V1_PREFIX}/health",
    tags=["health"]
)

app.include_router(
    dashboard.router,
    prefix=f"{settings.API_V1_PREFIX}/dashboard",
    tags=["dashboard"]
)


@app.get("/")
async def root():
    return {
        "message": "Scheduler Lifecycle API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.on_event("startup")
async def startup_event():
    """
    Start the stale orchestration run recovery loop (its first pass closes out
    runs orphaned by a crash or restart) and the daily maintenance scheduler.
    """
    if settings.STALE_RUN_RECOVERY_ENABLED:
        try:
            start_stale_run_recovery()
        except Exception as e:
            logger.error(f"Failed to start stale run recovery: {str(e)}", exc_info=True)

    if settings.MAINTENANCE_SCHEDULER_ENABLED:
        try:
            start_maintenance_scheduler()
        except Exception as e:
            logger.error(f"Failed to start maintenance scheduler: {str(e)}", exc_info=True)


@app.on_event("shutdown")
async def shutdown_event():
    await stop_stale_run_recovery()
    await stop_maintenance_scheduler()


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for anything an endpoint did not handle itself.
    """
    if isinstance(exc, HTTPException):
        raise exc

    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {str(exc)}",
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_type": type(exc).__name__
        }
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("scheduler_lifecycle.main:app", host="0.0.0.0", port=4000, reload=True)
