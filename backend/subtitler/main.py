"""Main FastAPI application."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from subtitler.config import settings
from subtitler.database import init_db

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Ensure logging output if Uvicorn hijacked the root logger but didn't set level/handlers as expected
if not logging.getLogger().handlers:
    console = logging.StreamHandler()
    console.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    logging.getLogger().addHandler(console)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    from subtitler.services.job_queue import job_queue
    from subtitler.services.job_repository import job_repository
    from subtitler.services.maintenance import maintenance_scheduler, recover_stale_processing

    # Startup
    logger.info("Starting subtitle service...")
    settings.ensure_directories()
    await init_db()
    logger.info("Database initialized")

    await recover_stale_processing(job_repository, settings.STALE_PROCESSING_MINUTES)

    await job_queue.start_worker()
    await job_queue.recover_pending()
    await maintenance_scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down subtitle service...")
    await maintenance_scheduler.stop()
    await job_queue.drain()
    try:
        await asyncio.wait_for(job_queue.wait_idle(), timeout=settings.SHUTDOWN_GRACE_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Running jobs did not finish within the shutdown grace period")
    await job_queue.stop_worker()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Subtitle Conversion Service",
        description="Turns uploaded audio and video into SRT subtitles",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from subtitler.routes import files, jobs

    app.include_router(jobs.router, prefix="/api/v1", tags=["jobs"])
    app.include_router(files.router, prefix="/api/v1/download", tags=["download"])

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        from subtitler.services.job_queue import job_queue

        return {"status": "healthy", **job_queue.get_queue_status()}

    # Produced subtitle files are served as static downloads
    if settings.OUTPUT_PUBLIC_URL.startswith("/"):
        app.mount(
            settings.OUTPUT_PUBLIC_URL,
            StaticFiles(directory=settings.OUTPUT_DIR, check_dir=False),
            name="subtitles",
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("subtitler.main:app", host="0.0.0.0", port=8000)
