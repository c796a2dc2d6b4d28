from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clinicpos.api.api_v1.api import api_router
from clinicpos.core.config import settings
from clinicpos.core.errors import register_exception_handlers
from clinicpos.core.logging_config import setup_logging, get_logger
from clinicpos.services.scheduler import init_scheduler, shutdown_scheduler
from clinicpos.db import session as db_session
from clinicpos.db.init_db import ensure_tables_exist, seed_superuser

setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: tables, first admin, scheduler. Shutdown: scheduler."""
    logger.info("Starting Clinic POS")

    try:
        await ensure_tables_exist()
        logger.info("Database tables ready")
    except Exception as e:
        logger.warning(f"Table initialization warning: {e}")

    async with db_session.SessionLocal() as db:
        await seed_superuser(db)

    init_scheduler()
    yield
    logger.info("Shutting down Clinic POS")
    shutdown_scheduler()

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    description="Clinic point of sale: patients, inventory, transactions, invoices and refunds",
    lifespan=lifespan
)

if settings.BACKEND_CORS_ORIGINS:
    logger.info(f"CORS origins: {settings.BACKEND_CORS_ORIGINS}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

register_exception_handlers(app)

logger.info(f"Registering API routes under {settings.API_V1_STR}")
app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    return {"message": settings.PROJECT_NAME}


@app.get("/health")
async def health():
    return {"status": "ok"}
