"""
Align Backend API
Subscription tiers, generation quotas and saved documents for the Align
resume / cover letter generator.
"""
from dotenv import load_dotenv
load_dotenv()

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True  # Override any existing configuration
)

logger = logging.getLogger(__name__)

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api.routes import documents, health, stripe as stripe_router, users
from app.core import config
from app.core.errors import AlignError
from app.db.session import Database
from app.services.document_store import DocumentStore
from app.services.stripe_gateway import StripeGateway
from app.services.subscription_reconciler import SubscriptionReconciler
from app.services.usage_ledger import UsageLedger


def run_migrations(database_url: str) -> None:
    """Run Alembic migrations on startup. Fails startup if migrations fail."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning("alembic.ini not found, skipping Alembic migrations")
        return
    try:
        alembic_cfg = Config(str(alembic_ini))
        alembic_cfg.attributes["configure_logger"] = False
        alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
        alembic_cfg.set_main_option("sqlalchemy.url", database_url)
        command.upgrade(alembic_cfg, "head")
        logger.info("Alembic migrations completed successfully")
    except Exception as e:
        logger.exception("Alembic migration failed: %s", e)
        raise  # Fail startup so DB is not left out of sync


def _error_body(message: str, status_code: int, **extra) -> dict:
    error = {
        "message": message,
        "status": status_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    error.update(extra)
    return {"success": False, "error": error}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AlignError)
    async def align_error_handler(request: Request, exc: AlignError):
        if exc.is_fault:
            logger.error("Error %s on %s %s: %s", exc.status_code, request.method, request.url.path, exc.message)
        else:
            logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.message, exc.status_code, **exc.extra()),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else "Invalid request"
        return JSONResponse(status_code=400, content=_error_body(message, 400))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=_error_body("Internal server error", 500))


def create_app(
    database: Optional[Database] = None,
    gateway: Optional[StripeGateway] = None,
) -> FastAPI:
    database = database or Database(config.DATABASE_URL)
    gateway = gateway or StripeGateway()

    app = FastAPI(title="Align API")
    app.state.database = database
    app.state.gateway = gateway
    app.state.usage_ledger = UsageLedger(database)
    app.state.reconciler = SubscriptionReconciler(database, gateway)
    app.state.document_store = DocumentStore(database)

    @app.on_event("startup")
    def startup_event():
        """Create tables, then run Alembic migrations."""
        database.open()
        database.create_all()
        logger.info("Database tables created")
        run_migrations(database.url)
        if not gateway.configured:
            logger.warning("STRIPE_SECRET_KEY is not set; payment endpoints will return 503")

    @app.on_event("shutdown")
    def shutdown_event():
        database.close()

    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.FRONTEND_URLS or ["http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(users.router, prefix="/api/users", tags=["Users"])
    app.include_router(documents.router, prefix="/api/documents", tags=["Documents"])
    app.include_router(stripe_router.router, prefix="/api", tags=["Stripe"])
    return app


app = create_app()
