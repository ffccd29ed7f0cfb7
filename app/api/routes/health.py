from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core import config
from app.db.session import get_db
from app.dependencies.services import get_gateway
from app.services.stripe_gateway import StripeGateway

router = APIRouter()

VERSION = "2.0.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/")
def root():
    return {"success": True, "message": "Align API is running", "timestamp": _now(), "version": VERSION}


@router.get("/api/health")
def health(db: Session = Depends(get_db), gateway: StripeGateway = Depends(get_gateway)):
    """Configuration and database health report."""
    try:
        db.execute(text("SELECT 1"))
        database_ok = True
    except SQLAlchemyError:
        database_ok = False

    checks = {
        "has_stripe_key": gateway.configured,
        "has_stripe_webhook_secret": gateway.webhooks_configured,
        "has_frontend_urls": bool(config.FRONTEND_URLS),
        "database_connected": database_ok,
        "environment": config.ENVIRONMENT,
        "frontend_urls": config.FRONTEND_URLS,
    }
    critical = [checks["has_stripe_key"], checks["has_frontend_urls"], checks["database_connected"]]
    score = round(100 * sum(critical) / len(critical))
    return {
        "success": True,
        "status": "healthy" if score == 100 else "degraded",
        "healthScore": score,
        "timestamp": _now(),
        "version": VERSION,
        "checks": checks,
    }
