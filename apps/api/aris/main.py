"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from aris.core.config import settings
from aris.core.structured_logging import build_log_context
from aris.db.session import engine

logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from aris.core.rate_limit import limiter

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="ARIS CRM API",
    description="Multi-tenant CRM with mailbox sync, follow-ups, AI drafting and ERP sync",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for cookies
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    expose_headers=["X-Request-ID", "Content-Disposition"],
)

# ============================================================================
# Error Handlers
# ============================================================================


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error",
        extra=build_log_context(
            request_id=request.headers.get("X-Request-ID"),
            route=request.url.path,
            method=request.method,
        ),
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ============================================================================
# Routers
# ============================================================================

from aris.routers import (
    admin_organizations,
    admin_subscription_plans,
    ai,
    auth,
    contacts,
    email_accounts,
    email_sync,
    emails,
    followups,
    internal,
    jobs,
    metakocka,
    notifications,
    opportunities,
    organization,
    pipelines,
    products,
    sales_documents,
    subscriptions,
    suppliers,
    webhooks,
)

API_ROUTERS = (
    (auth.router, "/api/auth", "auth"),
    # Tenancy
    (organization.router, "/api/organization", "organization"),
    (admin_organizations.router, "/api/admin/organizations", "admin"),
    (admin_subscription_plans.router, "/api/admin/subscription-plans", "admin"),
    # CRM
    (contacts.router, "/api/contacts", "contacts"),
    (pipelines.router, "/api/pipelines", "pipelines"),
    (opportunities.router, "/api/opportunities", "opportunities"),
    # Email
    (email_accounts.router, "/api/email-accounts", "email"),
    (email_sync.router, "/api/email/sync", "email"),
    (emails.router, "/api/emails", "email"),
    (followups.router, "/api/email/followups", "followups"),
    (ai.router, "/api/ai", "ai"),
    # Billing
    (subscriptions.router, "/api/subscriptions", "subscriptions"),
    (webhooks.router, "/api/webhooks", "webhooks"),
    # Sourcing, catalogue and ERP
    (suppliers.router, "/api/suppliers", "suppliers"),
    (products.router, "/api/products", "products"),
    (sales_documents.router, "/api/sales-documents", "sales-documents"),
    (metakocka.router, "/api/integrations/metakocka", "integrations"),
    (notifications.router, "/api/notifications", "notifications"),
    (jobs.router, "/api/jobs", "jobs"),
)

for router, prefix, tag in API_ROUTERS:
    app.include_router(router, prefix=prefix, tags=[tag])

# Cron endpoints carry their own /internal prefix and X-Internal-Secret check
app.include_router(internal.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """Liveness plus a database round trip; 503 when the database is unreachable."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        return JSONResponse(status_code=503, content={"status": "degraded", "database": "unreachable"})
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
