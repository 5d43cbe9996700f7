"""Metakocka integration router - credentials, connection test, sync and error log."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from aris.core.deps import get_db, require_csrf_header, require_roles
from aris.db.enums import Role
from aris.schemas.auth import UserSession
from aris.schemas.job import JobQueued
from aris.schemas.metakocka import (
    ConnectionTestResult,
    CredentialsRead,
    CredentialsUpdate,
    DocumentImportRequest,
    DocumentSyncRequest,
    ErrorLogRead,
    ProductSyncRequest,
    SyncResult,
)
from aris.services import metakocka_service
from aris.services.metakocka_client import MetakockaError, MetakockaErrorType

router = APIRouter()

require_integration_admin = require_roles([Role.ADMIN, Role.OWNER])


def _to_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, metakocka_service.MetakockaNotConfiguredError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, MetakockaError) and exc.error_type == MetakockaErrorType.AUTHENTICATION:
        return HTTPException(status_code=401, detail=f"Metakocka rejected the credentials: {exc.message}")
    return HTTPException(status_code=502, detail=f"Metakocka request failed: {exc}")


# =============================================================================
# Credentials
# =============================================================================

@router.get("/credentials", response_model=CredentialsRead)
def get_credentials(
    session: UserSession = Depends(require_integration_admin),
    db: Session = Depends(get_db),
):
    credentials = metakocka_service.get_credentials(db, session.org_id)
    if not credentials:
        raise HTTPException(status_code=404, detail="Metakocka credentials not configured")
    return metakocka_service.credentials_to_read(credentials)


@router.put(
    "/credentials",
    response_model=CredentialsRead,
    dependencies=[Depends(require_csrf_header)],
)
def save_credentials(
    data: CredentialsUpdate,
    session: UserSession = Depends(require_integration_admin),
    db: Session = Depends(get_db),
):
    """Create or replace the org's credentials. The secret key is stored encrypted."""
    credentials = metakocka_service.save_credentials(db, session.org_id, data)
    return metakocka_service.credentials_to_read(credentials)


@router.delete(
    "/credentials",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_credentials(
    session: UserSession = Depends(require_integration_admin),
    db: Session = Depends(get_db),
):
    if not metakocka_service.delete_credentials(db, session.org_id):
        raise HTTPException(status_code=404, detail="Metakocka credentials not configured")


@router.post(
    "/test",
    response_model=ConnectionTestResult,
    dependencies=[Depends(require_csrf_header)],
)
async def test_connection(
    session: UserSession = Depends(require_integration_admin),
    db: Session = Depends(get_db),
):
    """Failures are reported in the body, not as an HTTP error."""
    try:
        return await metakocka_service.test_connection(db, session.org_id)
    except metakocka_service.MetakockaNotConfiguredError as e:
        raise _to_http_exception(e)


# =============================================================================
# Products
# =============================================================================

@router.post(
    "/products/sync",
    response_model=SyncResult,
    dependencies=[Depends(require_csrf_header)],
)
async def sync_products(
    data: ProductSyncRequest | None = None,
    session: UserSession = Depends(require_integration_admin),
    db: Session = Depends(get_db),
):
    """Push products (all, or `product_ids`) to Metakocka."""
    try:
        return await metakocka_service.sync_products(
            db, session.org_id, product_ids=data.product_ids if data else None
        )
    except (metakocka_service.MetakockaNotConfiguredError, MetakockaError) as e:
        raise _to_http_exception(e)


@router.post(
    "/products/import",
    response_model=SyncResult,
    dependencies=[Depends(require_csrf_header)],
)
async def import_products(
    session: UserSession = Depends(require_integration_admin),
    db: Session = Depends(get_db),
):
    try:
        return await metakocka_service.import_products(db, session.org_id)
    except (metakocka_service.MetakockaNotConfiguredError, MetakockaError) as e:
        raise _to_http_exception(e)


# =============================================================================
# Sales documents
# =============================================================================

@router.post(
    "/sales-documents/sync",
    response_model=SyncResult,
    dependencies=[Depends(require_csrf_header)],
)
async def sync_sales_documents(
    data: DocumentSyncRequest | None = None,
    session: UserSession = Depends(require_integration_admin),
    db: Session = Depends(get_db),
):
    try:
        return await metakocka_service.sync_documents(
            db, session.org_id, document_ids=data.document_ids if data else None
        )
    except (metakocka_service.MetakockaNotConfiguredError, MetakockaError) as e:
        raise _to_http_exception(e)


@router.post(
    "/sales-documents/import",
    response_model=SyncResult,
    dependencies=[Depends(require_csrf_header)],
)
async def import_sales_documents(
    data: DocumentImportRequest | None = None,
    session: UserSession = Depends(require_integration_admin),
    db: Session = Depends(get_db),
):
    """Import every document type unless `doc_types` narrows it."""
    try:
        return await metakocka_service.import_documents(
            db, session.org_id, doc_types=data.doc_types if data else None
        )
    except (metakocka_service.MetakockaNotConfiguredError, MetakockaError) as e:
        raise _to_http_exception(e)


# =============================================================================
# Full sync
# =============================================================================

@router.post(
    "/sync",
    response_model=JobQueued,
    status_code=202,
    dependencies=[Depends(require_csrf_header)],
)
def schedule_full_sync(
    session: UserSession = Depends(require_integration_admin),
    db: Session = Depends(get_db),
):
    """Queue a full product and sales document push for the worker."""
    try:
        job = metakocka_service.schedule_full_sync(db, session.org_id)
    except metakocka_service.MetakockaNotConfiguredError as e:
        raise _to_http_exception(e)
    return JobQueued(job_id=job.id, status=job.status)


# =============================================================================
# Error log
# =============================================================================

@router.get("/logs", response_model=list[ErrorLogRead])
def list_error_logs(
    limit: int = Query(100, ge=1, le=500),
    session: UserSession = Depends(require_integration_admin),
    db: Session = Depends(get_db),
):
    return metakocka_service.list_error_logs(db, session.org_id, limit=limit)
