"""
routes/reconciliation.py  –  COD books closing & dashboard

Daily per-driver reconciliation and day summary, the company-wide
fan-out, the pending queue for ops staff and the read-only COD dashboard.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel
from database import get_db
from models.driver_cod_summary import DriverCodSummary
from routes.cod import serialize_transactions
from services.cod_store import CodTransactionStore
from services.dashboard_service import DashboardService
from services.directories import DriverDirectory
from services.reconciliation_service import ReconciliationService
from utils.clock import utcnow
from utils.exceptions import PartialFailureError
from datetime import datetime, date
from typing import Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cod", tags=["COD Reconciliation"])


# Schemas
class ReconcileDriverRequest(BaseModel):
    driver_id: int
    reconciled_by: int
    target_date: Optional[str] = None   # YYYY-MM-DD, defaults to today (UTC)
    notes: Optional[str] = None


class ReconcileCompanyRequest(BaseModel):
    company_id: int
    reconciled_by: int
    target_date: Optional[str] = None


def _parse_date(target_date: Optional[str]) -> date:
    try:
        return datetime.strptime(target_date, "%Y-%m-%d").date() if target_date else utcnow().date()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date format; expected YYYY-MM-DD")


def _serialize_summary(summary: DriverCodSummary) -> dict:
    return {
        "summary_id": summary.summary_id,
        "driver_id": summary.driver_id,
        "date": summary.summary_date.isoformat(),
        "transaction_count": summary.transaction_count,
        "total_collected": float(summary.total_collected),
        "total_submitted": float(summary.total_submitted),
        "pending_amount": float(summary.pending_amount),
        "variance": float(summary.variance),
        "reconciliation_status": summary.reconciliation_status.value,
        "reconciled_by": summary.reconciled_by,
        "reconciled_at": summary.reconciled_at.isoformat() if summary.reconciled_at else None,
        "notes": summary.notes,
    }


# ═══════════════════════════════════════════════════════════════════════════════
#  RECONCILIATION
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/reconciliations/driver")
def reconcile_driver(request: ReconcileDriverRequest, db: Session = Depends(get_db)):
    """Close one driver's COD books for a date. Variance is recorded, never blocking."""
    d = _parse_date(request.target_date)
    service = ReconciliationService(db)
    service.reconcile_driver(request.driver_id, d, request.reconciled_by, request.notes)

    summary = service.get_summary(request.driver_id, d)
    return {
        "success": True,
        "message": f"COD reconciled for driver #{request.driver_id} on {d.isoformat()}",
        "data": {
            **_serialize_summary(summary),
            "transactions": serialize_transactions(
                db, CodTransactionStore(db).list_for_driver_date(request.driver_id, d)
            ),
        },
    }


@router.get("/drivers/{driver_id}/summary")
def get_driver_summary(
    driver_id: int,
    target_date: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to today"),
    db: Session = Depends(get_db),
):
    """Where a driver's books stand for one date, with the current totals."""
    d = _parse_date(target_date)
    state, summary = ReconciliationService(db).get_driver_summary(driver_id, d)
    drivers = DriverDirectory(db)
    return {
        "success": True,
        "data": {
            "driver_id": driver_id,
            "driver_name": drivers.get_driver_name(driver_id),
            "company_id": drivers.get_driver_company(driver_id),
            "date": d.isoformat(),
            "state": state,
            "summary": _serialize_summary(summary) if summary is not None else None,
        },
    }


@router.post("/reconciliations/company")
def reconcile_company(request: ReconcileCompanyRequest, db: Session = Depends(get_db)):
    d = _parse_date(request.target_date)
    result = ReconciliationService(db).reconcile_all_drivers(d, request.company_id, request.reconciled_by)

    if result.failed:
        raise PartialFailureError(
            f"Reconciliation failed for {len(result.failed)} driver(s) on {d.isoformat()}",
            succeeded=result.succeeded,
            failed=result.failed,
            skipped=result.skipped,
        )

    return {
        "success": True,
        "message": f"{len(result.succeeded)} driver(s) reconciled for {d.isoformat()}",
        "data": {
            "company_id": request.company_id,
            "date": d.isoformat(),
            "succeeded": result.succeeded,
            "skipped": result.skipped,
            "failed": {},
        },
    }


@router.get("/reconciliations/pending")
def list_pending_reconciliations(
    company_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    pending = ReconciliationService(db).get_pending_reconciliations(company_id)
    return {
        "success": True,
        "message": f"{len(pending)} pending reconciliation(s)",
        "data": [
            {
                "driver_id": p.driver_id,
                "driver_name": p.driver_name,
                "date": p.summary_date.isoformat(),
                "transaction_count": p.transaction_count,
                "total_collected": float(p.total_collected),
                "total_submitted": float(p.total_submitted),
                "pending_amount": float(p.pending_amount),
            }
            for p in pending
        ],
    }


@router.get("/companies/{company_id}/reconciliation")
def company_reconciliation(
    company_id: int,
    target_date: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to today"),
    db: Session = Depends(get_db),
):
    d = _parse_date(target_date)
    report = ReconciliationService(db).get_company_reconciliation(company_id, d)

    # Sort: largest variance first so discrepancies surface at the top
    drivers = sorted(report.drivers, key=lambda x: (-abs(x["variance"]), x["driver_id"]))
    return {
        "success": True,
        "data": {
            "company_id": company_id,
            "date": d.isoformat(),
            "transaction_count": report.transaction_count,
            "total_collected": float(report.total_collected),
            "total_submitted": float(report.total_submitted),
            "variance": float(report.variance),
            "drivers": [
                {
                    **row,
                    "total_collected": float(row["total_collected"]),
                    "total_submitted": float(row["total_submitted"]),
                    "variance": float(row["variance"]),
                    "reconciled_at": row["reconciled_at"].isoformat() if row["reconciled_at"] else None,
                }
                for row in drivers
            ],
        },
    }


# ═══════════════════════════════════════════════════════════════════════════════
#  DASHBOARD
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/dashboard")
def cod_dashboard(
    company_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    dash = DashboardService(db).get_dashboard(company_id)
    return {
        "success": True,
        "data": {
            "company_id": dash.company_id,
            "total_pending_collection": float(dash.total_pending_collection),
            "total_collected": float(dash.total_collected),
            "total_submitted": float(dash.total_submitted),
            "total_transferred": float(dash.total_transferred),
            "total_company_fees": float(dash.total_company_fees),
            "total_net_transferred": float(dash.total_net_transferred),
            "transaction_count": dash.transaction_count,
            "pending_transaction_count": dash.pending_transaction_count,
            "completed_transaction_count": dash.completed_transaction_count,
            "failed_transaction_count": dash.failed_transaction_count,
            "drivers": [
                {
                    "driver_id": r.driver_id,
                    "driver_name": r.driver_name,
                    "total_collected": float(r.total_collected),
                    "total_submitted": float(r.total_submitted),
                    "pending_amount": float(r.pending_amount),
                    "pending_collection_count": r.pending_collection_count,
                    "unsubmitted_count": r.unsubmitted_count,
                    "last_submission_at": r.last_submission_at.isoformat() if r.last_submission_at else None,
                }
                for r in dash.drivers
            ],
        },
    }
