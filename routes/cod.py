"""
routes/cod.py  –  COD transaction API

Driver side: collect at delivery, submit collected cash to the company.
Company side: confirm receipt, forward proceeds to the sender.
Actor ids come in the request body; authentication happens at the gateway.
"""

from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from database import get_db
from config import settings
from models.cod_transaction import CodTransaction, CollectionStatus, OverallStatus, TransferMethod
from services.cod_service import CodService
from services.cod_store import CodTransactionFilter
from services.directories import OrderDirectory, DriverDirectory
from utils.responses import paginated_response
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cod", tags=["COD"])


# Schemas
class CreateCodTransactionRequest(BaseModel):
    order_id: int
    notes: Optional[str] = None


class UpdateNotesRequest(BaseModel):
    notes: Optional[str] = None


class CollectCodRequest(BaseModel):
    order_id: int
    driver_id: int
    proof_photo_url: Optional[str] = Field(None, max_length=500)


class SubmitCodRequest(BaseModel):
    driver_id: int
    transaction_ids: List[int] = Field(..., min_length=1)
    declared_total: Decimal = Field(..., ge=0)


class ConfirmReceiptRequest(BaseModel):
    received_by: int


class TransferToSenderRequest(BaseModel):
    transfer_method: TransferMethod
    transfer_reference: Optional[str] = Field(None, max_length=100)
    transfer_proof_url: Optional[str] = Field(None, max_length=500)
    company_fee: Optional[Decimal] = Field(None, ge=0)


class MarkFailedRequest(BaseModel):
    reason: str = Field(..., min_length=1)


# ── Serialization ────────────────────────────────────────────────────────────

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value) -> Optional[float]:
    return float(value) if value is not None else None


def serialize_transaction(tx: CodTransaction, tracking_code: Optional[str] = None, driver_name: Optional[str] = None) -> dict:
    return {
        "cod_transaction_id": tx.cod_transaction_id,
        "order_id": tx.order_id,
        "tracking_code": tracking_code,
        "cod_amount": float(tx.cod_amount),
        "collected_by_driver_id": tx.collected_by_driver_id,
        "driver_name": driver_name,
        "collected_at": _iso(tx.collected_at),
        "collection_status": tx.collection_status.value,
        "collection_proof_photo_url": tx.collection_proof_photo_url,
        "submitted_to_company": bool(tx.submitted_to_company),
        "submitted_at": _iso(tx.submitted_at),
        "submitted_amount": _money(tx.submitted_amount),
        "company_received_by": tx.company_received_by,
        "company_received_at": _iso(tx.company_received_at),
        "transferred_to_sender": bool(tx.transferred_to_sender),
        "transferred_at": _iso(tx.transferred_at),
        "transfer_method": tx.transfer_method.value if tx.transfer_method else None,
        "transfer_reference": tx.transfer_reference,
        "transfer_proof_url": tx.transfer_proof_url,
        "company_fee": _money(tx.company_fee),
        "net_amount": float(tx.net_amount),
        "adjustment_amount": _money(tx.adjustment_amount),
        "adjustment_reason": tx.adjustment_reason,
        "failed_at": _iso(tx.failed_at),
        "failure_reason": tx.failure_reason,
        "overall_status": tx.overall_status.value,
        "notes": tx.notes,
        "created_at": _iso(tx.created_at),
        "updated_at": _iso(tx.updated_at),
    }


def serialize_transactions(db: Session, txs: List[CodTransaction]) -> List[dict]:
    """Serialize with tracking codes and driver names looked up in bulk."""
    codes = OrderDirectory(db).get_tracking_codes(tx.order_id for tx in txs)
    names = DriverDirectory(db).get_driver_names(tx.collected_by_driver_id for tx in txs)
    return [
        serialize_transaction(tx, codes.get(tx.order_id), names.get(tx.collected_by_driver_id))
        for tx in txs
    ]


def _one(db: Session, tx: CodTransaction) -> dict:
    driver_id = tx.collected_by_driver_id
    return serialize_transaction(
        tx,
        OrderDirectory(db).get_order_tracking_code(tx.order_id),
        DriverDirectory(db).get_driver_name(driver_id) if driver_id is not None else None,
    )


# ═══════════════════════════════════════════════════════════════════════════════
#  TRANSACTIONS
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/transactions", status_code=status.HTTP_201_CREATED)
def create_cod_transaction(request: CreateCodTransactionRequest, db: Session = Depends(get_db)):
    """Open the COD record for a newly created COD order (amount copied from the order)."""
    tx = CodService(db).create_for_order(request.order_id, request.notes)
    return {
        "success": True,
        "message": "COD transaction created",
        "data": _one(db, tx),
    }


@router.get("/transactions")
def search_cod_transactions(
    company_id: Optional[int] = Query(None),
    driver_id: Optional[int] = Query(None),
    collection_status: Optional[CollectionStatus] = Query(None),
    overall_status: Optional[OverallStatus] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    filters = CodTransactionFilter(
        company_id=company_id,
        driver_id=driver_id,
        collection_status=collection_status,
        overall_status=overall_status,
        start_date=start_date,
        end_date=end_date,
    )
    rows, total = CodService(db).search(filters, page=page, page_size=page_size)
    return paginated_response(
        serialize_transactions(db, rows),
        page=page,
        page_size=page_size,
        total=total,
        message="COD transactions retrieved successfully",
    )


@router.get("/transactions/{transaction_id}")
def get_cod_transaction(transaction_id: int, db: Session = Depends(get_db)):
    tx = CodService(db).get_transaction(transaction_id)
    return {"success": True, "message": "COD transaction retrieved", "data": _one(db, tx)}


@router.patch("/transactions/{transaction_id}/notes")
def update_cod_notes(transaction_id: int, request: UpdateNotesRequest, db: Session = Depends(get_db)):
    tx = CodService(db).update_notes(transaction_id, request.notes)
    return {"success": True, "message": "Notes updated", "data": _one(db, tx)}


@router.get("/orders/{order_id}")
def get_cod_by_order(order_id: int, db: Session = Depends(get_db)):
    tx = CodService(db).get_transaction_by_order(order_id)
    return {"success": True, "message": "COD transaction retrieved", "data": _one(db, tx)}


# ═══════════════════════════════════════════════════════════════════════════════
#  DRIVER SIDE
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/drivers/{driver_id}/transactions")
def list_driver_transactions(
    driver_id: int,
    status_filter: Optional[OverallStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
):
    txs = CodService(db).list_driver_transactions(driver_id, status_filter)
    return {"success": True, "message": f"{len(txs)} COD transaction(s)", "data": serialize_transactions(db, txs)}


@router.get("/drivers/{driver_id}/pending-collections")
def list_pending_collections(driver_id: int, db: Session = Depends(get_db)):
    """Deliveries still waiting for COD collection, oldest first."""
    txs = CodService(db).list_pending_collections(driver_id)
    return {"success": True, "message": f"{len(txs)} pending collection(s)", "data": serialize_transactions(db, txs)}


@router.get("/drivers/{driver_id}/pending-amount")
def get_driver_pending_amount(driver_id: int, db: Session = Depends(get_db)):
    amount = CodService(db).get_driver_pending_amount(driver_id)
    return {
        "success": True,
        "message": "Pending COD amount retrieved",
        "data": {"driver_id": driver_id, "pending_amount": float(amount)},
    }


@router.get("/drivers/{driver_id}/pending")
def get_driver_pending(driver_id: int, db: Session = Depends(get_db)):
    """Cash the driver is holding: collected but not yet submitted."""
    pending = CodService(db).get_driver_pending(driver_id)
    return {
        "success": True,
        "message": "Pending COD retrieved",
        "data": {
            "driver_id": pending.driver_id,
            "driver_name": pending.driver_name,
            "total_pending": float(pending.total_pending),
            "pending_count": pending.pending_count,
            "transactions": serialize_transactions(db, pending.transactions),
        },
    }


@router.post("/collect")
def collect_cod(request: CollectCodRequest, db: Session = Depends(get_db)):
    tx = CodService(db).collect(request.order_id, request.driver_id, request.proof_photo_url)
    return {
        "success": True,
        "message": f"COD of {float(tx.cod_amount):.2f} collected for order #{request.order_id}",
        "data": _one(db, tx),
    }


@router.post("/submit")
def submit_cod(request: SubmitCodRequest, db: Session = Depends(get_db)):
    result = CodService(db).submit(request.driver_id, request.transaction_ids, request.declared_total)
    return {
        "success": True,
        "message": f"{result.count} COD transaction(s) submitted to company",
        "data": {
            "driver_id": result.driver_id,
            "transaction_ids": result.transaction_ids,
            "count": result.count,
            "total_amount": float(result.total_amount),
            "submitted_at": result.submitted_at.isoformat(),
        },
    }


@router.post("/transactions/{transaction_id}/fail")
def mark_cod_failed(transaction_id: int, request: MarkFailedRequest, db: Session = Depends(get_db)):
    tx = CodService(db).mark_failed(transaction_id, request.reason)
    return {"success": True, "message": "COD transaction marked as failed", "data": _one(db, tx)}


# ═══════════════════════════════════════════════════════════════════════════════
#  COMPANY SIDE
# ═══════════════════════════════════════════════════════════════════════════════

@router.put("/transactions/{transaction_id}/receive")
def confirm_cod_receipt(transaction_id: int, request: ConfirmReceiptRequest, db: Session = Depends(get_db)):
    service = CodService(db)
    service.confirm_receipt(transaction_id, request.received_by)
    return {
        "success": True,
        "message": "COD receipt confirmed",
        "data": _one(db, service.get_transaction(transaction_id)),
    }


@router.put("/transactions/{transaction_id}/transfer")
def transfer_cod_to_sender(transaction_id: int, request: TransferToSenderRequest, db: Session = Depends(get_db)):
    service = CodService(db)
    service.transfer_to_sender(
        transaction_id,
        request.transfer_method,
        reference=request.transfer_reference,
        proof_url=request.transfer_proof_url,
        company_fee=request.company_fee,
    )
    tx = service.get_transaction(transaction_id)
    return {
        "success": True,
        "message": f"COD transferred to sender (net {float(tx.net_amount):.2f})",
        "data": _one(db, tx),
    }


@router.get("/companies/{company_id}/awaiting-transfer")
def list_awaiting_transfer(company_id: int, db: Session = Depends(get_db)):
    """Cash the company holds for senders, grouped per driver."""
    txs = CodService(db).list_awaiting_transfer(company_id)
    serialized = serialize_transactions(db, txs)

    groups = {}
    for item in serialized:
        driver_id = item["collected_by_driver_id"]
        group = groups.setdefault(driver_id, {
            "driver_id": driver_id,
            "driver_name": item["driver_name"],
            "transaction_count": 0,
            "total_amount": 0.0,
            "transactions": [],
        })
        group["transaction_count"] += 1
        group["total_amount"] += item["cod_amount"]
        group["transactions"].append(item)

    return {
        "success": True,
        "message": f"{len(txs)} COD transaction(s) awaiting transfer",
        "data": {
            "company_id": company_id,
            "total_amount": float(sum((Decimal(str(t.cod_amount)) for t in txs), Decimal("0"))),
            "drivers": list(groups.values()),
        },
    }

