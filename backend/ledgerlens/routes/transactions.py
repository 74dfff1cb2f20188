from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ledgerlens.core.database import get_db
from ledgerlens.core.security import get_current_user
from ledgerlens.models.user import User
from ledgerlens.schemas.transactions import (
    AuditResponse,
    DashboardResponse,
    DuplicatePair,
    PeriodSummary,
    TransactionBulkUpdateItem,
    TransactionResponse,
    TransactionUpdate,
)
from ledgerlens.services import transaction_service
from ledgerlens.utils.date_helpers import resolve_time_period


router = APIRouter(prefix="/api/transactions", tags=["Transactions"])


@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(
    month: Optional[int] = Query(None, description="1-12, defaults to the current month"),
    year: Optional[int] = Query(None, description="2000-2100, defaults to the current year"),
    type: Optional[str] = Query(None, description="expense | income | internal_transfer | external_transfer | all"),
    q: Optional[str] = Query(None, description="Search in name, category and notes"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DashboardResponse:
    """
    One month of transactions with income, expense and balance totals.

    Out-of-range month/year fall back to the current period. The totals
    always cover the whole month; type and q only narrow the list.
    """
    month, year = resolve_time_period(month, year)

    result = transaction_service.get_dashboard(db, current_user.id, month, year, tx_type=type, query=q)

    return DashboardResponse(
        month=result["month"],
        year=result["year"],
        summary=PeriodSummary(**result["summary"]),
        transactions=[TransactionResponse.model_validate(t) for t in result["transactions"]],
    )


@router.get("/audit", response_model=AuditResponse)
def get_audit(
    month: Optional[int] = Query(None),
    year: Optional[int] = Query(None),
    type: Optional[str] = Query(None),
    q: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AuditResponse:
    """Transactions of parsed statements in a month, for review."""
    month, year = resolve_time_period(month, year)

    rows = transaction_service.get_audit_transactions(db, current_user.id, month, year, tx_type=type, query=q)

    return AuditResponse(
        month=month,
        year=year,
        transactions=[TransactionResponse.model_validate(t) for t in rows],
    )


@router.get("/duplicates", response_model=List[DuplicatePair])
def list_duplicates(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[DuplicatePair]:
    """
    Rows flagged as duplicates, each with the row it was matched to.

    match is null when the counterpart no longer exists.
    """
    duplicates = transaction_service.get_duplicate_transactions(db, current_user.id)

    match_ids = {t.match_id for t in duplicates if t.match_id}
    matches = {t.id: t for t in transaction_service.get_transactions_by_ids(db, current_user.id, match_ids)}

    return [
        DuplicatePair(
            duplicate=TransactionResponse.model_validate(t),
            match=TransactionResponse.model_validate(matches[t.match_id]) if t.match_id in matches else None,
        )
        for t in duplicates
    ]


@router.patch("/", response_model=List[TransactionResponse])
def bulk_update_transactions(
    payload: List[TransactionBulkUpdateItem],
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[TransactionResponse]:
    """
    Update several transactions in order.

    Rows are written one at a time. If one fails, the rows before it stay
    updated and the request returns the error.
    """
    items = [item.model_dump(exclude_unset=True, mode="json") for item in payload]

    try:
        return transaction_service.update_transactions(db, current_user.id, items)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TransactionResponse:
    tx = transaction_service.get_transaction_by_id(transaction_id, current_user.id, db)
    if not tx:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
    return tx


@router.patch("/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
    transaction_id: UUID,
    payload: TransactionUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TransactionResponse:
    """
    Edit a transaction.

    Changing date, amount or transaction_name recomputes the fingerprint.
    """
    if not transaction_service.get_transaction_by_id(transaction_id, current_user.id, db):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")

    try:
        return transaction_service.update_transaction(
            db,
            transaction_id,
            current_user.id,
            payload.model_dump(exclude_unset=True, mode="json"),
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.delete("/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete a transaction (e.g. discard a duplicate)."""
    try:
        transaction_service.delete_transaction(db, transaction_id, current_user.id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
    return None


@router.post("/{transaction_id}/keep", response_model=TransactionResponse)
def keep_transaction(
    transaction_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TransactionResponse:
    """Resolve a duplicate flag by keeping both rows."""
    try:
        return transaction_service.keep_both(db, transaction_id, current_user.id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
