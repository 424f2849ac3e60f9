"""
Receipt service: evidence markers on expense transactions.

Adding or removing a receipt is the only non-budget event that changes a
budget line's status. The file itself is stored and deleted by the upload
layer; only the marker is kept here.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from rabtrack.core.config import settings
from rabtrack.core.exceptions import InvalidReceiptError, NotFoundError
from rabtrack.core.utils import snapshot
from rabtrack.db.session import atomic
from rabtrack.models.audit import AuditModule
from rabtrack.models.receipt import Receipt
from rabtrack.models.transaction import Allocation, Transaction
from rabtrack.schemas.receipt import ReceiptCreate
from rabtrack.services import audit_service, budget_engine

logger = logging.getLogger(__name__)


def _allocated_line_ids(db: Session, transaction_id: int) -> List[int]:
    rows = db.query(Allocation.budget_line_id).filter(
        Allocation.transaction_id == transaction_id
    ).distinct().all()
    return [row[0] for row in rows]


def attach_receipt(
    db: Session,
    transaction: Transaction,
    data: ReceiptCreate,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> Receipt:
    """Attach evidence to an expense and recompute the lines it funds."""
    with atomic(db):
        if transaction.deleted_at is not None:
            raise NotFoundError("Transaction", transaction.id)
        if not transaction.is_expense():
            raise InvalidReceiptError("Receipts are only required for expense transactions")
        mime_type = data.mime_type.lower()
        if mime_type not in settings.ALLOWED_RECEIPT_TYPES:
            raise InvalidReceiptError(f"Unsupported receipt type: {data.mime_type}")

        receipt = Receipt(
            transaction_id=transaction.id,
            file_path=data.file_path,
            original_filename=data.original_filename,
            mime_type=mime_type,
            uploaded_by=acting_user_id,
            created_at=now,
            updated_at=now,
        )
        db.add(receipt)
        db.flush()

        budget_engine.recompute_lines(db, _allocated_line_ids(db, transaction.id), now)

        audit_service.record(
            db, acting_user_id, "attach_receipt", AuditModule.TRANSACTION, transaction.id,
            None, snapshot(receipt), origin_address, now,
        )

    logger.info(f"Receipt {receipt.id} attached to transaction {transaction.id}")
    return receipt


def remove_receipt(
    db: Session,
    receipt: Receipt,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> None:
    """Remove evidence; lines it completed drop back to partially fulfilled."""
    with atomic(db):
        transaction_id = receipt.transaction_id
        before = snapshot(receipt)

        db.delete(receipt)
        db.flush()

        budget_engine.recompute_lines(db, _allocated_line_ids(db, transaction_id), now)

        audit_service.record(
            db, acting_user_id, "remove_receipt", AuditModule.TRANSACTION, transaction_id,
            before, None, origin_address, now,
        )

    logger.info(f"Receipt {before['id']} removed from transaction {transaction_id}")


def get_receipt(db: Session, receipt_id: int) -> Receipt:
    receipt = db.query(Receipt).filter(Receipt.id == receipt_id).first()
    if not receipt:
        raise NotFoundError("Receipt", receipt_id)
    return receipt


def list_receipts(db: Session, transaction: Transaction) -> List[Receipt]:
    return db.query(Receipt).filter(
        Receipt.transaction_id == transaction.id
    ).order_by(Receipt.id).all()
