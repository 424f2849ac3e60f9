"""
Audit trail: append-only before/after snapshots and the queries over them.
"""
import logging
import math
from datetime import datetime, time, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from rabtrack.core.config import settings
from rabtrack.models.audit import AuditLog, AuditModule
from rabtrack.models.budget_line import BudgetLine
from rabtrack.models.transaction import Transaction
from rabtrack.schemas.audit import AuditLogFilter, AuditLogPage, AuditLogResponse

logger = logging.getLogger(__name__)


def record(
    db: Session,
    acting_user_id: Optional[int],
    action: str,
    module: AuditModule,
    module_id: int,
    before: Optional[Dict[str, Any]],
    after: Optional[Dict[str, Any]],
    origin_address: Optional[str],
    now: datetime,
) -> AuditLog:
    """
    Append one audit entry to the current unit of work.

    There is no validation and no failure path other than the storage
    failing, which propagates to the caller and rolls back the unit.
    """
    entry = AuditLog(
        user_id=acting_user_id,
        action=action,
        module=AuditModule(module).value,
        module_id=module_id,
        before_data=before,
        after_data=after,
        ip_address=origin_address,
        created_at=now,
        updated_at=now,
    )
    db.add(entry)
    db.flush()
    logger.debug(f"Audit {entry.module}/{module_id} {action} by user {acting_user_id}")
    return entry


def _apply_filters(query, filters: AuditLogFilter):
    if filters.module is not None:
        query = query.filter(AuditLog.module == filters.module.value)
    if filters.module_id is not None:
        query = query.filter(AuditLog.module_id == filters.module_id)
    if filters.user_id is not None:
        query = query.filter(AuditLog.user_id == filters.user_id)
    # Closed range on calendar dates: [date_from 00:00, date_to + 1 day)
    if filters.date_from is not None:
        query = query.filter(AuditLog.created_at >= datetime.combine(filters.date_from, time.min))
    if filters.date_to is not None:
        upper = datetime.combine(filters.date_to + timedelta(days=1), time.min)
        query = query.filter(AuditLog.created_at < upper)
    return query


def _paginate(query, page: int, per_page: Optional[int]) -> AuditLogPage:
    per_page = per_page or settings.AUDIT_PAGE_SIZE
    per_page = max(1, min(per_page, settings.AUDIT_MAX_PAGE_SIZE))
    page = max(1, page)

    total = query.count()
    rows = query.order_by(
        AuditLog.created_at.desc(), AuditLog.id.desc()
    ).offset((page - 1) * per_page).limit(per_page).all()

    return AuditLogPage(
        items=[AuditLogResponse.model_validate(row) for row in rows],
        total=total,
        page=page,
        per_page=per_page,
        pages=math.ceil(total / per_page) if total else 0,
    )


def query_audit_log(
    db: Session,
    filters: Optional[AuditLogFilter] = None,
    page: int = 1,
    per_page: Optional[int] = None,
) -> AuditLogPage:
    """Filter the whole audit log by module, entity, user and date range."""
    query = _apply_filters(db.query(AuditLog), filters or AuditLogFilter())
    return _paginate(query, page, per_page)


def program_audit_log(
    db: Session,
    program_id: int,
    filters: Optional[AuditLogFilter] = None,
    page: int = 1,
    per_page: Optional[int] = None,
) -> AuditLogPage:
    """Entries for a program, its budget lines and its transactions, soft-deleted ones included."""
    line_ids = select(BudgetLine.id).where(BudgetLine.program_id == program_id)
    transaction_ids = select(Transaction.id).where(Transaction.program_id == program_id)

    query = db.query(AuditLog).filter(
        or_(
            and_(AuditLog.module == AuditModule.PROGRAM.value, AuditLog.module_id == program_id),
            and_(AuditLog.module == AuditModule.RAB_ITEM.value, AuditLog.module_id.in_(line_ids)),
            and_(AuditLog.module == AuditModule.TRANSACTION.value, AuditLog.module_id.in_(transaction_ids)),
        )
    )
    query = _apply_filters(query, filters or AuditLogFilter())
    return _paginate(query, page, per_page)
