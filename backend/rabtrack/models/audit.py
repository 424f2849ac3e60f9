"""
Audit log model. Rows are append-only.
"""
import logging
from sqlalchemy import Column, String, ForeignKey, Integer, JSON, Index, event
from sqlalchemy.orm import relationship
from rabtrack.core.exceptions import AuditImmutableError
from rabtrack.db.base import BaseModel
import enum

logger = logging.getLogger(__name__)


class AuditModule(str, enum.Enum):
    """Entity family an audit entry refers to."""
    PROGRAM = "PROGRAM"
    RAB_ITEM = "RAB_ITEM"
    TRANSACTION = "TRANSACTION"


class AuditLog(BaseModel):
    """Before/after snapshot of one mutation."""
    __tablename__ = "audit_logs"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String(50), nullable=False)  # create, update, delete, update_status, ...
    module = Column(String(20), nullable=False)
    module_id = Column(Integer, nullable=False)
    before_data = Column(JSON, nullable=True)
    after_data = Column(JSON, nullable=True)
    ip_address = Column(String(45), nullable=True)

    # Relationships
    user = relationship("User")

    __table_args__ = (
        Index("ix_audit_logs_module", "module", "module_id"),
    )


@event.listens_for(AuditLog, "before_update")
def _reject_audit_update(mapper, connection, target):
    logger.error(f"Blocked update of audit log entry {target.id}")
    raise AuditImmutableError(target.id, "update")


@event.listens_for(AuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    logger.error(f"Blocked delete of audit log entry {target.id}")
    raise AuditImmutableError(target.id, "delete")
