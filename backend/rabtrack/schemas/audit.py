"""
Pydantic schemas for audit log queries.
"""
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from datetime import date, datetime
from rabtrack.models.audit import AuditModule


class AuditLogFilter(BaseModel):
    """Optional filters; date_from/date_to bound the entry's calendar date inclusively."""
    module: Optional[AuditModule] = None
    module_id: Optional[int] = None
    user_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class AuditLogResponse(BaseModel):
    """Schema for a single audit entry."""
    id: int
    user_id: Optional[int] = None
    action: str
    module: str
    module_id: int
    before_data: Optional[Dict[str, Any]] = None
    after_data: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogPage(BaseModel):
    """One fixed-size page of audit entries, newest first."""
    items: List[AuditLogResponse]
    total: int
    page: int
    per_page: int
    pages: int
