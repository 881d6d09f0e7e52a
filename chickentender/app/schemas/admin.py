"""
Admin API Schema Definitions.

Pydantic schemas for admin endpoints.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from chickentender.app.models.dlq import DLQStatus


class SetCoinsRequest(BaseModel):
    """Schema for overwriting a user's balance."""
    coins: int = Field(..., description="New balance; may be negative")


class SetPermissionsRequest(BaseModel):
    """Schema for replacing a user's permissions."""
    permissions: List[Literal["ADMIN", "ORDER_CREATOR"]] = Field(default_factory=list)


class AdminActionResponse(BaseModel):
    """Schema for admin action response."""
    success: bool
    message: str
    user_id: int
    action: str
    audit_log_id: Optional[int] = None


class AuditLogResponse(BaseModel):
    """Schema for audit log entry."""
    id: int
    actor_id: Optional[int]
    action: str
    target_user_id: Optional[int]
    log: str
    meta_data: Optional[dict]
    timestamp: datetime

    class Config:
        from_attributes = True


class AuditTrailResponse(BaseModel):
    """Schema for audit trail list."""
    logs: List[AuditLogResponse]
    total: int
    page: int
    page_size: int


class DLQItemResponse(BaseModel):
    id: int
    task_name: str
    error_message: Optional[str]
    payload: Optional[Dict[str, Any]]
    status: DLQStatus
    retry_count: int
    created_at: datetime
    last_retry_at: Optional[datetime]

    class Config:
        from_attributes = True


class RequeueResponse(BaseModel):
    dlq_id: int
    job_id: int
    due_at: datetime
