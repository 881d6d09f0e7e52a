"""
Ledger API Schema Definitions.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import List, Optional
from chickentender.app.models.ledger_enums import LedgerEntryKind


class LedgerLineResponse(BaseModel):
    user_id: int
    previous_value: int
    new_value: int
    delta: int

    class Config:
        from_attributes = True


class LedgerEntryResponse(BaseModel):
    id: int
    description: str
    kind: LedgerEntryKind
    order_id: Optional[int] = None
    date: datetime
    lines: List[LedgerLineResponse]

    class Config:
        from_attributes = True


class LedgerListResponse(BaseModel):
    entries: List[LedgerEntryResponse]
    total: int
    page: int
    page_size: int
