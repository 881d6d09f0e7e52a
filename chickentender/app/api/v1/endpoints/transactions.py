"""
Ledger API Endpoints.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from chickentender.app.db.session import get_db
from chickentender.app.core.config import settings
from chickentender.app.core.dependencies import get_current_user
from chickentender.app.domain.ledger.ledger_service import LedgerService
from chickentender.app.models.user import User
from chickentender.app.schemas.ledger import LedgerEntryResponse, LedgerListResponse

router = APIRouter(prefix="/transactions", tags=["Transactions"])


@router.get("", response_model=LedgerListResponse)
async def list_transactions(
    page: int = Query(1, ge=1),
    user_id: Optional[int] = Query(None, description="Only entries touching this user"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List ledger entries, newest first."""
    entries, total = await LedgerService.list_entries(
        db, page=page, page_size=settings.page_size, user_id=user_id
    )
    return LedgerListResponse(
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=settings.page_size
    )
