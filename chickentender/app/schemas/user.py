"""
User API Schema Definitions.
"""

from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import List, Optional
from chickentender.app.models.enums import Permission


class UserResponse(BaseModel):
    """Schema for a user and their coin balance."""
    id: int
    email: str
    first_name: str
    last_name: str
    enabled: bool
    permissions: List[str]
    coins: int

    @field_validator("permissions", mode="before")
    @classmethod
    def permission_names(cls, value):
        if isinstance(value, int):
            return Permission(value).names()
        return value

    class Config:
        from_attributes = True


class ProfileUpdateRequest(BaseModel):
    """Schema for editing your own name and email; omitted fields are kept."""
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = Field(None, description="Must not belong to another user")

    @field_validator("first_name", "last_name")
    @classmethod
    def not_blank(cls, value):
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int
    page: int
    page_size: int


class TransferRequest(BaseModel):
    """Schema for a coin transfer to another user."""
    recipient_id: int
    amount: int = Field(..., description="Whole coins, at least 1 and at most your balance")


class TransferResponse(BaseModel):
    ledger_entry_id: int
    amount: int
    balance: int
