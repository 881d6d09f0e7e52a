"""
User database model.

This module defines the User SQLAlchemy model: identity supplied by the
sign-in integration plus the user's coin account.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from chickentender.app.db.session import Base
from chickentender.app.models.enums import Permission


class User(Base):
    """
    User model.

    `coins` is the user's coin account. It is signed (debt is expected
    between settlements) and is only changed by operations that also
    append a ledger entry.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    enabled = Column(Boolean, default=False, nullable=False)

    # Bitmask of Permission flags
    permissions = Column(Integer, default=0, nullable=False)

    # Coin account
    coins = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def permission_flags(self) -> Permission:
        return Permission(self.permissions or 0)

    def has_permission(self, permission: Permission) -> bool:
        return permission in self.permission_flags

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def audit_label(self) -> str:
        """Identify the user in free-text audit records."""
        return f"({self.full_name},{self.id})"

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', coins={self.coins}, enabled={self.enabled})>"
