"""
Schema version marker model.
"""

from sqlalchemy import Column, Integer
from chickentender.app.db.session import Base


class SchemaVersion(Base):
    """Single row recording which data-shape version the database holds."""
    __tablename__ = "schema_version"

    id = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<SchemaVersion(version={self.version})>"
