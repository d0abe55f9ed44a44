# storefront/models.py
from sqlalchemy import Column, DateTime, Float, Index, LargeBinary, String

from .database import Base


# 🗄️ Key/value record (orders and the amount -> order lookups)
class KVEntry(Base):
    __tablename__ = "kv_entries"

    key = Column(String(255), primary_key=True)
    value = Column(LargeBinary, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)  # NULL = never expires


# 📈 Sorted index member (orders:index, scored by creation time)
class IndexEntry(Base):
    __tablename__ = "index_entries"

    index_key = Column(String(255), primary_key=True)
    member = Column(String(255), primary_key=True)
    score = Column(Float, nullable=False)

    __table_args__ = (
        Index("ix_index_entries_key_score", "index_key", "score"),
    )
