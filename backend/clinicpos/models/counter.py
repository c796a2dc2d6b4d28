from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime

from clinicpos.db.base import Base


class Counter(Base):
    """Named monotonic sequence, e.g. transaction:20261017"""
    __tablename__ = "counters"

    name = Column(String(60), primary_key=True)
    value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Counter {self.name}={self.value}>"
